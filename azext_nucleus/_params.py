"""CLI parameter definitions for az nucleus."""

from azure.cli.core.commands.parameters import get_enum_type


def load_arguments(self, _):
    """Register CLI parameters for all commands."""

    # --- global: --json on every nucleus command that renders a report ---
    for scope in ("nucleus validate", "nucleus doctor", "nucleus deploy", "nucleus postdeploy", "nucleus scan"):
        with self.argument_context(scope) as c:
            c.argument(
                "json_output",
                options_list=["--json", "-j"],
                help="Output machine-readable JSON instead of formatted display.",
                action="store_true",
                default=False,
            )

    # --- az nucleus init ---
    with self.argument_context("nucleus init") as c:
        c.argument("name", help="Project name (defaults to the directory name).")
        c.argument("location", help="Azure region for resource deployment (e.g., westeurope).", default="westeurope")
        c.argument(
            "iac_tool",
            arg_type=get_enum_type(["bicep", "terraform"]),
            help="Infrastructure-as-code tool.",
            default="bicep",
        )
        c.argument(
            "environment",
            arg_type=get_enum_type(["dev", "test", "prod"]),
            help="Default target environment.",
            default="dev",
        )
        c.argument("template", help="Entry-point template relative to the project root.", default="main.bicep")
        c.argument("output_dir", help="Directory in which to create nucleus.yaml.", default=".")
        c.argument("force", help="Overwrite an existing nucleus.yaml.", action="store_true", default=False)

    # --- az nucleus config ---
    with self.argument_context("nucleus config get") as c:
        c.argument("key", help="Dot-separated configuration key (e.g., deploy.resource_group).")

    with self.argument_context("nucleus config set") as c:
        c.argument("key", help="Dot-separated configuration key (e.g., deploy.resource_group).")
        c.argument("value", help="Value to set. JSON is accepted for lists, numbers and booleans.")

    # --- az nucleus params show ---
    with self.argument_context("nucleus params show") as c:
        c.argument("file", options_list=["--file", "-f"], help="Path to a .bicepparam or ARM JSON parameter file.")
        c.argument(
            "resolve_env",
            options_list=["--resolve-env"],
            help="Evaluate readEnvironmentVariable() against the current environment.",
            action="store_true",
            default=False,
        )

    # --- az nucleus validate ---
    with self.argument_context("nucleus validate templates") as c:
        c.argument("root", help="Project root containing the templates (default: current directory).")
        c.argument(
            "rules_dir",
            options_list=["--rules-dir"],
            nargs="+",
            help="Directories of *.rules.yaml files. Defaults to validation.rules_dirs or the built-in rules.",
        )
        c.argument(
            "environments",
            options_list=["--environments", "--env"],
            nargs="+",
            help="Only validate these environments.",
        )
        c.argument("strict", help="Treat warnings as errors.", action="store_true", default=False)

    with self.argument_context("nucleus validate references") as c:
        c.argument("root", help="Scripts directory (default: validation.scripts_dir).")
        c.argument("terms", options_list=["--terms"], nargs="+", help="Forbidden terms (case-insensitive).")
        c.argument("patterns", options_list=["--patterns"], nargs="+", help="File globs to scan (e.g., *.ps1).")

    with self.argument_context("nucleus validate arm") as c:
        c.argument("template", help="Bicep or ARM JSON template (default: project.template).")
        c.argument("parameters", options_list=["--parameters", "-p"], help="Parameter file (.bicepparam / .json).")
        c.argument(
            "arm_ttk_path",
            options_list=["--arm-ttk-path"],
            help="ARM-TTK clone or arm-ttk.psd1 (default: validation.arm_ttk_path, ARM_TTK_PATH or ~/arm-ttk).",
        )
        c.argument("resource_group", options_list=["--resource-group", "-g"], help="Resource group for the what-if hint.")

    with self.argument_context("nucleus validate scripts") as c:
        c.argument("path", help="Script or directory of scripts (default: validation.scripts_dir).")

    # --- az nucleus doctor ---
    with self.argument_context("nucleus doctor") as c:
        c.argument(
            "profiles",
            options_list=["--profiles"],
            nargs="+",
            arg_type=get_enum_type(["core", "aks", "scan", "scripts", "templates"]),
            help="Tool profiles to check (default: core).",
        )
        c.argument(
            "iac_tool",
            arg_type=get_enum_type(["bicep", "terraform"]),
            help="IaC tool to check (default: project.iac_tool).",
        )

    # --- az nucleus env setup ---
    with self.argument_context("nucleus env setup") as c:
        c.argument(
            "install_tools",
            options_list=["--install-tools"],
            help="Install the PowerShell analysis modules and clone ARM-TTK.",
            action="store_true",
            default=False,
        )
        c.argument("arm_ttk_path", options_list=["--arm-ttk-path"], help="Where to clone ARM-TTK (default: ~/arm-ttk).")

    # --- az nucleus deploy ---
    with self.argument_context("nucleus deploy") as c:
        c.argument(
            "action",
            arg_type=get_enum_type(["create", "validate", "what-if"]),
            help="Deployment action. Terraform maps create to apply and the others to plan.",
            default="what-if",
        )
        c.argument("template", help="Template (Bicep) or working directory (Terraform). Default: project.template.")
        c.argument("parameters", options_list=["--parameters", "-p"], help="Parameter file (.bicepparam / .json / .tfvars).")
        c.argument("environment", options_list=["--environment", "--env"], help="Environment used to find the parameter file.")
        c.argument("resource_group", options_list=["--resource-group", "-g"], help="Target resource group.")
        c.argument("subscription", help="Target subscription ID.")
        c.argument("location", options_list=["--location", "-l"], help="Location for subscription-scoped deployments.")
        c.argument("deployment_name", options_list=["--name", "-n"], help="Deployment name.")

    # --- az nucleus postdeploy ---
    with self.argument_context("nucleus postdeploy") as c:
        c.argument("plan", help="Post-deployment plan file (default: postdeploy.plan, postdeploy.yaml).")
        c.argument("parameters", options_list=["--parameters", "-p"], help="Parameter file supplying resource names.")
        c.argument("environment", options_list=["--environment", "--env"], help="Environment used to find the parameter file.")
        c.argument(
            "dry_run",
            options_list=["--dry-run"],
            help="Print the commands that would run without executing them.",
            action="store_true",
            default=False,
        )
        c.argument(
            "fail_fast",
            options_list=["--fail-fast"],
            help="Stop at the first failing step (default: postdeploy.fail_fast).",
            action="store_true",
            default=None,
        )

    # --- az nucleus scan ---
    with self.argument_context("nucleus scan") as c:
        c.argument("path", help="Directory to scan (default: current directory).")
        c.argument(
            "tools",
            options_list=["--tools"],
            nargs="+",
            arg_type=get_enum_type(["trivy", "checkov", "gitleaks"]),
            help="Scanners to run (default: scan.tools).",
        )
        c.argument(
            "threshold",
            arg_type=get_enum_type(["LOW", "MEDIUM", "HIGH", "CRITICAL"]),
            help="Fail when a finding is at or above this severity (default: scan.threshold).",
        )
