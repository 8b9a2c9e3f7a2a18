"""Command implementations for az nucleus.

Every handler takes ``cmd`` first (Azure CLI convention), resolves the
project from the current directory and either prints a Rich report or,
with ``--json``, returns a dict that the CLI serialises.  Failures are
raised as ``CLIError`` so the CLI exits non-zero.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from knack.util import CLIError

from azext_nucleus.transcript import transcript

logger = logging.getLogger(__name__)


# ======================================================================
# Helpers
# ======================================================================


def _get_project_dir() -> str:
    """Resolve the current project directory."""
    return str(Path.cwd().resolve())


def _load_config(project_dir: str | None = None):
    """Load project configuration."""
    from azext_nucleus.config import ProjectConfig

    project_dir = project_dir or _get_project_dir()
    config = ProjectConfig(project_dir)
    config.load()
    return config


def _check_requirements(iac_tool: str | None = None, profiles: tuple[str, ...] = ("core",)):
    """Run tool-version checks and raise CLIError on failures."""
    from azext_nucleus.requirements import check_all

    results = check_all(iac_tool, profiles)
    problems = [r for r in results if r.status in ("fail", "missing")]
    if problems:
        lines = []
        for r in problems:
            line = f"  - {r.name}: {r.message}"
            if r.install_hint:
                line += f"\n    Install: {r.install_hint}"
            lines.append(line)
        raise CLIError("Tool requirements not met:\n" + "\n".join(lines))


def _resolve_parameter_file(project_dir: str, config, parameters: str | None, environment: str | None) -> Path | None:
    """Explicit ``--parameters`` wins; otherwise discover by environment."""
    from azext_nucleus.parsers import find_parameter_file

    if parameters:
        path = Path(parameters)
        if not path.is_absolute():
            path = Path(project_dir) / path
        if not path.is_file():
            raise CLIError(f"Parameter file not found: {path}")
        return path
    template = Path(project_dir) / config.get("project.template", "main.bicep")
    return find_parameter_file(Path(project_dir), template, environment or config.get("project.environment"))


def _fail(message: str, result: dict, json_output: bool):
    """Raise CLIError; in JSON mode the full result is appended for machine readers."""
    if json_output:
        message = f"{message}\n{json.dumps(result, indent=2, default=str)}"
    raise CLIError(message)


def _rel(path: str | Path, root: str | Path) -> str:
    try:
        return str(Path(path).resolve().relative_to(Path(root).resolve()))
    except ValueError:
        return str(path)


# ======================================================================
# Project Commands
# ======================================================================


@transcript("nucleus init")
def nucleus_init(
    cmd,
    name=None,
    location="westeurope",
    iac_tool="bicep",
    environment="dev",
    template="main.bicep",
    output_dir=".",
    force=False,
):
    """Create ``nucleus.yaml`` in *output_dir*."""
    from azext_nucleus.config import ProjectConfig
    from azext_nucleus.ui.console import console

    project_dir = Path(output_dir).resolve()
    config = ProjectConfig(str(project_dir))
    if config.exists() and not force:
        raise CLIError(f"{config.config_path} already exists. Use --force to overwrite.")

    result = config.create_default(
        {
            "project": {
                "name": name or project_dir.name,
                "location": location,
                "iac_tool": iac_tool,
                "environment": environment,
                "template": template,
            }
        }
    )

    gitignore = project_dir / ".gitignore"
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    ignored = [line.strip() for line in existing.splitlines()]
    missing = [entry for entry in (ProjectConfig.SECRETS_FILENAME, ".nucleus/") if entry not in ignored]
    if missing:
        lead = "\n" if existing and not existing.endswith("\n") else ""
        with open(gitignore, "a", encoding="utf-8") as f:
            f.write(lead + "\n".join(missing) + "\n")

    console.print_success("Project initialized")
    console.print_file_list([str(config.config_path)] + ([str(gitignore)] if missing else []))
    if missing:
        console.print_dim(f"  Added {', '.join(missing)} to .gitignore")
    return {"status": "initialized", "project": result["project"]}


# ======================================================================
# Config Commands
# ======================================================================


def nucleus_config_show(cmd):
    """Display current configuration with secret values masked."""
    return _load_config().masked()


def nucleus_config_get(cmd, key=None):
    """Get a single configuration value by dot-separated key."""
    from azext_nucleus.config import ProjectConfig

    if not key:
        raise CLIError("--key is required.")

    config = _load_config()
    value = config.get(key)
    if value is None:
        raise CLIError(f"Key '{key}' not found in configuration.")

    if ProjectConfig._is_secret_key(key) and value:
        return {"key": key, "value": "***"}

    return {"key": key, "value": value}


@transcript("nucleus config set")
def nucleus_config_set(cmd, key=None, value=None):
    """Set a configuration value."""
    from azext_nucleus.config import ProjectConfig

    if not key:
        raise CLIError("--key is required.")
    if value is None:
        raise CLIError("--value is required.")

    config = _load_config()

    # Structured values (lists, booleans, numbers) may be passed as JSON.
    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        parsed = value
    config.set(key, parsed)

    shown = "***" if ProjectConfig._is_secret_key(key) else config.get(key)
    return {"key": key, "value": shown, "status": "updated"}


# ======================================================================
# Parameter Files
# ======================================================================


def nucleus_params_show(cmd, file=None, resolve_env=False):
    """Parse a ``.bicepparam`` or ARM JSON parameter file and return its values."""
    from azext_nucleus.parsers import load_bicepparam, load_parameters, to_plain

    if not file:
        raise CLIError("--file is required.")
    path = Path(file)
    env = None if resolve_env else {}

    if path.suffix == ".bicepparam":
        parsed = load_bicepparam(path, env=env)
        return parsed.to_dict()
    return {"path": str(path), "parameters": to_plain(load_parameters(path, env=env))}


# ======================================================================
# Validation Commands
# ======================================================================


@transcript("nucleus validate templates")
def nucleus_validate_templates(cmd, root=None, rules_dir=None, environments=None, strict=False, json_output=False):
    """Validate templates and parameter files against the rule sets."""
    from azext_nucleus.validation.templates import load_rulesets, summarize, validate_project

    project_dir = Path(root or _get_project_dir())
    if not project_dir.is_dir():
        raise CLIError(f"'{project_dir}' is not a directory.")

    rule_dirs = [Path(d) for d in rules_dir] if rules_dir else None
    if rule_dirs is None and (project_dir / "nucleus.yaml").exists():
        configured = _load_config(str(project_dir)).get("validation.rules_dirs") or []
        rule_dirs = [project_dir / d for d in configured] or None

    rulesets = load_rulesets(rule_dirs)
    findings = validate_project(project_dir, rulesets, environments)
    errors, warnings, passed = summarize(findings, strict)

    result = {
        "passed": passed,
        "errors": errors,
        "warnings": warnings,
        "rulesets": [r.name for r in rulesets],
        "findings": [f.to_dict() for f in findings],
    }
    if json_output:
        if not passed:
            _fail("Template validation failed.", result, json_output)
        return result

    from azext_nucleus.ui.console import console

    console.print_header(f"Template validation ({len(rulesets)} rule set(s))")
    if findings:
        console.table(
            ["Severity", "File", "Rule", "Message"],
            [(f.severity.upper(), f.file, f.rule_id, f.message) for f in findings],
        )
    else:
        console.print_success("All templates and parameter files passed validation.")
    console.print(f"\n{errors} error(s), {warnings} warning(s)")

    if not passed:
        raise CLIError("Template validation failed.")
    return None


@transcript("nucleus validate references")
def nucleus_validate_references(cmd, root=None, terms=None, patterns=None, json_output=False):
    """Scan deployment scripts for forbidden references."""
    from azext_nucleus.validation.references import DEFAULT_PATTERNS, DEFAULT_TERMS, scan_scripts

    project_dir = _get_project_dir()
    settings = {}
    if (Path(project_dir) / "nucleus.yaml").exists():
        settings = _load_config(project_dir).get("validation", {}) or {}

    scripts_dir = Path(root or Path(project_dir) / settings.get("scripts_dir", "scripts"))
    if not scripts_dir.is_dir():
        raise CLIError(f"Scripts directory not found: {scripts_dir}")

    terms = terms or settings.get("forbidden_terms") or list(DEFAULT_TERMS)
    patterns = patterns or settings.get("script_patterns") or list(DEFAULT_PATTERNS)
    results = scan_scripts(scripts_dir, terms, patterns)
    hits = [hit for file_hits in results.values() for hit in file_hits]

    if json_output:
        payload = {
            "passed": not hits,
            "files": len(results),
            "hits": [{"file": h.file, "line": h.line, "term": h.term, "text": h.text} for h in hits],
        }
        if hits:
            _fail(f"Found {len(hits)} forbidden reference(s).", payload, json_output)
        return payload

    from azext_nucleus.ui.console import console

    console.print_header(f"Reference check ({', '.join(terms)})")
    for file, file_hits in results.items():
        name = _rel(file, scripts_dir)
        if file_hits:
            console.print_error(f"{name}: {len(file_hits)} forbidden reference(s)")
            for hit in file_hits:
                console.print_dim(f"    line {hit.line}: {hit.text}")
        else:
            console.print_success(name)

    if hits:
        raise CLIError(f"Found {len(hits)} forbidden reference(s) in {sum(1 for h in results.values() if h)} file(s).")
    return None


def _print_analysis(report, title: str):
    from azext_nucleus.ui.console import console

    console.print_header(title)
    console.table(
        ["Tool", "Status", "Findings", "Message"],
        [(run.tool, run.status, len(run.findings), run.message) for run in report.runs],
    )
    if report.findings:
        console.table(
            ["Severity", "Tool", "Rule", "Line", "Message"],
            [(f.severity.upper(), f.tool, f.rule, f.line or "-", f.message) for f in report.findings],
        )


@transcript("nucleus validate arm")
def nucleus_validate_arm(
    cmd, template=None, parameters=None, arm_ttk_path=None, resource_group=None, json_output=False
):
    """Build a template and test it with ARM-TTK and PSRule for Azure."""
    from azext_nucleus.validation.powershell import analyze_template

    project_dir = _get_project_dir()
    has_config = (Path(project_dir) / "nucleus.yaml").exists()
    config = _load_config(project_dir) if has_config else None

    template = Path(template or (config.get("project.template", "main.bicep") if config else "main.bicep"))
    if not template.is_absolute():
        template = Path(project_dir) / template
    params_file = _resolve_parameter_file(project_dir, config, parameters, None) if parameters else None
    if config is not None:
        arm_ttk_path = arm_ttk_path or config.get("validation.arm_ttk_path") or None
        resource_group = resource_group or config.get("deploy.resource_group") or None

    report = analyze_template(template, params_file, arm_ttk_path=arm_ttk_path, resource_group=resource_group)
    result = report.to_dict()

    if not json_output:
        from azext_nucleus.ui.console import console

        _print_analysis(report, f"Template tests: {_rel(template, project_dir)}")
        if report.hint:
            console.print_info(f"Preview the deployment with: {report.hint}")

    if not report.passed:
        _fail(f"Template tests failed for {_rel(template, project_dir)}.", result, json_output)
    return result if json_output else None


@transcript("nucleus validate scripts")
def nucleus_validate_scripts(cmd, path=None, json_output=False):
    """Run PSScriptAnalyzer and Pester against deployment scripts."""
    from azext_nucleus.validation.powershell import analyze_script, find_scripts

    project_dir = _get_project_dir()
    settings = {}
    if (Path(project_dir) / "nucleus.yaml").exists():
        settings = _load_config(project_dir).get("validation", {}) or {}

    root = Path(path or Path(project_dir) / settings.get("scripts_dir", "scripts"))
    scripts = find_scripts(root, settings.get("script_patterns") or ["*.ps1"])
    reports = [analyze_script(script) for script in scripts]
    failed = [r for r in reports if not r.passed]
    result = {"passed": not failed, "scripts": [r.to_dict() for r in reports]}

    if not json_output:
        from azext_nucleus.ui.console import console

        if not reports:
            console.print_dim(f"No scripts found under {root}.")
        for report in reports:
            _print_analysis(report, f"Script analysis: {_rel(report.target, project_dir)}")

    if failed:
        _fail(f"Script analysis failed for {len(failed)} of {len(reports)} script(s).", result, json_output)
    return result if json_output else None


# ======================================================================
# Environment Commands
# ======================================================================


def nucleus_doctor(cmd, profiles=None, iac_tool=None, json_output=False):
    """Check installed tool versions against the supported ranges."""
    from azext_nucleus.requirements import PROFILES, check_all

    profiles = tuple(profiles or ("core",))
    unknown = [p for p in profiles if p not in PROFILES]
    if unknown:
        raise CLIError(f"Unknown profile(s): {', '.join(unknown)}. Use: {', '.join(PROFILES)}")

    if iac_tool is None:
        try:
            iac_tool = _load_config().get("project.iac_tool")
        except CLIError:
            iac_tool = None

    results = check_all(iac_tool, profiles)
    ok = not any(r.status in ("fail", "missing") for r in results)

    if json_output:
        return {"ok": ok, "tools": [r.to_dict() for r in results]}

    from azext_nucleus.ui.console import console

    console.print_header("Toolchain")
    console.table(
        ["Tool", "Status", "Installed", "Required"],
        [(r.name, r.status, r.installed_version or "-", r.required or "-") for r in results if r.status != "skip"],
    )
    for r in results:
        if r.status in ("fail", "missing") and r.install_hint:
            console.print_dim(f"  {r.name}: {r.install_hint}")
    if not ok:
        raise CLIError("Some required tools are missing or out of date.")
    return None


@transcript("nucleus env setup")
def nucleus_env_setup(cmd, install_tools=False, arm_ttk_path=None):
    """Apply Azure CLI defaults from the environment and print login hints.

    With ``--install-tools`` the PowerShell analysis modules are installed and
    ARM-TTK is cloned.
    """
    from azext_nucleus.environment import (
        authentication_hints,
        configure_az_defaults,
        install_arm_ttk,
        install_powershell_modules,
    )
    from azext_nucleus.ui.console import console

    applied = configure_az_defaults()
    for key, value in applied.items():
        console.print_success(f"az default {key} = {value}")
    if not applied:
        console.print_dim("No AZURE_DEFAULTS_GROUP / AZURE_DEFAULTS_LOCATION set; az defaults unchanged.")

    result = {"defaults": applied}
    if install_tools:
        with console.spinner("Installing PowerShell modules..."):
            result["modules"] = install_powershell_modules()
        console.print_success(f"Installed {', '.join(result['modules'])}")
        result["arm_ttk"] = str(install_arm_ttk(arm_ttk_path))
        console.print_success(f"ARM-TTK available at {result['arm_ttk']}")

    console.panel(
        "\n".join(f"{i}. {hint}" for i, hint in enumerate(authentication_hints(), start=1)),
        title="Azure and Git Authentication",
    )
    return result


# ======================================================================
# Deploy
# ======================================================================


@transcript("nucleus deploy")
def nucleus_deploy(
    cmd,
    action="what-if",
    template=None,
    parameters=None,
    environment=None,
    resource_group=None,
    subscription=None,
    location=None,
    deployment_name=None,
    json_output=False,
):
    """Deploy (or validate / preview) the project's infrastructure."""
    from azext_nucleus.deploy.azcli import (
        build_deploy_env,
        check_az_login,
        get_current_subscription,
        get_current_tenant,
        login_service_principal,
        set_deployment_context,
    )
    from azext_nucleus.deploy.helpers import (
        DeploymentOutputCapture,
        bicep_deployment,
        deploy_terraform,
        plan_terraform,
        summarize_whatif,
    )
    from azext_nucleus.ui.console import console

    project_dir = _get_project_dir()
    config = _load_config(project_dir)
    iac_tool = config.get("project.iac_tool", "bicep")
    _check_requirements(iac_tool)

    subscription = subscription or config.get("deploy.subscription") or None
    resource_group = resource_group or config.get("deploy.resource_group") or None
    tenant = config.get("deploy.tenant") or None

    sp = config.get("deploy.service_principal") or {}
    if sp.get("client_id") and sp.get("client_secret"):
        login = login_service_principal(sp["client_id"], sp["client_secret"], sp.get("tenant_id") or tenant or "")
        if login["status"] != "ok":
            raise CLIError(f"Service principal login failed: {login['error']}")
        tenant = tenant or sp.get("tenant_id")
    elif not check_az_login():
        raise CLIError("Not logged into Azure CLI. Run 'az login' or configure deploy.service_principal.")

    if subscription and get_current_subscription() != subscription:
        context = set_deployment_context(subscription, tenant)
        if context["status"] != "ok":
            raise CLIError(f"Could not select subscription {subscription}: {context['error']}")
    tenant = tenant or get_current_tenant() or None

    env = build_deploy_env(subscription, tenant, sp.get("client_id"), sp.get("client_secret"))

    if iac_tool == "terraform":
        infra_dir = Path(project_dir) / (template or ".")
        var_file = _resolve_parameter_file(project_dir, config, parameters, environment) if parameters else None
        with console.spinner(f"terraform {'apply' if action == 'create' else 'plan'}"):
            if action == "create":
                result = deploy_terraform(infra_dir, subscription, var_file, env)
            else:
                result = plan_terraform(infra_dir, subscription, var_file, env)
        if result["status"] == "deployed":
            DeploymentOutputCapture(project_dir).capture_terraform(infra_dir)
    else:
        template_path = Path(project_dir) / (template or config.get("project.template", "main.bicep"))
        params_file = _resolve_parameter_file(project_dir, config, parameters, environment)
        if params_file is not None:
            console.print_info(f"Parameters: {_rel(params_file, project_dir)}")
        with console.spinner(f"az deployment {action}"):
            result = bicep_deployment(
                action,
                template_path,
                params_file,
                subscription,
                resource_group,
                location or config.get("project.location"),
                deployment_name,
                env,
            )
        if result["status"] == "deployed":
            DeploymentOutputCapture(project_dir).capture_bicep(result.get("deployment_output", ""))
        elif result["status"] == "previewed":
            result["changes"] = summarize_whatif(result.get("deployment_output", ""))

    if result["status"] == "failed":
        raise CLIError(f"{result.get('command', action)} failed:\n{result.get('error')}")

    result.pop("deployment_output", None)
    if json_output:
        return result

    console.print_success(f"{iac_tool} {action}: {result['status']}")
    for change_type, count in (result.get("changes") or {}).items():
        console.print(f"  {change_type}: {count}")
    if result.get("output"):
        console.print_dim(result["output"])
    return None


# ======================================================================
# Post-deployment
# ======================================================================


def _run_postdeploy(target: str, plan=None, parameters=None, environment=None, dry_run=False, fail_fast=None,
                    json_output=False):
    from azext_nucleus.deploy.helpers import DeploymentOutputCapture
    from azext_nucleus.deploy.runner import CommandRunner
    from azext_nucleus.parsers import load_parameters
    from azext_nucleus.postdeploy import TARGETS, load_plan
    from azext_nucleus.ui.console import console

    project_dir = _get_project_dir()
    config = _load_config(project_dir)
    plan_path = Path(plan or Path(project_dir) / config.get("postdeploy.plan", "postdeploy.yaml"))
    plan_data = load_plan(plan_path)

    params: dict = {}
    params_file = _resolve_parameter_file(project_dir, config, parameters, environment)
    if params_file is not None:
        params = load_parameters(params_file, env={})
    outputs = DeploymentOutputCapture(project_dir)
    for provider in ("terraform", "bicep"):
        for key, value in (outputs.get_all().get(provider) or {}).items():
            params.setdefault(key, value)

    if fail_fast is None:
        fail_fast = bool(config.get("postdeploy.fail_fast", False))

    runner = CommandRunner(dry_run=dry_run)
    report = TARGETS[target](plan_data, params, config, runner, fail_fast=fail_fast)
    result = report.to_dict()
    result["dry_run"] = dry_run

    if not json_output:
        console.print_header(f"Post-deployment: {target} {report.target}" + (" (dry run)" if dry_run else ""))
        console.table(["Step", "Status", "Error"], [(s.name, s.status, s.error) for s in report.steps])
        if dry_run:
            for record in report.commands:
                console.print_dim(f"  {record['command']}")

    if not report.ok:
        _fail(f"{len(report.failed)} post-deployment step(s) failed for {report.target}.", result, json_output)
    return result if json_output else None


@transcript("nucleus postdeploy apim")
def nucleus_postdeploy_apim(cmd, plan=None, parameters=None, environment=None, dry_run=False, fail_fast=None,
                            json_output=False):
    """Configure APIs, products, policies, groups and users on APIM."""
    return _run_postdeploy("apim", plan, parameters, environment, dry_run, fail_fast, json_output)


@transcript("nucleus postdeploy aks")
def nucleus_postdeploy_aks(cmd, plan=None, parameters=None, environment=None, dry_run=False, fail_fast=None,
                           json_output=False):
    """Configure namespaces, Helm releases and manifests on AKS."""
    return _run_postdeploy("aks", plan, parameters, environment, dry_run, fail_fast, json_output)


# ======================================================================
# Security Scanning
# ======================================================================


@transcript("nucleus scan")
def nucleus_scan(cmd, path=None, tools=None, threshold=None, json_output=False):
    """Run Trivy, Checkov and Gitleaks and fail on findings at or above the threshold."""
    from azext_nucleus.scanning import run_scanners, severity_rank

    project_dir = _get_project_dir()
    settings = {}
    if (Path(project_dir) / "nucleus.yaml").exists():
        settings = _load_config(project_dir).get("scan", {}) or {}

    tools = tools or settings.get("tools")
    threshold = (threshold or settings.get("threshold") or "HIGH").upper()
    report = run_scanners(path or project_dir, tools)
    blocking = report.exceeds(threshold)

    result = report.to_dict()
    result["threshold"] = threshold
    result["blocking"] = len(blocking)

    if not json_output:
        from azext_nucleus.ui.console import console

        console.print_header("Security scan")
        console.table(["Tool", "Status"], list(report.tools.items()))
        if report.findings:
            console.table(
                ["Severity", "Tool", "Rule", "File", "Line", "Message"],
                [
                    (f.severity, f.tool, f.rule_id, _rel(f.file, report.path), f.line or "", f.message)
                    for f in sorted(report.findings, key=lambda f: severity_rank(f.severity), reverse=True)
                ],
            )
        counts = ", ".join(f"{n} {s}" for s, n in report.counts().items() if n)
        console.print(f"\nFindings: {counts or 'none'} (threshold {threshold})")

    if blocking:
        _fail(f"{len(blocking)} finding(s) at or above {threshold}.", result, json_output)
    return result if json_output else None
