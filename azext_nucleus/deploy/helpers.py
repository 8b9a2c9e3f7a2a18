"""Deployment helpers: Bicep and Terraform execution, output capture.

- **Bicep**: ``az deployment sub|group create|validate|what-if`` and
  ``az bicep build``
- **Terraform**: ``init`` (with local-state fallback), ``validate``,
  ``plan`` and ``apply``
- **DeploymentOutputCapture**: persist outputs for post-deployment steps
"""

from __future__ import annotations

import json
import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from knack.util import CLIError

from azext_nucleus.deploy.runner import az_path, mask_command
from azext_nucleus.parsers.arm_params import load_parameters

logger = logging.getLogger(__name__)

BICEP_ACTIONS = ("create", "validate", "what-if")


# ======================================================================
# Bicep
# ======================================================================


def is_subscription_scoped(bicep_file: Path) -> bool:
    """Check if a Bicep file (or compiled ARM template) targets subscription scope."""
    try:
        text = bicep_file.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError):
        return False
    if bicep_file.suffix == ".json":
        return "subscriptionDeploymentTemplate.json" in text
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("targetScope") and "'subscription'" in stripped:
            return True
    return False


def get_deploy_location(params_file: Path | None, default: str | None = None) -> str | None:
    """Read ``location`` from a parameter file, falling back to *default*."""
    if params_file is None:
        return default
    try:
        params = load_parameters(params_file, env={})
    except CLIError as exc:
        logger.warning("Could not read location from %s: %s", params_file, exc)
        return default
    location = params.get("location")
    return location if isinstance(location, str) and location else default


def build_bicep_command(
    action: str,
    template: Path,
    params_file: Path | None,
    subscription: str | None,
    resource_group: str | None,
    location: str | None = None,
    deployment_name: str | None = None,
) -> list[str]:
    """Assemble the ``az deployment`` command line for *action*."""
    if action not in BICEP_ACTIONS:
        raise CLIError(f"Unknown deployment action '{action}'. Use one of: {', '.join(BICEP_ACTIONS)}")

    if is_subscription_scoped(template):
        location = location or get_deploy_location(params_file)
        if not location:
            raise CLIError("A location is required for subscription-scoped deployments (--location).")
        cmd = [az_path(), "deployment", "sub", action, "--location", location]
    else:
        if not resource_group:
            raise CLIError("Resource group required for resource-group-scoped Bicep deployment.")
        cmd = [az_path(), "deployment", "group", action, "--resource-group", resource_group]

    # A .bicepparam file carries its own 'using' template reference.
    if params_file is not None and params_file.suffix == ".bicepparam":
        cmd += ["--parameters", str(params_file)]
    else:
        cmd += ["--template-file", str(template)]
        if params_file is not None:
            cmd += ["--parameters", f"@{params_file}"]

    if deployment_name:
        cmd += ["--name", deployment_name]
    if subscription:
        cmd += ["--subscription", subscription]
    if action == "what-if":
        cmd += ["--no-pretty-print"]
    cmd += ["-o", "json"]
    return cmd


def bicep_deployment(
    action: str,
    template: Path,
    params_file: Path | None,
    subscription: str | None,
    resource_group: str | None,
    location: str | None = None,
    deployment_name: str | None = None,
    env: dict[str, str] | None = None,
) -> dict:
    """Run ``az deployment ... <action>`` and return a result dict.

    ``status`` is ``deployed`` / ``validated`` / ``previewed`` on success or
    ``failed`` with ``error`` and ``command``.
    """
    if not template.exists():
        return {"status": "failed", "error": f"Template not found: {template}"}

    cmd = build_bicep_command(action, template, params_file, subscription, resource_group, location, deployment_name)
    logger.info("Running: %s", mask_command(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False, env=env)
    except FileNotFoundError:
        return {"status": "failed", "error": "az CLI not found on PATH.", "command": " ".join(["az"] + cmd[1:4])}

    if result.returncode != 0:
        error = result.stderr.strip() or result.stdout.strip()
        logger.error("Bicep %s error: %s", action, error)
        return {"status": "failed", "error": error, "command": " ".join(["az"] + cmd[1:4])}

    status = {"create": "deployed", "validate": "validated", "what-if": "previewed"}[action]
    return {
        "status": status,
        "tool": "bicep",
        "template": template.name,
        "scope": "subscription" if is_subscription_scoped(template) else "resourceGroup",
        "deployment_output": result.stdout,
    }


def build_bicep(template: Path) -> dict:
    """Compile *template* with ``az bicep build --stdout`` and return the ARM JSON."""
    cmd = [az_path(), "bicep", "build", "--file", str(template), "--stdout"]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError as exc:
        raise CLIError("az CLI not found on PATH.") from exc
    if result.returncode != 0:
        raise CLIError(f"Bicep build failed for {template}:\n{result.stderr.strip()}")
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise CLIError(f"Bicep build produced invalid JSON for {template}: {exc}") from exc


def summarize_whatif(output: str) -> dict[str, int]:
    """Count resource changes in ``what-if`` JSON output by change type."""
    try:
        data = json.loads(output)
    except (json.JSONDecodeError, TypeError):
        return {}
    counts: dict[str, int] = {}
    for change in data.get("changes", []) if isinstance(data, dict) else []:
        change_type = change.get("changeType", "Unknown")
        counts[change_type] = counts.get(change_type, 0) + 1
    return counts


# ======================================================================
# Terraform
# ======================================================================


def _terraform(args: list[str], infra_dir: Path, env: dict[str, str] | None) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["terraform"] + args,
        capture_output=True, text=True,
        cwd=str(infra_dir), check=False, env=env,
    )


def terraform_init(infra_dir: Path, env: dict[str, str] | None = None) -> dict:
    """Run ``terraform init``; fall back to local state when backend config is incomplete.

    Returns ``{"ok": True}`` on success or ``{"ok": False, "error": ...}``.
    """
    try:
        result = _terraform(["init", "-input=false", "-no-color"], infra_dir, env)
    except FileNotFoundError:
        return {"ok": False, "error": "terraform not found on PATH."}
    if result.returncode == 0:
        return {"ok": True}

    error = result.stderr.strip() or result.stdout.strip()
    if "required field is not set" in error:
        logger.warning("Remote backend config incomplete in %s; falling back to local state.", infra_dir)
        result = _terraform(["init", "-input=false", "-no-color", "-backend=false"], infra_dir, env)
        if result.returncode == 0:
            return {"ok": True, "warning": "Using local state (remote backend config incomplete)."}
        error = result.stderr.strip() or result.stdout.strip()

    return {"ok": False, "error": error}


def _var_args(var_file: Path | None, subscription: str | None) -> list[str]:
    args: list[str] = []
    if var_file is not None:
        # terraform runs with cwd=infra_dir
        args += [f"-var-file={Path(var_file).absolute()}"]
    if subscription:
        args += ["-var", f"subscription_id={subscription}"]
    return args


def deploy_terraform(
    infra_dir: Path,
    subscription: str | None = None,
    var_file: Path | None = None,
    env: dict[str, str] | None = None,
) -> dict:
    """Run ``terraform init``, ``validate``, ``plan -out`` and ``apply``."""
    init = terraform_init(infra_dir, env=env)
    if not init["ok"]:
        return {"status": "failed", "error": init["error"], "command": "terraform init"}

    steps = [
        ["validate", "-no-color"],
        ["plan", "-input=false", "-no-color", "-out=tfplan"] + _var_args(var_file, subscription),
        ["apply", "-input=false", "-no-color", "tfplan"],
    ]
    for args in steps:
        cmd_str = "terraform " + args[0]
        logger.info("Running: terraform %s (cwd=%s)", " ".join(args), infra_dir)
        result = _terraform(args, infra_dir, env)
        if result.returncode != 0:
            error = result.stderr.strip() or result.stdout.strip()
            logger.error("Terraform error: %s", error)
            return {"status": "failed", "error": error, "command": cmd_str}

    return {"status": "deployed", "tool": "terraform"}


def plan_terraform(
    infra_dir: Path,
    subscription: str | None = None,
    var_file: Path | None = None,
    env: dict[str, str] | None = None,
) -> dict:
    """Run ``terraform plan`` for preview (no ``-out``)."""
    init = terraform_init(infra_dir, env=env)
    if not init["ok"]:
        return {"status": "failed", "error": init["error"], "command": "terraform init"}

    result = _terraform(
        ["plan", "-input=false", "-no-color"] + _var_args(var_file, subscription), infra_dir, env
    )
    return {
        "status": "previewed" if result.returncode == 0 else "failed",
        "output": result.stdout.strip(),
        "error": result.stderr.strip() if result.returncode != 0 else None,
    }


# ======================================================================
# Output Capture
# ======================================================================


class DeploymentOutputCapture:
    """Capture and persist deployment outputs from Terraform / Bicep.

    Post-deployment configuration often needs the names and IDs the
    deployment produced.  Outputs are kept in a well-known JSON file so
    later commands can pick them up.
    """

    OUTPUT_FILE = ".nucleus/state/deployment_outputs.json"

    def __init__(self, project_dir: str):
        self.project_dir = Path(project_dir)
        self._outputs: dict = self._load()

    @staticmethod
    def _flatten_outputs(outputs: dict) -> dict:
        """Flatten ``{value, type}`` wrapper dicts into plain key-value pairs."""
        return {
            key: obj["value"] if isinstance(obj, dict) and "value" in obj else obj
            for key, obj in outputs.items()
        }

    def capture_terraform(self, infra_dir: Path) -> dict:
        """Run ``terraform output -json`` and persist results."""
        try:
            result = subprocess.run(
                ["terraform", "output", "-json"],
                capture_output=True, text=True, check=True,
                cwd=str(infra_dir),
            )
            flat = self._flatten_outputs(json.loads(result.stdout))
        except (subprocess.CalledProcessError, json.JSONDecodeError, FileNotFoundError) as e:
            logger.warning("Could not capture Terraform outputs: %s", e)
            return {}
        self._store("terraform", flat)
        return flat

    def capture_bicep(self, deployment_output: str) -> dict:
        """Parse ``az deployment ... create`` JSON output and persist results."""
        try:
            data = json.loads(deployment_output)
            outputs = (data.get("properties") or {}).get("outputs") or {}
            flat = self._flatten_outputs(outputs)
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning("Could not parse Bicep deployment output: %s", e)
            return {}
        self._store("bicep", flat)
        return flat

    def _store(self, provider: str, flat: dict) -> None:
        self._outputs[provider] = flat
        self._outputs["last_capture"] = datetime.now(timezone.utc).isoformat()
        self._save()
        logger.info("Captured %d %s output(s).", len(flat), provider)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a captured output value by key (Terraform first, then Bicep)."""
        for provider in ("terraform", "bicep"):
            provider_outputs = self._outputs.get(provider, {})
            if key in provider_outputs:
                return provider_outputs[key]
        return default

    def get_all(self) -> dict:
        return self._outputs.copy()

    def to_env_vars(self) -> dict[str, str]:
        """Map outputs to ``NUCLEUS_<NAME>`` environment variables."""
        env_vars = {}
        for provider in ("terraform", "bicep"):
            for key, value in self._outputs.get(provider, {}).items():
                env_vars[f"NUCLEUS_{key.upper()}"] = value if isinstance(value, str) else json.dumps(value)
        return env_vars

    def _load(self) -> dict:
        path = self.project_dir / self.OUTPUT_FILE
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable outputs file %s: %s", path, e)
        return {}

    def _save(self):
        path = self.project_dir / self.OUTPUT_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._outputs, f, indent=2)
