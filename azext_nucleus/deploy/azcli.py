"""Azure CLI account and authentication helpers."""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Any

from azext_nucleus.deploy.runner import CommandRunner, ToolCommandError, az_path

logger = logging.getLogger(__name__)


# Deploy context → environment variables understood by Terraform (azurerm),
# the Bicep CLI and any deploy scripts invoked from a stage.
DEPLOY_ENV_MAPPING: dict[str, list[str]] = {
    "subscription": ["ARM_SUBSCRIPTION_ID", "TF_VAR_subscription_id", "SUBSCRIPTION_ID"],
    "tenant": ["ARM_TENANT_ID", "TF_VAR_tenant_id"],
    "client_id": ["ARM_CLIENT_ID", "TF_VAR_client_id"],
    "client_secret": ["ARM_CLIENT_SECRET", "TF_VAR_client_secret"],
}


class AzCliError(ToolCommandError):
    """``az`` exited with a non-zero status."""


def run_az(args: list[str], *, parse_json: bool = True, env: dict[str, str] | None = None, check: bool = True) -> Any:
    """Run one ``az`` subcommand and return parsed JSON (or raw stdout).

    Returns ``None`` for empty JSON output.
    """
    runner = CommandRunner(env=env)
    try:
        return runner.az(args, parse_json=parse_json, check=check)
    except ToolCommandError as exc:
        raise AzCliError(exc.command, exc.returncode, exc.stderr) from exc


def build_deploy_env(
    subscription: str | None = None,
    tenant: str | None = None,
    client_id: str | None = None,
    client_secret: str | None = None,
) -> dict[str, str]:
    """Return ``os.environ`` extended with the Azure auth context."""
    env = {**os.environ}
    values = {
        "subscription": subscription,
        "tenant": tenant,
        "client_id": client_id,
        "client_secret": client_secret,
    }
    for param, value in values.items():
        if value:
            for env_key in DEPLOY_ENV_MAPPING[param]:
                env[env_key] = value
    return env


def check_az_login() -> bool:
    """Check if Azure CLI is logged in."""
    try:
        result = subprocess.run(
            [az_path(), "account", "show"],
            capture_output=True, text=True, check=False,
        )
        return result.returncode == 0
    except FileNotFoundError:
        return False


def _account_field(query: str) -> str:
    try:
        result = subprocess.run(
            [az_path(), "account", "show", "--query", query, "-o", "tsv"],
            capture_output=True, text=True, check=True,
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return ""


def get_current_subscription() -> str:
    """Get the currently active Azure subscription ID (empty if unknown)."""
    return _account_field("id")


def get_current_tenant() -> str:
    """Get the currently active Azure tenant ID (empty if unknown)."""
    return _account_field("tenantId")


def login_service_principal(client_id: str, client_secret: str, tenant_id: str) -> dict:
    """Run ``az login --service-principal``.

    Returns ``{"status": "ok", "subscription": ...}`` or
    ``{"status": "failed", "error": ...}``.
    """
    try:
        result = subprocess.run(
            [
                az_path(), "login", "--service-principal",
                "-u", client_id,
                "-p", client_secret,
                "--tenant", tenant_id,
            ],
            capture_output=True, text=True, check=False,
        )
    except FileNotFoundError:
        return {"status": "failed", "error": "az CLI not found on PATH."}

    if result.returncode != 0:
        return {"status": "failed", "error": result.stderr.strip() or result.stdout.strip()}
    return {"status": "ok", "subscription": get_current_subscription()}


def set_deployment_context(subscription: str, tenant: str | None = None) -> dict:
    """Run ``az account set --subscription <sub> [--tenant <tenant>]``."""
    cmd = [az_path(), "account", "set", "--subscription", subscription]
    if tenant:
        cmd.extend(["--tenant", tenant])

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError:
        return {"status": "failed", "error": "az CLI not found on PATH."}

    if result.returncode != 0:
        return {"status": "failed", "error": result.stderr.strip() or result.stdout.strip()}
    return {"status": "ok"}
