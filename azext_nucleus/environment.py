"""Development-environment setup for a Nucleus workspace.

Applies Azure CLI defaults from the container environment and lists the
interactive logins the operator still has to perform (credentials are
never mounted into the container).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from azext_nucleus.deploy.runner import CommandRunner

logger = logging.getLogger(__name__)

# Environment variable → ``az configure --defaults`` key.
AZ_DEFAULT_VARIABLES = {
    "AZURE_DEFAULTS_GROUP": "group",
    "AZURE_DEFAULTS_LOCATION": "location",
}


def configure_az_defaults(env: Mapping[str, str] | None = None, runner: CommandRunner | None = None) -> dict[str, str]:
    """Run ``az configure --defaults`` for each default present in *env*.

    Returns the defaults that were applied, e.g. ``{"group": "rg-dev"}``.
    Unset or blank variables are ignored.
    """
    env = os.environ if env is None else env
    runner = runner or CommandRunner()
    applied: dict[str, str] = {}
    for variable, key in AZ_DEFAULT_VARIABLES.items():
        value = (env.get(variable) or "").strip()
        if not value:
            continue
        runner.az(["configure", "--defaults", f"{key}={value}"], parse_json=False)
        logger.info("Azure CLI default %s set to %s", key, value)
        applied[key] = value
    return applied


def authentication_hints() -> list[str]:
    return [
        "For Azure: run 'az login' to authenticate with your Azure account",
        "For GitHub: run 'gh auth login' to authenticate with your GitHub account",
        "For Git: configure your identity with\n"
        '   git config --global user.name "Your Name"\n'
        '   git config --global user.email "your.email@example.com"',
    ]


# PowerShell modules used by script and template analysis.
POWERSHELL_MODULES = ("Pester", "PSScriptAnalyzer", "PSRule.Rules.Azure")


def install_powershell_modules(
    modules: tuple[str, ...] | list[str] = POWERSHELL_MODULES, runner: CommandRunner | None = None
) -> list[str]:
    """``Install-Module`` each of *modules* for the current user."""
    from azext_nucleus.validation.powershell import ps_quote, pwsh_command

    runner = runner or CommandRunner()
    for module in modules:
        runner.run(
            pwsh_command(f"Install-Module -Name {ps_quote(module)} -Force -Scope CurrentUser -SkipPublisherCheck")
        )
        logger.info("PowerShell module %s installed", module)
    return list(modules)


def install_arm_ttk(path: str | Path | None = None, runner: CommandRunner | None = None) -> Path:
    """Clone ARM-TTK into *path* (``ARM_TTK_PATH`` or ``~/arm-ttk``) unless it is there."""
    from azext_nucleus.validation.powershell import ARM_TTK_REPO, DEFAULT_ARM_TTK_DIR

    target = Path(path or os.environ.get("ARM_TTK_PATH") or DEFAULT_ARM_TTK_DIR).expanduser()
    if target.exists():
        logger.info("ARM-TTK already present at %s", target)
        return target
    runner = runner or CommandRunner()
    runner.run(["git", "clone", "--depth", "1", ARM_TTK_REPO, str(target)])
    return target
