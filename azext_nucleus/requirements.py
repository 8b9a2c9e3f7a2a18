"""External toolchain requirements with version constraint checking.

Every vendor CLI the Nucleus workflows shell out to is declared here with a
minimum version.  ``az nucleus doctor`` reports the table; deploy, scan and
post-deployment commands check the subset they need before running.

This module uses only the standard library and has no intra-package
imports so it can be loaded very early.

Public API
----------
- ``check_tool(req)``                    check one ``ToolRequirement``
- ``check_all(iac_tool, profiles)``      check the applicable requirements
- ``check_all_or_fail(...)``             same, but raises on any failure
- ``get_requirement(name)``              lookup by display name (case-insensitive)
- ``parse_version(s)``                   ``"1.45.3"`` → ``(1, 45, 3)``
- ``check_constraint(v, c)``             ``"1.45.3", ">=1.5.0"`` → ``True``
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# ======================================================================
# Version constants
# ======================================================================

_PYTHON_VERSION = ">=3.9.0"
_AZURE_CLI_VERSION = ">=2.50.0"
_BICEP_VERSION = ">=0.22.0"  # first release with .bicepparam support
_TERRAFORM_VERSION = ">=1.5.0"
_POWERSHELL_VERSION = ">=7.5.0"
_KUBECTL_VERSION = ">=1.27.0"
_HELM_VERSION = ">=3.12.0"
_TRIVY_VERSION = ">=0.45.0"
_CHECKOV_VERSION = ">=3.0.0"
_GITLEAKS_VERSION = ">=8.18.0"
_GITHUB_CLI_VERSION = ">=2.30.0"
_PESTER_VERSION = ">=5.0.0"
_PSSCRIPTANALYZER_VERSION = ">=1.21.0"
_PSRULE_AZURE_VERSION = ">=1.30.0"
_ARM_TTK_VERSION = ">=0.20.0"

# Profiles group optional tools by the workflow that needs them.
PROFILES = ("core", "aks", "scan", "scripts", "templates")


def _module_version_script(module: str) -> str:
    """PowerShell one-liner printing the newest installed version of *module*."""
    return (
        f"(Get-Module -ListAvailable -Name {module} | Sort-Object Version -Descending "
        "| Select-Object -First 1).Version.ToString()"
    )


# ======================================================================
# Data structures
# ======================================================================


@dataclass
class ToolRequirement:
    """Declaration of an external tool dependency."""

    name: str  # Display name, e.g. "Terraform"
    command: str  # Binary name or path, e.g. "terraform"
    version_args: list[str] = field(default_factory=list)
    version_pattern: str = ""  # Regex with named group ``version``
    constraint: str = ""  # e.g. ">=1.5.0", "~1.45.0", "^2.0.0"
    condition: str | None = None  # Only check when iac_tool matches
    profile: str = "core"
    install_hint: str = ""


@dataclass
class CheckResult:
    """Outcome of checking a single tool requirement."""

    name: str
    status: str  # "pass" | "fail" | "missing" | "skip"
    installed_version: str | None
    required: str
    message: str
    install_hint: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status,
            "installed_version": self.installed_version,
            "required": self.required,
            "message": self.message,
            "install_hint": self.install_hint,
        }


# ======================================================================
# Tool registry
# ======================================================================

TOOL_REQUIREMENTS: list[ToolRequirement] = [
    ToolRequirement(
        name="Python",
        command=sys.executable,
        version_args=["--version"],
        version_pattern=r"Python\s+(?P<version>\d+\.\d+\.\d+)",
        constraint=_PYTHON_VERSION,
        install_hint="https://www.python.org/downloads/",
    ),
    ToolRequirement(
        name="Azure CLI",
        command="az",
        version_args=["version", "-o", "tsv"],
        version_pattern=r"(?P<version>\d+\.\d+\.\d+)",
        constraint=_AZURE_CLI_VERSION,
        install_hint="https://learn.microsoft.com/cli/azure/install-azure-cli",
    ),
    ToolRequirement(
        name="Bicep CLI",
        command="az",
        version_args=["bicep", "version"],
        version_pattern=r"Bicep CLI version\s+(?P<version>\d+\.\d+\.\d+)",
        constraint=_BICEP_VERSION,
        condition="bicep",
        install_hint="az bicep install",
    ),
    ToolRequirement(
        name="Terraform",
        command="terraform",
        version_args=["--version"],
        version_pattern=r"Terraform\s+v?(?P<version>\d+\.\d+\.\d+)",
        constraint=_TERRAFORM_VERSION,
        condition="terraform",
        install_hint="https://developer.hashicorp.com/terraform/install",
    ),
    ToolRequirement(
        name="PowerShell",
        command="pwsh",
        version_args=["-NoProfile", "-Command", "$PSVersionTable.PSVersion.ToString()"],
        version_pattern=r"(?P<version>\d+\.\d+\.\d+)",
        constraint=_POWERSHELL_VERSION,
        profile="scripts",
        install_hint="https://github.com/PowerShell/PowerShell/releases/tag/v7.5.0",
    ),
    ToolRequirement(
        name="Pester",
        command="pwsh",
        version_args=["-NoProfile", "-Command", _module_version_script("Pester")],
        version_pattern=r"(?P<version>\d+\.\d+\.\d+)",
        constraint=_PESTER_VERSION,
        profile="scripts",
        install_hint="Install-Module -Name Pester -Force -Scope CurrentUser -SkipPublisherCheck",
    ),
    ToolRequirement(
        name="PSScriptAnalyzer",
        command="pwsh",
        version_args=["-NoProfile", "-Command", _module_version_script("PSScriptAnalyzer")],
        version_pattern=r"(?P<version>\d+\.\d+\.\d+)",
        constraint=_PSSCRIPTANALYZER_VERSION,
        profile="scripts",
        install_hint="Install-Module -Name PSScriptAnalyzer -Force -Scope CurrentUser",
    ),
    ToolRequirement(
        name="PSRule for Azure",
        command="pwsh",
        version_args=["-NoProfile", "-Command", _module_version_script("PSRule.Rules.Azure")],
        version_pattern=r"(?P<version>\d+\.\d+\.\d+)",
        constraint=_PSRULE_AZURE_VERSION,
        profile="templates",
        install_hint="Install-Module -Name PSRule.Rules.Azure -Force -Scope CurrentUser",
    ),
    ToolRequirement(
        name="ARM-TTK",
        command="pwsh",
        version_args=[
            "-NoProfile",
            "-Command",
            "$root = if ($env:ARM_TTK_PATH) { $env:ARM_TTK_PATH } else { Join-Path $HOME 'arm-ttk' }; "
            "(Import-PowerShellDataFile (Join-Path $root 'arm-ttk/arm-ttk.psd1')).ModuleVersion",
        ],
        version_pattern=r"(?P<version>\d+\.\d+(?:\.\d+)?)",
        constraint=_ARM_TTK_VERSION,
        profile="templates",
        install_hint="git clone --depth 1 https://github.com/Azure/arm-ttk.git ~/arm-ttk",
    ),
    ToolRequirement(
        name="kubectl",
        command="kubectl",
        version_args=["version", "--client"],
        version_pattern=r"Client Version:\s+v?(?P<version>\d+\.\d+\.\d+)",
        constraint=_KUBECTL_VERSION,
        profile="aks",
        install_hint="az aks install-cli",
    ),
    ToolRequirement(
        name="Helm",
        command="helm",
        version_args=["version", "--short"],
        version_pattern=r"v(?P<version>\d+\.\d+\.\d+)",
        constraint=_HELM_VERSION,
        profile="aks",
        install_hint="https://helm.sh/docs/intro/install/",
    ),
    ToolRequirement(
        name="Trivy",
        command="trivy",
        version_args=["--version"],
        version_pattern=r"Version:\s+(?P<version>\d+\.\d+\.\d+)",
        constraint=_TRIVY_VERSION,
        profile="scan",
        install_hint="https://aquasecurity.github.io/trivy/latest/getting-started/installation/",
    ),
    ToolRequirement(
        name="Checkov",
        command="checkov",
        version_args=["--version"],
        version_pattern=r"(?P<version>\d+\.\d+\.\d+)",
        constraint=_CHECKOV_VERSION,
        profile="scan",
        install_hint="pip install checkov",
    ),
    ToolRequirement(
        name="Gitleaks",
        command="gitleaks",
        version_args=["version"],
        version_pattern=r"v?(?P<version>\d+\.\d+\.\d+)",
        constraint=_GITLEAKS_VERSION,
        profile="scan",
        install_hint="https://github.com/gitleaks/gitleaks#installing",
    ),
    ToolRequirement(
        name="GitHub CLI",
        command="gh",
        version_args=["--version"],
        version_pattern=r"gh version\s+(?P<version>\d+\.\d+\.\d+)",
        constraint=_GITHUB_CLI_VERSION,
        profile="scripts",
        install_hint="https://cli.github.com/",
    ),
]

# ======================================================================
# Version parsing
# ======================================================================

_VERSION_RE = re.compile(r"v?(\d+(?:\.\d+)*)")


def parse_version(s: str) -> tuple[int, ...]:
    """Parse a version string into an int tuple, padded to at least 3 elements.

    >>> parse_version("1.45.3")
    (1, 45, 3)
    >>> parse_version("v2.1")
    (2, 1, 0)
    """
    m = _VERSION_RE.match(s.strip())
    if not m:
        raise ValueError(f"Cannot parse version: {s!r}")
    parts = tuple(int(p) for p in m.group(1).split("."))
    while len(parts) < 3:
        parts = parts + (0,)
    return parts


# ======================================================================
# Constraint checking
# ======================================================================

_CONSTRAINT_RE = re.compile(r"^(?P<op>>=|<=|!=|==|>|<|~|\^)\s*(?P<ver>v?\d+(?:\.\d+)*)$")

_COMPARATORS = {
    ">=": lambda v, r: v >= r,
    ">": lambda v, r: v > r,
    "<=": lambda v, r: v <= r,
    "<": lambda v, r: v < r,
    "==": lambda v, r: v == r,
    "!=": lambda v, r: v != r,
    # Tilde pins major.minor, caret pins major.
    "~": lambda v, r: r <= v < (r[0], r[1] + 1, 0),
    "^": lambda v, r: r <= v < (r[0] + 1, 0, 0),
}


def check_constraint(version: str, constraint: str) -> bool:
    """Check whether *version* satisfies *constraint*.

    >>> check_constraint("7.5.0", ">=7.5.0")
    True
    >>> check_constraint("1.5.0", "~1.4.0")
    False
    """
    m = _CONSTRAINT_RE.match(constraint.strip())
    if not m:
        raise ValueError(f"Invalid constraint: {constraint!r}")
    return _COMPARATORS[m.group("op")](parse_version(version), parse_version(m.group("ver")))


# ======================================================================
# Tool resolution
# ======================================================================


def _find_tool(command: str) -> str | None:
    """Locate the executable for *command*, returning its path or ``None``.

    ``az`` is also looked up next to ``sys.executable`` since the Azure CLI
    ships its own interpreter.
    """
    if command == sys.executable:
        return sys.executable

    found = shutil.which(command)
    if found:
        return found

    if command == "az":
        bin_dir = os.path.dirname(sys.executable)
        for candidate in (os.path.join(bin_dir, "az"), os.path.join(bin_dir, "az.cmd")):
            if os.path.isfile(candidate):
                return candidate

    return None


def _get_tool_version(req: ToolRequirement) -> tuple[str | None, str | None]:
    """Run the tool's version command and extract the version string.

    Returns ``(version, path)``; either may be ``None``.
    """
    path = _find_tool(req.command)
    if path is None:
        return None, None

    try:
        result = subprocess.run(
            [path] + req.version_args,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except FileNotFoundError:
        return None, path
    except subprocess.TimeoutExpired:
        logger.warning("Timed out checking version for %s", req.name)
        return None, path

    # Some tools print their version on stderr
    for output in (result.stdout, result.stderr):
        if not output:
            continue
        m = re.search(req.version_pattern, output)
        if m:
            return m.group("version"), path

    return None, path


# ======================================================================
# Public API
# ======================================================================


def check_tool(req: ToolRequirement) -> CheckResult:
    """Check whether a single tool requirement is satisfied."""
    version, resolved_path = _get_tool_version(req)

    if version is None:
        return CheckResult(
            name=req.name,
            status="missing",
            installed_version=None,
            required=req.constraint,
            message=f"{req.name} is not installed",
            install_hint=req.install_hint,
        )

    if not req.constraint:
        return CheckResult(req.name, "pass", version, "(any)", f"{req.name} {version} found")

    try:
        ok = check_constraint(version, req.constraint)
    except ValueError:
        return CheckResult(
            name=req.name,
            status="fail",
            installed_version=version,
            required=req.constraint,
            message=f"{req.name} {version}: cannot parse version",
            install_hint=req.install_hint,
        )

    if ok:
        return CheckResult(
            req.name, "pass", version, req.constraint, f"{req.name} {version} satisfies {req.constraint}"
        )

    path_hint = f" (from {resolved_path})" if resolved_path else ""
    return CheckResult(
        name=req.name,
        status="fail",
        installed_version=version,
        required=req.constraint,
        message=f"{req.name} {version}{path_hint} does not satisfy {req.constraint}",
        install_hint=req.install_hint,
    )


def check_all(iac_tool: str | None = None, profiles: list[str] | tuple[str, ...] = ("core",)) -> list[CheckResult]:
    """Check every requirement that applies to *iac_tool* and *profiles*.

    Requirements outside the selected profiles, or conditional on another
    IaC tool, are reported with status ``skip``.
    """
    results: list[CheckResult] = []
    for req in TOOL_REQUIREMENTS:
        if req.profile not in profiles:
            reason = f"profile {req.profile!r} not selected"
        elif req.condition is not None and iac_tool is not None and req.condition != iac_tool:
            reason = f"iac_tool={iac_tool!r}"
        else:
            results.append(check_tool(req))
            continue
        results.append(
            CheckResult(
                name=req.name,
                status="skip",
                installed_version=None,
                required=req.constraint,
                message=f"{req.name} skipped ({reason})",
            )
        )
    return results


def check_all_or_fail(
    iac_tool: str | None = None, profiles: list[str] | tuple[str, ...] = ("core",)
) -> list[CheckResult]:
    """Like :func:`check_all`, but raises :class:`RuntimeError` if any check
    fails or a required tool is missing.
    """
    results = check_all(iac_tool, profiles)
    problems = [r for r in results if r.status in ("fail", "missing")]
    if problems:
        lines = [f"  - {r.name}: {r.message}" for r in problems]
        hints = [f"    Install: {r.install_hint}" for r in problems if r.install_hint]
        raise RuntimeError("Tool requirements not met:\n" + "\n".join(lines + hints))
    return results


def get_requirement(name: str) -> ToolRequirement | None:
    """Look up a tool requirement by display name (case-insensitive)."""
    lower = name.lower()
    for req in TOOL_REQUIREMENTS:
        if req.name.lower() == lower:
            return req
    return None
