"""PowerShell-based analysis of templates and deployment scripts.

``analyze_template`` compiles a Bicep template to ARM JSON and runs the ARM
Template Test Toolkit (ARM-TTK) and PSRule for Azure against it.
``analyze_script`` runs PSScriptAnalyzer on a script and, when a matching
``<name>.Tests.ps1`` sits beside it, the script's Pester tests.

Each analyzer runs under ``pwsh -NoProfile -NonInteractive`` and emits its
results with ``ConvertTo-Json``.  The ``parse_*`` functions turn that JSON
into ``AnalysisFinding`` records and never execute anything themselves.

An analyzer whose prerequisites are missing (``pwsh``, the ARM-TTK clone)
is reported as ``skipped``; one that cannot run (module not installed,
crash) is reported as ``failed``.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from knack.util import CLIError

from azext_nucleus.deploy.helpers import is_subscription_scoped
from azext_nucleus.deploy.runner import CommandRunner

logger = logging.getLogger(__name__)

ARM_TTK_REPO = "https://github.com/Azure/arm-ttk.git"
DEFAULT_ARM_TTK_DIR = "~/arm-ttk"

SEVERITIES = ("information", "warning", "error")

_SCRIPT_ANALYZER_SEVERITY = {
    "information": "information",
    "warning": "warning",
    "error": "error",
    "parseerror": "error",
}


@dataclass
class AnalysisFinding:
    tool: str
    rule: str
    severity: str  # information | warning | error
    message: str
    file: str = ""
    line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "rule": self.rule,
            "severity": self.severity,
            "message": self.message,
            "file": self.file,
            "line": self.line,
        }


@dataclass
class ToolRun:
    """One analyzer invocation and what it reported."""

    tool: str
    status: str  # ok | failed | skipped
    findings: list[AnalysisFinding] = field(default_factory=list)
    message: str = ""
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def errors(self) -> list[AnalysisFinding]:
        return [f for f in self.findings if f.severity == "error"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "status": self.status,
            "message": self.message,
            "summary": self.summary,
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass
class AnalysisReport:
    target: str
    runs: list[ToolRun] = field(default_factory=list)
    hint: str | None = None

    @property
    def findings(self) -> list[AnalysisFinding]:
        return [f for run in self.runs for f in run.findings]

    @property
    def passed(self) -> bool:
        """No analyzer failed to run and none reported an error."""
        return not any(run.status == "failed" or run.errors for run in self.runs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "passed": self.passed,
            "runs": [run.to_dict() for run in self.runs],
            "hint": self.hint,
        }


# ======================================================================
# pwsh plumbing
# ======================================================================


def is_pwsh_available() -> bool:
    return shutil.which("pwsh") is not None


def ps_quote(value: Any) -> str:
    """Single-quote *value* as a PowerShell literal string."""
    return "'" + str(value).replace("'", "''") + "'"


def pwsh_command(script: str) -> list[str]:
    return ["pwsh", "-NoProfile", "-NonInteractive", "-Command", script]


def find_arm_ttk(path: str | Path | None = None) -> Path | None:
    """Locate ``arm-ttk.psd1``.

    *path* (or ``ARM_TTK_PATH``, or ``~/arm-ttk``) may point at the module
    manifest itself, the repository clone, or its inner ``arm-ttk`` folder.
    """
    base = Path(path or os.environ.get("ARM_TTK_PATH") or DEFAULT_ARM_TTK_DIR).expanduser()
    if base.is_file() and base.suffix == ".psd1":
        return base
    for candidate in (base / "arm-ttk" / "arm-ttk.psd1", base / "arm-ttk.psd1"):
        if candidate.is_file():
            return candidate
    return None


def _records(data: Any) -> list[dict]:
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    raise CLIError(f"Unexpected analyzer output: {type(data).__name__}")


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ======================================================================
# Parsers
# ======================================================================


def parse_arm_ttk(data: Any, file: str = "") -> list[AnalysisFinding]:
    """Findings from ``Test-AzTemplate`` results (one record per test)."""
    findings: list[AnalysisFinding] = []
    for test in _records(data):
        name = str(test.get("Name") or "unnamed test")
        errors = [str(m) for m in test.get("Errors") or []]
        for message in errors:
            findings.append(AnalysisFinding("arm-ttk", name, "error", message, file))
        for message in test.get("Warnings") or []:
            findings.append(AnalysisFinding("arm-ttk", name, "warning", str(message), file))
        if test.get("Passed") is False and not errors:
            findings.append(AnalysisFinding("arm-ttk", name, "error", "Test failed", file))
    return findings


def parse_psrule(data: Any, file: str = "") -> list[AnalysisFinding]:
    """Findings from ``Invoke-PSRule`` records with outcome Fail or Error."""
    findings: list[AnalysisFinding] = []
    for record in _records(data):
        outcome = str(record.get("Outcome") or "").lower()
        if outcome not in ("fail", "error"):
            continue
        level = str(record.get("Level") or "").lower()
        severity = "error" if outcome == "error" else (level if level in SEVERITIES else "error")
        target = record.get("TargetName")
        message = str(record.get("Synopsis") or record.get("Recommendation") or "Rule failed")
        if target:
            message = f"{target}: {message}"
        findings.append(AnalysisFinding("psrule", str(record.get("RuleName") or "unknown"), severity, message, file))
    return findings


def parse_script_analyzer(data: Any, file: str = "") -> list[AnalysisFinding]:
    """Findings from ``Invoke-ScriptAnalyzer`` diagnostic records."""
    findings: list[AnalysisFinding] = []
    for record in _records(data):
        severity = _SCRIPT_ANALYZER_SEVERITY.get(str(record.get("Severity") or "").lower(), "warning")
        findings.append(
            AnalysisFinding(
                tool="psscriptanalyzer",
                rule=str(record.get("RuleName") or "unknown"),
                severity=severity,
                message=str(record.get("Message") or ""),
                file=str(record.get("ScriptPath") or file),
                line=_as_int(record.get("Line")),
            )
        )
    return findings


def parse_pester(data: Any, file: str = "") -> tuple[list[AnalysisFinding], dict[str, int]]:
    """Failed tests and the passed/failed/skipped counts of a Pester run."""
    records = _records(data)
    if not records:
        return [], {}
    result = records[0]
    summary = {
        key: _as_int(result.get(f"{key.capitalize()}Count")) or 0
        for key in ("passed", "failed", "skipped")
    }
    findings = [
        AnalysisFinding("pester", str(t.get("Name") or "unnamed test"), "error", str(t.get("Message") or "failed"), file)
        for t in _records(result.get("Failed"))
    ]
    if summary["failed"] and not findings:
        findings.append(AnalysisFinding("pester", "Invoke-Pester", "error", f"{summary['failed']} test(s) failed", file))
    return findings, summary


# ======================================================================
# Analyzer scripts
# ======================================================================


def _arm_ttk_script(module: Path, template: Path) -> str:
    return (
        f"Import-Module {ps_quote(module)} -ErrorAction Stop; "
        f"@(Test-AzTemplate -TemplatePath {ps_quote(template)} | ForEach-Object {{ [pscustomobject]@{{ "
        "Name = $_.Name; Group = $_.Group; Passed = [bool]$_.Passed; "
        'Errors = @($_.Errors | ForEach-Object { "$_" }); '
        'Warnings = @($_.Warnings | ForEach-Object { "$_" }) } }) '
        "| ConvertTo-Json -Depth 4 -AsArray"
    )


def _psrule_script(template: Path, parameters: Path | None) -> str:
    export = f"Export-AzRuleTemplateData -TemplateFile {ps_quote(template)}"
    if parameters is not None:
        export += f" -ParameterFile {ps_quote(parameters)}"
    return (
        "Import-Module PSRule.Rules.Azure -ErrorAction Stop; "
        f"@({export} -PassThru | Invoke-PSRule -Module PSRule.Rules.Azure -Outcome Fail, Error "
        "-WarningAction SilentlyContinue | ForEach-Object { [pscustomobject]@{ "
        'RuleName = $_.RuleName; Outcome = "$($_.Outcome)"; Level = "$($_.Level)"; '
        "TargetName = $_.TargetName; Synopsis = $_.Info.Synopsis; "
        "Recommendation = $_.Info.Recommendation } }) "
        "| ConvertTo-Json -Depth 4 -AsArray"
    )


def _script_analyzer_script(script: Path) -> str:
    return (
        "Import-Module PSScriptAnalyzer -ErrorAction Stop; "
        f"@(Invoke-ScriptAnalyzer -Path {ps_quote(script)} | ForEach-Object {{ [pscustomobject]@{{ "
        'RuleName = $_.RuleName; Severity = "$($_.Severity)"; Line = $_.Line; '
        "Message = $_.Message; ScriptPath = $_.ScriptPath } }) "
        "| ConvertTo-Json -Depth 3 -AsArray"
    )


def _pester_script(tests: Path) -> str:
    return (
        "Import-Module Pester -ErrorAction Stop; "
        f"$r = Invoke-Pester -Path {ps_quote(tests)} -PassThru -Output None; "
        '[pscustomobject]@{ Result = "$($r.Result)"; PassedCount = $r.PassedCount; '
        "FailedCount = $r.FailedCount; SkippedCount = $r.SkippedCount; "
        "Failed = @($r.Failed | ForEach-Object { [pscustomobject]@{ "
        'Name = $_.ExpandedPath; Message = "$($_.ErrorRecord)" } }) } '
        "| ConvertTo-Json -Depth 4"
    )


def _run(report: AnalysisReport, tool: str, func: Callable[[], ToolRun]) -> None:
    try:
        run = func()
    except CLIError as exc:
        logger.warning("%s failed: %s", tool, exc)
        run = ToolRun(tool, "failed", message=str(exc))
    else:
        logger.info("%s reported %d finding(s)", tool, len(run.findings))
    report.runs.append(run)


# ======================================================================
# Public API
# ======================================================================


def compile_bicep(source: Path, runner: CommandRunner) -> Path:
    """Compile a ``.bicep`` template (or ``.bicepparam`` file) to JSON beside it."""
    target = source.with_suffix(".json")
    verb = "build-params" if source.suffix == ".bicepparam" else "build"
    runner.az(["bicep", verb, "--file", str(source), "--outfile", str(target)], parse_json=False)
    return target


def whatif_hint(template: Path, arm_template: Path, resource_group: str | None = None) -> str:
    if is_subscription_scoped(template):
        return f"az deployment sub what-if --location <location> --template-file {arm_template}"
    return (
        f"az deployment group what-if --resource-group {resource_group or '<resource-group-name>'} "
        f"--template-file {arm_template}"
    )


def analyze_template(
    template: str | Path,
    parameters: str | Path | None = None,
    runner: CommandRunner | None = None,
    arm_ttk_path: str | Path | None = None,
    resource_group: str | None = None,
) -> AnalysisReport:
    """Build *template* to ARM JSON, then run ARM-TTK and PSRule for Azure."""
    template = Path(template)
    if not template.is_file():
        raise CLIError(f"Template not found: {template}")
    params_path = Path(parameters) if parameters else None
    if params_path is not None and not params_path.is_file():
        raise CLIError(f"Parameter file not found: {params_path}")

    runner = runner or CommandRunner()
    report = AnalysisReport(target=str(template))

    arm_template = template
    if template.suffix == ".bicep":
        try:
            arm_template = compile_bicep(template, runner)
        except CLIError as exc:
            report.runs.append(ToolRun("bicep", "failed", message=str(exc)))
            return report
        report.runs.append(ToolRun("bicep", "ok", message=f"Compiled to {arm_template.name}"))
    if params_path is not None and params_path.suffix == ".bicepparam":
        try:
            params_path = compile_bicep(params_path, runner)
        except CLIError as exc:
            report.runs.append(ToolRun("bicep", "failed", message=str(exc)))
            return report

    report.hint = whatif_hint(template, arm_template, resource_group)

    if not is_pwsh_available():
        logger.warning("pwsh is not installed; skipping ARM-TTK and PSRule.")
        for tool in ("arm-ttk", "psrule"):
            report.runs.append(ToolRun(tool, "skipped", message="PowerShell (pwsh) not found"))
        return report

    module = find_arm_ttk(arm_ttk_path)
    if module is None:
        report.runs.append(
            ToolRun("arm-ttk", "skipped", message=f"ARM-TTK not found; clone {ARM_TTK_REPO} or set ARM_TTK_PATH")
        )
    else:
        _run(
            report,
            "arm-ttk",
            lambda: ToolRun(
                "arm-ttk",
                "ok",
                parse_arm_ttk(runner.run_json(pwsh_command(_arm_ttk_script(module, arm_template))), str(arm_template)),
            ),
        )

    _run(
        report,
        "psrule",
        lambda: ToolRun(
            "psrule",
            "ok",
            parse_psrule(runner.run_json(pwsh_command(_psrule_script(arm_template, params_path))), str(arm_template)),
        ),
    )
    return report


def pester_tests_for(script: Path) -> Path:
    """``Deploy.ps1`` → ``Deploy.Tests.ps1`` in the same directory."""
    return script.with_name(f"{script.stem}.Tests.ps1")


def _pester_run(tests: Path, runner: CommandRunner) -> ToolRun:
    findings, summary = parse_pester(runner.run_json(pwsh_command(_pester_script(tests))), str(tests))
    return ToolRun("pester", "ok", findings, summary=summary)


def analyze_script(script: str | Path, runner: CommandRunner | None = None) -> AnalysisReport:
    """Run PSScriptAnalyzer and, if present, the script's Pester tests."""
    script = Path(script)
    if not script.is_file():
        raise CLIError(f"Script not found: {script}")

    runner = runner or CommandRunner()
    report = AnalysisReport(target=str(script))
    if not is_pwsh_available():
        logger.warning("pwsh is not installed; skipping script analysis.")
        for tool in ("psscriptanalyzer", "pester"):
            report.runs.append(ToolRun(tool, "skipped", message="PowerShell (pwsh) not found"))
        return report

    _run(
        report,
        "psscriptanalyzer",
        lambda: ToolRun(
            "psscriptanalyzer",
            "ok",
            parse_script_analyzer(runner.run_json(pwsh_command(_script_analyzer_script(script))), str(script)),
        ),
    )

    tests = pester_tests_for(script)
    if tests.is_file():
        _run(report, "pester", lambda: _pester_run(tests, runner))
    else:
        report.runs.append(ToolRun("pester", "skipped", message=f"No Pester tests found for {script.name}"))
    return report


def find_scripts(root: str | Path, patterns: list[str] | tuple[str, ...] = ("*.ps1",)) -> list[Path]:
    """Scripts under *root* matching *patterns*, excluding Pester test files."""
    root = Path(root)
    if root.is_file():
        return [root]
    if not root.is_dir():
        raise CLIError(f"Scripts path not found: {root}")
    found = {p for pattern in patterns for p in root.rglob(pattern) if p.is_file()}
    return sorted(p for p in found if not p.name.lower().endswith(".tests.ps1"))
