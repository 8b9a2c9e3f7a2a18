"""Security scanning of infrastructure code (Trivy, Checkov, Gitleaks).

Each scanner is run with JSON output and its report is normalised into
``ScanFinding`` records.  Parsing is kept separate from execution so the
``parse_*`` functions can be exercised against captured reports.

A scanner that is not installed is reported as ``skipped``; a scanner
that crashes or emits unreadable output is reported as ``failed``.
Neither stops the remaining scanners.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from knack.util import CLIError

from azext_nucleus.deploy.runner import CommandRunner

logger = logging.getLogger(__name__)

SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")

# Checkov reports severity only with a Prisma Cloud API key.
_CHECKOV_DEFAULT_SEVERITY = "MEDIUM"
_GITLEAKS_SEVERITY = "HIGH"


def severity_rank(severity: str) -> int:
    """Position of *severity* in ``SEVERITIES`` (unknown values rank lowest)."""
    try:
        return SEVERITIES.index(str(severity).upper())
    except ValueError:
        return -1


def normalize_severity(severity: Any, default: str = "MEDIUM") -> str:
    value = str(severity or "").upper()
    if value == "UNKNOWN" or value not in SEVERITIES:
        return default
    return value


@dataclass
class ScanFinding:
    tool: str
    rule_id: str
    severity: str
    file: str
    line: int | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "rule_id": self.rule_id,
            "severity": self.severity,
            "file": self.file,
            "line": self.line,
            "message": self.message,
        }


@dataclass
class ScanReport:
    """Findings from every requested scanner plus the per-tool status."""

    path: str
    findings: list[ScanFinding] = field(default_factory=list)
    tools: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def exceeds(self, threshold: str) -> list[ScanFinding]:
        """Findings at or above *threshold*."""
        if str(threshold).upper() not in SEVERITIES:
            raise CLIError(f"Unknown severity threshold '{threshold}'. Use one of: {', '.join(SEVERITIES)}")
        floor = severity_rank(threshold)
        return [f for f in self.findings if severity_rank(f.severity) >= floor]

    def counts(self) -> dict[str, int]:
        counts = {s: 0 for s in SEVERITIES}
        for finding in self.findings:
            counts[finding.severity] = counts.get(finding.severity, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "tools": self.tools,
            "errors": self.errors,
            "counts": self.counts(),
            "findings": [f.to_dict() for f in self.findings],
        }


# ------------------------------------------------------------------ #
# Report parsing
# ------------------------------------------------------------------ #


def _load(report: str | dict | list, tool: str) -> Any:
    if not isinstance(report, str):
        return report
    if not report.strip():
        return None
    try:
        return json.loads(report)
    except json.JSONDecodeError as exc:
        raise CLIError(f"Could not parse {tool} output as JSON: {exc}") from exc


def parse_trivy(report: str | dict) -> list[ScanFinding]:
    """Parse ``trivy config --format json`` output."""
    data = _load(report, "trivy") or {}
    findings = []
    for result in data.get("Results") or []:
        target = result.get("Target", "")
        for item in result.get("Misconfigurations") or []:
            if item.get("Status", "FAIL") != "FAIL":
                continue
            cause = item.get("CauseMetadata") or {}
            findings.append(
                ScanFinding(
                    tool="trivy",
                    rule_id=item.get("AVDID") or item.get("ID", ""),
                    severity=normalize_severity(item.get("Severity")),
                    file=target,
                    line=cause.get("StartLine") or None,
                    message=item.get("Title") or item.get("Message", ""),
                )
            )
    return findings


def parse_checkov(report: str | dict | list) -> list[ScanFinding]:
    """Parse ``checkov -o json`` output.

    Checkov emits a single object for one framework and a list of objects
    when several frameworks ran.  A summary-only object means nothing was
    scanned.
    """
    data = _load(report, "checkov")
    if data is None:
        return []
    blocks = data if isinstance(data, list) else [data]
    findings = []
    for block in blocks:
        results = block.get("results") or {}
        for check in results.get("failed_checks") or []:
            line_range = check.get("file_line_range") or []
            findings.append(
                ScanFinding(
                    tool="checkov",
                    rule_id=check.get("check_id", ""),
                    severity=normalize_severity(check.get("severity"), _CHECKOV_DEFAULT_SEVERITY),
                    file=check.get("file_path") or check.get("repo_file_path", ""),
                    line=line_range[0] if line_range else None,
                    message=check.get("check_name", ""),
                )
            )
    return findings


def parse_gitleaks(report: str | list) -> list[ScanFinding]:
    """Parse a gitleaks JSON report.  The secret itself is never copied."""
    data = _load(report, "gitleaks") or []
    return [
        ScanFinding(
            tool="gitleaks",
            rule_id=leak.get("RuleID", ""),
            severity=_GITLEAKS_SEVERITY,
            file=leak.get("File", ""),
            line=leak.get("StartLine") or None,
            message=leak.get("Description") or "Potential secret",
        )
        for leak in data
    ]


# ------------------------------------------------------------------ #
# Execution
# ------------------------------------------------------------------ #


def run_trivy(path: str | Path, runner: CommandRunner | None = None) -> list[ScanFinding]:
    runner = runner or CommandRunner()
    output = runner.run(["trivy", "config", "--format", "json", "--quiet", str(path)])
    return parse_trivy(output)


def run_checkov(path: str | Path, runner: CommandRunner | None = None) -> list[ScanFinding]:
    runner = runner or CommandRunner()
    # Exit status 1 only means failed checks were found.
    output = runner.run(["checkov", "-d", str(path), "-o", "json", "--quiet"], check=False)
    return parse_checkov(output)


def run_gitleaks(path: str | Path, runner: CommandRunner | None = None) -> list[ScanFinding]:
    runner = runner or CommandRunner()
    with tempfile.TemporaryDirectory(prefix="nucleus-gitleaks-") as tmp:
        report_path = Path(tmp) / "gitleaks.json"
        runner.run(
            [
                "gitleaks", "detect", "--no-git",
                "--source", str(path),
                "--report-format", "json",
                "--report-path", str(report_path),
                "--exit-code", "0",
            ]
        )
        if not report_path.exists():
            return []
        return parse_gitleaks(report_path.read_text(encoding="utf-8"))


SCANNERS: dict[str, Callable[..., list[ScanFinding]]] = {
    "trivy": run_trivy,
    "checkov": run_checkov,
    "gitleaks": run_gitleaks,
}


def is_available(tool: str) -> bool:
    return shutil.which(tool) is not None


def run_scanners(
    path: str | Path,
    tools: list[str] | tuple[str, ...] | None = None,
    runner: CommandRunner | None = None,
) -> ScanReport:
    """Run each requested scanner against *path* and merge the findings."""
    tools = list(tools or SCANNERS)
    unknown = [t for t in tools if t not in SCANNERS]
    if unknown:
        raise CLIError(f"Unknown scanner(s): {', '.join(unknown)}. Available: {', '.join(SCANNERS)}")

    path = Path(path)
    if not path.exists():
        raise CLIError(f"Scan path not found: {path}")

    runner = runner or CommandRunner()
    report = ScanReport(path=str(path))
    for tool in tools:
        if not is_available(tool):
            logger.warning("%s is not installed; skipping.", tool)
            report.tools[tool] = "skipped"
            continue
        try:
            findings = SCANNERS[tool](path, runner)
        except CLIError as exc:
            logger.warning("%s failed: %s", tool, exc)
            report.tools[tool] = "failed"
            report.errors[tool] = str(exc)
            continue
        logger.info("%s reported %d finding(s)", tool, len(findings))
        report.tools[tool] = "ok"
        report.findings.extend(findings)
    return report
