"""Tests for azext_nucleus.scanning - report parsing and scanner orchestration."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from knack.util import CLIError

from azext_nucleus.deploy.runner import CommandRunner
from azext_nucleus.scanning import (
    ScanFinding,
    ScanReport,
    normalize_severity,
    parse_checkov,
    parse_gitleaks,
    parse_trivy,
    run_gitleaks,
    run_scanners,
    severity_rank,
)

TRIVY_REPORT = {
    "Results": [
        {
            "Target": "main.bicep",
            "Misconfigurations": [
                {
                    "ID": "AZU-0013",
                    "AVDID": "AVD-AZU-0013",
                    "Title": "Key vault should have purge protection enabled",
                    "Severity": "MEDIUM",
                    "Status": "FAIL",
                    "CauseMetadata": {"StartLine": 12},
                },
                {"ID": "AZU-0015", "Title": "Passing check", "Severity": "HIGH", "Status": "PASS"},
            ],
        },
        {"Target": "clean.bicep"},
    ]
}

CHECKOV_REPORT = {
    "check_type": "bicep",
    "results": {
        "failed_checks": [
            {
                "check_id": "CKV_AZURE_174",
                "check_name": "Ensure API management public access is disabled",
                "file_path": "/main.bicep",
                "file_line_range": [30, 52],
                "severity": None,
            },
            {
                "check_id": "CKV_AZURE_107",
                "check_name": "Ensure that API management services use virtual networks",
                "file_path": "/main.bicep",
                "file_line_range": [30, 52],
                "severity": "HIGH",
            },
        ]
    },
}

GITLEAKS_REPORT = [
    {
        "RuleID": "azure-storage-account-key",
        "Description": "Identified an Azure storage account key",
        "File": "scripts/deploy.ps1",
        "StartLine": 7,
        "Secret": "AbCdEf0123456789==",
    }
]


def _finding(severity):
    return ScanFinding("trivy", "R", severity, "f", 1, "m")


class TestSeverity:

    def test_rank_order(self):
        assert severity_rank("low") < severity_rank("MEDIUM") < severity_rank("HIGH") < severity_rank("CRITICAL")
        assert severity_rank("UNKNOWN") == -1

    def test_normalize(self):
        assert normalize_severity("high") == "HIGH"
        assert normalize_severity(None) == "MEDIUM"
        assert normalize_severity("UNKNOWN", "LOW") == "LOW"


class TestParsers:

    def test_trivy(self):
        findings = parse_trivy(json.dumps(TRIVY_REPORT))
        assert findings == [
            ScanFinding(
                "trivy", "AVD-AZU-0013", "MEDIUM", "main.bicep", 12, "Key vault should have purge protection enabled"
            )
        ]

    def test_trivy_empty_output(self):
        assert parse_trivy("") == []

    def test_checkov_single_framework(self):
        findings = parse_checkov(json.dumps(CHECKOV_REPORT))
        assert [(f.rule_id, f.severity, f.line) for f in findings] == [
            ("CKV_AZURE_174", "MEDIUM", 30),
            ("CKV_AZURE_107", "HIGH", 30),
        ]

    def test_checkov_several_frameworks(self):
        findings = parse_checkov([CHECKOV_REPORT, {"check_type": "secrets", "results": {"failed_checks": []}}])
        assert len(findings) == 2

    def test_checkov_summary_only(self):
        assert parse_checkov({"passed": 0, "failed": 0}) == []

    def test_gitleaks_never_copies_secret(self):
        findings = parse_gitleaks(json.dumps(GITLEAKS_REPORT))
        assert findings[0].severity == "HIGH"
        assert findings[0].file == "scripts/deploy.ps1"
        assert "AbCdEf0123456789" not in json.dumps(findings[0].to_dict())

    def test_invalid_json(self):
        with pytest.raises(CLIError, match="Could not parse trivy output"):
            parse_trivy("{oops")


class TestScanReport:

    def test_exceeds_threshold(self):
        report = ScanReport(".", [_finding("LOW"), _finding("HIGH"), _finding("CRITICAL")])
        assert [f.severity for f in report.exceeds("high")] == ["HIGH", "CRITICAL"]
        assert len(report.exceeds("LOW")) == 3

    def test_unknown_threshold(self):
        with pytest.raises(CLIError, match="Unknown severity threshold"):
            ScanReport(".").exceeds("SEVERE")

    def test_counts_and_dict(self):
        report = ScanReport(".", [_finding("LOW"), _finding("LOW")], tools={"trivy": "ok"})
        assert report.counts() == {"LOW": 2, "MEDIUM": 0, "HIGH": 0, "CRITICAL": 0}
        assert report.to_dict()["tools"] == {"trivy": "ok"}


class TestRunScanners:

    @patch("azext_nucleus.scanning.shutil.which", return_value=None)
    def test_missing_tools_are_skipped(self, mock_which, tmp_path):
        report = run_scanners(tmp_path)
        assert report.tools == {"trivy": "skipped", "checkov": "skipped", "gitleaks": "skipped"}
        assert report.findings == []

    @patch("azext_nucleus.scanning.shutil.which", return_value="/usr/bin/tool")
    @patch("azext_nucleus.deploy.runner.subprocess.run")
    def test_runs_requested_tools(self, mock_run, mock_which, tmp_path):
        mock_run.side_effect = [
            MagicMock(stdout=json.dumps(TRIVY_REPORT), stderr="", returncode=0),
            MagicMock(stdout=json.dumps(CHECKOV_REPORT), stderr="", returncode=1),
        ]
        report = run_scanners(tmp_path, ["trivy", "checkov"])
        assert report.tools == {"trivy": "ok", "checkov": "ok"}
        assert len(report.findings) == 3
        assert mock_run.call_args_list[0][0][0][:3] == ["trivy", "config", "--format"]

    @patch("azext_nucleus.scanning.shutil.which", return_value="/usr/bin/tool")
    @patch("azext_nucleus.deploy.runner.subprocess.run")
    def test_crashing_tool_is_failed(self, mock_run, mock_which, tmp_path):
        mock_run.return_value = MagicMock(stdout="", stderr="fatal: bad config", returncode=2)
        report = run_scanners(tmp_path, ["trivy"])
        assert report.tools == {"trivy": "failed"}
        assert "bad config" in report.errors["trivy"]

    def test_unknown_tool(self, tmp_path):
        with pytest.raises(CLIError, match="Unknown scanner"):
            run_scanners(tmp_path, ["tfsec"])

    def test_missing_path(self, tmp_path):
        with pytest.raises(CLIError, match="Scan path not found"):
            run_scanners(tmp_path / "nope", ["trivy"])


class TestRunGitleaks:

    def test_reads_report_file(self, tmp_path):
        runner = CommandRunner()

        def fake_run(command, **kwargs):
            report_path = Path(command[command.index("--report-path") + 1])
            report_path.write_text(json.dumps(GITLEAKS_REPORT), encoding="utf-8")
            return MagicMock(stdout="", stderr="", returncode=0)

        with patch("azext_nucleus.deploy.runner.subprocess.run", side_effect=fake_run):
            findings = run_gitleaks(tmp_path, runner)

        assert [f.rule_id for f in findings] == ["azure-storage-account-key"]
        assert runner.history[0].command[:3] == ["gitleaks", "detect", "--no-git"]
