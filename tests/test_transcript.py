"""Tests for azext_nucleus.transcript."""

import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from azext_nucleus.transcript import _sanitize, capture, transcript, transcript_path


class TestTranscriptPath:

    def test_name_and_timestamp(self, tmp_path):
        now = datetime(2026, 3, 1, 14, 5, 9, tzinfo=timezone.utc)
        assert transcript_path("nucleus postdeploy apim", tmp_path, now) == (
            tmp_path / "nucleus-postdeploy-apim-20260301-140509.log"
        )


class TestCapture:

    def test_writes_package_logs(self, tmp_path):
        with capture("nucleus scan", tmp_path) as path:
            logging.getLogger("azext_nucleus.scanning").debug("trivy reported 0 finding(s)")
        assert path.parent == tmp_path / ".nucleus" / "logs"
        assert "trivy reported 0 finding(s)" in path.read_text(encoding="utf-8")

    def test_handler_removed_afterwards(self, tmp_path):
        package_logger = logging.getLogger("azext_nucleus")
        before = list(package_logger.handlers)
        with capture("nucleus scan", tmp_path):
            assert len(package_logger.handlers) == len(before) + 1
        assert package_logger.handlers == before

    def test_disabled_by_config(self, project_with_config):
        # sample_config sets logging.transcript to false
        with capture("nucleus scan", project_with_config) as path:
            assert path is None
        assert not (project_with_config / ".nucleus" / "logs").exists()

    def test_custom_directory(self, tmp_path):
        (tmp_path / "nucleus.yaml").write_text("logging:\n  dir: logs/run\n", encoding="utf-8")
        with capture("nucleus deploy", tmp_path) as path:
            pass
        assert path.parent == tmp_path / "logs" / "run"


class TestTranscriptDecorator:

    def test_records_start_and_finish(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        @transcript("nucleus doctor")
        def handler(cmd, profiles=None):
            return {"ok": True}

        assert handler(None, profiles=["core"]) == {"ok": True}
        (log_file,) = (tmp_path / ".nucleus" / "logs").glob("nucleus-doctor-*.log")
        content = log_file.read_text(encoding="utf-8")
        assert "nucleus doctor started" in content
        assert "nucleus doctor finished" in content

    def test_records_failure_and_reraises(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        @transcript("nucleus deploy")
        def handler(cmd, client_secret=None):
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            handler(None, client_secret="hunter2")
        (log_file,) = Path(tmp_path / ".nucleus" / "logs").glob("nucleus-deploy-*.log")
        content = log_file.read_text(encoding="utf-8")
        assert "failed: ValueError: bad input" in content
        assert "hunter2" not in content

    def test_sanitize(self):
        assert _sanitize({"client_secret": "x", "token": "", "name": "apim", "subscription": "sub-1"}) == {
            "client_secret": "***",
            "token": "",
            "name": "apim",
            "subscription": "***",
        }

    def test_sanitize_masks_secret_config_values(self):
        assert _sanitize({"key": "deploy.service_principal.client_secret", "value": "S3cr3t"}) == {
            "key": "deploy.service_principal.client_secret",
            "value": "***",
        }
        assert _sanitize({"key": "project.location", "value": "westeurope"}) == {
            "key": "project.location",
            "value": "westeurope",
        }

    def test_config_set_secret_not_written(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        @transcript("nucleus config set")
        def handler(cmd, key=None, value=None):
            return {"key": key}

        handler(None, key="deploy.service_principal.client_secret", value="S3cr3tValue")
        (log_file,) = (tmp_path / ".nucleus" / "logs").glob("nucleus-config-set-*.log")
        content = log_file.read_text(encoding="utf-8")
        assert "deploy.service_principal.client_secret" in content
        assert "S3cr3tValue" not in content
