"""Tests for azext_nucleus.config - ProjectConfig and nucleus.yaml handling."""

import pytest
import yaml
from knack.util import CLIError

from azext_nucleus.config import DEFAULT_CONFIG, ProjectConfig


class TestProjectConfig:
    """Test project configuration management."""

    def test_create_default(self, tmp_project):
        config = ProjectConfig(str(tmp_project))
        result = config.create_default({"project": {"name": "apim-platform", "location": "northeurope"}})

        assert result["project"]["name"] == "apim-platform"
        assert result["project"]["location"] == "northeurope"
        assert result["project"]["id"]
        assert result["project"]["created"]
        assert config.exists()

    def test_load_merges_defaults(self, tmp_project):
        (tmp_project / "nucleus.yaml").write_text("project:\n  name: partial\n", encoding="utf-8")
        config = ProjectConfig(str(tmp_project))
        data = config.load()

        assert data["project"]["name"] == "partial"
        assert data["scan"]["threshold"] == DEFAULT_CONFIG["scan"]["threshold"]
        assert data["validation"]["forbidden_terms"] == ["contoso"]

    def test_load_missing_file(self, tmp_project):
        with pytest.raises(CLIError, match="az nucleus init"):
            ProjectConfig(str(tmp_project)).load()

    def test_load_invalid_yaml(self, tmp_project):
        (tmp_project / "nucleus.yaml").write_text("project: [unclosed\n", encoding="utf-8")
        with pytest.raises(CLIError, match="Invalid YAML"):
            ProjectConfig(str(tmp_project)).load()

    def test_load_non_mapping(self, tmp_project):
        (tmp_project / "nucleus.yaml").write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(CLIError, match="must contain a mapping"):
            ProjectConfig(str(tmp_project)).load()

    def test_get_dot_notation(self, project_with_config):
        config = ProjectConfig(str(project_with_config))
        config.load()

        assert config.get("project.name") == "test-project"
        assert config.get("deploy.resource_group") == "rg-apim-dev"
        assert config.get("nonexistent.key", "fallback") == "fallback"

    def test_set_persists(self, project_with_config):
        config = ProjectConfig(str(project_with_config))
        config.load()
        config.set("deploy.resource_group", "rg-apim-test")

        reloaded = ProjectConfig(str(project_with_config))
        reloaded.load()
        assert reloaded.get("deploy.resource_group") == "rg-apim-test"

    def test_to_dict_is_copy(self, project_with_config):
        config = ProjectConfig(str(project_with_config))
        config.load()
        data = config.to_dict()
        data["project"]["name"] = "changed"
        assert config.get("project.name") == "test-project"


class TestValidation:

    @pytest.mark.parametrize(
        "key, value, message",
        [
            ("project.iac_tool", "pulumi", "Unknown IaC tool"),
            ("project.location", "moon-central", "Unknown Azure region"),
            ("project.environment", "staging", "Unknown environment"),
            ("scan.threshold", "SEVERE", "Unknown severity threshold"),
        ],
    )
    def test_rejects_invalid_values(self, project_with_config, key, value, message):
        config = ProjectConfig(str(project_with_config))
        config.load()
        with pytest.raises(CLIError, match=message):
            config.set(key, value)

    def test_accepts_case_insensitive_values(self, project_with_config):
        config = ProjectConfig(str(project_with_config))
        config.load()
        config.set("project.iac_tool", "Terraform")
        config.set("scan.threshold", "critical")

    def test_create_default_validates_overrides(self, tmp_project):
        with pytest.raises(CLIError, match="Unknown environment"):
            ProjectConfig(str(tmp_project)).create_default({"project": {"environment": "qa"}})


class TestSecrets:
    """Subscription IDs and service principal credentials live in nucleus.secrets.yaml."""

    def test_secret_routed_to_secrets_file(self, project_with_config):
        config = ProjectConfig(str(project_with_config))
        config.load()
        config.set("deploy.service_principal.client_secret", "s3cr3t")

        main_data = yaml.safe_load((project_with_config / "nucleus.yaml").read_text(encoding="utf-8"))
        secrets = yaml.safe_load((project_with_config / "nucleus.secrets.yaml").read_text(encoding="utf-8"))

        assert main_data["deploy"]["service_principal"]["client_secret"] == ""
        assert secrets["deploy"]["service_principal"]["client_secret"] == "s3cr3t"

    def test_secrets_merged_on_load(self, project_with_config):
        config = ProjectConfig(str(project_with_config))
        config.load()
        config.set("deploy.subscription", "00000000-0000-0000-0000-000000000001")

        reloaded = ProjectConfig(str(project_with_config))
        reloaded.load()
        assert reloaded.get("deploy.subscription") == "00000000-0000-0000-0000-000000000001"

    def test_non_secret_stays_in_main_file(self, project_with_config):
        config = ProjectConfig(str(project_with_config))
        config.load()
        config.set("deploy.tenant", "dxc.onmicrosoft.com")
        assert not (project_with_config / "nucleus.secrets.yaml").exists()

    def test_create_default_splits_secrets(self, tmp_project):
        config = ProjectConfig(str(tmp_project))
        config.create_default({"deploy": {"subscription": "sub-1"}})

        main_data = yaml.safe_load((tmp_project / "nucleus.yaml").read_text(encoding="utf-8"))
        assert main_data["deploy"]["subscription"] == ""
        assert (tmp_project / "nucleus.secrets.yaml").exists()

    def test_masked(self, project_with_config):
        config = ProjectConfig(str(project_with_config))
        config.load()
        config.set("deploy.subscription", "sub-1")
        config.set("deploy.service_principal.client_id", "app-1")

        masked = config.masked()
        assert masked["deploy"]["subscription"] == "***"
        assert masked["deploy"]["service_principal"]["client_id"] == "***"
        assert masked["deploy"]["service_principal"]["client_secret"] == ""
        assert masked["deploy"]["resource_group"] == "rg-apim-dev"

    @pytest.mark.parametrize(
        "key, expected",
        [
            ("deploy.subscription", True),
            ("deploy.service_principal.tenant_id", True),
            ("deploy.subscription_name", False),
            ("deploy.resource_group", False),
        ],
    )
    def test_is_secret_key(self, key, expected):
        assert ProjectConfig._is_secret_key(key) is expected
