"""Project configuration management."""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from knack.util import CLIError

logger = logging.getLogger(__name__)


_ALLOWED_IAC_TOOLS = frozenset({"terraform", "bicep"})

_ALLOWED_ENVIRONMENTS = frozenset({"dev", "test", "prod"})

_ALLOWED_SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")

# GA public-cloud regions.  Not exhaustive; extend when a new region is used.
_KNOWN_AZURE_REGIONS = frozenset(
    {
        "eastus",
        "eastus2",
        "westus",
        "westus2",
        "westus3",
        "centralus",
        "northcentralus",
        "southcentralus",
        "westcentralus",
        "canadacentral",
        "canadaeast",
        "brazilsouth",
        "brazilsoutheast",
        "northeurope",
        "westeurope",
        "uksouth",
        "ukwest",
        "francecentral",
        "francesouth",
        "germanywestcentral",
        "germanynorth",
        "norwayeast",
        "norwaywest",
        "swedencentral",
        "switzerlandnorth",
        "switzerlandwest",
        "polandcentral",
        "italynorth",
        "spaincentral",
        "australiaeast",
        "australiasoutheast",
        "eastasia",
        "southeastasia",
        "japaneast",
        "japanwest",
        "koreacentral",
        "koreasouth",
        "centralindia",
        "southindia",
        "westindia",
        "southafricanorth",
        "uaenorth",
        "israelcentral",
        "qatarcentral",
        "mexicocentral",
        "newzealandnorth",
    }
)

# Keys whose values belong in the git-ignored secrets file.
SECRET_KEY_PREFIXES = (
    "deploy.subscription",
    "deploy.service_principal",
)

DEFAULT_CONFIG = {
    "project": {
        "id": "",
        "name": "",
        "location": "westeurope",
        "environment": "dev",
        "created": "",
        "iac_tool": "bicep",
        "template": "main.bicep",
    },
    "deploy": {
        "subscription": "",
        "resource_group": "",
        "tenant": "",
        "service_principal": {
            "client_id": "",
            "client_secret": "",
            "tenant_id": "",
        },
    },
    "validation": {
        "rules_dirs": [],
        "scripts_dir": "scripts",
        "script_patterns": ["*.ps1"],
        "forbidden_terms": ["contoso"],
        "arm_ttk_path": "",
    },
    "postdeploy": {
        "plan": "postdeploy.yaml",
        "fail_fast": False,
    },
    "scan": {
        "tools": ["trivy", "checkov", "gitleaks"],
        "threshold": "HIGH",
    },
    "logging": {
        "transcript": True,
        "dir": ".nucleus/logs",
    },
}


class ProjectConfig:
    """Manages ``nucleus.yaml`` project configuration.

    Provides dot-notation get/set for nested values and handles persistence.
    Subscription IDs and service principal credentials are kept in a
    separate ``nucleus.secrets.yaml`` that should be git-ignored.
    """

    CONFIG_FILENAME = "nucleus.yaml"
    SECRETS_FILENAME = "nucleus.secrets.yaml"

    def __init__(self, project_dir: str):
        self.project_dir = Path(project_dir)
        self.config_path = self.project_dir / self.CONFIG_FILENAME
        self.secrets_path = self.project_dir / self.SECRETS_FILENAME
        self._config: dict = {}
        self._secrets: dict = {}

    # ------------------------------------------------------------------ #
    #  Persistence                                                        #
    # ------------------------------------------------------------------ #

    def load(self) -> dict:
        """Load configuration (defaults, then nucleus.yaml, then secrets).

        Raises:
            CLIError if the config file is missing or malformed.
        """
        if not self.config_path.exists():
            raise CLIError(
                f"Configuration file not found: {self.config_path}\n" "Run 'az nucleus init' to create a project."
            )

        self._config = copy.deepcopy(DEFAULT_CONFIG)
        self._merge(self._config, self._read_yaml(self.config_path))

        self._secrets = {}
        if self.secrets_path.exists():
            self._secrets = self._read_yaml(self.secrets_path)
            self._merge(self._config, self._secrets)

        return self._config

    @staticmethod
    def _read_yaml(path: Path) -> dict:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise CLIError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise CLIError(f"{path} must contain a mapping.")
        return data

    def save(self):
        """Persist current configuration to nucleus.yaml (secrets blanked)."""
        self.project_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                self._strip_secrets(self._config),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )
        logger.debug("Configuration saved to %s", self.config_path)

    def save_secrets(self):
        """Persist current secrets to nucleus.secrets.yaml."""
        if not self._secrets:
            return
        self.project_dir.mkdir(parents=True, exist_ok=True)
        with open(self.secrets_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self._secrets, f, default_flow_style=False, sort_keys=False)
        logger.debug("Secrets saved to %s", self.secrets_path)

    def create_default(self, overrides: dict | None = None) -> dict:
        """Create a new configuration from defaults plus *overrides*."""
        self._config = copy.deepcopy(DEFAULT_CONFIG)
        self._config["project"]["id"] = str(uuid.uuid4())
        self._config["project"]["created"] = datetime.now(timezone.utc).isoformat()
        self._secrets = {}

        for key, value in self._flatten(overrides or {}):
            self._validate_config_value(key, value)
            self._set_nested(self._config, key, value)
            if self._is_secret_key(key) and value:
                self._set_nested(self._secrets, key, value)

        self.save()
        self.save_secrets()
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by dot-separated key.

        Examples:
            config.get("project.iac_tool")
            config.get("deploy.resource_group")
        """
        current = self._config
        for part in key.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def set(self, key: str, value: Any):
        """Set a config value by dot-separated key and persist it.

        Secret keys are routed to nucleus.secrets.yaml.
        """
        self._validate_config_value(key, value)
        self._set_nested(self._config, key, value)

        if self._is_secret_key(key):
            self._set_nested(self._secrets, key, value)
            self.save_secrets()
        self.save()

    def to_dict(self) -> dict:
        """Return the full config dict (includes merged secrets)."""
        return copy.deepcopy(self._config)

    def masked(self) -> dict:
        """Return the config with secret values replaced by ``***``."""
        result = self.to_dict()
        for prefix in SECRET_KEY_PREFIXES:
            parent, leaf = self._walk(result, prefix)
            if parent is not None and parent.get(leaf):
                if isinstance(parent[leaf], dict):
                    parent[leaf] = {k: ("***" if v else v) for k, v in parent[leaf].items()}
                else:
                    parent[leaf] = "***"
        return result

    def exists(self) -> bool:
        return self.config_path.exists()

    # ------------------------------------------------------------------ #
    #  Validation                                                         #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_config_value(key: str, value: Any):
        """Enforce value constraints at set time."""
        if key == "project.iac_tool" and str(value).lower().strip() not in _ALLOWED_IAC_TOOLS:
            raise CLIError(
                f"Unknown IaC tool: '{value}'.\n" f"Supported tools: {', '.join(sorted(_ALLOWED_IAC_TOOLS))}"
            )

        if key == "project.location" and str(value).lower().strip() not in _KNOWN_AZURE_REGIONS:
            raise CLIError(
                f"Unknown Azure region: '{value}'.\n"
                "Use 'az account list-locations -o table' to see available regions."
            )

        if key == "project.environment" and str(value).lower().strip() not in _ALLOWED_ENVIRONMENTS:
            raise CLIError(
                f"Unknown environment: '{value}'.\n"
                f"Supported environments: {', '.join(sorted(_ALLOWED_ENVIRONMENTS))}"
            )

        if key == "scan.threshold" and str(value).upper() not in _ALLOWED_SEVERITIES:
            raise CLIError(f"Unknown severity threshold: '{value}'.\n" f"Use one of: {', '.join(_ALLOWED_SEVERITIES)}")

    # ------------------------------------------------------------------ #
    #  Helpers                                                            #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _merge(base: dict, overlay: dict):
        """Recursively merge *overlay* into *base*."""
        for key, value in overlay.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                ProjectConfig._merge(base[key], value)
            else:
                base[key] = value

    @staticmethod
    def _flatten(data: dict, prefix: str = ""):
        """Yield ``(dotted_key, leaf_value)`` pairs."""
        for key, value in data.items():
            dotted = f"{prefix}{key}"
            if isinstance(value, dict) and value:
                yield from ProjectConfig._flatten(value, dotted + ".")
            else:
                yield dotted, value

    @staticmethod
    def _set_nested(target: dict, key: str, value: Any):
        """Set a dot-separated *key* in *target*, creating intermediate dicts."""
        parts = key.split(".")
        current = target
        for part in parts[:-1]:
            if part not in current or not isinstance(current[part], dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value

    @staticmethod
    def _walk(data: dict, key: str) -> tuple[dict | None, str]:
        """Return ``(parent_dict, leaf)`` for a dotted *key*, or ``(None, leaf)``."""
        parts = key.split(".")
        node = data
        for part in parts[:-1]:
            if isinstance(node, dict) and isinstance(node.get(part), dict):
                node = node[part]
            else:
                return None, parts[-1]
        return (node if isinstance(node, dict) and parts[-1] in node else None), parts[-1]

    @staticmethod
    def _is_secret_key(key: str) -> bool:
        """Return True if *key* should be stored in the secrets file."""
        return any(key == prefix or key.startswith(prefix + ".") for prefix in SECRET_KEY_PREFIXES)

    def _strip_secrets(self, config: dict) -> dict:
        """Deep copy of *config* with secret leaves replaced by empty strings."""
        clean = copy.deepcopy(config)
        for prefix in SECRET_KEY_PREFIXES:
            parent, leaf = self._walk(clean, prefix)
            if parent is None:
                continue
            if isinstance(parent[leaf], dict):
                parent[leaf] = {k: "" for k in parent[leaf]}
            else:
                parent[leaf] = ""
        return clean
