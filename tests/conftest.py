"""Shared test fixtures for azext_nucleus tests."""

import copy
import subprocess
from unittest.mock import MagicMock

import pytest
import yaml

from azext_nucleus.config import DEFAULT_CONFIG


def make_completed(stdout="", stderr="", returncode=0):
    """Convenience factory for subprocess.CompletedProcess-like mocks."""
    result = MagicMock(spec=subprocess.CompletedProcess)
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


MAIN_BICEP = """\
targetScope = 'resourceGroup'

@description('Name of the API Management service')
param apimServiceName string

param location string = resourceGroup().location
param sku string = 'Developer'
param publisherName string = 'DXC'
param publisherEmail string = 'apim-admins@dxc.com'
param environment string
param enableGatewayLogs bool = true

module apim 'br/public:avm/res/api-management/service:0.9.0' = {
  name: 'apim'
  params: {
    name: apimServiceName
  }
}
"""


def bicepparam_for(env, **overrides):
    """Render a valid APIM parameter file for *env* with optional overrides."""
    values = {
        "apimServiceName": f"'apim-nucleus-{env}'",
        "sku": "'Premium'" if env == "prod" else "'Developer'",
        "publisherName": "'DXC'",
        "publisherEmail": "'apim-admins@dxc.com'",
        "environment": f"'{env}'",
        "enableGatewayLogs": "true",
        "enableResourceLogs": "true",
    }
    if env == "prod":
        values["subnetResourceId"] = "'/subscriptions/0000/resourceGroups/rg-net/providers/Microsoft.Network/virtualNetworks/vnet/subnets/apim'"
    values.update(overrides)
    lines = ["using '../../main.bicep'", ""]
    for name, value in values.items():
        if value is not None:
            lines.append(f"param {name} = {value}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def tmp_project(tmp_path):
    """Create a temporary project directory with standard scaffold."""
    project_dir = tmp_path / "test-project"
    project_dir.mkdir()

    (project_dir / "config" / "ms.apim").mkdir(parents=True)
    (project_dir / "scripts").mkdir()
    (project_dir / ".nucleus" / "state").mkdir(parents=True)

    return project_dir


@pytest.fixture
def sample_config():
    """Return a deep copy of the default config with test values."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["project"]["name"] = "test-project"
    config["project"]["location"] = "westeurope"
    config["project"]["environment"] = "dev"
    config["deploy"]["resource_group"] = "rg-apim-dev"
    config["logging"]["transcript"] = False
    return config


@pytest.fixture
def project_with_config(tmp_project, sample_config):
    """Create a project directory with a populated nucleus.yaml."""
    config_path = tmp_project / "nucleus.yaml"
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(sample_config, f, default_flow_style=False)
    return tmp_project


@pytest.fixture
def apim_project(project_with_config):
    """A valid APIM project: main.bicep plus dev/test/prod parameter files."""
    (project_with_config / "main.bicep").write_text(MAIN_BICEP, encoding="utf-8")
    for env in ("dev", "test", "prod"):
        path = project_with_config / "config" / "ms.apim" / f"parameters.{env}.bicepparam"
        path.write_text(bicepparam_for(env), encoding="utf-8")
    return project_with_config


@pytest.fixture
def render_params():
    """Expose :func:`bicepparam_for` to tests."""
    return bicepparam_for
