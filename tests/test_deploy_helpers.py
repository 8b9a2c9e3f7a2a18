"""Tests for azext_nucleus.deploy.helpers."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from knack.util import CLIError

from azext_nucleus.deploy.helpers import (
    DeploymentOutputCapture,
    bicep_deployment,
    build_bicep,
    build_bicep_command,
    deploy_terraform,
    get_deploy_location,
    is_subscription_scoped,
    plan_terraform,
    summarize_whatif,
    terraform_init,
)

_RUN = "azext_nucleus.deploy.helpers.subprocess.run"


def _completed(stdout="", stderr="", returncode=0):
    return MagicMock(stdout=stdout, stderr=stderr, returncode=returncode)


@pytest.fixture(autouse=True)
def _plain_az():
    with patch("azext_nucleus.deploy.helpers.az_path", return_value="az"):
        yield


@pytest.fixture
def rg_template(tmp_path):
    path = tmp_path / "main.bicep"
    path.write_text("targetScope = 'resourceGroup'\nparam name string\n", encoding="utf-8")
    return path


@pytest.fixture
def sub_template(tmp_path):
    path = tmp_path / "sub.bicep"
    path.write_text("targetScope = 'subscription'\n", encoding="utf-8")
    return path


class TestScope:

    def test_subscription_scope(self, sub_template, rg_template):
        assert is_subscription_scoped(sub_template) is True
        assert is_subscription_scoped(rg_template) is False

    def test_missing_file(self, tmp_path):
        assert is_subscription_scoped(tmp_path / "nope.bicep") is False

    def test_compiled_arm_template(self, tmp_path):
        path = tmp_path / "main.json"
        path.write_text(
            '{"$schema": "https://schema.management.azure.com/schemas/2018-05-01/'
            'subscriptionDeploymentTemplate.json#"}',
            encoding="utf-8",
        )
        assert is_subscription_scoped(path) is True

    def test_undecodable_file(self, tmp_path):
        path = tmp_path / "main.bicep"
        path.write_bytes(b"\xff\xfetargetScope")
        assert is_subscription_scoped(path) is False

    def test_location_from_parameter_file(self, tmp_path):
        params = tmp_path / "p.bicepparam"
        params.write_text("using 'main.bicep'\nparam location = 'northeurope'\n", encoding="utf-8")
        assert get_deploy_location(params) == "northeurope"

    def test_location_expression_falls_back(self, tmp_path):
        params = tmp_path / "p.bicepparam"
        params.write_text("using 'main.bicep'\nparam location = resourceGroup().location\n", encoding="utf-8")
        assert get_deploy_location(params, "westeurope") == "westeurope"


class TestBuildBicepCommand:

    def test_group_scope_with_bicepparam(self, rg_template, tmp_path):
        params = tmp_path / "parameters.dev.bicepparam"
        cmd = build_bicep_command("create", rg_template, params, "sub-1", "rg-apim-dev", deployment_name="apim")
        assert cmd == [
            "az", "deployment", "group", "create",
            "--resource-group", "rg-apim-dev",
            "--parameters", str(params),
            "--name", "apim",
            "--subscription", "sub-1",
            "-o", "json",
        ]

    def test_json_parameters_use_template_file(self, rg_template, tmp_path):
        params = tmp_path / "main.parameters.json"
        cmd = build_bicep_command("validate", rg_template, params, None, "rg")
        assert "--template-file" in cmd
        assert f"@{params}" in cmd

    def test_what_if_flags(self, rg_template):
        cmd = build_bicep_command("what-if", rg_template, None, None, "rg")
        assert "--no-pretty-print" in cmd

    def test_subscription_scope_requires_location(self, sub_template):
        with pytest.raises(CLIError, match="location is required"):
            build_bicep_command("create", sub_template, None, None, None)

    def test_subscription_scope(self, sub_template):
        cmd = build_bicep_command("create", sub_template, None, None, None, location="westeurope")
        assert cmd[:6] == ["az", "deployment", "sub", "create", "--location", "westeurope"]

    def test_group_scope_requires_resource_group(self, rg_template):
        with pytest.raises(CLIError, match="Resource group required"):
            build_bicep_command("create", rg_template, None, None, None)

    def test_unknown_action(self, rg_template):
        with pytest.raises(CLIError, match="Unknown deployment action"):
            build_bicep_command("delete", rg_template, None, None, "rg")


class TestBicepDeployment:

    @patch(_RUN, return_value=_completed(stdout='{"properties": {}}'))
    def test_create(self, mock_run, rg_template):
        result = bicep_deployment("create", rg_template, None, None, "rg", env={"ARM_TENANT_ID": "t-1"})
        assert result["status"] == "deployed"
        assert result["scope"] == "resourceGroup"
        # az deployment has no --tenant option; the tenant comes from the login context
        assert "--tenant" not in mock_run.call_args[0][0]
        assert mock_run.call_args[1]["env"] == {"ARM_TENANT_ID": "t-1"}

    @patch(_RUN, return_value=_completed(stderr="InvalidTemplate", returncode=1))
    def test_failure(self, mock_run, rg_template):
        result = bicep_deployment("validate", rg_template, None, None, "rg")
        assert result["status"] == "failed"
        assert result["error"] == "InvalidTemplate"
        assert result["command"] == "az deployment group validate"

    def test_missing_template(self, tmp_path):
        result = bicep_deployment("create", tmp_path / "missing.bicep", None, None, "rg")
        assert result["status"] == "failed"

    @patch(_RUN, side_effect=FileNotFoundError)
    def test_az_missing(self, mock_run, rg_template):
        assert bicep_deployment("what-if", rg_template, None, None, "rg")["error"] == "az CLI not found on PATH."


class TestBuildBicep:

    @patch(_RUN, return_value=_completed(stdout='{"resources": []}'))
    def test_build(self, mock_run, rg_template):
        assert build_bicep(rg_template) == {"resources": []}

    @patch(_RUN, return_value=_completed(stderr="BCP018", returncode=1))
    def test_build_failure(self, mock_run, rg_template):
        with pytest.raises(CLIError, match="Bicep build failed"):
            build_bicep(rg_template)


class TestSummarizeWhatIf:

    def test_counts(self):
        output = json.dumps({"changes": [{"changeType": "Create"}, {"changeType": "Create"}, {"changeType": "Modify"}]})
        assert summarize_whatif(output) == {"Create": 2, "Modify": 1}

    def test_invalid(self):
        assert summarize_whatif("not json") == {}


class TestTerraform:

    @patch(_RUN, return_value=_completed())
    def test_init_ok(self, mock_run, tmp_path):
        assert terraform_init(tmp_path) == {"ok": True}

    @patch(_RUN)
    def test_init_local_state_fallback(self, mock_run, tmp_path):
        mock_run.side_effect = [
            _completed(stderr='The argument "storage_account_name" is required field is not set', returncode=1),
            _completed(),
        ]
        result = terraform_init(tmp_path)
        assert result["ok"] is True
        assert "-backend=false" in mock_run.call_args_list[1][0][0]

    @patch(_RUN, side_effect=FileNotFoundError)
    def test_init_without_terraform(self, mock_run, tmp_path):
        assert terraform_init(tmp_path)["ok"] is False

    @patch(_RUN, return_value=_completed())
    def test_deploy(self, mock_run, tmp_path):
        result = deploy_terraform(tmp_path, subscription="sub-1", var_file=tmp_path / "dev.tfvars")
        assert result == {"status": "deployed", "tool": "terraform"}
        subcommands = [c[0][0][1] for c in mock_run.call_args_list]
        assert subcommands == ["init", "validate", "plan", "apply"]
        plan_cmd = mock_run.call_args_list[2][0][0]
        assert f"-var-file={tmp_path / 'dev.tfvars'}" in plan_cmd
        assert "subscription_id=sub-1" in plan_cmd

    @patch(_RUN, return_value=_completed())
    def test_relative_var_file_is_made_absolute(self, mock_run, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        infra = tmp_path / "infra"
        infra.mkdir()
        plan_terraform(infra, var_file=Path("infra/dev.tfvars"))
        plan_cmd = mock_run.call_args_list[-1][0][0]
        assert f"-var-file={tmp_path / 'infra' / 'dev.tfvars'}" in plan_cmd
        assert mock_run.call_args_list[-1][1]["cwd"] == str(infra)

    @patch(_RUN)
    def test_deploy_stops_at_failure(self, mock_run, tmp_path):
        mock_run.side_effect = [_completed(), _completed(stderr="Invalid block", returncode=1)]
        result = deploy_terraform(tmp_path)
        assert result["status"] == "failed"
        assert result["command"] == "terraform validate"

    @patch(_RUN)
    def test_plan(self, mock_run, tmp_path):
        mock_run.side_effect = [_completed(), _completed(stdout="Plan: 3 to add\n")]
        result = plan_terraform(tmp_path)
        assert result["status"] == "previewed"
        assert result["output"] == "Plan: 3 to add"


class TestDeploymentOutputCapture:

    def test_capture_bicep_and_get(self, tmp_project):
        capture = DeploymentOutputCapture(str(tmp_project))
        output = json.dumps(
            {"properties": {"outputs": {"apimServiceName": {"type": "String", "value": "apim-nucleus-dev"}}}}
        )
        assert capture.capture_bicep(output) == {"apimServiceName": "apim-nucleus-dev"}
        assert capture.get("apimServiceName") == "apim-nucleus-dev"
        assert capture.get("missing", "fallback") == "fallback"

    def test_persistence(self, tmp_project):
        capture = DeploymentOutputCapture(str(tmp_project))
        capture.capture_bicep(json.dumps({"properties": {"outputs": {"aksClusterName": {"value": "aks-dev"}}}}))

        reloaded = DeploymentOutputCapture(str(tmp_project))
        assert reloaded.get("aksClusterName") == "aks-dev"
        assert (tmp_project / ".nucleus" / "state" / "deployment_outputs.json").exists()

    def test_invalid_bicep_output(self, tmp_project):
        assert DeploymentOutputCapture(str(tmp_project)).capture_bicep("not json") == {}

    @patch(_RUN, return_value=_completed(stdout='{"cluster_name": {"value": "aks-dev", "type": "string"}}'))
    def test_capture_terraform(self, mock_run, tmp_project):
        capture = DeploymentOutputCapture(str(tmp_project))
        assert capture.capture_terraform(tmp_project) == {"cluster_name": "aks-dev"}

    def test_to_env_vars(self, tmp_project):
        capture = DeploymentOutputCapture(str(tmp_project))
        capture.capture_bicep(
            json.dumps({"properties": {"outputs": {"gateway_url": {"value": "https://apim"}, "ports": {"value": [443]}}}})
        )
        assert capture.to_env_vars() == {"NUCLEUS_GATEWAY_URL": "https://apim", "NUCLEUS_PORTS": "[443]"}
