"""API Management post-deployment configuration.

After the APIM instance is deployed from Bicep, the APIs, products,
policies, groups and users it serves are configured through the Azure CLI:

- products          ``az apim product create``
- API imports       ``az apim api import``
- product links     ``az apim product api add``
- API policies      ``az rest --method put`` on ``.../apis/<id>/policies/policy``
- groups and users  ``az rest --method put`` (no first-class ``az apim`` commands)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from knack.util import CLIError

from azext_nucleus.deploy.runner import CommandRunner
from azext_nucleus.postdeploy.base import (
    ARM_ENDPOINT,
    PostDeployReport,
    Step,
    execute_steps,
    first_value,
    require,
    resolve_path,
)

logger = logging.getLogger(__name__)

APIM_API_VERSION = "2022-08-01"

_SPEC_FORMATS = {
    "openapi": "OpenApi",
    "openapijson": "OpenApiJson",
    "swagger": "Swagger",
    "wsdl": "Wsdl",
    "wadl": "Wadl",
    "graphql": "GraphQL",
}


@dataclass
class ApimTarget:
    """The APIM instance being configured."""

    service_name: str
    resource_group: str
    subscription: str = ""

    def resource_url(self, *segments: str) -> str:
        subscription = self.subscription or "{subscriptionId}"
        path = "/".join(segments)
        return (
            f"{ARM_ENDPOINT}/subscriptions/{subscription}/resourceGroups/{self.resource_group}"
            f"/providers/Microsoft.ApiManagement/service/{self.service_name}/{path}"
            f"?api-version={APIM_API_VERSION}"
        )

    def cli_args(self) -> list[str]:
        args = ["--resource-group", self.resource_group, "--service-name", self.service_name]
        if self.subscription:
            args += ["--subscription", self.subscription]
        return args


def resolve_apim_target(plan: dict[str, Any], params: dict[str, Any], config: Any = None) -> ApimTarget:
    """Work out which APIM instance to configure.

    Plan values win, then the deployment parameter file, then project config.
    """
    section = plan.get("apim") or {}
    get = config.get if config is not None else (lambda key, default=None: default)
    service_name = first_value(section.get("service_name"), params.get("apimServiceName"))
    resource_group = first_value(
        section.get("resource_group"),
        params.get("resourceGroupName"),
        get("deploy.resource_group"),
    )
    return ApimTarget(
        service_name=require(service_name, "the APIM service name", "Set apim.service_name or param apimServiceName."),
        resource_group=require(
            resource_group, "the resource group", "Set apim.resource_group or 'az nucleus config set deploy.resource_group'."
        ),
        subscription=first_value(section.get("subscription"), get("deploy.subscription")),
    )


def _spec_format(value: str | None) -> str:
    key = (value or "openapi").replace("-", "").replace("_", "").lower()
    if key not in _SPEC_FORMATS:
        raise CLIError(f"Unsupported specification format '{value}'. Use one of: {', '.join(_SPEC_FORMATS.values())}")
    return _SPEC_FORMATS[key]


def _rest_put(runner: CommandRunner, url: str, body: dict[str, Any] | None = None) -> Any:
    args = ["rest", "--method", "put", "--url", url]
    if body is not None:
        args += ["--body", json.dumps(body), "--headers", "Content-Type=application/json"]
    return runner.az(args)


def _product_steps(runner: CommandRunner, target: ApimTarget, products: list[dict]) -> list[Step]:
    steps: list[Step] = []
    for product in products:
        product_id = require(str(product.get("id", "")), "a product id", "Every product needs an 'id'.")
        args = [
            "apim", "product", "create", *target.cli_args(),
            "--product-id", product_id,
            "--product-name", str(product.get("display_name", product_id)),
            "--subscription-required", str(bool(product.get("subscription_required", True))).lower(),
            "--state", str(product.get("state", "published")),
        ]
        if product.get("description"):
            args += ["--description", str(product["description"])]
        steps.append((f"product {product_id}", lambda a=args: runner.az(a)))
    return steps


def _api_steps(runner: CommandRunner, target: ApimTarget, plan: dict, apis: list[dict]) -> list[Step]:
    steps: list[Step] = []
    for api in apis:
        api_id = require(str(api.get("id", "")), "an API id", "Every API needs an 'id'.")
        args = [
            "apim", "api", "import", *target.cli_args(),
            "--api-id", api_id,
            "--path", str(api.get("path", api_id)),
            "--specification-format", _spec_format(api.get("specification_format")),
        ]
        if api.get("specification_url"):
            args += ["--specification-url", str(api["specification_url"])]
        elif api.get("specification_path"):
            args += ["--specification-path", str(resolve_path(plan, api["specification_path"]))]
        else:
            raise CLIError(f"API '{api_id}' needs specification_path or specification_url.")
        if api.get("display_name"):
            args += ["--display-name", str(api["display_name"])]
        if api.get("service_url"):
            args += ["--service-url", str(api["service_url"])]
        steps.append((f"import API {api_id}", lambda a=args: runner.az(a)))

        for product_id in _as_list(api.get("product")):
            link = ["apim", "product", "api", "add", *target.cli_args(), "--product-id", product_id, "--api-id", api_id]
            steps.append((f"add API {api_id} to product {product_id}", lambda a=link: runner.az(a)))

        if api.get("policy_file"):
            policy_path = resolve_path(plan, api["policy_file"])
            url = target.resource_url("apis", api_id, "policies", "policy")

            def apply_policy(path=policy_path, url=url):
                try:
                    xml = path.read_text(encoding="utf-8")
                except OSError as exc:
                    raise CLIError(f"Cannot read policy file {path}: {exc}") from exc
                return _rest_put(runner, url, {"properties": {"format": "rawxml", "value": xml}})

            steps.append((f"policy for API {api_id}", apply_policy))
    return steps


def _group_steps(runner: CommandRunner, target: ApimTarget, groups: list[dict]) -> list[Step]:
    steps: list[Step] = []
    for group in groups:
        group_id = require(str(group.get("id", "")), "a group id", "Every group needs an 'id'.")
        body = {
            "properties": {
                "displayName": str(group.get("display_name", group_id)),
                "description": str(group.get("description", "")),
                "type": "custom",
            }
        }
        url = target.resource_url("groups", group_id)
        steps.append((f"group {group_id}", lambda u=url, b=body: _rest_put(runner, u, b)))
    return steps


def _user_steps(runner: CommandRunner, target: ApimTarget, users: list[dict]) -> list[Step]:
    steps: list[Step] = []
    for user in users:
        email = require(str(user.get("email", "")), "a user email", "Every user needs an 'email'.")
        user_id = str(user.get("id") or email.split("@")[0].replace(".", "-"))
        body = {
            "properties": {
                "email": email,
                "firstName": str(user.get("first_name", "")),
                "lastName": str(user.get("last_name", "")),
                "state": "active",
            }
        }
        url = target.resource_url("users", user_id)
        steps.append((f"user {email}", lambda u=url, b=body: _rest_put(runner, u, b)))
        for group_id in _as_list(user.get("groups")):
            member_url = target.resource_url("groups", group_id, "users", user_id)
            steps.append((f"add {email} to group {group_id}", lambda u=member_url: _rest_put(runner, u)))
    return steps


def _as_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    if value:
        return [str(value)]
    return []


def plan_apim_steps(plan: dict[str, Any], target: ApimTarget, runner: CommandRunner) -> list[Step]:
    """Build the ordered step list for an APIM plan.

    Products come first so API imports can be linked to them; groups come
    before users so memberships resolve.
    """
    section = plan.get("apim") or {}
    return (
        _product_steps(runner, target, section.get("products", []))
        + _api_steps(runner, target, plan, section.get("apis", []))
        + _group_steps(runner, target, section.get("groups", []))
        + _user_steps(runner, target, section.get("users", []))
    )


def configure_apim(
    plan: dict[str, Any],
    params: dict[str, Any],
    config: Any = None,
    runner: CommandRunner | None = None,
    fail_fast: bool = False,
) -> PostDeployReport:
    """Apply the ``apim`` section of a post-deployment plan."""
    if not plan.get("apim"):
        raise CLIError("The post-deployment plan has no 'apim' section.")
    runner = runner or CommandRunner()
    target = resolve_apim_target(plan, params, config)
    logger.info("Configuring APIM %s in %s", target.service_name, target.resource_group)

    report = execute_steps(target.service_name, plan_apim_steps(plan, target, runner), fail_fast)
    report.commands = [r.to_dict() for r in runner.history]
    return report
