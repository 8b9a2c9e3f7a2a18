"""AKS post-deployment configuration.

Fetches cluster credentials, then brings the cluster to the state the
plan describes: namespaces, Helm repositories and releases, and raw
Kubernetes manifests.  Every command is idempotent so a plan can be
re-applied after a partial failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from knack.util import CLIError

from azext_nucleus.deploy.runner import CommandRunner
from azext_nucleus.postdeploy.base import (
    PostDeployReport,
    Step,
    StepResult,
    execute_steps,
    first_value,
    require,
    resolve_path,
)

logger = logging.getLogger(__name__)


@dataclass
class AksTarget:
    cluster_name: str
    resource_group: str
    subscription: str = ""
    admin: bool = False


def resolve_aks_target(plan: dict[str, Any], params: dict[str, Any], config: Any = None) -> AksTarget:
    """Work out which AKS cluster to configure (plan, then parameters, then config)."""
    section = plan.get("aks") or {}
    get = config.get if config is not None else (lambda key, default=None: default)
    cluster_name = first_value(
        section.get("cluster_name"),
        params.get("aksClusterName"),
        params.get("clusterName"),
    )
    resource_group = first_value(
        section.get("resource_group"),
        params.get("resourceGroupName"),
        get("deploy.resource_group"),
    )
    return AksTarget(
        cluster_name=require(cluster_name, "the AKS cluster name", "Set aks.cluster_name or param aksClusterName."),
        resource_group=require(
            resource_group, "the resource group", "Set aks.resource_group or 'az nucleus config set deploy.resource_group'."
        ),
        subscription=first_value(section.get("subscription"), get("deploy.subscription")),
        admin=bool(section.get("admin", False)),
    )


def _credentials_step(runner: CommandRunner, target: AksTarget) -> Step:
    args = [
        "aks", "get-credentials",
        "--resource-group", target.resource_group,
        "--name", target.cluster_name,
        "--overwrite-existing",
    ]
    if target.admin:
        args.append("--admin")
    if target.subscription:
        args += ["--subscription", target.subscription]
    return ("cluster credentials", lambda: runner.az(args, parse_json=False))


def _namespace_steps(runner: CommandRunner, namespaces: list[Any]) -> list[Step]:
    steps: list[Step] = []
    for entry in namespaces:
        name = entry.get("name") if isinstance(entry, dict) else entry
        name = require(str(name or ""), "a namespace name", "Every namespace entry needs a name.")

        def ensure(name=name):
            # Render client-side then apply so an existing namespace is not an error.
            manifest = runner.run(["kubectl", "create", "namespace", name, "--dry-run=client", "-o", "yaml"])
            return runner.run(["kubectl", "apply", "-f", "-"], input_text=manifest)

        steps.append((f"namespace {name}", ensure))
    return steps


def _repo_steps(runner: CommandRunner, repos: list[dict]) -> list[Step]:
    steps: list[Step] = []
    for repo in repos:
        name = require(str(repo.get("name", "")), "a Helm repo name", "Every helm_repos entry needs a name.")
        url = require(str(repo.get("url", "")), f"the URL of Helm repo '{name}'", "Add a 'url'.")
        steps.append((f"helm repo {name}", lambda n=name, u=url: runner.run(["helm", "repo", "add", n, u, "--force-update"])))
    if repos:
        steps.append(("helm repo update", lambda: runner.run(["helm", "repo", "update"])))
    return steps


def _release_steps(runner: CommandRunner, plan: dict, releases: list[dict]) -> list[Step]:
    steps: list[Step] = []
    for release in releases:
        name = require(str(release.get("name", "")), "a Helm release name", "Every helm_releases entry needs a name.")
        chart = require(str(release.get("chart", "")), f"the chart for release '{name}'", "Add a 'chart'.")
        command = [
            "helm", "upgrade", "--install", name, chart,
            "--namespace", str(release.get("namespace", "default")),
            "--create-namespace",
        ]
        if release.get("version"):
            command += ["--version", str(release["version"])]
        for values_file in release.get("values_files", []) or []:
            command += ["--values", str(resolve_path(plan, values_file))]
        for key, value in (release.get("set") or {}).items():
            command += ["--set", f"{key}={value}"]
        if release.get("wait", True):
            command += ["--wait", "--timeout", str(release.get("timeout", "10m"))]
        steps.append((f"helm release {name}", lambda c=command: runner.run(c)))
    return steps


def _manifest_steps(runner: CommandRunner, plan: dict, manifests: list[Any]) -> list[Step]:
    steps: list[Step] = []
    for entry in manifests:
        if isinstance(entry, dict):
            path, namespace = entry.get("path"), entry.get("namespace")
        else:
            path, namespace = entry, None
        if not path:
            raise CLIError("Every manifests entry needs a path.")
        command = ["kubectl", "apply", "-f", str(resolve_path(plan, path))]
        if namespace:
            command += ["--namespace", str(namespace)]
        steps.append((f"manifest {path}", lambda c=command: runner.run(c)))
    return steps


def plan_aks_steps(plan: dict[str, Any], target: AksTarget, runner: CommandRunner) -> list[Step]:
    section = plan.get("aks") or {}
    return (
        [_credentials_step(runner, target)]
        + _namespace_steps(runner, section.get("namespaces", []))
        + _repo_steps(runner, section.get("helm_repos", []))
        + _release_steps(runner, plan, section.get("helm_releases", []))
        + _manifest_steps(runner, plan, section.get("manifests", []))
    )


def configure_aks(
    plan: dict[str, Any],
    params: dict[str, Any],
    config: Any = None,
    runner: CommandRunner | None = None,
    fail_fast: bool = False,
) -> PostDeployReport:
    """Apply the ``aks`` section of a post-deployment plan.

    Failing to fetch cluster credentials stops the run regardless of
    ``fail_fast``; nothing after it can succeed.
    """
    if not plan.get("aks"):
        raise CLIError("The post-deployment plan has no 'aks' section.")
    runner = runner or CommandRunner()
    target = resolve_aks_target(plan, params, config)
    logger.info("Configuring AKS %s in %s", target.cluster_name, target.resource_group)

    steps = plan_aks_steps(plan, target, runner)
    report = execute_steps(target.cluster_name, steps[:1], fail_fast=True)
    if report.ok:
        rest = execute_steps(target.cluster_name, steps[1:], fail_fast)
        report.steps.extend(rest.steps)
    else:
        report.steps.extend(StepResult(name, "skipped") for name, _ in steps[1:])
    report.commands = [r.to_dict() for r in runner.history]
    return report
