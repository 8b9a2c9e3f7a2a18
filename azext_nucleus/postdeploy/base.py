"""Shared plumbing for post-deployment configuration.

A post-deployment run is a flat list of named steps executed in order.
Each step shells out to a vendor CLI; a failing step is logged as a
warning and recorded, and the run moves on to the next step unless
``fail_fast`` is set.  The report tells the operator exactly which
steps need attention.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml
from knack.util import CLIError

logger = logging.getLogger(__name__)

ARM_ENDPOINT = "https://management.azure.com"


@dataclass
class StepResult:
    """Outcome of a single post-deployment step."""

    name: str
    status: str  # ok | failed | skipped
    error: str = ""

    def to_dict(self) -> dict[str, str]:
        data = {"name": self.name, "status": self.status}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class PostDeployReport:
    """All step results for one target (APIM service, AKS cluster)."""

    target: str
    steps: list[StepResult] = field(default_factory=list)
    commands: list[dict[str, Any]] = field(default_factory=list)

    @property
    def failed(self) -> list[StepResult]:
        return [s for s in self.steps if s.status == "failed"]

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "status": "succeeded" if self.ok else "failed",
            "steps": [s.to_dict() for s in self.steps],
            "commands": self.commands,
        }


Step = tuple[str, Callable[[], Any]]


def execute_steps(target: str, steps: list[Step], fail_fast: bool = False) -> PostDeployReport:
    """Run *steps* sequentially and collect their results."""
    report = PostDeployReport(target)
    for index, (name, action) in enumerate(steps):
        logger.info("[%s] %s", target, name)
        try:
            action()
        except CLIError as exc:
            logger.warning("Step '%s' failed: %s", name, exc)
            report.steps.append(StepResult(name, "failed", str(exc)))
            if fail_fast:
                report.steps.extend(StepResult(n, "skipped") for n, _ in steps[index + 1:])
                break
        else:
            report.steps.append(StepResult(name, "ok"))
    return report


# ------------------------------------------------------------------ #
# Plan file
# ------------------------------------------------------------------ #

_LIST_SECTIONS = {
    "apim": ("apis", "products", "groups", "users"),
    "aks": ("namespaces", "helm_repos", "helm_releases", "manifests"),
}


def load_plan(path: str | Path) -> dict[str, Any]:
    """Load and shape-check a ``postdeploy.yaml`` plan.

    The plan's directory is stored under ``_base_dir`` so relative spec,
    policy, values and manifest paths resolve next to the plan.
    """
    path = Path(path)
    if not path.is_file():
        raise CLIError(f"Post-deployment plan not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise CLIError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise CLIError(f"Post-deployment plan {path} must contain a mapping.")

    for section, lists in _LIST_SECTIONS.items():
        body = data.get(section)
        if body is None:
            continue
        if not isinstance(body, dict):
            raise CLIError(f"'{section}' in {path} must be a mapping.")
        for key in lists:
            value = body.setdefault(key, [])
            if not isinstance(value, list):
                raise CLIError(f"'{section}.{key}' in {path} must be a list.")

    data["_base_dir"] = str(path.parent.resolve())
    return data


def resolve_path(plan: dict[str, Any], relative: str) -> Path:
    """Resolve *relative* against the plan's directory."""
    candidate = Path(relative)
    if candidate.is_absolute():
        return candidate
    return Path(plan.get("_base_dir", ".")) / candidate


def first_value(*candidates: Any) -> str:
    """Return the first non-empty string among *candidates*."""
    for value in candidates:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def require(value: str, what: str, hint: str) -> str:
    if not value:
        raise CLIError(f"Cannot determine {what}. {hint}")
    return value
