"""ARM JSON parameter files and parameter-file discovery.

Deployments accept either a ``.bicepparam`` file or a classic ARM
``*.parameters.json`` file.  ``load_parameters`` hides the difference and
returns a plain ``{name: value}`` mapping for both.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from knack.util import CLIError

from azext_nucleus.parsers.bicepparam import BicepExpression, load_bicepparam

logger = logging.getLogger(__name__)


def load_arm_parameters(path: str | Path) -> dict[str, Any]:
    """Read an ARM deployment parameters file.

    Accepts the canonical ``{"parameters": {"x": {"value": ...}}}`` layout
    as well as a flat ``{"x": ...}`` mapping.  Key Vault ``reference``
    entries cannot be resolved locally and come back as ``BicepExpression``.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as exc:
        raise CLIError(f"Invalid JSON in parameter file {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise CLIError(f"Cannot read parameter file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise CLIError(f"Parameter file {path} must contain a JSON object.")

    params = data.get("parameters", data)
    if not isinstance(params, dict):
        raise CLIError(f"'parameters' in {path} must be an object.")

    values: dict[str, Any] = {}
    for name, entry in params.items():
        if name.startswith("$"):
            continue
        if isinstance(entry, dict) and "value" in entry:
            values[name] = entry["value"]
        elif isinstance(entry, dict) and "reference" in entry:
            ref = entry["reference"]
            secret = ref.get("secretName", "") if isinstance(ref, dict) else ""
            values[name] = BicepExpression(f"keyVaultReference('{secret}')")
        else:
            values[name] = entry
    return values


def load_parameters(path: str | Path, env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Load a parameter file of either supported format."""
    path = Path(path)
    if path.suffix == ".bicepparam":
        return dict(load_bicepparam(path, env).params)
    if path.suffix == ".json":
        return load_arm_parameters(path)
    raise CLIError(f"Unsupported parameter file type: {path.name} (expected .bicepparam or .json)")


def find_parameter_file(
    infra_dir: Path,
    template_file: Path,
    environment: str | None = None,
) -> Path | None:
    """Discover the parameter file matching *template_file*.

    Search order:
    1. ``config/**/parameters.<env>.bicepparam`` (Nucleus layout)
    2. ``<template_stem>.<env>.bicepparam``
    3. ``<template_stem>.parameters.json``
    4. ``<template_stem>.bicepparam``
    5. ``parameters.json``
    """
    stem = template_file.stem
    if environment:
        config_dir = infra_dir / "config"
        if config_dir.is_dir():
            matches = sorted(config_dir.rglob(f"parameters.{environment}.bicepparam"))
            if matches:
                if len(matches) > 1:
                    logger.warning(
                        "Multiple parameter files for '%s'; using %s", environment, matches[0]
                    )
                return matches[0]
        candidate = infra_dir / f"{stem}.{environment}.bicepparam"
        if candidate.exists():
            return candidate

    for candidate in (
        infra_dir / f"{stem}.parameters.json",
        infra_dir / f"{stem}.bicepparam",
        infra_dir / "parameters.json",
    ):
        if candidate.exists():
            return candidate
    return None
