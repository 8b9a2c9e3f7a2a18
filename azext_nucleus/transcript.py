"""Per-command transcript log files.

Every ``az nucleus`` command handler is wrapped with ``@transcript`` so the
package's log records (including DEBUG detail the terminal hides) are
mirrored to ``.nucleus/logs/<command>-<timestamp>.log`` for later review.

Transcripts are controlled by the ``logging.transcript`` and
``logging.dir`` keys of ``nucleus.yaml``; without a project file the
defaults apply.  Failing to open the transcript never blocks a command.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Iterator

import yaml

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "azext_nucleus"
DEFAULT_LOG_DIR = ".nucleus/logs"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_SENSITIVE_PARAMS = ("secret", "password", "token", "subscription", "api_key", "connection_string")


def _settings(project_dir: Path) -> tuple[bool, Path]:
    """Return ``(enabled, log_dir)`` from ``nucleus.yaml`` if present."""
    enabled, log_dir = True, DEFAULT_LOG_DIR
    config_path = project_dir / "nucleus.yaml"
    if config_path.exists():
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.debug("Could not read %s for transcript settings: %s", config_path, exc)
            data = {}
        section = data.get("logging") if isinstance(data, dict) else None
        if isinstance(section, dict):
            enabled = bool(section.get("transcript", True))
            log_dir = section.get("dir") or DEFAULT_LOG_DIR
    return enabled, project_dir / log_dir


def transcript_path(command_name: str, log_dir: Path, now: datetime | None = None) -> Path:
    """``<log_dir>/<command-name>-<YYYYmmdd-HHMMSS>.log``"""
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d-%H%M%S")
    slug = "-".join(command_name.split())
    return log_dir / f"{slug}-{stamp}.log"


def _sanitize(params: dict) -> dict:
    from azext_nucleus.config import ProjectConfig

    # "config set" passes the secret as value= with the setting name in key=
    setting = params.get("key")
    secret_value = isinstance(setting, str) and ProjectConfig._is_secret_key(setting)

    clean = {}
    for name, value in params.items():
        sensitive = any(marker in name.lower() for marker in _SENSITIVE_PARAMS)
        if value and (sensitive or (secret_value and name == "value")):
            clean[name] = "***"
        else:
            clean[name] = value
    return clean


@contextmanager
def capture(command_name: str, project_dir: str | Path | None = None) -> Iterator[Path | None]:
    """Attach a ``logging.FileHandler`` to the package logger for the block.

    Yields the transcript path, or ``None`` when transcripts are disabled
    or the file could not be opened.
    """
    project_dir = Path(project_dir or Path.cwd())
    enabled, log_dir = _settings(project_dir)
    if not enabled:
        yield None
        return

    path = transcript_path(command_name, log_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        logger.warning("Transcript disabled: cannot write %s (%s)", path, exc)
        yield None
        return

    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    previous_level = package_logger.level
    package_logger.addHandler(handler)
    if package_logger.getEffectiveLevel() > logging.DEBUG:
        package_logger.setLevel(logging.DEBUG)
    try:
        yield path
    finally:
        package_logger.removeHandler(handler)
        package_logger.setLevel(previous_level)
        handler.close()


def transcript(command_name: str):
    """Decorator that records a command run to a transcript file.

    The decorated function must accept ``cmd`` as its first positional
    argument (standard Azure CLI convention).

    Usage::

        @transcript("nucleus deploy")
        def nucleus_deploy(cmd, action="what-if", ...):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(cmd, *args, **kwargs):
            with capture(command_name) as path:
                logger.info("=== %s started (%s)", command_name, _sanitize(kwargs))
                try:
                    result = func(cmd, *args, **kwargs)
                except Exception as exc:
                    logger.error("=== %s failed: %s: %s", command_name, type(exc).__name__, exc)
                    raise
                logger.info("=== %s finished", command_name)
                if path is not None:
                    logger.debug("Transcript written to %s", path)
                return result

        return wrapper

    return decorator
