"""Synchronous execution of vendor CLIs (az, kubectl, helm, terraform).

Every external tool is run to completion before the next one starts.  A
``CommandRunner`` records each invocation so post-deployment reports and
``--dry-run`` previews can show exactly what was (or would be) executed.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any

from knack.util import CLIError

logger = logging.getLogger(__name__)

# Flags whose following argument must never be logged.
_SECRET_FLAGS = frozenset({"-p", "--password", "--client-secret", "--secret", "--sas-token"})


class ToolCommandError(CLIError):
    """A vendor CLI exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "(no error output)"
        super().__init__(f"Command failed ({returncode}): {mask_command(command)}\n{detail}")


def mask_command(command: list[str]) -> str:
    """Render *command* for logs with secret arguments replaced by ``***``."""
    rendered: list[str] = []
    hide_next = False
    for part in command:
        if hide_next:
            rendered.append("***")
            hide_next = False
            continue
        flag, eq, _ = part.partition("=")
        if eq and flag in _SECRET_FLAGS:
            rendered.append(f"{flag}=***")
            continue
        rendered.append(part)
        if part in _SECRET_FLAGS:
            hide_next = True
    return " ".join(rendered)


def find_az() -> str:
    """Resolve the ``az`` executable.

    ``shutil.which`` first, then the ``bin/`` directory next to the running
    interpreter (where the Azure CLI installs its entry point), then the
    bare name.
    """
    found = shutil.which("az")
    if found:
        return found

    bin_dir = os.path.dirname(sys.executable)
    for candidate in (os.path.join(bin_dir, "az"), os.path.join(bin_dir, "az.cmd")):
        if os.path.isfile(candidate):
            return candidate

    return "az"


_AZ: str | None = None


def az_path() -> str:
    """Return the cached az CLI path."""
    global _AZ
    if _AZ is None:
        _AZ = find_az()
    return _AZ


@dataclass
class CommandRecord:
    """One executed (or previewed) command."""

    command: list[str]
    returncode: int | None = None
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": mask_command(self.command),
            "returncode": self.returncode,
            "dry_run": self.dry_run,
        }


@dataclass
class CommandRunner:
    """Run external commands one at a time and keep a history.

    ``dry_run`` records commands without executing them; JSON calls then
    return ``None``.
    """

    dry_run: bool = False
    env: dict[str, str] | None = None
    cwd: str | None = None
    timeout: int | None = None
    history: list[CommandRecord] = field(default_factory=list)

    def run(self, command: list[str], *, check: bool = True, input_text: str | None = None) -> str:
        """Execute *command* and return its stdout.

        Raises ``ToolCommandError`` on a non-zero exit when *check* is set
        and ``CLIError`` when the executable is missing.
        """
        record = CommandRecord(list(command), dry_run=self.dry_run)
        self.history.append(record)

        if self.dry_run:
            logger.info("[dry-run] %s", mask_command(command))
            return ""

        logger.info("Running: %s", mask_command(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=False,
                cwd=self.cwd,
                env=self.env,
                input=input_text,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            record.returncode = 127
            raise CLIError(f"'{command[0]}' not found on PATH.") from exc
        except subprocess.TimeoutExpired as exc:
            record.returncode = -1
            raise CLIError(f"Timed out after {self.timeout}s: {mask_command(command)}") from exc

        record.returncode = result.returncode
        if result.returncode != 0:
            logger.debug("stderr: %s", result.stderr.strip())
            if check:
                raise ToolCommandError(list(command), result.returncode, result.stderr or result.stdout)
        return result.stdout

    def run_json(self, command: list[str], *, check: bool = True) -> Any:
        """Execute *command* and parse stdout as JSON (``None`` when empty)."""
        stdout = self.run(command, check=check)
        if not stdout.strip():
            return None
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise CLIError(f"Unexpected non-JSON output from {command[0]}: {exc}") from exc

    def az(self, args: list[str], *, parse_json: bool = True, check: bool = True) -> Any:
        """Run an ``az`` subcommand, requesting JSON output when parsing."""
        command = [az_path()] + list(args)
        if parse_json:
            if "-o" not in args and "--output" not in args:
                command += ["-o", "json"]
            return self.run_json(command, check=check)
        return self.run(command, check=check)
