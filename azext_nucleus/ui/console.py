"""Rich-based console utilities for styled CLI output.

Provides:
- A semantic colour scheme (success, error, warning, severity levels)
- Status-marked lines, headers and file lists
- Result tables for validation, doctor, post-deployment and scan output
- A spinner for long-running vendor CLI calls
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterable, Iterator, Sequence

from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.theme import Theme

# -------------------------------------------------------------------- #
# Color scheme
# -------------------------------------------------------------------- #

THEME = Theme({
    # Background/secondary text
    "dim": "#888888",
    "muted": "#666666",

    "content": "bright_white",

    # Callouts and highlights
    "success": "bright_green",
    "error": "bright_red",
    "warning": "bright_yellow",
    "info": "bright_cyan",
    "accent": "bright_magenta",

    "border": "#555555",
    "path": "bright_cyan",

    # Scanner severities
    "severity.low": "#888888",
    "severity.medium": "bright_yellow",
    "severity.high": "bright_red",
    "severity.critical": "bright_red bold reverse",

    # Step / check status
    "status.ok": "bright_green",
    "status.failed": "bright_red",
    "status.skipped": "#888888",
})

_STATUS_MARKERS = {
    "ok": "✓",
    "pass": "✓",
    "failed": "✗",
    "fail": "✗",
    "missing": "✗",
    "skipped": "-",
}


class Console:
    """Styled console output used by every ``az nucleus`` command."""

    def __init__(self, rich_console: RichConsole | None = None):
        self._console = rich_console or RichConsole(theme=THEME, highlight=False)

    # ------------------------------------------------------------------ #
    # Basic output
    # ------------------------------------------------------------------ #

    def print(self, message: str = "", style: str | None = None, **kwargs):
        """Print a message with optional styling."""
        self._console.print(message, style=style, **kwargs)

    def print_dim(self, message: str):
        self._console.print(message, style="dim")

    def print_success(self, message: str):
        """Print a success message (green)."""
        self._console.print(f"[success]✓[/success] {escape(message)}")

    def print_error(self, message: str):
        """Print an error message (red)."""
        self._console.print(f"[error]✗[/error] {escape(message)}")

    def print_warning(self, message: str):
        """Print a warning message (yellow)."""
        self._console.print(f"[warning]![/warning] {escape(message)}")

    def print_info(self, message: str):
        """Print an info message (cyan)."""
        self._console.print(f"[info]→[/info] {escape(message)}")

    # ------------------------------------------------------------------ #
    # Structured output
    # ------------------------------------------------------------------ #

    def print_header(self, title: str):
        """Print a section header."""
        self._console.print()
        self._console.print(f"[accent bold]{escape(title)}[/accent bold]")
        self._console.print()

    def print_file_list(self, files: Iterable[str], success: bool = True):
        """Print a list of files with status indicators."""
        style = "success" if success else "error"
        marker = "✓" if success else "✗"
        for f in files:
            self._console.print(f"    [{style}]{marker}[/{style}] [path]{escape(str(f))}[/path]")

    def table(self, columns: Sequence[str], rows: Iterable[Sequence[object]], title: str | None = None):
        """Print *rows* as a bordered table.

        Cells whose text is a known status (``ok``, ``failed``, ``skipped``)
        or severity (``LOW`` .. ``CRITICAL``) are coloured accordingly.
        """
        table = Table(title=title, border_style="border", header_style="accent bold")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(self._style_cell(cell) for cell in row))
        self._console.print(table)

    @staticmethod
    def _style_cell(cell: object) -> str:
        text = "" if cell is None else str(cell)
        lowered = text.lower()
        if lowered in _STATUS_MARKERS:
            style = "status.ok" if _STATUS_MARKERS[lowered] == "✓" else (
                "status.skipped" if lowered == "skipped" else "status.failed"
            )
            return f"[{style}]{_STATUS_MARKERS[lowered]} {escape(text)}[/{style}]"
        if lowered in ("low", "medium", "high", "critical"):
            return f"[severity.{lowered}]{escape(text)}[/severity.{lowered}]"
        return escape(text)

    # ------------------------------------------------------------------ #
    # Progress indicators
    # ------------------------------------------------------------------ #

    @contextmanager
    def spinner(self, message: str) -> Iterator[None]:
        """Show a spinner while an operation is in progress.

        On completion, prints a persistent line with elapsed time.

        Usage:
            with console.spinner("Running what-if..."):
                result = bicep_deployment(...)
        """
        start = time.monotonic()
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=self._console,
            transient=True,
        )
        with progress:
            progress.add_task(message, total=None)
            yield
        elapsed = time.monotonic() - start
        h, rem = divmod(int(elapsed), 3600)
        m, s = divmod(rem, 60)
        self._console.print(f"[success]✓[/success] {escape(message)} completed. ({h}:{m:02d}:{s:02d})")

    # ------------------------------------------------------------------ #
    # Panels and boxes
    # ------------------------------------------------------------------ #

    def panel(
        self,
        content: str,
        title: str | None = None,
        border_style: str = "border",
        padding: tuple[int, int] = (0, 1),
    ):
        """Print content in a bordered panel."""
        self._console.print(Panel(content, title=title, border_style=border_style, padding=padding))

    @property
    def raw(self) -> RichConsole:
        """Access the underlying Rich console for advanced usage."""
        return self._console


# -------------------------------------------------------------------- #
# Module-level singleton
# -------------------------------------------------------------------- #

console = Console()
