"""Rich-based console output for the Nucleus extension."""

from azext_nucleus.ui.console import Console, console

__all__ = [
    "Console",
    "console",
]
