#!/usr/bin/env python
"""Scan deployment scripts for forbidden references.

Scripts copied from samples tend to keep placeholder tenant names
(``contoso``) that must never reach a customer environment.  The scan is
case-insensitive and reports every matching line.

Usage:
    # Scan ./scripts/*.ps1 for "contoso"
    python -m azext_nucleus.validation.references

    # Other terms and file patterns
    python -m azext_nucleus.validation.references --term contoso --term fabrikam --pattern "*.sh"

    # As a pre-commit hook (scans staged files only)
    python -m azext_nucleus.validation.references --hook

Exit codes:
    0 - no references found
    1 - references found
"""

from __future__ import annotations

import argparse
import fnmatch
import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TERMS = ("contoso",)
DEFAULT_PATTERNS = ("*.ps1",)


@dataclass
class ReferenceHit:
    """A line containing a forbidden term."""

    file: str
    line: int
    term: str
    text: str

    def __str__(self) -> str:
        return f"{self.file}:{self.line}: '{self.term}' - {self.text}"


def scan_file(path: Path, terms: tuple[str, ...] | list[str] = DEFAULT_TERMS) -> list[ReferenceHit]:
    """Return every line of *path* that contains one of *terms*."""
    hits: list[ReferenceHit] = []
    lowered = [t.lower() for t in terms if t]
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return hits

    for lineno, line in enumerate(content.splitlines(), start=1):
        low = line.lower()
        for term in lowered:
            if term in low:
                hits.append(ReferenceHit(str(path), lineno, term, line.strip()))
    return hits


def find_scripts(root: Path, patterns: tuple[str, ...] | list[str] = DEFAULT_PATTERNS) -> list[Path]:
    """Find script files under *root* matching any of *patterns*."""
    found: set[Path] = set()
    for pattern in patterns:
        found.update(p for p in root.rglob(pattern) if p.is_file())
    return sorted(found)


def scan_scripts(
    root: Path,
    terms: tuple[str, ...] | list[str] = DEFAULT_TERMS,
    patterns: tuple[str, ...] | list[str] = DEFAULT_PATTERNS,
) -> dict[str, list[ReferenceHit]]:
    """Scan every matching script under *root*.

    Returns ``{file: hits}`` including files with no hits, so callers can
    report clean files too.
    """
    results: dict[str, list[ReferenceHit]] = {}
    for script in find_scripts(root, patterns):
        results[str(script)] = scan_file(script, terms)
    return results


def _get_staged_files(patterns: tuple[str, ...] | list[str]) -> list[Path]:
    """Return staged files from the git index matching *patterns*."""
    try:
        result = subprocess.run(
            ["git", "diff", "--cached", "--name-only", "--diff-filter=ACM"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return []

    return [
        Path(f)
        for f in result.stdout.strip().splitlines()
        if any(fnmatch.fnmatch(Path(f).name, p) for p in patterns)
    ]


def main(argv: list[str] | None = None) -> int:
    """Entry point for the reference scanner."""
    parser = argparse.ArgumentParser(description="Scan scripts for forbidden references.")
    parser.add_argument("--root", default="scripts", help="Directory to scan (default: ./scripts).")
    parser.add_argument("--term", action="append", default=None, help="Forbidden term (repeatable).")
    parser.add_argument("--pattern", action="append", default=None, help="File glob (repeatable).")
    parser.add_argument("--hook", action="store_true", help="Pre-commit hook mode: scan staged files.")

    args = parser.parse_args(argv)
    terms = args.term or list(DEFAULT_TERMS)
    patterns = args.pattern or list(DEFAULT_PATTERNS)

    if args.hook:
        results = {str(p): scan_file(p, terms) for p in _get_staged_files(patterns)}
    else:
        root = Path(args.root)
        if not root.is_dir():
            sys.stderr.write(f"Error: '{args.root}' is not a directory\n")
            return 1
        results = scan_scripts(root, terms, patterns)

    total = 0
    for file, hits in results.items():
        if hits:
            sys.stdout.write(f"✗ Found {len(hits)} reference(s) in {file}\n")
            for hit in hits:
                sys.stdout.write(f"    {hit.line}: {hit.text}\n")
        else:
            sys.stdout.write(f"✓ No references found in {file}\n")
        total += len(hits)

    sys.stdout.write(f"\nChecked {len(results)} file(s), {total} reference(s) found.\n")
    return 1 if total else 0


if __name__ == "__main__":
    sys.exit(main())
