#!/usr/bin/env python
"""Install git hooks for a Nucleus infrastructure repository.

Usage:
    python scripts/install-hooks.py [--repo PATH]

Writes a pre-commit hook into .git/hooks/ so that static validation runs
automatically before every commit.  The hook runs:
  1. The forbidden-reference scan over staged scripts
  2. Template and parameter-file validation against the rule sets
"""

import argparse
import os
import shutil
import stat
import sys
from pathlib import Path

HOOK = """#!/bin/sh
# Installed by az-nucleus scripts/install-hooks.py
{python} -m azext_nucleus.validation.references --hook || exit 1
{python} -m azext_nucleus.validation.templates --root . || exit 1
"""


def main(argv=None) -> int:
    """Install the pre-commit hook."""
    parser = argparse.ArgumentParser(description="Install the Nucleus pre-commit hook.")
    parser.add_argument("--repo", default=".", help="Repository root (default: current directory).")
    args = parser.parse_args(argv)

    repo_root = Path(args.repo).resolve()
    hooks_dir = repo_root / ".git" / "hooks"

    if not hooks_dir.exists():
        print(f"Error: {hooks_dir} not found. Is this a git repository?")
        return 1

    dest = hooks_dir / "pre-commit"

    # Back up existing hook
    if dest.exists():
        backup = dest.with_suffix(".bak")
        shutil.copy2(dest, backup)
        print(f"Backed up existing hook to {backup}")

    dest.write_text(HOOK.format(python=Path(sys.executable).as_posix()), encoding="utf-8")

    # Make executable on Unix
    if os.name != "nt":
        dest.chmod(dest.stat().st_mode | stat.S_IEXEC)

    print(f"Installed pre-commit hook to {dest}")
    print("Reference and template validation will run before every commit.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
