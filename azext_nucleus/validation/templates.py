"""Validate Bicep templates and parameter files against rule sets.

Rules are loaded from ``*.rules.yaml`` files and evaluated against the
``.bicepparam`` files of every environment.  **No hard-coded checks**:
adding a rule to a rule file automatically enforces it.

Supported rule directives:
    target                - ``params`` (default) or ``template``
    when_environment      - only evaluate for these environments
    require_using         - the ``using`` path a parameter file must declare
    require_param         - parameters that must be assigned
    require_param_value   - parameter values that must match exactly
    require_param_pattern - parameter values that must match a regex
    severity              - error | warning
    error_message         - templated message with {param} {env} {file} etc.

``{env}`` placeholders are substituted in paths, values and patterns.

Usage:
    # Validate the project in the current directory with built-in rules
    python -m azext_nucleus.validation.templates

    # Validate another project root with custom rule directories
    python -m azext_nucleus.validation.templates --root ./APIM --rules ./rules

    # Only the prod environment, warnings fail the run
    python -m azext_nucleus.validation.templates --env prod --strict

Exit codes:
    0 - all checks passed
    1 - violations found
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from knack.util import CLIError

from azext_nucleus.parsers.bicepparam import (
    BicepExpression,
    load_bicepparam,
    parse_bicep_defaults,
)

logger = logging.getLogger(__name__)

BUILTIN_RULES_DIR = Path(__file__).resolve().parent / "rules"

DEFAULT_ENVIRONMENTS = ("dev", "test", "prod")


# ------------------------------------------------------------------ #
# Data model
# ------------------------------------------------------------------ #


@dataclass
class ValidationFinding:
    """A problem found in a template or parameter file."""

    file: str
    rule_id: str
    severity: str  # error | warning
    message: str

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.file}: {self.rule_id} - {self.message}"

    def to_dict(self) -> dict[str, str]:
        return {
            "file": self.file,
            "rule_id": self.rule_id,
            "severity": self.severity,
            "message": self.message,
        }


@dataclass
class RuleSet:
    """Rules for one template and its per-environment parameter files."""

    name: str
    template: str
    parameter_files: str
    environments: list[str] = field(default_factory=lambda: list(DEFAULT_ENVIRONMENTS))
    rules: list[dict[str, Any]] = field(default_factory=list)
    source: str = ""


# ------------------------------------------------------------------ #
# Rule loading
# ------------------------------------------------------------------ #


def _as_list(value: Any) -> list[Any]:
    """Normalise a scalar-or-list field into a list."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [value]
    return []


def load_ruleset(path: Path) -> RuleSet:
    """Parse a single ``*.rules.yaml`` file."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise CLIError(f"Invalid YAML in rule file {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise CLIError(f"Cannot read rule file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise CLIError(f"Rule file {path} must contain a mapping.")

    for key in ("template", "parameter_files"):
        if not data.get(key):
            raise CLIError(f"Rule file {path} is missing '{key}'.")

    rules = [r for r in data.get("rules", []) if isinstance(r, dict)]
    for rule in rules:
        if not rule.get("id"):
            raise CLIError(f"Rule file {path} has a rule without an 'id'.")
        for key in ("require_param_value", "require_param_pattern"):
            if rule.get(key) is not None and not isinstance(rule[key], dict):
                raise CLIError(f"Rule '{rule['id']}' in {path}: '{key}' must be a mapping of parameter names.")
        for name, pattern in (rule.get("require_param_pattern") or {}).items():
            try:
                re.compile(str(pattern))
            except re.error as exc:
                raise CLIError(f"Rule '{rule['id']}' in {path}: invalid pattern for '{name}': {exc}") from exc

    return RuleSet(
        name=str(data.get("ruleset", path.stem.replace(".rules", ""))),
        template=str(data["template"]),
        parameter_files=str(data["parameter_files"]),
        environments=[str(e) for e in _as_list(data.get("environments"))] or list(DEFAULT_ENVIRONMENTS),
        rules=rules,
        source=str(path),
    )


def load_rulesets(rule_dirs: list[Path] | None = None) -> list[RuleSet]:
    """Load every ``*.rules.yaml`` under the given directories."""
    rulesets: list[RuleSet] = []
    for directory in rule_dirs or [BUILTIN_RULES_DIR]:
        if not directory.is_dir():
            logger.warning("Rule directory not found: %s", directory)
            continue
        for rule_file in sorted(directory.rglob("*.rules.yaml")):
            rulesets.append(load_ruleset(rule_file))
    return rulesets


# ------------------------------------------------------------------ #
# Evaluation
# ------------------------------------------------------------------ #


def _substitute(value: Any, env: str) -> Any:
    if isinstance(value, str):
        return value.replace("{env}", env)
    return value


def _format_message(template: str, **kwargs: Any) -> str:
    try:
        return template.format(**kwargs)
    except (KeyError, IndexError):
        return template


def _values_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, BicepExpression):
        return False
    if isinstance(expected, bool) or isinstance(actual, bool):
        return actual is expected or str(actual).lower() == str(expected).lower()
    return str(actual) == str(expected)


def _evaluate_rule(
    rule: dict[str, Any],
    values: dict[str, Any],
    env: str,
    filename: str,
    using: str | None,
) -> list[ValidationFinding]:
    """Evaluate one rule against a set of parameter values."""
    findings: list[ValidationFinding] = []
    rule_id = str(rule["id"])
    severity = "warning" if rule.get("severity") == "warning" else "error"
    message_tpl = rule.get("error_message", "")

    def fail(default_message: str, **kwargs: Any) -> None:
        message = _format_message(message_tpl, env=env, file=filename, **kwargs) if message_tpl else default_message
        findings.append(ValidationFinding(filename, rule_id, severity, message))

    required_using = rule.get("require_using")
    if required_using is not None and using != _substitute(required_using, env):
        fail(
            f"expected \"using '{required_using}'\", found {using!r}",
            param="using",
            expected=required_using,
            actual=using,
        )

    for name in _as_list(rule.get("require_param")):
        if name not in values:
            fail(f"missing parameter '{name}'", param=name)

    expected_values = rule.get("require_param_value") or {}
    for name, expected in expected_values.items():
        expected = _substitute(expected, env)
        if name not in values:
            fail(f"missing parameter '{name}' (expected {expected!r})", param=name, expected=expected, actual=None)
        elif not _values_equal(values[name], expected):
            fail(
                f"parameter '{name}' is {values[name]!r}, expected {expected!r}",
                param=name,
                expected=expected,
                actual=values[name],
            )

    patterns = rule.get("require_param_pattern") or {}
    for name, pattern in patterns.items():
        pattern = _substitute(pattern, env)
        actual = values.get(name)
        if name not in values:
            fail(f"missing parameter '{name}' (must match {pattern})", param=name, expected=pattern, actual=None)
        elif isinstance(actual, BicepExpression) or not re.search(pattern, str(actual)):
            fail(
                f"parameter '{name}' value {actual!s} does not match {pattern}",
                param=name,
                expected=pattern,
                actual=actual,
            )

    return findings


def _applies(rule: dict[str, Any], env: str | None) -> bool:
    when = _as_list(rule.get("when_environment"))
    if not when:
        return True
    return env is not None and env in when


def validate_ruleset(
    root: Path,
    ruleset: RuleSet,
    environments: list[str] | None = None,
) -> list[ValidationFinding]:
    """Validate one rule set against the project rooted at *root*."""
    findings: list[ValidationFinding] = []
    template_path = root / ruleset.template

    if not template_path.is_file():
        findings.append(
            ValidationFinding(ruleset.template, "TEMPLATE", "error", f"{ruleset.template} file not found")
        )
        return findings

    template_rules = [r for r in ruleset.rules if r.get("target") == "template"]
    param_rules = [r for r in ruleset.rules if r.get("target", "params") == "params"]

    if template_rules:
        try:
            text = template_path.read_text(encoding="utf-8-sig")
            defaults = parse_bicep_defaults(text, str(template_path))
        except (OSError, UnicodeDecodeError) as exc:
            findings.append(ValidationFinding(ruleset.template, "PARSE", "error", f"Cannot read template: {exc}"))
            defaults = None
        except CLIError as exc:
            findings.append(ValidationFinding(ruleset.template, "PARSE", "error", str(exc)))
            defaults = None
        if defaults is not None:
            for rule in template_rules:
                findings.extend(_evaluate_rule(rule, defaults, "", ruleset.template, None))

    envs = [e for e in ruleset.environments if not environments or e in environments]
    for env in envs:
        rel = ruleset.parameter_files.replace("{env}", env)
        param_path = root / rel
        if not param_path.is_file():
            findings.append(ValidationFinding(rel, "PARAMFILE", "error", f"{rel} not found"))
            continue
        try:
            parsed = load_bicepparam(param_path, env={})
        except CLIError as exc:
            findings.append(ValidationFinding(rel, "PARSE", "error", str(exc)))
            continue
        for rule in param_rules:
            if _applies(rule, env):
                findings.extend(_evaluate_rule(rule, parsed.params, env, rel, parsed.using))

    logger.info("Rule set '%s': %d finding(s)", ruleset.name, len(findings))
    return findings


def validate_project(
    root: Path,
    rulesets: list[RuleSet] | None = None,
    environments: list[str] | None = None,
) -> list[ValidationFinding]:
    """Validate all rule sets against the project rooted at *root*."""
    findings: list[ValidationFinding] = []
    for ruleset in rulesets if rulesets is not None else load_rulesets():
        findings.extend(validate_ruleset(root, ruleset, environments))
    return findings


def summarize(findings: list[ValidationFinding], strict: bool = False) -> tuple[int, int, bool]:
    """Return ``(errors, warnings, passed)``."""
    errors = sum(1 for f in findings if f.severity == "error")
    warnings = sum(1 for f in findings if f.severity == "warning")
    passed = errors == 0 and not (strict and warnings)
    return errors, warnings, passed


# ------------------------------------------------------------------ #
# CLI
# ------------------------------------------------------------------ #


def main(argv: list[str] | None = None) -> int:
    """Entry point for the template validator."""
    parser = argparse.ArgumentParser(description="Validate Bicep templates and parameter files against rule sets.")
    parser.add_argument("--root", default=".", help="Project root containing the templates.")
    parser.add_argument(
        "--rules",
        action="append",
        default=None,
        help="Directory of *.rules.yaml files (repeatable). Defaults to the built-in rules.",
    )
    parser.add_argument(
        "--env",
        action="append",
        default=None,
        help="Only validate these environments (repeatable).",
    )
    parser.add_argument("--strict", action="store_true", help="Treat warnings as errors.")

    args = parser.parse_args(argv)

    root = Path(args.root)
    if not root.is_dir():
        sys.stderr.write(f"Error: '{args.root}' is not a directory\n")
        return 1

    try:
        rulesets = load_rulesets([Path(d) for d in args.rules] if args.rules else None)
        sys.stdout.write(f"Validating {len(rulesets)} rule set(s) in {root}...\n")
        findings = validate_project(root, rulesets, args.env)
    except CLIError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return 1

    if not findings:
        sys.stdout.write("All templates and parameter files passed validation.\n")
        return 0

    for finding in findings:
        sys.stdout.write(f"{finding}\n")

    errors, warnings, passed = summarize(findings, args.strict)
    sys.stdout.write(f"\n{errors} error(s), {warnings} warning(s)\n")
    return 0 if passed else 1


if __name__ == "__main__":
    sys.exit(main())
