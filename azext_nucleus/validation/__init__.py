"""Static validation of templates, parameter files and deployment scripts."""

from azext_nucleus.validation.powershell import AnalysisReport, analyze_script, analyze_template
from azext_nucleus.validation.references import ReferenceHit, scan_file, scan_scripts
from azext_nucleus.validation.templates import (
    RuleSet,
    ValidationFinding,
    load_rulesets,
    validate_project,
)

__all__ = [
    "AnalysisReport",
    "ReferenceHit",
    "RuleSet",
    "ValidationFinding",
    "analyze_script",
    "analyze_template",
    "load_rulesets",
    "scan_file",
    "scan_scripts",
    "validate_project",
]
