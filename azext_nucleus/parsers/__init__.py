"""Parsers for Bicep parameter files and ARM parameter files."""

from azext_nucleus.parsers.arm_params import (
    find_parameter_file,
    load_arm_parameters,
    load_parameters,
)
from azext_nucleus.parsers.bicepparam import (
    BicepExpression,
    BicepParamError,
    BicepParamFile,
    load_bicepparam,
    parse_bicep_defaults,
    parse_bicepparam,
    to_plain,
)

__all__ = [
    "BicepExpression",
    "BicepParamError",
    "BicepParamFile",
    "find_parameter_file",
    "load_arm_parameters",
    "load_bicepparam",
    "load_parameters",
    "parse_bicep_defaults",
    "parse_bicepparam",
    "to_plain",
]
