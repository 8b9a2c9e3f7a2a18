"""Deployment execution: vendor CLI runner, Azure account helpers, Bicep/Terraform."""

from azext_nucleus.deploy.runner import CommandRunner, ToolCommandError, az_path, mask_command

__all__ = [
    "CommandRunner",
    "ToolCommandError",
    "az_path",
    "mask_command",
]
