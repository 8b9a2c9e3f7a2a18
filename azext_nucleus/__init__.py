"""Azure CLI Extension: az nucleus (Azure IaC validation, deployment and post-deployment)."""

try:
    from azure.cli.core import AzCommandsLoader
except ImportError:
    # Azure CLI not installed; submodules (e.g. the template validator)
    # can still be imported standalone without the full CLI runtime.
    AzCommandsLoader = None  # type: ignore[assignment,misc]

if AzCommandsLoader is not None:
    from azext_nucleus._help import helps  # type: ignore[attr-defined]  # noqa: F401

    class NucleusCommandsLoader(AzCommandsLoader):
        """Command loader for az nucleus extension."""

        def __init__(self, cli_ctx=None):
            from azure.cli.core.commands import CliCommandType

            nucleus_custom = CliCommandType(operations_tmpl="azext_nucleus.custom#{}")
            super().__init__(cli_ctx=cli_ctx, custom_command_type=nucleus_custom)

        def load_command_table(self, args):
            from azext_nucleus.commands import load_command_table

            load_command_table(self, args)
            return self.command_table

        def load_arguments(self, command):
            from azext_nucleus._params import load_arguments

            load_arguments(self, command)

    COMMAND_LOADER_CLS = NucleusCommandsLoader
