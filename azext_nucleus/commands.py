"""Command table registration for az nucleus."""


def load_command_table(self, _):
    """Register all nucleus commands."""

    with self.command_group("nucleus", is_preview=True) as g:
        g.custom_command("init", "nucleus_init")
        g.custom_command("doctor", "nucleus_doctor")
        g.custom_command("deploy", "nucleus_deploy")
        g.custom_command("scan", "nucleus_scan")

    with self.command_group("nucleus config", is_preview=True) as g:
        g.custom_command("show", "nucleus_config_show")
        g.custom_command("get", "nucleus_config_get")
        g.custom_command("set", "nucleus_config_set")

    with self.command_group("nucleus params", is_preview=True) as g:
        g.custom_command("show", "nucleus_params_show")

    with self.command_group("nucleus validate", is_preview=True) as g:
        g.custom_command("templates", "nucleus_validate_templates")
        g.custom_command("references", "nucleus_validate_references")
        g.custom_command("arm", "nucleus_validate_arm")
        g.custom_command("scripts", "nucleus_validate_scripts")

    with self.command_group("nucleus env", is_preview=True) as g:
        g.custom_command("setup", "nucleus_env_setup")

    with self.command_group("nucleus postdeploy", is_preview=True) as g:
        g.custom_command("apim", "nucleus_postdeploy_apim")
        g.custom_command("aks", "nucleus_postdeploy_aks")
