"""Post-deployment configuration of APIM and AKS."""

from azext_nucleus.postdeploy.aks import AksTarget, configure_aks, resolve_aks_target
from azext_nucleus.postdeploy.apim import ApimTarget, configure_apim, resolve_apim_target
from azext_nucleus.postdeploy.base import PostDeployReport, StepResult, execute_steps, load_plan

TARGETS = {
    "apim": configure_apim,
    "aks": configure_aks,
}

__all__ = [
    "AksTarget",
    "ApimTarget",
    "PostDeployReport",
    "StepResult",
    "TARGETS",
    "configure_aks",
    "configure_apim",
    "execute_steps",
    "load_plan",
    "resolve_aks_target",
    "resolve_apim_target",
]
