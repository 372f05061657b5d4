"""Argo CD bootstrap scenario.

Re-runs only the Argo CD stage against a Supervisor that is already
running, e.g. after supervisor-deploy failed while applying manifests.
"""

from actions import LookupSupervisorAction
from config import DeploymentConfig
from scenarios import register_scenario
from scenarios.supervisor_deploy import argocd_phases


@register_scenario
class ArgoCDBootstrap:
    """Bootstrap Argo CD on an existing Supervisor."""

    name = 'argocd-bootstrap'
    description = 'Bootstrap Argo CD on an existing Supervisor'
    requires_kube_tools = True
    expected_runtime = 900  # ~15 min

    def get_phases(self, config: DeploymentConfig) -> list[tuple[str, object, str]]:
        """Return lookup phase followed by the Argo CD phases."""
        return [
            ('lookup_supervisor', LookupSupervisorAction(name='lookup-supervisor'),
             f'Find running Supervisor {config.supervisor.name}'),
            *argocd_phases(config),
        ]
