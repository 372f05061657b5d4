"""Supervisor deployment scenario.

Provisions a single-node vSphere Supervisor from scratch and bootstraps
Argo CD on it. Six stages, each depending on the previous one:

1. config loader (CLI, before any phase)
2. cluster: create cluster, add host, DRS/HA
3. network: distributed switch and four port groups
4. storage: VMFS datastore and edge storage policy
5. supervisor: enable, wait, install Supervisor Services
6. Argo CD: namespace, login, operator and instance manifests

Every phase skips objects that already exist, so a failed run can be
repeated after fixing the cause.
"""

from actions import (
    AddHostAction,
    ApplyManifestAction,
    ConfigureClusterAction,
    CreateClusterAction,
    CreateDatastoreAction,
    CreateDistributedSwitchAction,
    CreateNamespaceAction,
    CreatePortGroupsAction,
    CreateStoragePolicyAction,
    EnableSupervisorAction,
    InstallSupervisorServicesAction,
    SupervisorLoginAction,
    WaitForArgoCDAction,
    WaitForSupervisorAction,
)
from config import DeploymentConfig
from scenarios import register_scenario


def argocd_phases(config: DeploymentConfig) -> list[tuple[str, object, str]]:
    """Stage 6 phases, shared with the argocd-bootstrap scenario."""
    argocd = config.supervisor.argocd
    return [
        ('create_namespace', CreateNamespaceAction(name='create-namespace'),
         f'Create vSphere Namespace {argocd.namespace}'),
        ('supervisor_login', SupervisorLoginAction(name='supervisor-login'),
         'Create vcf/kubectl context for the Supervisor'),
        ('apply_argocd_operator', ApplyManifestAction(name='apply-argocd-operator', manifest='operator_manifest'),
         'Apply Argo CD operator YAML'),
        ('apply_argocd_instance', ApplyManifestAction(name='apply-argocd-instance', manifest='instance_manifest'),
         'Apply Argo CD instance manifest'),
        ('wait_argocd', WaitForArgoCDAction(name='wait-argocd'),
         f'Wait for ArgoCD {argocd.instance_name} to become Available'),
    ]


@register_scenario
class SupervisorDeploy:
    """Provision cluster, network, storage, Supervisor and Argo CD."""

    name = 'supervisor-deploy'
    description = 'Provision a single-node Supervisor and bootstrap Argo CD'
    requires_kube_tools = True
    expected_runtime = 5400  # ~90 min, dominated by Supervisor enablement

    def get_phases(self, config: DeploymentConfig) -> list[tuple[str, object, str]]:
        """Return phases in stage order."""
        infra = config.infrastructure
        return [
            # Stage 2: cluster
            ('create_cluster', CreateClusterAction(name='create-cluster'),
             f'Create cluster {infra.cluster.name}'),
            ('add_host', AddHostAction(name='add-host'),
             f'Add host {infra.host.name}'),
            ('configure_cluster', ConfigureClusterAction(name='configure-cluster'),
             'Configure DRS and HA'),
            # Stage 3: network
            ('create_switch', CreateDistributedSwitchAction(name='create-switch'),
             f'Create distributed switch {infra.network.switch_name}'),
            ('create_port_groups', CreatePortGroupsAction(name='create-port-groups'),
             'Create management, workload and load balancer port groups'),
            # Stage 4: storage
            ('create_datastore', CreateDatastoreAction(name='create-datastore'),
             f'Create VMFS datastore {infra.storage.datastore}'),
            ('create_storage_policy', CreateStoragePolicyAction(name='create-storage-policy'),
             f'Create storage policy {infra.storage.policy_name}'),
            # Stage 5: supervisor
            ('enable_supervisor', EnableSupervisorAction(name='enable-supervisor'),
             f'Enable Supervisor {config.supervisor.name}'),
            ('wait_supervisor', WaitForSupervisorAction(name='wait-supervisor'),
             'Wait for Supervisor control plane'),
            ('install_services', InstallSupervisorServicesAction(name='install-services'),
             'Install Supervisor Services'),
            # Stage 6: Argo CD
            *argocd_phases(config),
        ]
