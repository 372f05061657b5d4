"""vCenter, Supervisor and Argo CD deployment actions."""

from actions.cluster import CreateClusterAction, AddHostAction, ConfigureClusterAction
from actions.network import CreateDistributedSwitchAction, CreatePortGroupsAction
from actions.storage import CreateDatastoreAction, CreateStoragePolicyAction
from actions.supervisor import (
    EnableSupervisorAction,
    WaitForSupervisorAction,
    InstallSupervisorServicesAction,
    LookupSupervisorAction,
)
from actions.argocd import (
    CreateNamespaceAction,
    SupervisorLoginAction,
    ApplyManifestAction,
    WaitForArgoCDAction,
)

__all__ = [
    'CreateClusterAction',
    'AddHostAction',
    'ConfigureClusterAction',
    'CreateDistributedSwitchAction',
    'CreatePortGroupsAction',
    'CreateDatastoreAction',
    'CreateStoragePolicyAction',
    'EnableSupervisorAction',
    'WaitForSupervisorAction',
    'InstallSupervisorServicesAction',
    'LookupSupervisorAction',
    'CreateNamespaceAction',
    'SupervisorLoginAction',
    'ApplyManifestAction',
    'WaitForArgoCDAction',
]
