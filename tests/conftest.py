"""Shared pytest fixtures for supervisor-driver tests."""

import copy
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


INFRASTRUCTURE = {
    "vcenter": {
        "server": "vc01.example.com",
        "username": "administrator@vsphere.local",
        "password": "vc-secret",
        "verify_ssl": False,
    },
    "datacenter": "dc01",
    "cluster": {
        "name": "supervisor-cluster",
        "esx_image": "9.0.0.0.24755229",
        "drs": {"enabled": True, "behavior": "fullyAutomated"},
        "ha": {"enabled": True, "admission_control": False},
    },
    "host": {
        "name": "esx01.example.com",
        "username": "root",
        "password": "esx-secret",
    },
    "network": {
        "switch_name": "supervisor-vds",
        "mtu": 1500,
        "uplinks": ["vmnic1"],
        "port_groups": {
            "management": {"name": "pg-management", "vlan_id": 10},
            "workload": {"name": "pg-workload", "vlan_id": 20},
            "lb_management": {"name": "pg-lb-management", "vlan_id": 30},
            "lb_frontend": {"name": "pg-lb-frontend", "vlan_id": 40},
        },
    },
    "storage": {
        "datastore": "supervisor-ds",
        "disk": {"canonical_name": "naa.6000c29f"},
        "policy": {"name": "supervisor-edge"},
    },
}

SUPERVISOR = {
    "name": "supervisor01",
    "control_plane": {"size": "SMALL", "count": 1},
    "management": {
        "cidr": "10.0.10.0/24",
        "gateway": "10.0.10.1",
        "start_ip": "10.0.10.50",
        "ip_count": 5,
    },
    "workload": {
        "cidr": "10.0.20.0/24",
        "gateway": "10.0.20.1",
        "ip_ranges": [{"start": "10.0.20.100", "count": 64}],
        "services_cidr": "10.96.0.0/23",
    },
    "load_balancer": {
        "size": "SMALL",
        "management": {
            "cidr": "10.0.30.0/24",
            "gateway": "10.0.30.1",
            "ip_ranges": [{"start": "10.0.30.10", "count": 4}],
        },
        "frontend": {
            "cidr": "10.0.40.0/24",
            "gateway": "10.0.40.1",
            "ip_ranges": [{"start": "10.0.40.100", "count": 32}],
        },
    },
    "dns": {"servers": ["10.0.0.53"], "search_domains": ["example.com"]},
    "ntp": {"servers": ["pool.ntp.org"]},
    "services": [
        {
            "id": "velero.vsphere.vmware.com",
            "version": "1.6.1",
            "definition": "services/velero.yaml",
            "values": "services/velero-values.yaml",
        },
        {
            "id": "argocd-service.vsphere.vmware.com",
            "version": "1.0.0",
            "definition": "services/argocd-service.yaml",
        },
    ],
    "argocd": {
        "namespace": "argocd",
        "operator_manifest": "argocd/operator.yaml",
        "instance_manifest": "argocd/instance.yaml",
        "context_name": "supervisor",
        "timeout": 900,
    },
}

OPERATOR_YAML = """\
apiVersion: v1
kind: ServiceAccount
metadata:
  name: argocd-operator
  namespace: operators
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: argocd-operator
rules: []
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: argocd-operator
spec:
  replicas: 1
"""

INSTANCE_YAML = """\
apiVersion: argoproj.io/v1beta1
kind: ArgoCD
metadata:
  name: argocd
spec:
  server:
    service:
      type: LoadBalancer
"""


@pytest.fixture
def infrastructure_data():
    """Valid infrastructure.json contents (deep copy, safe to mutate)."""
    return copy.deepcopy(INFRASTRUCTURE)


@pytest.fixture
def supervisor_data():
    """Valid supervisor.json contents (deep copy, safe to mutate)."""
    return copy.deepcopy(SUPERVISOR)


@pytest.fixture
def config_dir(tmp_path):
    """Directory holding the manifests and service files supervisor.json refers to."""
    (tmp_path / 'argocd').mkdir()
    (tmp_path / 'argocd' / 'operator.yaml').write_text(OPERATOR_YAML)
    (tmp_path / 'argocd' / 'instance.yaml').write_text(INSTANCE_YAML)
    (tmp_path / 'services').mkdir()
    (tmp_path / 'services' / 'velero.yaml').write_text(
        "apiVersion: data.packaging.carvel.dev/v1alpha1\nkind: Package\n"
    )
    (tmp_path / 'services' / 'velero-values.yaml').write_text("namespace: velero\n")
    (tmp_path / 'services' / 'argocd-service.yaml').write_text(
        "apiVersion: data.packaging.carvel.dev/v1alpha1\nkind: PackageMetadata\n"
    )
    return tmp_path


@pytest.fixture
def write_configs(config_dir, infrastructure_data, supervisor_data):
    """Factory writing both JSON files; returns (infrastructure_path, supervisor_path)."""
    def _write(infrastructure=None, supervisor=None):
        infra_path = config_dir / 'infrastructure.json'
        sup_path = config_dir / 'supervisor.json'
        infra_path.write_text(json.dumps(infrastructure if infrastructure is not None else infrastructure_data))
        sup_path.write_text(json.dumps(supervisor if supervisor is not None else supervisor_data))
        return infra_path, sup_path
    return _write


@pytest.fixture
def config_files(write_configs):
    """Valid infrastructure.json and supervisor.json on disk."""
    return write_configs()


@pytest.fixture
def deployment_config(config_files):
    """Loaded DeploymentConfig from the valid files."""
    from config import load_deployment_config
    return load_deployment_config(*config_files)


@pytest.fixture
def session():
    """Mock VCenterSession (content, rest and pbm are MagicMocks)."""
    return MagicMock()


@pytest.fixture
def deploy_context():
    """Context as left behind by the cluster, network and storage phases."""
    return {
        'datacenter_moid': 'datacenter-1',
        'cluster_moid': 'domain-c8',
        'host_moid': 'host-10',
        'switch_moid': 'dvs-20',
        'port_groups': {
            'management': 'dvportgroup-21',
            'workload': 'dvportgroup-22',
            'lb_management': 'dvportgroup-23',
            'lb_frontend': 'dvportgroup-24',
        },
        'datastore_moid': 'datastore-30',
        'storage_policy_id': 'policy-uuid-1',
    }
