"""Tests for Supervisor actions.

Tests verify:
1. build_enable_spec maps the four networks onto the enable request
2. EnableSupervisorAction is skipped on an enabled cluster
3. WaitForSupervisorAction stops on ERROR and records the API endpoint
4. InstallSupervisorServicesAction registers, installs and verifies services
5. LookupSupervisorAction finds a running Supervisor
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from vcenter import ApiError

RUNNING = {
    'config_status': 'RUNNING',
    'kubernetes_status': 'READY',
    'api_server_cluster_endpoint': '10.0.40.100',
}
CONFIGURED = {'config_status': 'CONFIGURED'}


def _wait_once(probe, what, timeout, interval):
    """Stand-in for wait_for that gives up after a single probe."""
    return probe() or None


class TestBuildEnableSpec:
    """Test build_enable_spec."""

    @pytest.fixture
    def spec(self, deployment_config, deploy_context):
        from actions.supervisor import build_enable_spec
        return build_enable_spec(deployment_config, deploy_context)

    def test_control_plane(self, spec):
        control_plane = spec['control_plane']
        assert spec['name'] == 'supervisor01'
        assert control_plane['size'] == 'SMALL'
        assert control_plane['count'] == 1
        assert control_plane['storage_policy'] == 'policy-uuid-1'
        assert control_plane['network']['backing'] == {'backing': 'NETWORK', 'network': 'dvportgroup-21'}
        assert control_plane['network']['ip_management'] == {
            'dhcp_enabled': False,
            'gateway_address': '10.0.10.1/24',
            'ip_assignments': [{'assignee': 'NODE', 'ranges': [{'address': '10.0.10.50', 'count': 5}]}],
        }

    def test_workload_network(self, spec):
        network = spec['workloads']['network']
        assert network['network_type'] == 'VSPHERE'
        assert network['vsphere'] == {'dvpg': 'dvportgroup-22'}
        assert network['ip_management']['gateway_address'] == '10.0.20.1/24'
        assert network['ip_management']['ip_assignments'] == [
            {'assignee': 'NODE', 'ranges': [{'address': '10.0.20.100', 'count': 64}]},
            {'assignee': 'SERVICE', 'ranges': [{'address': '10.96.0.0', 'count': 512}]},
        ]
        assert network['services'] == {
            'dns': {'servers': ['10.0.0.53'], 'search_domains': ['example.com']},
            'ntp': {'servers': ['pool.ntp.org']},
        }

    def test_load_balancer(self, spec):
        """Frontend interface takes the first address, the rest are VIPs."""
        edge = spec['workloads']['edge']
        assert edge['provider'] == 'VSPHERE_FOUNDATION'
        assert edge['load_balancer_address_ranges'] == [{'address': '10.0.40.101', 'count': 31}]

        foundation = edge['foundation']
        assert foundation['availability'] == 'SINGLE_NODE'
        assert foundation['deployment_target'] == {'storage_policy': 'policy-uuid-1'}
        management, frontend = foundation['interfaces']
        assert management['personas'] == ['MANAGEMENT']
        assert management['network']['dvpg_network'] == {
            'network': 'dvportgroup-23',
            'ipam': 'STATIC',
            'ip_config': {'gateway': '10.0.30.1/24', 'ip_ranges': [{'address': '10.0.30.10', 'count': 4}]},
        }
        assert frontend['personas'] == ['FRONTEND']
        assert frontend['network']['dvpg_network']['network'] == 'dvportgroup-24'
        assert frontend['network']['dvpg_network']['ip_config']['ip_ranges'] == [
            {'address': '10.0.40.100', 'count': 1}
        ]

    def test_single_address_first_range(self, deployment_config, deploy_context):
        """One-address first range contributes no VIPs."""
        import ipaddress

        from actions.supervisor import build_enable_spec
        from config import IpRange

        deployment_config.supervisor.lb_frontend.ip_ranges = [
            IpRange(ipaddress.IPv4Address('10.0.40.10'), 1),
            IpRange(ipaddress.IPv4Address('10.0.40.100'), 8),
        ]

        spec = build_enable_spec(deployment_config, deploy_context)

        assert spec['workloads']['edge']['load_balancer_address_ranges'] == [
            {'address': '10.0.40.100', 'count': 8}
        ]

    def test_storage(self, spec):
        assert spec['workloads']['storage'] == {
            'ephemeral_storage_policy': 'policy-uuid-1',
            'image_storage_policy': 'policy-uuid-1',
        }


class TestEnableSupervisorAction:
    """Test EnableSupervisorAction."""

    def test_enables_supervisor(self, deployment_config, session, deploy_context):
        from actions.supervisor import EnableSupervisorAction

        session.rest.get_cluster_supervisor.return_value = None
        session.rest.enable_supervisor.return_value = 'supervisor-1'
        action = EnableSupervisorAction(name='enable-supervisor')

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, deploy_context)

        assert result.success is True
        assert result.message == 'Supervisor supervisor01 enablement started'
        assert result.context_updates == {'supervisor_id': 'supervisor-1'}
        cluster_moid, spec = session.rest.enable_supervisor.call_args[0]
        assert cluster_moid == 'domain-c8'
        assert spec['control_plane']['storage_policy'] == 'policy-uuid-1'

    def test_enabled_cluster_skipped(self, deployment_config, session, deploy_context):
        from actions.supervisor import EnableSupervisorAction

        session.rest.get_cluster_supervisor.return_value = {'config_status': 'CONFIGURING'}
        action = EnableSupervisorAction(name='enable-supervisor')

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, deploy_context)

        assert result.success is True
        assert result.message == 'Supervisor already enabled on supervisor-cluster (CONFIGURING) - skipped'
        session.rest.enable_supervisor.assert_not_called()

    def test_other_storage_policy_looked_up(self, deployment_config, session, deploy_context):
        """A storage policy other than the edge policy is resolved by name."""
        from actions.supervisor import EnableSupervisorAction

        deployment_config.supervisor.storage_policy = 'gold'
        session.rest.get_cluster_supervisor.return_value = None
        session.rest.find_storage_policy.return_value = 'policy-gold'
        action = EnableSupervisorAction(name='enable-supervisor')

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, deploy_context)

        assert result.success is True
        session.rest.find_storage_policy.assert_called_once_with('gold')
        _, spec = session.rest.enable_supervisor.call_args[0]
        assert spec['workloads']['storage']['image_storage_policy'] == 'policy-gold'

    def test_missing_storage_policy(self, deployment_config, session, deploy_context):
        from actions.supervisor import EnableSupervisorAction

        deployment_config.supervisor.storage_policy = 'gold'
        session.rest.get_cluster_supervisor.return_value = None
        session.rest.find_storage_policy.return_value = None
        action = EnableSupervisorAction(name='enable-supervisor')

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, deploy_context)

        assert result.success is False
        assert result.message == 'Storage policy gold not found'

    def test_requires_network_context(self, deployment_config, session):
        from actions.supervisor import EnableSupervisorAction

        action = EnableSupervisorAction(name='enable-supervisor')
        result = action.run(deployment_config, {'cluster_moid': 'domain-c8'})

        assert result.success is False
        assert 'port_groups' in result.message

    def test_api_rejection(self, deployment_config, session, deploy_context):
        from actions.supervisor import EnableSupervisorAction

        session.rest.get_cluster_supervisor.return_value = None
        session.rest.enable_supervisor.side_effect = ApiError(
            'POST', '/api/vcenter/namespace-management/supervisors/domain-c8', 400,
            'Cluster domain-c8 is not licensed'
        )
        action = EnableSupervisorAction(name='enable-supervisor')

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, deploy_context)

        assert result.success is False
        assert result.message.startswith('Supervisor enablement failed:')
        assert 'not licensed' in result.message


class TestWaitForSupervisorAction:
    """Test WaitForSupervisorAction."""

    def test_running_supervisor(self, deployment_config, session, deploy_context):
        from actions.supervisor import WaitForSupervisorAction

        session.rest.get_cluster_supervisor.return_value = RUNNING
        session.rest.find_supervisor_id.return_value = 'supervisor-1'
        action = WaitForSupervisorAction(name='wait-supervisor', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, deploy_context)

        assert result.success is True
        assert result.context_updates == {
            'supervisor_endpoint': '10.0.40.100',
            'supervisor_id': 'supervisor-1',
        }
        session.rest.find_supervisor_id.assert_called_once_with('supervisor01')

    def test_supervisor_id_from_context(self, deployment_config, session, deploy_context):
        from actions.supervisor import WaitForSupervisorAction

        session.rest.get_cluster_supervisor.return_value = RUNNING
        action = WaitForSupervisorAction(name='wait-supervisor', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, {**deploy_context, 'supervisor_id': 'supervisor-7'})

        assert result.context_updates['supervisor_id'] == 'supervisor-7'
        session.rest.find_supervisor_id.assert_not_called()

    def test_error_status_aborts(self, deployment_config, session, deploy_context):
        """ERROR should stop waiting and surface vCenter's messages."""
        from actions.supervisor import WaitForSupervisorAction

        session.rest.get_cluster_supervisor.return_value = {
            'config_status': 'ERROR',
            'kubernetes_status': 'WARNING',
            'messages': [{'severity': 'ERROR', 'default_message': 'Edge deployment failed'}],
        }
        action = WaitForSupervisorAction(name='wait-supervisor', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, deploy_context)

        assert result.success is False
        assert result.message == 'Supervisor failed: Edge deployment failed'

    def test_timeout_reports_last_status(self, deployment_config, session, deploy_context):
        from actions.supervisor import WaitForSupervisorAction

        session.rest.get_cluster_supervisor.return_value = {
            'config_status': 'CONFIGURING', 'kubernetes_status': 'WARNING',
        }
        action = WaitForSupervisorAction(name='wait-supervisor', timeout=60)

        with patch('actions.supervisor.get_session', return_value=session), \
             patch('actions.supervisor.wait_for', side_effect=_wait_once):
            result = action.run(deployment_config, deploy_context)

        assert result.success is False
        assert result.message == ('Supervisor not ready after 60s '
                                  '(config_status=CONFIGURING, kubernetes_status=WARNING)')

    def test_not_enabled(self, deployment_config, session, deploy_context):
        from actions.supervisor import WaitForSupervisorAction

        session.rest.get_cluster_supervisor.return_value = None
        action = WaitForSupervisorAction(name='wait-supervisor', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, deploy_context)

        assert result.success is False
        assert 'not enabled' in result.message


class TestInstallSupervisorServicesAction:
    """Test InstallSupervisorServicesAction."""

    @pytest.fixture
    def context(self, deploy_context):
        return {**deploy_context, 'supervisor_id': 'supervisor-1'}

    def test_registers_and_installs(self, deployment_config, session, context):
        """Unknown services: register definitions, install with values, verify core services."""
        from actions.supervisor import InstallSupervisorServicesAction

        rest = session.rest
        rest.get_service_version.return_value = None
        rest.get_service.return_value = None
        # velero: not installed, configured; argocd-service: same; then both core services
        rest.get_installed_service.side_effect = [None, CONFIGURED, None, CONFIGURED, CONFIGURED, CONFIGURED]
        action = InstallSupervisorServicesAction(name='install-services', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, context)

        assert result.success is True
        assert result.message == 'Installed 2 services'
        assert rest.register_service.call_count == 2
        rest.register_service.assert_any_call(
            "apiVersion: data.packaging.carvel.dev/v1alpha1\nkind: Package\n"
        )
        rest.install_service.assert_any_call(
            'supervisor-1', 'velero.vsphere.vmware.com', '1.6.1', 'namespace: velero\n'
        )
        rest.install_service.assert_any_call(
            'supervisor-1', 'argocd-service.vsphere.vmware.com', '1.0.0', None
        )

    def test_new_version_of_known_service(self, deployment_config, session, context):
        from actions.supervisor import InstallSupervisorServicesAction

        rest = session.rest
        rest.get_service_version.return_value = None
        rest.get_service.return_value = {'state': 'ACTIVATED'}
        rest.get_installed_service.side_effect = [None, CONFIGURED, None, CONFIGURED, CONFIGURED, CONFIGURED]
        action = InstallSupervisorServicesAction(name='install-services', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, context)

        assert result.success is True
        rest.register_service.assert_not_called()
        assert rest.add_service_version.call_count == 2

    def test_installed_service_skipped(self, deployment_config, session, context):
        from actions.supervisor import InstallSupervisorServicesAction

        rest = session.rest
        rest.get_service_version.return_value = {'state': 'ACTIVATED'}
        rest.get_installed_service.return_value = CONFIGURED
        action = InstallSupervisorServicesAction(name='install-services', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, context)

        assert result.success is True
        assert result.message == 'Installed 0 services, 2 already installed'
        rest.install_service.assert_not_called()

    def test_core_service_missing(self, deployment_config, session, context):
        from actions.supervisor import InstallSupervisorServicesAction

        rest = session.rest
        rest.get_service_version.return_value = {'state': 'ACTIVATED'}
        rest.get_installed_service.side_effect = [CONFIGURED, CONFIGURED, CONFIGURED, CONFIGURED, None]
        action = InstallSupervisorServicesAction(name='install-services', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, context)

        assert result.success is False
        assert result.message == 'Core service vmoperator.vsphere.vmware.com is NOT_INSTALLED'

    def test_service_error(self, deployment_config, session, context):
        from actions.supervisor import InstallSupervisorServicesAction

        rest = session.rest
        rest.get_service_version.return_value = {'state': 'ACTIVATED'}
        rest.get_installed_service.side_effect = [None, {'config_status': 'ERROR'}]
        action = InstallSupervisorServicesAction(name='install-services', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, context)

        assert result.success is False
        assert result.message == 'Service installation failed: velero.vsphere.vmware.com reports ERROR'

    def test_unregistered_without_definition(self, deployment_config, session, context):
        from actions.supervisor import InstallSupervisorServicesAction

        deployment_config.supervisor.services[0].definition = None
        session.rest.get_service_version.return_value = None
        action = InstallSupervisorServicesAction(name='install-services', interval=0)

        with patch('actions.supervisor.get_session', return_value=session):
            result = action.run(deployment_config, context)

        assert result.success is False
        assert 'not registered and has no definition file' in result.message

    def test_requires_supervisor_id(self, deployment_config, deploy_context):
        from actions.supervisor import InstallSupervisorServicesAction

        action = InstallSupervisorServicesAction(name='install-services')
        result = action.run(deployment_config, deploy_context)

        assert result.success is False
        assert result.message == 'No supervisor_id in context'


class TestLookupSupervisorAction:
    """Test LookupSupervisorAction."""

    def _cluster(self):
        cluster = MagicMock()
        cluster._moId = 'domain-c8'
        return cluster

    def test_running_supervisor_found(self, deployment_config, session):
        from actions.supervisor import LookupSupervisorAction

        session.rest.get_cluster_supervisor.return_value = RUNNING
        session.rest.find_supervisor_id.return_value = 'supervisor-1'
        session.rest.find_storage_policy.return_value = 'policy-uuid-1'
        action = LookupSupervisorAction(name='lookup-supervisor')

        with patch('actions.supervisor.get_session', return_value=session), \
             patch('actions.supervisor.find_by_name', return_value=self._cluster()):
            result = action.run(deployment_config, {})

        assert result.success is True
        assert result.context_updates == {
            'cluster_moid': 'domain-c8',
            'supervisor_id': 'supervisor-1',
            'supervisor_endpoint': '10.0.40.100',
            'storage_policy_id': 'policy-uuid-1',
        }
        session.rest.find_storage_policy.assert_called_once_with('supervisor-edge')

    def test_supervisor_not_running(self, deployment_config, session):
        from actions.supervisor import LookupSupervisorAction

        session.rest.get_cluster_supervisor.return_value = {'config_status': 'CONFIGURING'}
        action = LookupSupervisorAction(name='lookup-supervisor')

        with patch('actions.supervisor.get_session', return_value=session), \
             patch('actions.supervisor.find_by_name', return_value=self._cluster()):
            result = action.run(deployment_config, {})

        assert result.success is False
        assert result.message == 'Supervisor on supervisor-cluster is CONFIGURING'

    def test_no_supervisor(self, deployment_config, session):
        from actions.supervisor import LookupSupervisorAction

        session.rest.get_cluster_supervisor.return_value = None
        action = LookupSupervisorAction(name='lookup-supervisor')

        with patch('actions.supervisor.get_session', return_value=session), \
             patch('actions.supervisor.find_by_name', return_value=self._cluster()):
            result = action.run(deployment_config, {})

        assert result.success is False
        assert result.message == 'No Supervisor on supervisor-cluster'
