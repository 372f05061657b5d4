"""Tests for validation module."""

import socket

import pytest
from unittest.mock import patch, MagicMock

from validation import (
    format_preflight_results,
    run_preflight_checks,
    validate_endpoint,
    validate_host_reachable,
    validate_host_resolvable,
    validate_readiness,
    validate_tools,
    validate_vcenter_prerequisites,
)
from vcenter.rest import ApiError


class TestValidateHost:
    """Tests for hostname resolution and port checks."""

    @patch('validation.socket.gethostbyname')
    def test_resolvable(self, mock_resolve):
        mock_resolve.return_value = '10.0.0.5'
        assert validate_host_resolvable('vc01.example.com') == (True, '10.0.0.5')

    @patch('validation.socket.gethostbyname')
    def test_not_resolvable(self, mock_resolve):
        mock_resolve.side_effect = socket.gaierror()
        success, message = validate_host_resolvable('nope.example.com')
        assert success is False
        assert "Cannot resolve hostname 'nope.example.com'" == message

    @patch('validation.socket.create_connection')
    def test_reachable(self, mock_connect):
        success, message = validate_host_reachable('10.0.0.5')
        assert success is True
        assert message == 'Port 443 reachable'
        mock_connect.return_value.close.assert_called_once()

    @patch('validation.socket.create_connection')
    def test_connection_refused(self, mock_connect):
        mock_connect.side_effect = ConnectionRefusedError('refused')
        success, message = validate_host_reachable('10.0.0.5')
        assert success is False
        assert 'Cannot connect to 10.0.0.5:443' in message

    @patch('validation.socket.create_connection')
    def test_timeout(self, mock_connect):
        mock_connect.side_effect = socket.timeout()
        success, message = validate_host_reachable('10.0.0.5', timeout=1)
        assert success is False
        assert message == 'Timeout connecting to 10.0.0.5:443'

    @patch('validation.validate_host_reachable', return_value=(True, 'Port 443 reachable'))
    @patch('validation.validate_host_resolvable', return_value=(False, "Cannot resolve hostname 'vc'"))
    def test_endpoint_names_config_key(self, mock_resolve, mock_reach):
        errors = validate_endpoint('vc', 'vCenter', 'vcenter.server')
        assert len(errors) == 1
        assert 'vcenter.server in infrastructure.json' in errors[0]
        mock_reach.assert_not_called()

    @patch('validation.validate_host_reachable', return_value=(False, 'Timeout connecting to 10.0.0.5:443'))
    @patch('validation.validate_host_resolvable', return_value=(True, '10.0.0.5'))
    def test_endpoint_unreachable(self, mock_resolve, mock_reach):
        errors = validate_endpoint('esx01.example.com', 'ESX host', 'host.name')
        assert errors[0].startswith('ESX host not reachable on esx01.example.com (10.0.0.5)')


class TestVCenterPrerequisites:
    """Tests for REST-based prerequisite checks."""

    def test_all_present(self, deployment_config):
        rest = MagicMock()
        rest.find_datacenter.return_value = 'datacenter-1'
        rest.list_base_images.return_value = ['9.0.0.0.24755229']

        errors, passed = validate_vcenter_prerequisites(deployment_config, rest)

        assert errors == []
        assert 'Datacenter dc01 exists' in passed
        assert 'ESX image 9.0.0.0.24755229 in depot' in passed

    def test_bad_credentials(self, deployment_config):
        rest = MagicMock()
        rest.login.side_effect = ApiError('POST', '/api/session', 401, 'Unauthorized')

        errors, passed = validate_vcenter_prerequisites(deployment_config, rest)

        assert len(errors) == 1
        assert 'rejected credentials for administrator@vsphere.local' in errors[0]
        rest.find_datacenter.assert_not_called()

    def test_missing_datacenter_and_image(self, deployment_config):
        rest = MagicMock()
        rest.find_datacenter.return_value = None
        rest.list_base_images.return_value = ['8.0.3.0.2400']

        errors, _ = validate_vcenter_prerequisites(deployment_config, rest)

        assert len(errors) == 2
        assert "Datacenter 'dc01' not found" in errors[0]
        assert 'Available: 8.0.3.0.2400' in errors[1]


class TestValidateTools:
    """Tests for CLI tool checks."""

    @patch('validation.shutil.which')
    def test_tools_present(self, mock_which):
        mock_which.return_value = '/usr/local/bin/tool'
        assert validate_tools() == []

    @patch('validation.shutil.which')
    def test_kubectl_missing(self, mock_which):
        mock_which.side_effect = lambda tool: None if tool == 'kubectl' else '/usr/local/bin/vcf'
        errors = validate_tools()
        assert len(errors) == 1
        assert "'kubectl' not found on PATH" in errors[0]


class TestRunPreflightChecks:
    """Tests for combined preflight checks."""

    @patch('validation.validate_tools', return_value=[])
    @patch('validation.validate_endpoint', return_value=[])
    def test_all_pass(self, mock_endpoint, mock_tools, deployment_config):
        from scenarios.supervisor_deploy import SupervisorDeploy

        rest = MagicMock()
        rest.list_base_images.return_value = ['9.0.0.0.24755229']

        success, results = run_preflight_checks(deployment_config, SupervisorDeploy, rest=rest)

        assert success is True
        assert results['vcenter']['failed'] == []
        assert 'vc01.example.com:443 reachable' in results['vcenter']['passed']
        assert results['esx_host']['passed'] == ['esx01.example.com:443 reachable']
        assert results['tools']['passed'] == ['On PATH: vcf, kubectl']
        rest.logout.assert_not_called()

    @patch('validation.validate_tools')
    @patch('validation.validate_endpoint', return_value=[])
    def test_tools_skipped_without_kube_scenario(self, mock_endpoint, mock_tools, deployment_config):
        rest = MagicMock()
        rest.list_base_images.return_value = ['9.0.0.0.24755229']

        success, results = run_preflight_checks(deployment_config, None, rest=rest)

        assert success is True
        mock_tools.assert_not_called()
        assert results['tools'] == {'passed': [], 'failed': []}

    @patch('validation.RestClient')
    @patch('validation.validate_endpoint')
    def test_unreachable_vcenter_skips_api(self, mock_endpoint, mock_client, deployment_config):
        mock_endpoint.side_effect = [['vCenter not reachable'], []]

        success, results = run_preflight_checks(deployment_config)

        assert success is False
        assert results['vcenter']['failed'] == ['vCenter not reachable']
        mock_client.assert_not_called()

    @patch('validation.RestClient')
    @patch('validation.validate_endpoint', return_value=[])
    def test_own_client_logged_out(self, mock_endpoint, mock_client, deployment_config):
        rest = mock_client.return_value
        rest.list_base_images.return_value = ['9.0.0.0.24755229']

        run_preflight_checks(deployment_config)

        mock_client.assert_called_once_with(
            'vc01.example.com', 'administrator@vsphere.local', 'vc-secret', verify_ssl=False
        )
        rest.logout.assert_called_once()

    @patch('validation.run_preflight_checks')
    def test_validate_readiness_flattens(self, mock_checks, deployment_config):
        mock_checks.return_value = (False, {
            'vcenter': {'passed': [], 'failed': ['a']},
            'esx_host': {'passed': [], 'failed': ['b']},
            'tools': {'passed': [], 'failed': []},
        })

        assert validate_readiness(deployment_config) == ['a', 'b']


class TestFormatPreflightResults:
    """Tests for preflight output formatting."""

    def test_all_passed(self):
        output = format_preflight_results('vc01/cluster', {
            'vcenter': {'passed': ['API session created'], 'failed': []},
            'esx_host': {'passed': [], 'failed': []},
            'tools': {'passed': [], 'failed': []},
        })

        assert "Preflight checks for 'vc01/cluster'" in output
        assert '✓ API session created' in output
        assert 'ESX host:' not in output
        assert output.endswith('All checks passed. Ready to deploy.')

    def test_failure_lines_indented(self):
        output = format_preflight_results('vc01/cluster', {
            'vcenter': {'passed': [], 'failed': ["Datacenter 'dc01' not found\n  create it"]},
        })

        assert "✗ Datacenter 'dc01' not found" in output
        assert '    create it' in output
        assert output.endswith('Some checks failed. Fix issues before deploying.')
