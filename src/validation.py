"""Pre-flight validation checks for scenarios.

Readiness checks run before a scenario executes and catch unreachable
endpoints, bad credentials and missing prerequisites (datacenter, ESX
image, CLI tools) early, with actionable error messages.
"""

import logging
import shutil
import socket
from typing import Optional

from config import DeploymentConfig
from vcenter.rest import ApiError, RestClient

logger = logging.getLogger(__name__)

KUBE_TOOLS = ('vcf', 'kubectl')


# -----------------------------------------------------------------------------
# Host Availability Validation
# -----------------------------------------------------------------------------

def validate_host_resolvable(hostname: str) -> tuple[bool, str]:
    """Check if hostname resolves to an IP address.

    Returns:
        (success, ip_or_error) tuple
    """
    try:
        ip = socket.gethostbyname(hostname)
        return True, ip
    except socket.gaierror:
        return False, f"Cannot resolve hostname '{hostname}'"


def validate_host_reachable(host: str, port: int = 443, timeout: float = 5.0) -> tuple[bool, str]:
    """Check if host is reachable on specified port.

    Returns:
        (success, message) tuple
    """
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
        sock.close()
        return True, f"Port {port} reachable"
    except socket.timeout:
        return False, f"Timeout connecting to {host}:{port}"
    except OSError as e:
        return False, f"Cannot connect to {host}:{port}: {e}"


def validate_endpoint(hostname: str, label: str, config_key: str,
                      port: int = 443, timeout: float = 5.0) -> list[str]:
    """Validate an HTTPS endpoint resolves and accepts connections.

    Args:
        hostname: Hostname or IP to validate
        label: What the endpoint is, for messages (e.g., 'vCenter')
        config_key: infrastructure.json key holding the hostname
        port: Port to check
        timeout: Connection timeout

    Returns:
        List of validation error messages (empty if valid)
    """
    success, result = validate_host_resolvable(hostname)
    if not success:
        return [
            f"{result}\n"
            f"  Check: {config_key} in infrastructure.json, DNS configuration"
        ]

    ip = result
    logger.debug(f"{label} {hostname} resolves to {ip}")

    success, message = validate_host_reachable(ip, port=port, timeout=timeout)
    if not success:
        return [
            f"{label} not reachable on {hostname} ({ip})\n"
            f"  {message}\n"
            f"  Check: host is online, firewall allows port {port}"
        ]
    return []


# -----------------------------------------------------------------------------
# vCenter Prerequisites
# -----------------------------------------------------------------------------

def validate_vcenter_prerequisites(config: DeploymentConfig, rest: RestClient) -> tuple[list[str], list[str]]:
    """Check credentials, datacenter and ESX base image through the REST API.

    Returns:
        (errors, passed) tuple of messages
    """
    infra = config.infrastructure
    errors: list[str] = []
    passed: list[str] = []

    try:
        rest.login()
    except ApiError as e:
        if e.status == 401:
            errors.append(
                f"vCenter rejected credentials for {infra.vcenter.username}\n"
                f"  Check: vcenter.username, vcenter.password (or secrets file, $VCENTER_PASSWORD)"
            )
        else:
            errors.append(f"Cannot create vCenter API session: {e}")
        return errors, passed
    passed.append(f"API session created for {infra.vcenter.username}")

    try:
        if rest.find_datacenter(infra.datacenter):
            passed.append(f"Datacenter {infra.datacenter} exists")
        else:
            errors.append(
                f"Datacenter '{infra.datacenter}' not found\n"
                f"  The datacenter must exist before deployment; create it in vCenter"
            )

        images = rest.list_base_images()
        if infra.cluster.esx_image in images:
            passed.append(f"ESX image {infra.cluster.esx_image} in depot")
        else:
            available = ', '.join(sorted(images)) if images else 'none'
            errors.append(
                f"ESX image {infra.cluster.esx_image} not found in depot\n"
                f"  Available: {available}\n"
                f"  Import the image into the vCenter depot or fix cluster.esx_image"
            )
    except ApiError as e:
        errors.append(f"vCenter API error: {e}")

    return errors, passed


def validate_tools(tools: tuple = KUBE_TOOLS) -> list[str]:
    """Check the CLI tools invoked as subprocesses are on PATH."""
    errors = []
    for tool in tools:
        if shutil.which(tool) is None:
            errors.append(
                f"'{tool}' not found on PATH\n"
                f"  Install it or use a scenario that does not bootstrap Argo CD"
            )
    return errors


# -----------------------------------------------------------------------------
# Combined Validation
# -----------------------------------------------------------------------------

def run_preflight_checks(config: DeploymentConfig, scenario_class=None,
                         timeout: float = 5.0,
                         rest: Optional[RestClient] = None) -> tuple[bool, dict]:
    """Run preflight checks for a deployment.

    Args:
        config: Loaded deployment configuration
        scenario_class: Scenario about to run; requires_kube_tools adds the tool check
        timeout: Connection timeout for network checks
        rest: REST client to use (default: a new one, logged out afterwards)

    Returns:
        (success, results) tuple where results maps category to
        {'passed': [...], 'failed': [...]}
    """
    infra = config.infrastructure
    results: dict[str, dict[str, list[str]]] = {
        'vcenter': {'passed': [], 'failed': []},
        'esx_host': {'passed': [], 'failed': []},
        'tools': {'passed': [], 'failed': []},
    }

    vc_errors = validate_endpoint(infra.vcenter.server, 'vCenter', 'vcenter.server', timeout=timeout)
    if vc_errors:
        results['vcenter']['failed'].extend(vc_errors)
    else:
        results['vcenter']['passed'].append(f"{infra.vcenter.server}:443 reachable")
        own_client = rest is None
        if own_client:
            vc = infra.vcenter
            rest = RestClient(vc.server, vc.username, vc.password, verify_ssl=vc.verify_ssl)
        try:
            errors, passed = validate_vcenter_prerequisites(config, rest)
        finally:
            if own_client:
                rest.logout()
        results['vcenter']['failed'].extend(errors)
        results['vcenter']['passed'].extend(passed)

    host_errors = validate_endpoint(infra.host.name, 'ESX host', 'host.name', timeout=timeout)
    if host_errors:
        results['esx_host']['failed'].extend(host_errors)
    else:
        results['esx_host']['passed'].append(f"{infra.host.name}:443 reachable")

    if getattr(scenario_class, 'requires_kube_tools', False):
        tool_errors = validate_tools()
        if tool_errors:
            results['tools']['failed'].extend(tool_errors)
        else:
            results['tools']['passed'].append(f"On PATH: {', '.join(KUBE_TOOLS)}")

    success = all(not category['failed'] for category in results.values())
    return success, results


def validate_readiness(config: DeploymentConfig, scenario_class=None,
                       timeout: float = 5.0) -> list[str]:
    """Run all readiness checks for a scenario.

    Returns:
        Combined list of all validation errors
    """
    _, results = run_preflight_checks(config, scenario_class, timeout=timeout)
    errors = []
    for category in results.values():
        errors.extend(category['failed'])
    return errors


def format_preflight_results(target: str, results: dict) -> str:
    """Format preflight check results for display.

    Args:
        target: Deployment target that was checked (vCenter/cluster)
        results: Results dict from run_preflight_checks

    Returns:
        Formatted string for display
    """
    lines = [f"\nPreflight checks for '{target}':\n"]

    category_names = {
        'vcenter': 'vCenter',
        'esx_host': 'ESX host',
        'tools': 'CLI tools',
    }

    for key, name in category_names.items():
        category = results.get(key, {'passed': [], 'failed': []})
        if category['passed'] or category['failed']:
            lines.append(f"{name}:")
            for item in category['passed']:
                lines.append(f"✓ {item}")
            for item in category['failed']:
                first_line = item.split('\n')[0]
                lines.append(f"✗ {first_line}")
                for line in item.split('\n')[1:]:
                    lines.append(f"  {line}")
            lines.append("")

    all_passed = all(
        len(cat['failed']) == 0
        for cat in results.values()
    )

    if all_passed:
        lines.append("All checks passed. Ready to deploy.")
    else:
        lines.append("Some checks failed. Fix issues before deploying.")

    return '\n'.join(lines)
