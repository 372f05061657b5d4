"""Supervisor actions: enable, wait for readiness, install Supervisor Services."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from pyVmomi import vim

from common import ActionResult, wait_for
from config import CORE_SERVICES, DeploymentConfig, IpRange, NetworkBlock, SupervisorConfig
from vcenter import ApiError, get_session
from vcenter.inventory import find_by_name

logger = logging.getLogger(__name__)


class SupervisorError(Exception):
    """vCenter reports the Supervisor or one of its services in error."""


def _network_services(sup: SupervisorConfig) -> dict:
    return {
        'dns': {'servers': sup.dns_servers, 'search_domains': sup.search_domains},
        'ntp': {'servers': sup.ntp_servers},
    }


def _ip_management(block: NetworkBlock, extra: Optional[list] = None) -> dict:
    assignments = [{'assignee': 'NODE', 'ranges': [r.to_dict() for r in block.ip_ranges]}]
    assignments.extend(extra or [])
    return {
        'dhcp_enabled': False,
        'gateway_address': block.gateway_cidr,
        'ip_assignments': assignments,
    }


def _lb_interface(persona: str, port_group: str, block: NetworkBlock,
                  ranges: Optional[list] = None) -> dict:
    return {
        'personas': [persona],
        'network': {
            'network_type': 'DVPG',
            'dvpg_network': {
                'network': port_group,
                'ipam': 'STATIC',
                'ip_config': {
                    'gateway': block.gateway_cidr,
                    'ip_ranges': [r.to_dict() for r in (block.ip_ranges if ranges is None else ranges)],
                },
            },
        },
    }


def build_enable_spec(config: DeploymentConfig, context: dict) -> dict:
    """Build the enable_on_compute_cluster request body.

    Pure function of the configuration and the context produced by the
    network and storage phases ('port_groups', 'storage_policy_id').

    The load balancer management network takes its own ranges as interface
    addresses; the frontend interface takes the first frontend address and the
    remaining frontend addresses are the virtual IPs handed out to
    LoadBalancer services.
    """
    sup = config.supervisor
    port_groups = context['port_groups']
    policy_id = context['storage_policy_id']
    services = _network_services(sup)
    services_cidr = sup.services_cidr

    first = sup.lb_frontend.ip_ranges[0]
    frontend_ip = [IpRange(first.start, 1)]
    frontend_vips = sup.lb_frontend.ip_ranges[1:]
    if first.count > 1:
        frontend_vips = [IpRange(first.start + 1, first.count - 1)] + frontend_vips

    return {
        'name': sup.name,
        'control_plane': {
            'size': sup.control_plane.size,
            'count': sup.control_plane.count,
            'storage_policy': policy_id,
            'network': {
                'backing': {'backing': 'NETWORK', 'network': port_groups['management']},
                'services': services,
                'ip_management': _ip_management(sup.management),
            },
        },
        'workloads': {
            'network': {
                'network_type': 'VSPHERE',
                'vsphere': {'dvpg': port_groups['workload']},
                'services': services,
                'ip_management': _ip_management(sup.workload, extra=[{
                    'assignee': 'SERVICE',
                    'ranges': [{'address': str(services_cidr.network_address),
                                'count': services_cidr.num_addresses}],
                }]),
            },
            'edge': {
                'provider': 'VSPHERE_FOUNDATION',
                'load_balancer_address_ranges': [r.to_dict() for r in frontend_vips],
                'foundation': {
                    'size': sup.lb_size,
                    'availability': 'SINGLE_NODE',
                    'deployment_target': {'storage_policy': policy_id},
                    'interfaces': [
                        _lb_interface('MANAGEMENT', port_groups['lb_management'], sup.lb_management),
                        _lb_interface('FRONTEND', port_groups['lb_frontend'], sup.lb_frontend, frontend_ip),
                    ],
                    'network_services': services,
                },
            },
            'storage': {
                'ephemeral_storage_policy': policy_id,
                'image_storage_policy': policy_id,
            },
        },
    }


def resolve_storage_policy(config: DeploymentConfig, context: dict, rest) -> Optional[str]:
    """Storage policy id for the Supervisor.

    The id from the storage phase when the Supervisor uses the edge policy,
    otherwise looked up by name.
    """
    name = config.supervisor.storage_policy
    if name == config.infrastructure.storage.policy_name and context.get('storage_policy_id'):
        return context['storage_policy_id']
    return rest.find_storage_policy(name)


@dataclass
class EnableSupervisorAction:
    """Enable the Supervisor on the cluster."""
    name: str

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Enable Supervisor unless the cluster already runs one."""
        start = time.time()
        sup = config.supervisor
        cluster_moid = context.get('cluster_moid')
        if not cluster_moid or not context.get('port_groups'):
            return ActionResult(
                success=False,
                message="cluster_moid and port_groups required in context "
                        "(run the cluster and network phases first)",
                duration=time.time() - start
            )

        rest = get_session(config, context).rest
        try:
            status = rest.get_cluster_supervisor(cluster_moid)
            if status is not None:
                return ActionResult(
                    success=True,
                    message=f"Supervisor already enabled on {config.infrastructure.cluster.name} "
                            f"({status.get('config_status', 'unknown')}) - skipped",
                    duration=time.time() - start
                )

            policy_id = resolve_storage_policy(config, context, rest)
            if not policy_id:
                return ActionResult(
                    success=False,
                    message=f"Storage policy {sup.storage_policy} not found",
                    duration=time.time() - start
                )

            spec = build_enable_spec(config, {**context, 'storage_policy_id': policy_id})
            logger.info(f"[{self.name}] Enabling Supervisor {sup.name} on {config.infrastructure.cluster.name} "
                        f"({sup.control_plane.count}x {sup.control_plane.size})...")
            supervisor_id = rest.enable_supervisor(cluster_moid, spec)
        except ApiError as e:
            return ActionResult(
                success=False,
                message=f"Supervisor enablement failed: {e}",
                duration=time.time() - start
            )

        context_updates = {}
        if supervisor_id:
            context_updates['supervisor_id'] = supervisor_id
        return ActionResult(
            success=True,
            message=f"Supervisor {sup.name} enablement started",
            duration=time.time() - start,
            context_updates=context_updates
        )


@dataclass
class WaitForSupervisorAction:
    """Wait until the Supervisor control plane is running and ready."""
    name: str
    timeout: int = 3600
    interval: int = 30

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Poll cluster status until RUNNING/READY; ERROR aborts."""
        start = time.time()
        cluster_moid = context.get('cluster_moid')
        if not cluster_moid:
            return ActionResult(
                success=False,
                message="No cluster_moid in context",
                duration=time.time() - start
            )

        rest = get_session(config, context).rest
        last = {}

        def probe():
            status = rest.get_cluster_supervisor(cluster_moid)
            if status is None:
                raise SupervisorError(f"Supervisor is not enabled on {config.infrastructure.cluster.name}")
            last.clear()
            last.update(status)
            config_status = status.get('config_status')
            kubernetes_status = status.get('kubernetes_status')
            if config_status == 'ERROR' or kubernetes_status == 'ERROR':
                messages = [m.get('default_message', '') for m in
                            status.get('messages', []) + status.get('kubernetes_status_messages', [])
                            if isinstance(m, dict)]
                raise SupervisorError('; '.join(m for m in messages if m) or 'status ERROR')
            logger.debug(f"[{self.name}] config_status={config_status} kubernetes_status={kubernetes_status}")
            return config_status == 'RUNNING' and kubernetes_status == 'READY'

        try:
            ready = wait_for(probe, f"Supervisor on {config.infrastructure.cluster.name}",
                             timeout=self.timeout, interval=self.interval)
            if not ready:
                return ActionResult(
                    success=False,
                    message=f"Supervisor not ready after {self.timeout}s "
                            f"(config_status={last.get('config_status')}, "
                            f"kubernetes_status={last.get('kubernetes_status')})",
                    duration=time.time() - start
                )
            supervisor_id = context.get('supervisor_id') or rest.find_supervisor_id(config.supervisor.name)
        except (ApiError, SupervisorError) as e:
            return ActionResult(
                success=False,
                message=f"Supervisor failed: {e}",
                duration=time.time() - start
            )

        endpoint = last.get('api_server_cluster_endpoint', '')
        context_updates = {'supervisor_endpoint': endpoint}
        if supervisor_id:
            context_updates['supervisor_id'] = supervisor_id
        return ActionResult(
            success=True,
            message=f"Supervisor running, API server at {endpoint or 'unknown'}",
            duration=time.time() - start,
            context_updates=context_updates
        )


def _read(path) -> str:
    with open(path, encoding='utf-8') as f:
        return f.read()


@dataclass
class InstallSupervisorServicesAction:
    """Register and install the configured Supervisor Services."""
    name: str
    timeout: int = 1200
    interval: int = 15

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Install each configured service, then verify the core services."""
        start = time.time()
        supervisor_id = context.get('supervisor_id')
        if not supervisor_id:
            return ActionResult(
                success=False,
                message="No supervisor_id in context",
                duration=time.time() - start
            )

        rest = get_session(config, context).rest
        installed = []
        present = []
        try:
            for service in config.supervisor.services:
                if self._install(rest, supervisor_id, service):
                    installed.append(service.id)
                else:
                    present.append(service.id)
                if not self._wait_configured(rest, supervisor_id, service.id):
                    return ActionResult(
                        success=False,
                        message=f"Service {service.id} not configured after {self.timeout}s",
                        duration=time.time() - start
                    )

            configured = {s.id for s in config.supervisor.services}
            for service_id in CORE_SERVICES:
                if service_id in configured:
                    continue
                status = rest.get_installed_service(supervisor_id, service_id)
                state = (status or {}).get('config_status', 'NOT_INSTALLED')
                if state != 'CONFIGURED':
                    return ActionResult(
                        success=False,
                        message=f"Core service {service_id} is {state}",
                        duration=time.time() - start
                    )
        except (ApiError, SupervisorError) as e:
            return ActionResult(
                success=False,
                message=f"Service installation failed: {e}",
                duration=time.time() - start
            )
        except OSError as e:
            return ActionResult(
                success=False,
                message=f"Cannot read service file: {e}",
                duration=time.time() - start
            )

        message = f"Installed {len(installed)} services"
        if present:
            message += f", {len(present)} already installed"
        return ActionResult(
            success=True,
            message=message,
            duration=time.time() - start
        )

    def _install(self, rest, supervisor_id: str, service) -> bool:
        """Register (when unknown) and install one service. False if already installed."""
        if rest.get_service_version(service.id, service.version) is None:
            if service.definition is None:
                raise SupervisorError(
                    f"{service.id} {service.version} is not registered and has no definition file"
                )
            definition = _read(service.definition)
            if rest.get_service(service.id) is None:
                logger.info(f"[{self.name}] Registering {service.id}...")
                rest.register_service(definition)
            else:
                logger.info(f"[{self.name}] Adding version {service.version} to {service.id}...")
                rest.add_service_version(service.id, definition)

        if rest.get_installed_service(supervisor_id, service.id) is not None:
            logger.info(f"[{self.name}] {service.id} already installed")
            return False

        values = _read(service.values) if service.values else None
        logger.info(f"[{self.name}] Installing {service.id} {service.version}...")
        rest.install_service(supervisor_id, service.id, service.version, values)
        return True

    def _wait_configured(self, rest, supervisor_id: str, service_id: str) -> bool:
        def probe():
            status = rest.get_installed_service(supervisor_id, service_id) or {}
            state = status.get('config_status')
            if state == 'ERROR':
                raise SupervisorError(f"{service_id} reports ERROR")
            return state == 'CONFIGURED'

        return bool(wait_for(probe, service_id, timeout=self.timeout, interval=self.interval))


@dataclass
class LookupSupervisorAction:
    """Record the ids of an already running Supervisor in the context."""
    name: str

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Find cluster, Supervisor and storage policy of a previous deployment."""
        start = time.time()
        session = get_session(config, context)
        rest = session.rest
        cluster_name = config.infrastructure.cluster.name

        cluster = find_by_name(session.content, [vim.ClusterComputeResource], cluster_name)
        if cluster is None:
            return ActionResult(
                success=False,
                message=f"Cluster {cluster_name} not found",
                duration=time.time() - start
            )

        try:
            status = rest.get_cluster_supervisor(cluster._moId)
            if status is None:
                return ActionResult(
                    success=False,
                    message=f"No Supervisor on {cluster_name}",
                    duration=time.time() - start
                )
            if status.get('config_status') != 'RUNNING':
                return ActionResult(
                    success=False,
                    message=f"Supervisor on {cluster_name} is {status.get('config_status')}",
                    duration=time.time() - start
                )
            supervisor_id = rest.find_supervisor_id(config.supervisor.name)
            policy_id = rest.find_storage_policy(config.supervisor.storage_policy)
        except ApiError as e:
            return ActionResult(
                success=False,
                message=f"Supervisor lookup failed: {e}",
                duration=time.time() - start
            )

        if not supervisor_id or not policy_id:
            return ActionResult(
                success=False,
                message=f"Supervisor {config.supervisor.name} or storage policy "
                        f"{config.supervisor.storage_policy} not found",
                duration=time.time() - start
            )

        endpoint = status.get('api_server_cluster_endpoint', '')
        return ActionResult(
            success=True,
            message=f"Supervisor {config.supervisor.name} running at {endpoint}",
            duration=time.time() - start,
            context_updates={
                'cluster_moid': cluster._moId,
                'supervisor_id': supervisor_id,
                'supervisor_endpoint': endpoint,
                'storage_policy_id': policy_id,
            }
        )
