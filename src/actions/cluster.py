"""Cluster provisioning actions: cluster, host membership, DRS/HA."""

import logging
import time
from dataclasses import dataclass

from pyVmomi import vim, vmodl

from common import ActionResult
from config import DeploymentConfig
from vcenter import get_session
from vcenter.inventory import fault_message, find_by_name, get_ssl_thumbprint, wait_for_task

logger = logging.getLogger(__name__)


@dataclass
class CreateClusterAction:
    """Create the compute cluster, managed by a single ESX image."""
    name: str

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Create cluster in the datacenter unless it already exists."""
        start = time.time()
        infra = config.infrastructure
        content = get_session(config, context).content

        datacenter = find_by_name(content, [vim.Datacenter], infra.datacenter)
        if datacenter is None:
            return ActionResult(
                success=False,
                message=f"Datacenter '{infra.datacenter}' not found (it must exist before deployment)",
                duration=time.time() - start
            )
        context_updates = {'datacenter_moid': datacenter._moId}

        cluster = find_by_name(content, [vim.ClusterComputeResource], infra.cluster.name,
                               root=datacenter.hostFolder)
        if cluster is not None:
            context_updates['cluster_moid'] = cluster._moId
            return ActionResult(
                success=True,
                message=f"Cluster {infra.cluster.name} already exists - skipped",
                duration=time.time() - start,
                context_updates=context_updates
            )

        spec = vim.cluster.ConfigSpecEx()
        spec.desiredSoftwareSpec = vim.DesiredSoftwareSpec(
            baseImageSpec=vim.DesiredSoftwareSpec.BaseImageSpec(version=infra.cluster.esx_image)
        )

        logger.info(f"[{self.name}] Creating cluster {infra.cluster.name} "
                    f"(image {infra.cluster.esx_image}) in {infra.datacenter}...")
        try:
            cluster = datacenter.hostFolder.CreateClusterEx(name=infra.cluster.name, spec=spec)
        except vmodl.MethodFault as e:
            return ActionResult(
                success=False,
                message=f"CreateClusterEx failed: {fault_message(e)}",
                duration=time.time() - start
            )

        context_updates['cluster_moid'] = cluster._moId
        return ActionResult(
            success=True,
            message=f"Cluster {infra.cluster.name} created ({cluster._moId})",
            duration=time.time() - start,
            context_updates=context_updates
        )


@dataclass
class AddHostAction:
    """Add the ESX host to the cluster and take it out of maintenance mode."""
    name: str
    timeout: int = 600

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Add host to cluster unless it is already a member."""
        start = time.time()
        infra = config.infrastructure
        content = get_session(config, context).content

        cluster = find_by_name(content, [vim.ClusterComputeResource], infra.cluster.name)
        if cluster is None:
            return ActionResult(
                success=False,
                message=f"Cluster {infra.cluster.name} not found",
                duration=time.time() - start
            )

        try:
            host = find_by_name(content, [vim.HostSystem], infra.host.name)
            if host is not None:
                if host.parent._moId != cluster._moId:
                    return ActionResult(
                        success=False,
                        message=f"Host {infra.host.name} is already managed by {host.parent.name}",
                        duration=time.time() - start
                    )
                message = f"Host {infra.host.name} already in cluster - skipped"
            else:
                host = self._add_host(config, cluster)
                message = f"Host {infra.host.name} added to {infra.cluster.name}"

            if host.runtime.inMaintenanceMode:
                logger.info(f"[{self.name}] Exiting maintenance mode on {infra.host.name}...")
                wait_for_task(host.ExitMaintenanceMode_Task(timeout=self.timeout))
                message += ", maintenance mode exited"
        except vmodl.MethodFault as e:
            return ActionResult(
                success=False,
                message=f"Adding host {infra.host.name} failed: {fault_message(e)}",
                duration=time.time() - start
            )
        except OSError as e:
            return ActionResult(
                success=False,
                message=f"Cannot read certificate of {infra.host.name}: {e}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=message,
            duration=time.time() - start,
            context_updates={'host_moid': host._moId}
        )

    def _add_host(self, config: DeploymentConfig, cluster):
        host_cfg = config.infrastructure.host
        thumbprint = host_cfg.thumbprint
        if not thumbprint:
            thumbprint = get_ssl_thumbprint(host_cfg.name)
            logger.info(f"[{self.name}] {host_cfg.name} thumbprint: {thumbprint}")

        spec = vim.host.ConnectSpec(
            hostName=host_cfg.name,
            userName=host_cfg.username,
            password=host_cfg.password,
            sslThumbprint=thumbprint,
            force=True,
        )
        logger.info(f"[{self.name}] Adding {host_cfg.name} to {cluster.name}...")
        return wait_for_task(cluster.AddHost_Task(spec=spec, asConnected=True))


@dataclass
class ConfigureClusterAction:
    """Apply DRS and HA settings to the cluster."""
    name: str

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Reconfigure DRS/HA when they differ from the requested settings."""
        start = time.time()
        cluster_cfg = config.infrastructure.cluster
        content = get_session(config, context).content

        cluster = find_by_name(content, [vim.ClusterComputeResource], cluster_cfg.name)
        if cluster is None:
            return ActionResult(
                success=False,
                message=f"Cluster {cluster_cfg.name} not found",
                duration=time.time() - start
            )

        summary = (f"DRS {'on' if cluster_cfg.drs_enabled else 'off'} ({cluster_cfg.drs_behavior}), "
                   f"HA {'on' if cluster_cfg.ha_enabled else 'off'}")

        current = cluster.configurationEx
        if (current.drsConfig.enabled == cluster_cfg.drs_enabled
                and str(current.drsConfig.defaultVmBehavior) == cluster_cfg.drs_behavior
                and current.dasConfig.enabled == cluster_cfg.ha_enabled
                and current.dasConfig.admissionControlEnabled == cluster_cfg.ha_admission_control):
            return ActionResult(
                success=True,
                message=f"{summary} already set - skipped",
                duration=time.time() - start
            )

        spec = vim.cluster.ConfigSpecEx()
        spec.drsConfig = vim.cluster.DrsConfigInfo(
            enabled=cluster_cfg.drs_enabled,
            defaultVmBehavior=cluster_cfg.drs_behavior,
        )
        spec.dasConfig = vim.cluster.DasConfigInfo(
            enabled=cluster_cfg.ha_enabled,
            admissionControlEnabled=cluster_cfg.ha_admission_control,
            hostMonitoring='enabled',
        )

        logger.info(f"[{self.name}] Configuring {cluster_cfg.name}: {summary}...")
        try:
            wait_for_task(cluster.ReconfigureComputeResource_Task(spec, True))
        except vmodl.MethodFault as e:
            return ActionResult(
                success=False,
                message=f"Cluster reconfiguration failed: {fault_message(e)}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"{summary} configured",
            duration=time.time() - start
        )
