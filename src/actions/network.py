"""Network provisioning actions: distributed switch and its port groups."""

import logging
import time
from dataclasses import dataclass

from pyVmomi import vim, vmodl

from common import ActionResult
from config import PORT_GROUP_ROLES, DeploymentConfig
from vcenter import get_session
from vcenter.inventory import fault_message, find_by_name, wait_for_task

logger = logging.getLogger(__name__)


def _host_member_spec(host, uplinks: list[str], operation: str):
    """Host membership spec attaching the given physical NICs as uplinks."""
    return vim.dvs.HostMember.ConfigSpec(
        operation=operation,
        host=host,
        backing=vim.dvs.HostMember.PnicBacking(
            pnicSpec=[vim.dvs.HostMember.PnicSpec(pnicDevice=nic) for nic in uplinks]
        ),
    )


@dataclass
class CreateDistributedSwitchAction:
    """Create the distributed switch with the host's uplinks attached."""
    name: str

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Create the switch, or add the host to an existing one."""
        start = time.time()
        infra = config.infrastructure
        net = infra.network
        content = get_session(config, context).content

        datacenter = find_by_name(content, [vim.Datacenter], infra.datacenter)
        host = find_by_name(content, [vim.HostSystem], infra.host.name)
        if datacenter is None or host is None:
            return ActionResult(
                success=False,
                message=f"Missing inventory: datacenter={infra.datacenter} host={infra.host.name}",
                duration=time.time() - start
            )

        host_nics = {pnic.device for pnic in host.config.network.pnic}
        missing = [nic for nic in net.uplinks if nic not in host_nics]
        if missing:
            return ActionResult(
                success=False,
                message=f"Uplinks not present on {infra.host.name}: {', '.join(missing)} "
                        f"(available: {', '.join(sorted(host_nics))})",
                duration=time.time() - start
            )

        dvs = find_by_name(content, [vim.DistributedVirtualSwitch], net.switch_name,
                           root=datacenter.networkFolder)
        try:
            if dvs is None:
                dvs = self._create(datacenter, host, net)
                message = f"Switch {net.switch_name} created (MTU {net.mtu}, uplinks {', '.join(net.uplinks)})"
            elif host._moId in {member.config.host._moId for member in dvs.config.host}:
                message = f"Switch {net.switch_name} already exists with {infra.host.name} - skipped"
            else:
                logger.info(f"[{self.name}] Adding {infra.host.name} to {net.switch_name}...")
                spec = vim.dvs.VmwareDistributedVirtualSwitch.ConfigSpec(
                    configVersion=dvs.config.configVersion,
                    host=[_host_member_spec(host, net.uplinks, 'add')],
                )
                wait_for_task(dvs.ReconfigureDvs_Task(spec))
                message = f"Host {infra.host.name} added to existing switch {net.switch_name}"
        except vmodl.MethodFault as e:
            return ActionResult(
                success=False,
                message=f"Switch {net.switch_name} configuration failed: {fault_message(e)}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=message,
            duration=time.time() - start,
            context_updates={'switch_moid': dvs._moId}
        )

    def _create(self, datacenter, host, net):
        config_spec = vim.dvs.VmwareDistributedVirtualSwitch.ConfigSpec(
            name=net.switch_name,
            maxMtu=net.mtu,
            uplinkPortPolicy=vim.DistributedVirtualSwitch.NameArrayUplinkPortPolicy(
                uplinkPortName=[f"uplink{i + 1}" for i in range(len(net.uplinks))]
            ),
            host=[_host_member_spec(host, net.uplinks, 'add')],
        )
        logger.info(f"[{self.name}] Creating switch {net.switch_name}...")
        task = datacenter.networkFolder.CreateDVS_Task(
            vim.DistributedVirtualSwitch.CreateSpec(configSpec=config_spec)
        )
        return wait_for_task(task)


@dataclass
class CreatePortGroupsAction:
    """Create the management, workload and two load-balancer port groups."""
    name: str
    num_ports: int = 8

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Create missing port groups; existing ones must carry the same VLAN."""
        start = time.time()
        net = config.infrastructure.network
        content = get_session(config, context).content

        dvs = find_by_name(content, [vim.DistributedVirtualSwitch], net.switch_name)
        if dvs is None:
            return ActionResult(
                success=False,
                message=f"Switch {net.switch_name} not found",
                duration=time.time() - start
            )

        existing = {pg.name: pg for pg in dvs.portgroup}
        specs = []
        kept = []
        for role in PORT_GROUP_ROLES:
            pg_cfg = net.port_groups[role]
            current = existing.get(pg_cfg.name)
            if current is not None:
                vlan = getattr(current.config.defaultPortConfig.vlan, 'vlanId', None)
                if vlan != pg_cfg.vlan_id:
                    return ActionResult(
                        success=False,
                        message=f"Port group {pg_cfg.name} exists with VLAN {vlan}, expected {pg_cfg.vlan_id}",
                        duration=time.time() - start
                    )
                kept.append(pg_cfg.name)
                continue
            specs.append(vim.dvs.DistributedVirtualPortgroup.ConfigSpec(
                name=pg_cfg.name,
                type='earlyBinding',
                numPorts=self.num_ports,
                autoExpand=True,
                defaultPortConfig=vim.dvs.VmwareDistributedVirtualSwitch.VmwarePortConfigPolicy(
                    vlan=vim.dvs.VmwareDistributedVirtualSwitch.VlanIdSpec(
                        vlanId=pg_cfg.vlan_id,
                        inherited=False,
                    )
                ),
            ))

        if specs:
            logger.info(f"[{self.name}] Creating port groups: {', '.join(s.name for s in specs)}...")
            try:
                wait_for_task(dvs.AddDVPortgroup_Task(specs))
            except vmodl.MethodFault as e:
                return ActionResult(
                    success=False,
                    message=f"Port group creation failed: {fault_message(e)}",
                    duration=time.time() - start
                )

        by_name = {pg.name: pg._moId for pg in dvs.portgroup}
        port_groups = {role: by_name.get(net.port_groups[role].name) for role in PORT_GROUP_ROLES}
        missing = [role for role, moid in port_groups.items() if not moid]
        if missing:
            return ActionResult(
                success=False,
                message=f"Port groups not found after creation: {', '.join(missing)}",
                duration=time.time() - start
            )

        message = f"Created {len(specs)} port groups"
        if kept:
            message += f", kept {len(kept)} existing"
        return ActionResult(
            success=True,
            message=message,
            duration=time.time() - start,
            context_updates={'port_groups': port_groups}
        )
