"""Storage provisioning actions: VMFS datastore and edge storage policy."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from pyVmomi import vim, vmodl

from common import ActionResult
from config import DeploymentConfig
from vcenter import ApiError, get_session
from vcenter.inventory import (
    create_tag_based_profile,
    fault_message,
    find_by_name,
    find_pbm_profile,
)

logger = logging.getLogger(__name__)


def _capacity_gb(disk: Any) -> float:
    capacity = disk.capacity
    return capacity.block * capacity.blockSize / (1024 ** 3)


def select_disk(disks: list, canonical_name: Optional[str]) -> tuple[Optional[Any], str]:
    """Pick the disk for the VMFS datastore from the host's eligible disks.

    With a canonical name, that exact device. Without one, the only eligible
    disk; several candidates are ambiguous.

    Returns:
        (disk, error) tuple; disk is None when error is set
    """
    names = [d.canonicalName for d in disks]
    if canonical_name:
        for disk in disks:
            if disk.canonicalName == canonical_name:
                return disk, ''
        return None, (f"Disk {canonical_name} is not eligible for VMFS "
                      f"(eligible: {', '.join(names) if names else 'none'})")
    if not disks:
        return None, "No disk eligible for VMFS on host"
    if len(disks) > 1:
        candidates = ', '.join(f"{d.canonicalName} ({_capacity_gb(d):.0f}GB)" for d in disks)
        return None, f"Several eligible disks, set storage.disk.canonical_name to one of: {candidates}"
    return disks[0], ''


@dataclass
class CreateDatastoreAction:
    """Format a local disk of the host as a VMFS datastore."""
    name: str

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Create the datastore unless the host already has it."""
        start = time.time()
        infra = config.infrastructure
        storage = infra.storage
        content = get_session(config, context).content

        host = find_by_name(content, [vim.HostSystem], infra.host.name)
        if host is None:
            return ActionResult(
                success=False,
                message=f"Host {infra.host.name} not found",
                duration=time.time() - start
            )

        for datastore in host.datastore:
            if datastore.name == storage.datastore:
                return ActionResult(
                    success=True,
                    message=f"Datastore {storage.datastore} already exists - skipped",
                    duration=time.time() - start,
                    context_updates={'datastore_moid': datastore._moId}
                )

        ds_system = host.configManager.datastoreSystem
        try:
            disk, error = select_disk(ds_system.QueryAvailableDisksForVmfs(), storage.disk_canonical_name)
            if disk is None:
                return ActionResult(
                    success=False,
                    message=error,
                    duration=time.time() - start
                )

            options = ds_system.QueryVmfsDatastoreCreateOptions(devicePath=disk.devicePath)
            if not options:
                return ActionResult(
                    success=False,
                    message=f"No VMFS create options for {disk.canonicalName}",
                    duration=time.time() - start
                )
            spec = options[0].spec
            spec.vmfs.volumeName = storage.datastore

            logger.info(f"[{self.name}] Creating VMFS datastore {storage.datastore} "
                        f"on {disk.canonicalName} ({_capacity_gb(disk):.0f}GB)...")
            datastore = ds_system.CreateVmfsDatastore(spec=spec)
        except vmodl.MethodFault as e:
            return ActionResult(
                success=False,
                message=f"Datastore creation failed: {fault_message(e)}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Datastore {storage.datastore} created on {disk.canonicalName}",
            duration=time.time() - start,
            context_updates={'datastore_moid': datastore._moId}
        )


@dataclass
class CreateStoragePolicyAction:
    """Tag the datastore and create the tag-based edge storage policy."""
    name: str

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Ensure category, tag, tag association and policy exist."""
        start = time.time()
        storage = config.infrastructure.storage
        session = get_session(config, context)

        datastore_moid = context.get('datastore_moid')
        if not datastore_moid:
            datastore = find_by_name(session.content, [vim.Datastore], storage.datastore)
            if datastore is None:
                return ActionResult(
                    success=False,
                    message=f"Datastore {storage.datastore} not found",
                    duration=time.time() - start
                )
            datastore_moid = datastore._moId

        rest = session.rest
        try:
            category_id = rest.find_tag_category(storage.tag_category)
            if not category_id:
                logger.info(f"[{self.name}] Creating tag category {storage.tag_category}...")
                category_id = rest.create_tag_category(storage.tag_category, ['Datastore'])

            tag_id = rest.find_tag(category_id, storage.tag)
            if not tag_id:
                logger.info(f"[{self.name}] Creating tag {storage.tag}...")
                tag_id = rest.create_tag(category_id, storage.tag)

            if rest.attach_tag(tag_id, 'Datastore', datastore_moid):
                logger.info(f"[{self.name}] Tagged {storage.datastore} with {storage.tag_category}:{storage.tag}")

            created = False
            if find_pbm_profile(session.pbm, storage.policy_name) is None:
                logger.info(f"[{self.name}] Creating storage policy {storage.policy_name}...")
                create_tag_based_profile(session.pbm, storage.policy_name, storage.tag_category, storage.tag)
                created = True

            policy_id = rest.find_storage_policy(storage.policy_name)
        except ApiError as e:
            return ActionResult(
                success=False,
                message=f"Tagging failed: {e}",
                duration=time.time() - start
            )
        except vmodl.MethodFault as e:
            return ActionResult(
                success=False,
                message=f"Storage policy creation failed: {fault_message(e)}",
                duration=time.time() - start
            )

        if not policy_id:
            return ActionResult(
                success=False,
                message=f"Storage policy {storage.policy_name} not visible through the API",
                duration=time.time() - start
            )

        state = 'created' if created else 'already exists'
        return ActionResult(
            success=True,
            message=f"Storage policy {storage.policy_name} {state} ({policy_id})",
            duration=time.time() - start,
            context_updates={'storage_policy_id': policy_id}
        )
