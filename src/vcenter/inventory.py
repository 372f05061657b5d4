"""vSphere Web Services (SOAP) helpers built on pyvmomi."""

import hashlib
import logging
import ssl
from typing import Any, Optional

from pyVim import connect
from pyVim.task import WaitForTask
from pyVmomi import SoapStubAdapter, VmomiSupport, pbm, vim

logger = logging.getLogger(__name__)


def connect_service_instance(server: str, username: str, password: str,
                             verify_ssl: bool = False) -> vim.ServiceInstance:
    """Open a pyvmomi connection to vCenter."""
    logger.debug(f"Connecting to vSphere API on {server}")
    return connect.SmartConnect(
        host=server,
        user=username,
        pwd=password,
        disableSslCertValidation=not verify_ssl,
    )


def disconnect_service_instance(si: vim.ServiceInstance) -> None:
    connect.Disconnect(si)


def find_by_name(content: Any, vimtype: list, name: str, root: Any = None) -> Optional[Any]:
    """Find a managed object by type and name below root (default: rootFolder)."""
    container = content.viewManager.CreateContainerView(
        root or content.rootFolder, vimtype, True
    )
    try:
        for obj in container.view:
            if obj.name == name:
                return obj
    finally:
        container.Destroy()
    return None


def wait_for_task(task: Any) -> Any:
    """Block until a vCenter task finishes and return its result.

    Raises the task's fault (vmodl.MethodFault) when the task fails.
    """
    WaitForTask(task)
    return task.info.result


def get_ssl_thumbprint(host: str, port: int = 443, timeout: float = 10.0) -> str:
    """SHA-1 thumbprint of a host certificate, colon separated (AA:BB:...)."""
    # Unverified fetch: freshly installed hosts present self-signed certs
    pem = ssl.get_server_certificate((host, port), timeout=timeout)
    der = ssl.PEM_cert_to_DER_cert(pem)
    digest = hashlib.sha1(der).hexdigest().upper()
    return ':'.join(digest[i:i + 2] for i in range(0, len(digest), 2))


def connect_pbm(si: vim.ServiceInstance, verify_ssl: bool = False) -> Any:
    """Open the SPBM endpoint reusing the vCenter session, return its content."""
    # SPBM authenticates with the vCenter session cookie
    session_cookie = si._stub.cookie.split('"')[1]  # pylint: disable=protected-access
    VmomiSupport.GetRequestContext()['vcSessionCookie'] = session_cookie
    hostname = si._stub.host.split(':')[0]  # pylint: disable=protected-access

    ssl_context = None
    if not verify_ssl:
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE

    stub = SoapStubAdapter(
        host=hostname,
        path='/pbm/sdk',
        version='pbm.version.version2',
        sslContext=ssl_context,
    )
    pbm_si = pbm.ServiceInstance('ServiceInstance', stub)
    return pbm_si.RetrieveContent()


def find_pbm_profile(pbm_content: Any, name: str) -> Optional[Any]:
    """Find a storage requirement profile by name."""
    manager = pbm_content.profileManager
    profile_ids = manager.PbmQueryProfile(
        resourceType=pbm.profile.ResourceType(resourceType='STORAGE'),
        profileCategory='REQUIREMENT'
    )
    if not profile_ids:
        return None
    for profile in manager.PbmRetrieveContent(profileIds=profile_ids):
        if profile.name == name:
            return profile
    return None


def create_tag_based_profile(pbm_content: Any, name: str, category: str, tag: str) -> Any:
    """Create a storage policy placing storage on datastores carrying tag."""
    rule = pbm.capability.CapabilityInstance(
        id=pbm.capability.CapabilityMetadata.UniqueId(
            namespace='http://www.vmware.com/storage/tag',
            id=category,
        ),
        constraint=[pbm.capability.ConstraintInstance(
            propertyInstance=[pbm.capability.PropertyInstance(
                id='com.vmware.storage.tag.' + category + '.property',
                value=pbm.capability.types.DiscreteSet(values=[tag]),
            )]
        )]
    )
    spec = pbm.profile.CapabilityBasedProfileCreateSpec(
        name=name,
        description=f"Tag based placement on {category}:{tag}",
        resourceType=pbm.profile.ResourceType(resourceType='STORAGE'),
        constraints=pbm.profile.SubProfileCapabilityConstraints(
            subProfiles=[pbm.profile.SubProfileCapabilityConstraints.SubProfile(
                name='Tag based placement',
                capability=[rule],
            )]
        ),
    )
    return pbm_content.profileManager.PbmCreate(createSpec=spec)


def fault_message(fault: Exception) -> str:
    """Human readable text of a vmodl fault (or any exception)."""
    msg = getattr(fault, 'msg', None)
    if msg:
        return str(msg)
    return str(fault) or type(fault).__name__
