"""Deployment configuration management.

Configuration is loaded from two JSON files given on the command line:
- infrastructure.json: vCenter endpoint, datacenter, cluster, ESX host,
  distributed switch with its four port groups, datastore and edge policy
- supervisor.json: Supervisor control plane sizing, the four network blocks,
  DNS/NTP, Supervisor Services and the Argo CD bootstrap

Passwords resolve in order: JSON value, secrets file (YAML), environment.

All problems found in a file are collected and raised together as one
ConfigError, one line per problem, each prefixed with its JSON path.
"""

import ipaddress
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

# The design fixes four networks; every per-network setting is keyed by role
PORT_GROUP_ROLES = ('management', 'workload', 'lb_management', 'lb_frontend')

DRS_BEHAVIORS = ('manual', 'partiallyAutomated', 'fullyAutomated')
CONTROL_PLANE_SIZES = ('TINY', 'SMALL', 'MEDIUM', 'LARGE')
CONTROL_PLANE_COUNTS = (1, 3)

# Embedded Supervisor Services: verified, never installed
CORE_SERVICES = ('vmoperator.vsphere.vmware.com', 'tkg.vsphere.vmware.com')

# Supervisor Services every deployment installs: Velero and the Argo CD Operator
REQUIRED_SERVICES = ('velero.vsphere.vmware.com', 'argocd-service.vsphere.vmware.com')

DEFAULT_SERVICES_CIDR = '10.96.0.0/23'
MAX_IPV4 = int(ipaddress.IPv4Address('255.255.255.255'))

DEFAULT_POLICY_NAME = 'supervisor-edge'
DEFAULT_TAG_CATEGORY = 'supervisor-storage'


class ConfigError(Exception):
    """Configuration error."""


class _Fields:
    """Typed accessor over one JSON object that records problems by path."""

    def __init__(self, data: Any, path: str, errors: list[str]):
        self.path = path
        self.errors = errors
        if data is None:
            data = {}
        if not isinstance(data, dict):
            self._error('', f"must be an object, got {type(data).__name__}")
            data = {}
        self.data = data

    def _key_path(self, key: str) -> str:
        return f"{self.path}.{key}" if self.path else key

    def _error(self, key: str, message: str) -> None:
        where = self._key_path(key) if key else (self.path or '<root>')
        self.errors.append(f"{where}: {message}")

    def has(self, key: str) -> bool:
        return self.data.get(key) is not None

    def section(self, key: str, required: bool = True) -> '_Fields':
        value = self.data.get(key)
        if value is None and required:
            self._error(key, "required section missing")
        return _Fields(value, self._key_path(key), self.errors)

    def str(self, key: str, required: bool = True, default: str = '') -> str:
        value = self.data.get(key)
        if value is None or value == '':
            if required:
                self._error(key, "required field missing")
            return default
        if not isinstance(value, str):
            self._error(key, f"must be a string, got {type(value).__name__}")
            return default
        return value

    def int(self, key: str, default: Optional[int] = None, required: bool = False,
            minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[int]:
        value = self.data.get(key)
        if value is None:
            if required:
                self._error(key, "required field missing")
            return default
        # bool is an int subclass; true/false is never a valid number here
        if isinstance(value, bool) or not isinstance(value, int):
            self._error(key, f"must be an integer, got {value!r}")
            return default
        if minimum is not None and value < minimum:
            self._error(key, f"must be at least {minimum}, got {value}")
            return default
        if maximum is not None and value > maximum:
            self._error(key, f"must be at most {maximum}, got {value}")
            return default
        return value

    def bool(self, key: str, default: bool) -> bool:
        value = self.data.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            self._error(key, f"must be true or false, got {value!r}")
            return default
        return value

    def str_list(self, key: str, required: bool = True) -> list[str]:
        value = self.data.get(key)
        if not value:
            if required:
                self._error(key, "must be a non-empty list")
            return []
        if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
            self._error(key, "must be a list of non-empty strings")
            return []
        return value

    def choice(self, key: str, choices: tuple, default: Any) -> Any:
        value = self.data.get(key, default)
        # Exact type match: true == 1 and 1.0 == 1 would pass a plain membership test
        if value not in choices or type(value) not in {type(c) for c in choices}:
            self._error(key, f"must be one of {', '.join(str(c) for c in choices)}, got {value!r}")
            return default
        return value


# -----------------------------------------------------------------------------
# infrastructure.json
# -----------------------------------------------------------------------------

@dataclass
class VCenterConfig:
    """vCenter endpoint and credentials."""
    server: str
    username: str
    password: str = field(default='', repr=False)
    verify_ssl: bool = False


@dataclass
class ClusterConfig:
    """Compute cluster with its image and DRS/HA settings."""
    name: str
    esx_image: str
    drs_enabled: bool = True
    drs_behavior: str = 'fullyAutomated'
    ha_enabled: bool = True
    ha_admission_control: bool = False


@dataclass
class EsxHostConfig:
    """The single ESX host added to the cluster."""
    name: str
    username: str = 'root'
    password: str = field(default='', repr=False)
    thumbprint: str = ''


@dataclass
class PortGroupConfig:
    """A distributed port group bound to one role of the topology."""
    role: str
    name: str
    vlan_id: int


@dataclass
class NetworkConfig:
    """Distributed switch and its four port groups."""
    switch_name: str
    uplinks: list[str]
    port_groups: dict[str, PortGroupConfig]
    mtu: int = 1500

    @property
    def vlan_ids(self) -> dict[str, int]:
        """VLAN ID per role."""
        return {role: pg.vlan_id for role, pg in self.port_groups.items()}


@dataclass
class StorageConfig:
    """VMFS datastore and the tag-based edge storage policy."""
    datastore: str
    disk_canonical_name: Optional[str] = None
    policy_name: str = DEFAULT_POLICY_NAME
    tag_category: str = DEFAULT_TAG_CATEGORY
    tag: str = DEFAULT_POLICY_NAME


@dataclass
class InfrastructureConfig:
    """Contents of infrastructure.json."""
    vcenter: VCenterConfig
    datacenter: str
    cluster: ClusterConfig
    host: EsxHostConfig
    network: NetworkConfig
    storage: StorageConfig
    source_path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> 'InfrastructureConfig':
        """Create InfrastructureConfig from parsed JSON.

        Raises:
            ConfigError: listing every problem found
        """
        errors: list[str] = []
        root = _Fields(data, '', errors)

        vc = root.section('vcenter')
        vcenter = VCenterConfig(
            server=vc.str('server'),
            username=vc.str('username'),
            password=vc.str('password', required=False),
            verify_ssl=vc.bool('verify_ssl', False),
        )

        cl = root.section('cluster')
        drs = cl.section('drs', required=False)
        ha = cl.section('ha', required=False)
        cluster = ClusterConfig(
            name=cl.str('name'),
            esx_image=cl.str('esx_image'),
            drs_enabled=drs.bool('enabled', True),
            drs_behavior=drs.choice('behavior', DRS_BEHAVIORS, 'fullyAutomated'),
            ha_enabled=ha.bool('enabled', True),
            ha_admission_control=ha.bool('admission_control', False),
        )

        hs = root.section('host')
        host = EsxHostConfig(
            name=hs.str('name'),
            username=hs.str('username', required=False, default='root'),
            password=hs.str('password', required=False),
            thumbprint=hs.str('thumbprint', required=False),
        )

        net = root.section('network')
        network = NetworkConfig(
            switch_name=net.str('switch_name'),
            uplinks=net.str_list('uplinks'),
            port_groups=_parse_port_groups(net),
            mtu=net.int('mtu', default=1500, minimum=1280, maximum=9000) or 1500,
        )

        st = root.section('storage')
        disk = st.section('disk', required=False)
        policy = st.section('policy', required=False)
        policy_name = policy.str('name', required=False, default=DEFAULT_POLICY_NAME)
        storage = StorageConfig(
            datastore=st.str('datastore'),
            disk_canonical_name=disk.str('canonical_name', required=False) or None,
            policy_name=policy_name,
            tag_category=policy.str('tag_category', required=False, default=DEFAULT_TAG_CATEGORY),
            tag=policy.str('tag', required=False, default=policy_name),
        )

        datacenter = root.str('datacenter')

        if errors:
            raise ConfigError(_format_errors(source_path or 'infrastructure config', errors))

        return cls(
            vcenter=vcenter,
            datacenter=datacenter,
            cluster=cluster,
            host=host,
            network=network,
            storage=storage,
            source_path=source_path,
        )


def _parse_port_groups(net: _Fields) -> dict[str, PortGroupConfig]:
    """Parse network.port_groups: exactly one entry per topology role."""
    section = net.section('port_groups')
    port_groups: dict[str, PortGroupConfig] = {}
    if net.data.get('port_groups') is None:
        return port_groups

    present = set(section.data)
    expected = set(PORT_GROUP_ROLES)
    if len(section.data) != len(PORT_GROUP_ROLES):
        section._error('', f"exactly {len(PORT_GROUP_ROLES)} port groups (VLAN IDs) required, "
                           f"got {len(section.data)}")
    for role in sorted(present - expected):
        section._error(role, f"unknown role (expected: {', '.join(PORT_GROUP_ROLES)})")
    for role in PORT_GROUP_ROLES:
        if role not in present:
            section._error(role, "required port group missing")
            continue
        pg = section.section(role)
        port_groups[role] = PortGroupConfig(
            role=role,
            name=pg.str('name'),
            vlan_id=pg.int('vlan_id', required=True, minimum=0, maximum=4094) or 0,
        )

    names = [pg.name for pg in port_groups.values() if pg.name]
    for name in sorted({n for n in names if names.count(n) > 1}):
        section._error('', f"port group name '{name}' used more than once")

    vlans = [pg.vlan_id for pg in port_groups.values()]
    if len(vlans) == len(PORT_GROUP_ROLES) and len(set(vlans)) < len(vlans):
        logger.warning("Port groups share a VLAN ID; networks will not be isolated at layer 2")

    return port_groups


# -----------------------------------------------------------------------------
# supervisor.json
# -----------------------------------------------------------------------------

@dataclass
class IpRange:
    """A run of consecutive IPv4 addresses."""
    start: ipaddress.IPv4Address
    count: int

    @property
    def end(self) -> ipaddress.IPv4Address:
        return self.start + (self.count - 1)

    def overlaps(self, other: 'IpRange') -> bool:
        return self.start <= other.end and other.start <= self.end

    def to_dict(self) -> dict:
        return {'address': str(self.start), 'count': self.count}

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass
class NetworkBlock:
    """Addressing of one of the four networks."""
    cidr: ipaddress.IPv4Network
    gateway: ipaddress.IPv4Address
    ip_ranges: list[IpRange] = field(default_factory=list)

    @property
    def gateway_cidr(self) -> str:
        """Gateway in address/prefix form, as the Supervisor API expects it."""
        return f"{self.gateway}/{self.cidr.prefixlen}"


@dataclass
class ControlPlaneConfig:
    """Supervisor control plane sizing and availability."""
    size: str = 'SMALL'
    count: int = 1


@dataclass
class ServiceConfig:
    """A Supervisor Service to register and install."""
    id: str
    version: str
    definition: Optional[Path] = None
    values: Optional[Path] = None


@dataclass
class ArgoCDConfig:
    """Argo CD bootstrap settings."""
    operator_manifest: Path
    instance_manifest: Path
    instance_name: str
    namespace: str = 'argocd'
    context_name: str = 'supervisor'
    timeout: int = 900


@dataclass
class SupervisorConfig:
    """Contents of supervisor.json."""
    name: str
    control_plane: ControlPlaneConfig
    management: NetworkBlock
    workload: NetworkBlock
    services_cidr: ipaddress.IPv4Network
    lb_management: NetworkBlock
    lb_frontend: NetworkBlock
    dns_servers: list[str]
    ntp_servers: list[str]
    argocd: ArgoCDConfig
    lb_size: str = 'SMALL'
    search_domains: list[str] = field(default_factory=list)
    storage_policy: Optional[str] = None
    services: list[ServiceConfig] = field(default_factory=list)
    source_path: Optional[Path] = None

    @property
    def networks(self) -> dict[str, NetworkBlock]:
        """Network block per topology role (same keys as the port groups)."""
        return {
            'management': self.management,
            'workload': self.workload,
            'lb_management': self.lb_management,
            'lb_frontend': self.lb_frontend,
        }

    @property
    def management_range(self) -> IpRange:
        return self.management.ip_ranges[0]

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> 'SupervisorConfig':
        """Create SupervisorConfig from parsed JSON.

        Relative paths resolve against the directory of source_path (or the
        current directory).

        Raises:
            ConfigError: listing every problem found
        """
        errors: list[str] = []
        base_dir = source_path.parent if source_path else Path.cwd()
        root = _Fields(data, '', errors)

        cp = root.section('control_plane', required=False)
        control_plane = ControlPlaneConfig(
            size=cp.choice('size', CONTROL_PLANE_SIZES, 'SMALL'),
            count=cp.choice('count', CONTROL_PLANE_COUNTS, 1),
        )
        if control_plane.count == 3:
            logger.warning("control_plane.count=3 on a single host: anti-affinity cannot be honoured")

        mg = root.section('management')
        management = _parse_block(mg)
        start_ip = _parse_ip(mg, 'start_ip')
        ip_count = mg.int('ip_count', default=5, minimum=1, maximum=256) or 5
        if start_ip is not None:
            management_range = _make_range(mg, 'ip_count', start_ip, ip_count)
            management.ip_ranges = [management_range] if management_range else []
        minimum = control_plane.count + 2
        if ip_count < minimum:
            mg._error('ip_count', f"must be at least {minimum} for {control_plane.count} "
                                  f"control plane node(s), got {ip_count}")

        wl = root.section('workload')
        workload = _parse_block(wl)
        workload.ip_ranges = _parse_ranges(wl)
        services_cidr = _parse_network(wl, 'services_cidr', required=False)

        lb = root.section('load_balancer')
        lbm = lb.section('management')
        lb_management = _parse_block(lbm)
        lb_management.ip_ranges = _parse_ranges(lbm)
        lbf = lb.section('frontend')
        lb_frontend = _parse_block(lbf)
        lb_frontend.ip_ranges = _parse_ranges(lbf)

        dns = root.section('dns')
        ntp = root.section('ntp')

        services = []
        for i, entry in enumerate(root.data.get('services') or []):
            sv = _Fields(entry, f"services[{i}]", errors)
            services.append(ServiceConfig(
                id=sv.str('id'),
                version=sv.str('version'),
                definition=_parse_path(sv, 'definition', base_dir, required=False),
                values=_parse_path(sv, 'values', base_dir, required=False),
            ))
        service_ids = [s.id for s in services]
        for sid in sorted({s for s in service_ids if service_ids.count(s) > 1}):
            errors.append(f"services: '{sid}' listed more than once")
        for sid in REQUIRED_SERVICES:
            if sid not in service_ids:
                errors.append(f"services: required service '{sid}' missing")

        argocd = _parse_argocd(root.section('argocd'), base_dir)

        config = cls(
            name=root.str('name', required=False, default='supervisor'),
            control_plane=control_plane,
            management=management,
            workload=workload,
            services_cidr=services_cidr or ipaddress.IPv4Network(DEFAULT_SERVICES_CIDR),
            lb_management=lb_management,
            lb_frontend=lb_frontend,
            lb_size=lb.choice('size', CONTROL_PLANE_SIZES, 'SMALL'),
            dns_servers=dns.str_list('servers'),
            search_domains=dns.str_list('search_domains', required=False),
            ntp_servers=ntp.str_list('servers'),
            storage_policy=root.str('storage_policy', required=False) or None,
            services=services,
            argocd=argocd,
            source_path=source_path,
        )

        # Topology checks only make sense once every block parsed cleanly
        if not errors:
            errors.extend(check_topology(config))

        if errors:
            raise ConfigError(_format_errors(source_path or 'supervisor config', errors))

        return config


_PLACEHOLDER_NET = ipaddress.IPv4Network('0.0.0.0/32')
_PLACEHOLDER_IP = ipaddress.IPv4Address('0.0.0.0')


def _parse_ip(fields: _Fields, key: str) -> Optional[ipaddress.IPv4Address]:
    raw = fields.str(key)
    if not raw:
        return None
    try:
        return ipaddress.IPv4Address(raw)
    except ValueError:
        fields._error(key, f"invalid IPv4 address {raw!r}")
        return None


def _parse_network(fields: _Fields, key: str, required: bool = True) -> Optional[ipaddress.IPv4Network]:
    raw = fields.str(key, required=required)
    if not raw:
        return None
    try:
        return ipaddress.IPv4Network(raw)
    except ValueError:
        fields._error(key, f"invalid IPv4 network {raw!r} (host bits set?)")
        return None


def _parse_block(fields: _Fields) -> NetworkBlock:
    return NetworkBlock(
        cidr=_parse_network(fields, 'cidr') or _PLACEHOLDER_NET,
        gateway=_parse_ip(fields, 'gateway') or _PLACEHOLDER_IP,
    )


def _parse_ranges(fields: _Fields) -> list[IpRange]:
    raw = fields.data.get('ip_ranges')
    if not raw or not isinstance(raw, list):
        fields._error('ip_ranges', "must be a non-empty list")
        return []
    ranges = []
    for i, entry in enumerate(raw):
        rf = _Fields(entry, f"{fields.path}.ip_ranges[{i}]", fields.errors)
        start = _parse_ip(rf, 'start')
        count = rf.int('count', required=True, minimum=1, maximum=65536)
        if start is not None and count:
            rng = _make_range(rf, 'count', start, count)
            if rng:
                ranges.append(rng)
    return ranges


def _make_range(fields: _Fields, key: str, start: ipaddress.IPv4Address, count: int) -> Optional[IpRange]:
    """IpRange, or None with an error when it would run past the IPv4 space."""
    if int(start) + count - 1 > MAX_IPV4:
        fields._error(key, f"{count} addresses from {start} run past 255.255.255.255")
        return None
    return IpRange(start, count)


def _parse_path(fields: _Fields, key: str, base_dir: Path, required: bool = True) -> Optional[Path]:
    raw = fields.str(key, required=required)
    if not raw:
        return None
    path = Path(raw)
    if not path.is_absolute():
        path = base_dir / path
    if not path.is_file():
        fields._error(key, f"file not found: {path}")
    return path


def _parse_argocd(fields: _Fields, base_dir: Path) -> ArgoCDConfig:
    operator_manifest = _parse_path(fields, 'operator_manifest', base_dir)
    instance_manifest = _parse_path(fields, 'instance_manifest', base_dir)

    instance_name = fields.str('instance_name', required=False)
    if not instance_name and instance_manifest and instance_manifest.is_file():
        instance_name = _find_argocd_name(instance_manifest) or ''
        if not instance_name:
            fields._error('instance_name', f"not set and no ArgoCD resource found in {instance_manifest}")

    return ArgoCDConfig(
        operator_manifest=operator_manifest or Path(),
        instance_manifest=instance_manifest or Path(),
        instance_name=instance_name,
        namespace=fields.str('namespace', required=False, default='argocd'),
        context_name=fields.str('context_name', required=False, default='supervisor'),
        timeout=fields.int('timeout', default=900, minimum=1) or 900,
    )


def _find_argocd_name(manifest: Path) -> Optional[str]:
    """Return metadata.name of the first ArgoCD document in a YAML file."""
    try:
        with open(manifest, encoding='utf-8') as f:
            for doc in yaml.safe_load_all(f):
                if isinstance(doc, dict) and doc.get('kind') == 'ArgoCD':
                    return (doc.get('metadata') or {}).get('name')
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {manifest}: {e}")
    return None


def check_topology(config: SupervisorConfig) -> list[str]:
    """Check the four network blocks are consistent with each other.

    Returns:
        List of problems (empty if consistent)
    """
    errors = []
    networks = config.networks

    for role, block in networks.items():
        where = _block_path(role)
        usable = (block.cidr.network_address, block.cidr.broadcast_address)
        if block.gateway not in block.cidr or block.gateway in usable:
            errors.append(f"{where}.gateway: {block.gateway} is not a usable address in {block.cidr}")
        for rng in block.ip_ranges:
            if rng.start not in block.cidr or rng.end not in block.cidr:
                errors.append(f"{where}: range {rng} is outside {block.cidr}")
            elif rng.start <= usable[0] or rng.end >= usable[1]:
                errors.append(f"{where}: range {rng} includes the network or broadcast address")
            elif rng.start <= block.gateway <= rng.end:
                errors.append(f"{where}: range {rng} includes the gateway {block.gateway}")
        for i, a in enumerate(block.ip_ranges):
            for b in block.ip_ranges[i + 1:]:
                if a.overlaps(b):
                    errors.append(f"{where}: ranges {a} and {b} overlap")

    # First frontend address is the load balancer interface, the rest are VIPs
    if sum(r.count for r in config.lb_frontend.ip_ranges) < 2:
        errors.append("load_balancer.frontend.ip_ranges: at least 2 addresses required "
                      "(interface address plus virtual IPs)")

    roles = list(networks)
    for i, a in enumerate(roles):
        for b in roles[i + 1:]:
            if networks[a].cidr.overlaps(networks[b].cidr):
                errors.append(
                    f"{_block_path(a)}.cidr: {networks[a].cidr} overlaps "
                    f"{_block_path(b)}.cidr {networks[b].cidr}"
                )
        if config.services_cidr.overlaps(networks[a].cidr):
            errors.append(
                f"workload.services_cidr: {config.services_cidr} overlaps "
                f"{_block_path(a)}.cidr {networks[a].cidr}"
            )

    return errors


def _block_path(role: str) -> str:
    return {'lb_management': 'load_balancer.management',
            'lb_frontend': 'load_balancer.frontend'}.get(role, role)


# -----------------------------------------------------------------------------
# Loading
# -----------------------------------------------------------------------------

@dataclass
class DeploymentConfig:
    """Both configuration files, as seen by actions."""
    infrastructure: InfrastructureConfig
    supervisor: SupervisorConfig

    def __post_init__(self):
        if not self.supervisor.storage_policy:
            self.supervisor.storage_policy = self.infrastructure.storage.policy_name

    @property
    def name(self) -> str:
        """Cluster name, used to label reports."""
        return self.infrastructure.cluster.name

    @property
    def target(self) -> str:
        return f"{self.infrastructure.vcenter.server}/{self.infrastructure.cluster.name}"


def _parse_json(path: Path) -> dict:
    """Parse a JSON file that must hold an object."""
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_secrets(path: Optional[Path]) -> dict:
    """Load passwords from a secrets YAML file (empty when path is None)."""
    if path is None:
        return {}
    if not path.is_file():
        raise ConfigError(f"Secrets file not found: {path}")
    try:
        secrets = _parse_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in secrets file {path}: {e}")
    if not isinstance(secrets, dict):
        raise ConfigError(f"Secrets file {path} must be a YAML mapping")
    return secrets


def _resolve_passwords(infra: InfrastructureConfig, secrets: dict) -> None:
    """Fill empty passwords from secrets, then environment."""
    passwords = secrets.get('passwords') or {}
    missing = []

    if not infra.vcenter.password:
        infra.vcenter.password = passwords.get('vcenter') or os.environ.get('VCENTER_PASSWORD', '')
    if not infra.vcenter.password:
        missing.append("vcenter.password (or secrets passwords.vcenter, or $VCENTER_PASSWORD)")

    if not infra.host.password:
        infra.host.password = passwords.get('esx_host') or os.environ.get('ESX_HOST_PASSWORD', '')
    if not infra.host.password:
        missing.append("host.password (or secrets passwords.esx_host, or $ESX_HOST_PASSWORD)")

    if missing:
        raise ConfigError(_format_errors(
            infra.source_path or 'infrastructure config',
            [f"{m}: required" for m in missing]
        ))


def _format_errors(source: Any, errors: list[str]) -> str:
    lines = [f"Invalid configuration in {source}:"]
    lines.extend(f"  - {e}" for e in errors)
    return '\n'.join(lines)


def load_infrastructure_config(path: Path) -> InfrastructureConfig:
    """Load and validate infrastructure.json (passwords not yet resolved)."""
    return InfrastructureConfig.from_dict(_parse_json(path), source_path=path)


def load_supervisor_config(path: Path) -> SupervisorConfig:
    """Load and validate supervisor.json."""
    return SupervisorConfig.from_dict(_parse_json(path), source_path=path)


def load_deployment_config(
    infrastructure_path: Path,
    supervisor_path: Path,
    secrets_path: Optional[Path] = None
) -> DeploymentConfig:
    """Load both configuration files and resolve passwords.

    Raises:
        ConfigError: If either file is missing or invalid
    """
    infra = load_infrastructure_config(Path(infrastructure_path))
    supervisor = load_supervisor_config(Path(supervisor_path))
    _resolve_passwords(infra, load_secrets(Path(secrets_path) if secrets_path else None))
    logger.debug(f"Loaded config for {infra.cluster.name} on {infra.vcenter.server}")
    return DeploymentConfig(infrastructure=infra, supervisor=supervisor)
