"""Domain types shared by the reconciler, the allocator and the providers."""

from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Any, Dict, Optional, Tuple


class ProviderKind(Enum):
    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"


class OsType(Enum):
    LINUX = "Linux"
    WINDOWS = "Windows"


class Topology(Enum):
    """
    Address layout of a tenant network.

    SINGLE_VNET carves subnets by the third octet of one /16 (Azure VNet, AWS VPC).
    SHARED_VPC carves subnets by the second octet of 10.0.0.0/8 (GCP shared VPC).
    """

    SINGLE_VNET = "single_vnet"
    SHARED_VPC = "shared_vpc"


DEFAULT_ADDRESS_SPACE = {
    Topology.SINGLE_VNET: "10.0.0.0/16",
    Topology.SHARED_VPC: "10.0.0.0/8",
}


class AttachmentMode(Flag):
    SUBNET = auto()
    INTERFACE = auto()


def parse_attachment_mode(value: str) -> AttachmentMode:
    """Parse "subnet", "interface" or a combination such as "subnet,interface"."""
    mode = None
    for part in value.replace("+", ",").split(","):
        name = part.strip().upper()
        if not name:
            continue
        try:
            flag = AttachmentMode[name]
        except KeyError:
            raise ValueError(f"Unknown attachment mode: {part.strip()}")
        mode = flag if mode is None else mode | flag
    if mode is None:
        raise ValueError("Attachment mode must not be empty")
    return mode


@dataclass(frozen=True)
class ResourceHandle:
    """Stable reference to a provider resource (network, policy, subnet, interface, instance)."""

    id: str
    name: str
    kind: str
    cidr: Optional[str] = None
    private_ip: Optional[str] = None
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class FirewallRule:
    name: str
    protocol: str
    port_range: str
    source_range: str
    priority: int
    direction: str = "inbound"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "protocol": self.protocol,
            "port_range": self.port_range,
            "source_range": self.source_range,
            "priority": self.priority,
            "direction": self.direction,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FirewallRule":
        return cls(
            name=data["name"],
            protocol=data["protocol"],
            port_range=str(data["port_range"]),
            source_range=data["source_range"],
            priority=int(data["priority"]),
            direction=data.get("direction", "inbound"),
        )


@dataclass(frozen=True)
class FirewallPolicySpec:
    """Ordered set of allow-rules. Priorities are unique within a policy."""

    rules: Tuple[FirewallRule, ...]

    def __post_init__(self):
        seen = set()
        for rule in self.rules:
            if rule.priority in seen:
                raise ValueError(f"Duplicate firewall rule priority {rule.priority}")
            seen.add(rule.priority)

    def ordered(self) -> Tuple[FirewallRule, ...]:
        return tuple(sorted(self.rules, key=lambda r: r.priority))


def default_tenant_policy(address_space: str) -> FirewallPolicySpec:
    """Tenant-internal traffic only; public reachability is granted per instance."""
    return FirewallPolicySpec(
        rules=(
            FirewallRule(
                name="allow-tenant-internal",
                protocol="*",
                port_range="*",
                source_range=address_space,
                priority=100,
            ),
        )
    )


@dataclass(frozen=True)
class DeploymentSubnet:
    name: str
    cidr: str
    octet: int
    network: ResourceHandle
    handle: ResourceHandle


@dataclass
class DeploymentDescriptor:
    tenant_id: str
    instance_name: str
    region: str
    vm_size: str
    os_type: OsType
    custom_script: str = ""
    image_reference: str = ""
    provider: Optional[ProviderKind] = None
    address_space: Optional[str] = None
    public_access: bool = False
    management_source: Optional[str] = None
    attachment_mode: AttachmentMode = AttachmentMode.SUBNET
    admin_username: str = "pmosadmin"
    seed: Optional[int] = None


@dataclass
class InstanceSpec:
    name: str
    vm_size: str
    os_type: OsType
    image_reference: str
    custom_script: str
    interface: ResourceHandle
    admin_username: str
    ssh_public_key: Optional[str] = None
    admin_password: Optional[str] = field(default=None, repr=False)


@dataclass
class DeploymentOutputs:
    """The only values a downstream system may depend on."""

    private_ip: str
    instance_id: str
    private_key: Optional[str] = field(default=None, repr=False)
    admin_password: Optional[str] = field(default=None, repr=False)
