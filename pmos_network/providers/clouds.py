"""
Per-cloud provider variants.

Each class keeps the naming suffixes, topology, id format and error codes of
the cloud it stands in for. Everything else is shared in SimulatedProvider.
"""

import uuid
from typing import Callable, Dict, Optional, Type

from sqlalchemy.orm import Session

from ..reconciler.types import ProviderKind, ResourceHandle, Topology
from .simulated import SimulatedProvider


class AwsProvider(SimulatedProvider):
    kind = ProviderKind.AWS
    topology = Topology.SINGLE_VNET
    network_suffix = "vpc"
    policy_suffix = "sg"

    conflict_code = "InvalidGroup.Duplicate"
    overlap_code = "InvalidSubnet.Conflict"
    outside_code = "InvalidSubnet.Range"
    not_found_code = "InvalidParameterValue"
    auth_code = "UnauthorizedOperation"
    quota_code = "SubnetLimitExceeded"
    invalid_code = "InvalidParameterValue"
    unavailable_code = "Unavailable"

    first_host_offset = 4

    _prefixes = {
        "network": "vpc",
        "firewall_policy": "sg",
        "subnet": "subnet",
        "interface": "eni",
        "instance": "i",
    }

    def resource_id(self, kind: str, name: str, parent: Optional[ResourceHandle] = None) -> str:
        return f"{self._prefixes[kind]}-{uuid.uuid4().hex[:17]}"


class AzureProvider(SimulatedProvider):
    kind = ProviderKind.AZURE
    topology = Topology.SINGLE_VNET
    network_suffix = "vnet"
    policy_suffix = "nsg"

    conflict_code = "Conflict"
    overlap_code = "NetcfgSubnetRangesOverlap"
    outside_code = "NetcfgSubnetRangeOutsideVnet"
    not_found_code = "ResourceNotFound"
    auth_code = "AuthorizationFailed"
    quota_code = "QuotaExceeded"
    invalid_code = "InvalidAddressPrefixFormat"
    unavailable_code = "ServiceUnavailable"

    first_host_offset = 4

    _resource_types = {
        "network": "virtualNetworks",
        "firewall_policy": "networkSecurityGroups",
        "interface": "networkInterfaces",
    }

    def __init__(self, db_factory: Callable[[], Session], region: str, *, subscription_id: str = None, **kwargs):
        super().__init__(db_factory, region, **kwargs)
        self.subscription_id = subscription_id or "00000000-0000-0000-0000-000000000000"

    @property
    def resource_group(self) -> str:
        return f"pmos-{self.region}"

    def resource_id(self, kind: str, name: str, parent: Optional[ResourceHandle] = None) -> str:
        if kind == "subnet" and parent is not None:
            return f"{parent.id}/subnets/{name}"
        if kind == "instance":
            base = f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"
            return f"{base}/providers/Microsoft.Compute/virtualMachines/{name}"
        base = f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"
        return f"{base}/providers/Microsoft.Network/{self._resource_types[kind]}/{name}"


class GcpProvider(SimulatedProvider):
    kind = ProviderKind.GCP
    topology = Topology.SHARED_VPC
    network_suffix = "vpc"
    policy_suffix = "firewall"

    conflict_code = "alreadyExists"
    overlap_code = "IP_CIDR_RANGE_OVERLAP"
    outside_code = "invalid"
    not_found_code = "notFound"
    auth_code = "forbidden"
    quota_code = "QUOTA_EXCEEDED"
    invalid_code = "invalid"
    unavailable_code = "backendError"

    # GCP reserves the network and gateway addresses only
    first_host_offset = 2

    def resource_id(self, kind: str, name: str, parent: Optional[ResourceHandle] = None) -> str:
        return str(uuid.uuid4().int % 10**19)


PROVIDERS: Dict[ProviderKind, Type[SimulatedProvider]] = {
    ProviderKind.AWS: AwsProvider,
    ProviderKind.AZURE: AzureProvider,
    ProviderKind.GCP: GcpProvider,
}


def build_provider(kind, region: str, db_factory: Callable[[], Session], **kwargs) -> SimulatedProvider:
    """Create the provider context for `kind` ("aws", "azure", "gcp" or a ProviderKind) in `region`."""
    if not isinstance(kind, ProviderKind):
        try:
            kind = ProviderKind(str(kind).lower())
        except ValueError:
            raise ValueError(f"Unknown provider: {kind}")
    return PROVIDERS[kind](db_factory, region, **kwargs)
