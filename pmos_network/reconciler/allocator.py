"""
Subnet / CIDR allocator.

Picks a random /24 inside the tenant network for each deployment. Existing
subnets are not consulted: with 253 candidate octets this is collision
avoidance, not a guaranteed-unique allocation. A collision shows up as the
provider's overlap error and is retried by running the deployment again.

A subnet left behind by an earlier, failed attempt of the same deployment
is found by name and reused instead of drawing again.
"""

import ipaddress
import logging
import random
import re
from typing import Optional

from ..providers.base import CloudAPIError, ProviderContext
from .errors import ProviderCreateError, ProviderQueryError, SubnetAllocationError
from .types import DeploymentSubnet, ResourceHandle, Topology

logger = logging.getLogger(__name__)

MIN_OCTET = 2
MAX_OCTET = 254  # 0, 1 and 255 are reserved by convention


def draw_octet(rng: random.Random) -> int:
    return rng.randint(MIN_OCTET, MAX_OCTET)


def subnet_cidr(topology: Topology, octet: int) -> str:
    if not MIN_OCTET <= octet <= MAX_OCTET:
        raise ValueError(f"Subnet octet {octet} outside [{MIN_OCTET}, {MAX_OCTET}]")
    if topology is Topology.SHARED_VPC:
        return f"10.{octet}.0.0/24"
    return f"10.0.{octet}.0/24"


def subnet_name(topology: Topology, instance_name: str, octet: int) -> str:
    if topology is Topology.SHARED_VPC:
        return f"{instance_name}-subnet-{octet}"
    return f"{instance_name}-subnet"


def _subnet_name_pattern(topology: Topology, instance_name: str):
    if topology is Topology.SHARED_VPC:
        return re.compile(rf"^{re.escape(instance_name)}-subnet-(\d+)$")
    return re.compile(rf"^{re.escape(instance_name)}-subnet$")


def find_deployment_subnet(
    tenant_network: ResourceHandle,
    instance_name: str,
    provider_context: ProviderContext,
    topology: Optional[Topology] = None,
) -> Optional[DeploymentSubnet]:
    """Return the subnet an earlier attempt created for `instance_name`, or None."""
    topology = topology or provider_context.topology
    pattern = _subnet_name_pattern(topology, instance_name)
    try:
        subnets = provider_context.list_subnets(tenant_network)
    except CloudAPIError as e:
        raise ProviderQueryError(
            f"Failed to list subnets of {tenant_network.name}", provider_message=e.message
        ) from e

    for handle in subnets:
        if pattern.match(handle.name):
            packed = ipaddress.ip_network(handle.cidr).network_address.packed
            octet = packed[1] if topology is Topology.SHARED_VPC else packed[2]
            return DeploymentSubnet(name=handle.name, cidr=handle.cidr, octet=octet, network=tenant_network, handle=handle)
    return None


def allocate_subnet(
    tenant_network: ResourceHandle,
    instance_name: str,
    rng: random.Random,
    provider_context: ProviderContext,
    topology: Optional[Topology] = None,
) -> DeploymentSubnet:
    """Draw an octet, build the /24 for the active topology and create it under `tenant_network`."""
    topology = topology or provider_context.topology
    octet = draw_octet(rng)
    cidr = subnet_cidr(topology, octet)
    name = subnet_name(topology, instance_name, octet)

    if tenant_network.cidr:
        parent = ipaddress.ip_network(tenant_network.cidr)
        if not ipaddress.ip_network(cidr).subnet_of(parent):
            raise SubnetAllocationError(
                f"Subnet {cidr} for {instance_name} does not fit the {topology.value} layout "
                f"of {tenant_network.name} ({tenant_network.cidr})",
                retryable=False,
            )

    logger.debug("Allocating %s (%s) under %s", name, cidr, tenant_network.name)
    try:
        handle = provider_context.create_subnet(tenant_network, name, cidr)
    except CloudAPIError as e:
        if provider_context.is_cidr_overlap(e):
            raise SubnetAllocationError(
                f"Subnet {cidr} for {instance_name} collides with an existing subnet of {tenant_network.name}",
                provider_message=e.message,
            ) from e
        raise ProviderCreateError(
            f"Failed to create subnet {name} under {tenant_network.name}",
            provider_message=e.message,
        ) from e

    return DeploymentSubnet(name=name, cidr=cidr, octet=octet, network=tenant_network, handle=handle)
