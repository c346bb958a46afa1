#!/usr/bin/env python3
"""
Tenant Network Reconciler

Single-pass, synchronous convergence executed once per deployment.

Implements:
- Get-or-create of the shared per-tenant network and firewall policy
- Random /24 subnet allocation for the deployment
- Firewall policy binding at subnet or interface level
- Credential generation and instance creation

There is no locking: two first-time deployments for the same tenant can both
observe "not found", and the second create fails with a naming conflict.
Callers that need safety serialize tenant bootstrap themselves. Failures
abort the pass and leave already-created resources in place, so re-running
the deployment reuses them.
"""

import ipaddress
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..api.diagnostic_logger import diagnostic_logger
from ..metrics import METRICS
from ..providers.base import CloudAPIError, ProviderContext
from .allocator import allocate_subnet, find_deployment_subnet
from .binder import FirewallPolicyBinder
from .credentials import generate_credential
from .errors import ConflictingAttachmentError, ProviderCreateError, ProviderQueryError, ReconciliationError
from .types import (
    DEFAULT_ADDRESS_SPACE,
    AttachmentMode,
    DeploymentDescriptor,
    DeploymentOutputs,
    FirewallPolicySpec,
    FirewallRule,
    InstanceSpec,
    OsType,
    ResourceHandle,
    default_tenant_policy,
)

logger = logging.getLogger(__name__)

TENANT_PREFIX = "pmos-tenant"


class ResourceType(Enum):
    NETWORK = "network"
    FIREWALL_POLICY = "firewall_policy"
    SUBNET = "subnet"
    INTERFACE = "interface"
    FIREWALL_BINDING = "firewall_binding"
    INSTANCE = "instance"


class ActionType(Enum):
    CREATE = "create"
    REUSE = "reuse"
    BIND = "bind"


@dataclass
class ReconciliationAction:
    """Represents a single step taken during a pass."""

    action_type: ActionType
    resource_type: ResourceType
    resource_id: str
    name: str


@dataclass
class ReconciliationResult:
    """Result of a deployment pass."""

    success: bool
    outputs: Optional[DeploymentOutputs] = None
    actions_taken: List[ReconciliationAction] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error: Optional[Exception] = None
    duration_ms: float = 0


def tenant_resource_name(tenant_id: str, resource: str) -> str:
    return f"{TENANT_PREFIX}-{tenant_id}-{resource}"


def _validate_tenant_id(tenant_id: str):
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise ValueError("tenant_id must be a non-empty string")


def _validate_cidr(cidr: str) -> str:
    try:
        return str(ipaddress.ip_network(cidr))
    except ValueError as e:
        raise ValueError(f"Invalid address space {cidr!r}: {e}")


def get_or_create_tenant_network(
    tenant_id: str, address_space: str, provider_context: ProviderContext
) -> Tuple[ResourceHandle, bool]:
    """Return (network handle, created). See ensure_tenant_network."""
    _validate_tenant_id(tenant_id)
    address_space = _validate_cidr(address_space)
    name = tenant_resource_name(tenant_id, provider_context.network_suffix)

    try:
        existing = provider_context.query_network(name)
    except CloudAPIError as e:
        raise ProviderQueryError(f"Failed to look up network {name}", provider_message=e.message) from e

    if existing is not None:
        if existing.cidr and existing.cidr != address_space:
            diagnostic_logger.log_warning(
                f"Network {name} already exists with {existing.cidr}; requested {address_space} is ignored",
                {
                    "tenant_id": tenant_id,
                    "network": name,
                    "provider": provider_context.kind.value,
                    "region": provider_context.region,
                    "existing_address_space": existing.cidr,
                    "requested_address_space": address_space,
                },
            )
        return existing, False

    try:
        return provider_context.create_network(name, address_space), True
    except CloudAPIError as e:
        raise ProviderCreateError(
            f"Failed to create network {name}",
            provider_message=e.message,
            conflict=provider_context.is_conflict(e),
        ) from e


def get_or_create_firewall_policy(
    tenant_id: str,
    network: ResourceHandle,
    provider_context: ProviderContext,
    rules: Optional[Sequence[FirewallRule]] = None,
) -> Tuple[ResourceHandle, bool]:
    """Return (policy handle, created). See ensure_firewall_policy."""
    _validate_tenant_id(tenant_id)
    name = tenant_resource_name(tenant_id, provider_context.policy_suffix)
    spec = FirewallPolicySpec(rules=tuple(rules)) if rules else default_tenant_policy(network.cidr or "10.0.0.0/8")

    try:
        existing = provider_context.query_firewall_policy(name)
    except CloudAPIError as e:
        raise ProviderQueryError(f"Failed to look up firewall policy {name}", provider_message=e.message) from e

    if existing is not None:
        return existing, False

    try:
        return provider_context.create_firewall_policy(name, spec.ordered(), network), True
    except CloudAPIError as e:
        raise ProviderCreateError(
            f"Failed to create firewall policy {name}",
            provider_message=e.message,
            conflict=provider_context.is_conflict(e),
        ) from e


def ensure_tenant_network(tenant_id: str, address_space: str, provider_context: ProviderContext) -> ResourceHandle:
    """
    Return the tenant's shared network, creating it with `address_space` if absent.

    An existing network is returned unchanged even when its address space differs
    from the requested one.
    """
    return get_or_create_tenant_network(tenant_id, address_space, provider_context)[0]


def ensure_firewall_policy(
    tenant_id: str,
    network: ResourceHandle,
    provider_context: ProviderContext,
    rules: Optional[Sequence[FirewallRule]] = None,
) -> ResourceHandle:
    """Return the tenant's shared firewall policy, creating it if absent. Existing rules are never modified."""
    return get_or_create_firewall_policy(tenant_id, network, provider_context, rules)[0]


class TenantNetworkReconciler:
    """
    Runs the full deployment pass against one provider context.

    Holds no shared state between passes: every run rediscovers the tenant's
    network and policy through the provider.
    """

    def __init__(
        self,
        provider_context: ProviderContext,
        *,
        management_source: str = "0.0.0.0/0",
        tenant_rules: Optional[Sequence[FirewallRule]] = None,
        key_size: int = 4096,
    ):
        self.provider = provider_context
        self.management_source = management_source
        self.tenant_rules = tenant_rules
        self.key_size = key_size

    def deploy(self, descriptor: DeploymentDescriptor) -> DeploymentOutputs:
        """Run one pass and return the outputs, raising the first error encountered."""
        result = self.reconcile(descriptor)
        if not result.success:
            raise result.error
        return result.outputs

    def reconcile(self, descriptor: DeploymentDescriptor) -> ReconciliationResult:
        start_time = time.time()
        result = ReconciliationResult(success=True)

        try:
            result.outputs = self._run(descriptor, result)
        except (ReconciliationError, ValueError) as e:
            result.success = False
            result.error = e
            result.errors.append(str(e))
            error_code = getattr(e, "error_code", "invalid_request")
            METRICS["reconciliation_errors"].labels(error_code=error_code).inc()
            diagnostic_logger.log_error(
                f"Deployment of {descriptor.instance_name} failed: {e}",
                self._error_context(descriptor, e, result),
            )

        result.duration_ms = (time.time() - start_time) * 1000
        METRICS["reconciliation_latency"].observe(result.duration_ms)
        for action in result.actions_taken:
            METRICS["reconciliation_actions"].labels(
                action_type=f"{action.action_type.value}_{action.resource_type.value}"
            ).inc()

        if result.success:
            diagnostic_logger.log_success(
                f"Deployed {descriptor.instance_name} for tenant {descriptor.tenant_id} "
                f"in {result.duration_ms:.1f}ms ({len(result.actions_taken)} actions)"
            )
        return result

    def _run(self, descriptor: DeploymentDescriptor, result: ReconciliationResult) -> DeploymentOutputs:
        if not descriptor.instance_name:
            raise ValueError("instance_name must be a non-empty string")
        if descriptor.region != self.provider.region:
            raise ValueError(f"Descriptor region {descriptor.region} does not match provider region {self.provider.region}")
        if descriptor.provider is not None and descriptor.provider != self.provider.kind:
            raise ValueError(f"Descriptor provider {descriptor.provider.value} does not match {self.provider.kind.value}")

        # Rejected before any provider call
        if descriptor.attachment_mode == AttachmentMode.SUBNET | AttachmentMode.INTERFACE:
            raise ConflictingAttachmentError(
                f"Deployment {descriptor.instance_name} requests firewall attachment at both subnet and interface level"
            )

        rng = random.Random(descriptor.seed)
        address_space = descriptor.address_space or DEFAULT_ADDRESS_SPACE[self.provider.topology]

        logger.info(
            "Reconciling %s for tenant %s on %s/%s",
            descriptor.instance_name, descriptor.tenant_id, self.provider.kind.value, self.provider.region,
        )

        network, created = get_or_create_tenant_network(descriptor.tenant_id, address_space, self.provider)
        self._record(result, ActionType.CREATE if created else ActionType.REUSE, ResourceType.NETWORK, network)

        policy, created = get_or_create_firewall_policy(descriptor.tenant_id, network, self.provider, self.tenant_rules)
        self._record(result, ActionType.CREATE if created else ActionType.REUSE, ResourceType.FIREWALL_POLICY, policy)

        subnet = find_deployment_subnet(network, descriptor.instance_name, self.provider)
        if subnet is not None:
            self._record(result, ActionType.REUSE, ResourceType.SUBNET, subnet.handle)
        else:
            subnet = allocate_subnet(network, descriptor.instance_name, rng, self.provider)
            self._record(result, ActionType.CREATE, ResourceType.SUBNET, subnet.handle)

        interface, created = self._get_or_create_interface(subnet.handle, f"{descriptor.instance_name}-nic")
        self._record(result, ActionType.CREATE if created else ActionType.REUSE, ResourceType.INTERFACE, interface)

        binder = FirewallPolicyBinder(self.provider)
        target = subnet.handle if descriptor.attachment_mode == AttachmentMode.SUBNET else interface
        binder.bind_policy(target, policy, descriptor.attachment_mode)
        self._record(result, ActionType.BIND, ResourceType.FIREWALL_BINDING, policy)

        if descriptor.public_access:
            source = descriptor.management_source or self.management_source
            mgmt_policy = binder.open_management_access(
                interface, descriptor.instance_name, descriptor.os_type, source
            )
            self._record(result, ActionType.BIND, ResourceType.FIREWALL_BINDING, mgmt_policy)

        credential = generate_credential(descriptor.os_type, self.key_size)
        spec = InstanceSpec(
            name=descriptor.instance_name,
            vm_size=descriptor.vm_size,
            os_type=descriptor.os_type,
            image_reference=descriptor.image_reference,
            custom_script=descriptor.custom_script,
            interface=interface,
            admin_username=descriptor.admin_username,
            ssh_public_key=credential.ssh_public_key,
            admin_password=credential.admin_password,
        )
        instance = self._create(lambda: self.provider.create_instance(spec), f"instance {descriptor.instance_name}")
        self._record(result, ActionType.CREATE, ResourceType.INSTANCE, instance)

        return DeploymentOutputs(
            private_ip=instance.private_ip or interface.private_ip,
            instance_id=instance.id,
            private_key=credential.private_key if descriptor.os_type is OsType.LINUX else None,
            admin_password=credential.admin_password if descriptor.os_type is OsType.WINDOWS else None,
        )

    def _get_or_create_interface(self, subnet: ResourceHandle, name: str) -> Tuple[ResourceHandle, bool]:
        try:
            existing = self.provider.query_network_interface(subnet, name)
        except CloudAPIError as e:
            raise ProviderQueryError(f"Failed to look up network interface {name}", provider_message=e.message) from e
        if existing is not None:
            return existing, False
        return self._create(lambda: self.provider.create_network_interface(subnet, name), f"network interface {name}"), True

    def _create(self, create, description: str) -> ResourceHandle:
        try:
            return create()
        except CloudAPIError as e:
            raise ProviderCreateError(
                f"Failed to create {description}",
                provider_message=e.message,
            ) from e

    def _record(self, result, action_type, resource_type, handle: ResourceHandle):
        logger.debug("%s %s %s", action_type.value, resource_type.value, handle.name)
        result.actions_taken.append(
            ReconciliationAction(
                action_type=action_type, resource_type=resource_type, resource_id=handle.id, name=handle.name
            )
        )

    def _error_context(self, descriptor, error, result) -> Dict[str, Any]:
        return {
            "tenant_id": descriptor.tenant_id,
            "instance_name": descriptor.instance_name,
            "provider": self.provider.kind.value,
            "region": self.provider.region,
            "error_code": getattr(error, "error_code", "invalid_request"),
            "retryable": getattr(error, "retryable", False),
            "provider_message": getattr(error, "provider_message", None),
            "completed_actions": [
                f"{a.action_type.value} {a.resource_type.value} {a.name}" for a in result.actions_taken
            ],
        }
