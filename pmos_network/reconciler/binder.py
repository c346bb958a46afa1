"""
Firewall policy binder.

A policy attaches either at the subnet (shared tenant policy, preferred) or
at an individual network interface (isolated per-instance policy), never
both. Both-level requests are rejected before the provider is called.
"""

import logging
from typing import Dict

from ..providers.base import CloudAPIError, ProviderContext
from .errors import ConflictingAttachmentError, ProviderCreateError, ProviderQueryError
from .types import AttachmentMode, FirewallPolicySpec, FirewallRule, OsType, ResourceHandle

logger = logging.getLogger(__name__)

MANAGEMENT_PORTS = {
    OsType.LINUX: 22,     # SSH
    OsType.WINDOWS: 3389,  # RDP
}

_TARGET_KINDS = {
    AttachmentMode.SUBNET: "subnet",
    AttachmentMode.INTERFACE: "interface",
}


class FirewallPolicyBinder:
    """Binds firewall policies for one deployment and remembers the level each policy went to."""

    def __init__(self, provider_context: ProviderContext):
        self.provider = provider_context
        self._attachments: Dict[str, AttachmentMode] = {}

    def bind_policy(self, target: ResourceHandle, policy_handle: ResourceHandle, attachment_mode: AttachmentMode):
        if attachment_mode not in _TARGET_KINDS:
            raise ConflictingAttachmentError(
                f"Policy {policy_handle.name} cannot attach at both subnet and interface level"
            )
        expected_kind = _TARGET_KINDS[attachment_mode]
        if target.kind != expected_kind:
            raise ConflictingAttachmentError(
                f"Attachment mode {expected_kind} does not match target {target.name} ({target.kind})"
            )
        previous = self._attachments.get(policy_handle.id)
        if previous is not None and previous != attachment_mode:
            raise ConflictingAttachmentError(
                f"Policy {policy_handle.name} is already attached at {_TARGET_KINDS[previous]} level"
            )

        try:
            self.provider.bind_firewall(target, policy_handle)
        except CloudAPIError as e:
            raise ProviderCreateError(
                f"Failed to bind {policy_handle.name} to {target.kind} {target.name}",
                provider_message=e.message,
            ) from e
        self._attachments[policy_handle.id] = attachment_mode
        return target

    def open_management_access(
        self, interface: ResourceHandle, instance_name: str, os_type: OsType, source_range: str
    ) -> ResourceHandle:
        """
        Allow the OS management port from `source_range` on this instance only.

        The rule lives in its own per-instance policy bound at the interface. The
        shared tenant policy is left untouched. A policy left by an earlier attempt
        of the same deployment is reused as is.
        """
        port = MANAGEMENT_PORTS[os_type]
        name = f"{instance_name}-mgmt-{port}"
        rule = FirewallRule(
            name=f"allow-mgmt-{port}",
            protocol="tcp",
            port_range=str(port),
            source_range=source_range,
            priority=1000,
        )
        spec = FirewallPolicySpec(rules=(rule,))
        try:
            policy = self.provider.query_firewall_policy(name)
        except CloudAPIError as e:
            raise ProviderQueryError(
                f"Failed to look up management access policy {name}", provider_message=e.message
            ) from e

        if policy is None:
            try:
                policy = self.provider.create_firewall_policy(name, spec.ordered())
            except CloudAPIError as e:
                raise ProviderCreateError(
                    f"Failed to create management access policy {name}",
                    provider_message=e.message,
                ) from e
            logger.info("Opened %s/tcp on %s from %s", port, instance_name, source_range)
        self.bind_policy(interface, policy, AttachmentMode.INTERFACE)
        return policy
