"""Provider capability consumed by the reconciler, and the provider-native error."""

from typing import List, Optional, Protocol, Sequence

from ..reconciler.types import FirewallRule, InstanceSpec, ProviderKind, ResourceHandle, Topology


class CloudAPIError(Exception):
    """Raised by a provider for any rejected call. `code` is the provider-native error code."""

    def __init__(self, code: str, message: str, *, status_code: Optional[int] = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.status_code = status_code


class ProviderContext(Protocol):
    kind: ProviderKind
    region: str
    topology: Topology
    network_suffix: str
    policy_suffix: str

    def query_network(self, name: str) -> Optional[ResourceHandle]:
        """Return the network called `name`, or None when it does not exist."""

    def create_network(self, name: str, cidr: str) -> ResourceHandle:
        ...

    def query_firewall_policy(self, name: str) -> Optional[ResourceHandle]:
        """Return the firewall policy called `name`, or None when it does not exist."""

    def create_firewall_policy(
        self, name: str, rules: Sequence[FirewallRule], network: Optional[ResourceHandle] = None
    ) -> ResourceHandle:
        ...

    def create_subnet(self, parent: ResourceHandle, name: str, cidr: str) -> ResourceHandle:
        ...

    def list_subnets(self, parent: ResourceHandle) -> List[ResourceHandle]:
        """Return every subnet under `parent`."""

    def query_network_interface(self, subnet: ResourceHandle, name: str) -> Optional[ResourceHandle]:
        """Return the interface called `name` in `subnet`, or None when it does not exist."""

    def create_network_interface(self, subnet: ResourceHandle, name: str) -> ResourceHandle:
        ...

    def bind_firewall(self, target: ResourceHandle, policy: ResourceHandle) -> None:
        ...

    def create_instance(self, spec: InstanceSpec) -> ResourceHandle:
        ...

    def is_cidr_overlap(self, error: CloudAPIError) -> bool:
        ...

    def is_conflict(self, error: CloudAPIError) -> bool:
        ...
