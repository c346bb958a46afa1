"""Error taxonomy surfaced by the tenant network reconciler."""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for every failure a reconciliation pass can surface."""

    error_code = "reconciliation_error"
    retryable = False

    def __init__(self, message: str, *, provider_message: Optional[str] = None):
        super().__init__(message)
        self.provider_message = provider_message


class ProviderQueryError(ReconciliationError):
    """An existence check failed. Distinct from a resource not being found."""

    error_code = "provider_query_error"
    retryable = True


class ProviderCreateError(ReconciliationError):
    """The provider rejected a create (permission, quota or naming conflict)."""

    error_code = "provider_create_error"

    def __init__(self, message: str, *, provider_message: Optional[str] = None, conflict: bool = False):
        super().__init__(message, provider_message=provider_message)
        self.conflict = conflict
        # Only a naming conflict from a concurrent tenant bootstrap converges on re-run
        self.retryable = conflict


class SubnetAllocationError(ReconciliationError):
    """The randomly drawn subnet could not be placed under the tenant network."""

    error_code = "subnet_allocation_error"

    def __init__(self, message: str, *, provider_message: Optional[str] = None, retryable: bool = True):
        super().__init__(message, provider_message=provider_message)
        self.retryable = retryable


class ConflictingAttachmentError(ReconciliationError):
    """A firewall policy was asked to attach at both subnet and interface level."""

    error_code = "conflicting_attachment"
    retryable = False
