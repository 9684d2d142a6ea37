# vipledger/services/exceptions.py

class ServiceError(Exception):
    """Base class for service layer errors."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class DomainValidationError(ServiceError):
    """Invalid domain input."""
    pass


class ResourceNotFoundError(ServiceError):
    """Resource not found."""
    pass


class ConflictError(ServiceError):
    """Operation conflicts with the current state."""
    pass


class PermissionDeniedError(ServiceError):
    """Caller may not act on this resource."""
    pass


class LoyaltyError(ServiceError):
    """Award engine failure, tagged with the idempotency key it was working on."""

    def __init__(self, detail: str, *, user_id=None, source=None, ref_id: str | None = None):
        super().__init__(detail)
        self.user_id = user_id
        self.source = source
        self.ref_id = ref_id

    def context(self) -> dict:
        return {
            "user_id": str(self.user_id) if self.user_id is not None else None,
            "source": getattr(self.source, "value", self.source),
            "ref_id": self.ref_id,
        }


class NoMembershipError(LoyaltyError, ResourceNotFoundError):
    """The user has no VIP membership."""
    pass


class MembershipInactiveError(LoyaltyError, ConflictError):
    """The membership exists but is suspended or cancelled."""
    pass


class PersistenceFailureError(LoyaltyError):
    """The write did not happen; the call is safe to retry."""
    pass


class LedgerConflictError(LoyaltyError, ConflictError):
    """The idempotency key is already held by an unrelated ledger entry."""
    pass
