"""Ledger error hierarchy.

Every error carries a machine-readable code and the HTTP status the API layer
renders it with.
"""


class LedgerError(Exception):
    """Base ledger error."""

    def __init__(self, message: str, code: str, http_status: int = 400):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class ValidationError(LedgerError):
    """Malformed input, rejected before any mutation."""

    def __init__(self, message: str):
        super().__init__(message, "validation_error", 400)


class NotFound(LedgerError):
    """Referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", "not_found", 404)


class InsufficientRemaining(LedgerError):
    """Manual allocation exceeds the payment's remaining amount."""

    def __init__(self, payment_id: int, requested, remaining):
        self.payment_id = payment_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Payment {payment_id}: requested {requested} exceeds remaining {remaining}",
            "insufficient_remaining",
            400,
        )


class PeriodClosedRequiresReason(LedgerError):
    """Mutation touches a closed period and no reason was supplied."""

    def __init__(self, periods: list[str]):
        self.periods = sorted(periods)
        super().__init__(
            f"Period(s) {', '.join(self.periods)} closed: a reason is required",
            "period_closed_requires_reason",
            409,
        )


class AlreadyClosed(LedgerError):
    def __init__(self, period: str):
        self.period = period
        super().__init__(f"Period {period} is already closed", "already_closed", 409)


class InvalidTransition(LedgerError):
    """State machine transition not allowed from the current state."""

    def __init__(self, entity: str, entity_id: int, current: str, action: str):
        self.current = current
        self.action = action
        super().__init__(
            f"Cannot {action} {entity} {entity_id} in status {current}",
            "invalid_transition",
            409,
        )


class ConcurrentModification(LedgerError):
    """Another writer changed the row between read and write."""

    def __init__(self, message: str = "Concurrent modification, retry the operation"):
        super().__init__(message, "concurrent_modification", 409)


class LedgerInvariantError(LedgerError):
    """Derived totals would violate a ledger invariant; the transaction is rolled back."""

    def __init__(self, message: str):
        super().__init__(message, "ledger_invariant", 500)


class JobTimeout(LedgerError):
    def __init__(self, job_id: int, timeout: float):
        super().__init__(f"Job {job_id} timed out after {timeout}s", "job_timeout", 500)


class JobHandlerError(LedgerError):
    """Job handler raised; the original error message is preserved."""

    def __init__(self, message: str):
        super().__init__(message, "job_handler_error", 500)


__all__ = [
    "LedgerError",
    "ValidationError",
    "NotFound",
    "InsufficientRemaining",
    "PeriodClosedRequiresReason",
    "AlreadyClosed",
    "InvalidTransition",
    "ConcurrentModification",
    "LedgerInvariantError",
    "JobTimeout",
    "JobHandlerError",
]
