"""Mutation context passed to every ledger-mutating call."""

from dataclasses import dataclass


@dataclass(frozen=True)
class MutationContext:
    """Who performs a mutation and, for closed periods, why.

    A non-blank reason is the only way to mutate data belonging to a closed
    period; see PeriodCloseService.guard.
    """

    actor_id: str | None = None
    reason: str | None = None

    @property
    def has_reason(self) -> bool:
        return bool(self.reason and self.reason.strip())


SYSTEM = MutationContext(actor_id="system")

__all__ = ["MutationContext", "SYSTEM"]
