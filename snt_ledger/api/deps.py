"""Request dependencies: database session, ledger store, staff identity, job runner."""

import logging

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from snt_ledger.api.errors import Forbidden
from snt_ledger.jobs.runner import JobRunner
from snt_ledger.services import SessionLocal, get_db
from snt_ledger.services.context import MutationContext
from snt_ledger.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({"admin", "chairman", "accountant"})


def get_store(db: Session = Depends(get_db)) -> LedgerStore:  # noqa: B008
    return LedgerStore(db)


def require_staff(
    x_staff_role: str | None = Header(None, alias="X-Staff-Role"),  # noqa: B008
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> str:
    """Check the caller's staff role and return the actor id for audit records.

    Raises:
        Forbidden: If the role is missing or not one of admin/chairman/accountant
    """
    role = (x_staff_role or "").strip().lower()
    if role not in STAFF_ROLES:
        logger.warning("Rejected mutating call: role=%r actor=%r", x_staff_role, x_actor_id)
        raise Forbidden(f"Role {x_staff_role!r} may not modify the ledger")
    return x_actor_id or role


def mutation_context(actor_id: str, reason: str | None = None) -> MutationContext:
    return MutationContext(actor_id=actor_id, reason=reason)


def get_runner() -> JobRunner:
    return JobRunner(SessionLocal)


__all__ = ["STAFF_ROLES", "get_store", "require_staff", "mutation_context", "get_runner"]
