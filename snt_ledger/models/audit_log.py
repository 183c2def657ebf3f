"""Audit log model for tracking ledger mutations."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from snt_ledger.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Append-only audit entry for a successful ledger mutation.

    Records who (actor_id) did what (action) to which entity (entity_type, entity_id)
    and a JSON snapshot of the relevant values (changes).
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(String(50), index=True)
    """Entity type being audited: "payment", "allocation", "penalty", "period", etc."""

    entity_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    """Primary key of the entity being audited (None for batch-level actions)."""

    action: Mapped[str] = mapped_column(String(50))
    """Action performed: "auto_allocate", "void", "close", etc."""

    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    """Staff member who performed the action. None for system actions."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    """Optional JSON snapshot: {"amount": "3000.00", "reason": "bank correction"}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor_id={self.actor_id}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]
