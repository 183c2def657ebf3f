"""Period close record and post-close change log ORM models."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from snt_ledger.models import Base, BaseModel, enum_type


class PeriodCloseStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class PeriodCloseRecord(Base, BaseModel):
    """Close state of one calendar month ('YYYY-MM') for an association.

    The snapshot holds the month aggregates captured at close time and is never
    rewritten afterwards.
    """

    __tablename__ = "period_close_records"

    association_id: Mapped[str] = mapped_column(String(50), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    status: Mapped[PeriodCloseStatus] = mapped_column(
        enum_type(PeriodCloseStatus),
        nullable=False,
        default=PeriodCloseStatus.OPEN,
    )
    snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("association_id", "period", name="uq_period_close_association_period"),
    )

    def __repr__(self) -> str:
        return f"<PeriodCloseRecord(id={self.id}, period={self.period}, status={self.status})>"


class PostCloseChange(Base, BaseModel):
    """One ledger mutation applied to an already closed period, with its reason."""

    __tablename__ = "post_close_changes"

    association_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    period: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PostCloseChange(id={self.id}, period={self.period}, entity_type={self.entity_type}, "
            f"entity_id={self.entity_id}, action={self.action})>"
        )


__all__ = ["PeriodCloseRecord", "PeriodCloseStatus", "PostCloseChange"]
