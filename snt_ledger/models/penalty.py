"""Penalty accrual ORM model."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from snt_ledger.models import Base, BaseModel, enum_type


class PenaltyStatus(str, Enum):
    """Penalty accrual lifecycle: active <-> frozen, either -> voided (terminal)."""

    ACTIVE = "active"
    FROZEN = "frozen"
    VOIDED = "voided"


LIVE_STATUSES_SQL = "status IN ('active', 'frozen')"


class PenaltyAccrual(Base, BaseModel):
    """Overdue penalty computed for one (plot, accrual period).

    Frozen accruals keep counting in debt totals but are excluded from recalculation.
    Voided accruals are excluded from both, permanently.
    """

    __tablename__ = "penalty_accruals"

    plot_id: Mapped[int] = mapped_column(ForeignKey("plots.id"), nullable=False, index=True)
    accrual_period_id: Mapped[int] = mapped_column(
        ForeignKey("accrual_periods.id"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[PenaltyStatus] = mapped_column(
        enum_type(PenaltyStatus),
        nullable=False,
        default=PenaltyStatus.ACTIVE,
        index=True,
    )

    # Computation metadata
    as_of: Mapped[date] = mapped_column(Date, nullable=False)
    rate: Mapped[Decimal] = mapped_column(
        Numeric(10, 6),
        nullable=False,
        comment="Annual rate as a fraction (0.095 = 9.5%)",
    )
    rate_per_day: Mapped[Decimal] = mapped_column(Numeric(14, 10), nullable=False)
    base_debt: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False)
    policy_version: Mapped[str] = mapped_column(String(20), nullable=False)

    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    voided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    freeze_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    frozen_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    frozen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unfrozen_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unfrozen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    accrual_period: Mapped["AccrualPeriod"] = relationship(  # noqa: F821
        "AccrualPeriod",
        lazy="joined",
    )

    __table_args__ = (
        Index("idx_penalty_plot_period", "plot_id", "accrual_period_id"),
        # At most one live accrual per (plot, period); voided rows are history
        Index(
            "uq_penalty_live_plot_period",
            "plot_id",
            "accrual_period_id",
            unique=True,
            sqlite_where=text(LIVE_STATUSES_SQL),
            postgresql_where=text(LIVE_STATUSES_SQL),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PenaltyAccrual(id={self.id}, plot_id={self.plot_id}, "
            f"period_id={self.accrual_period_id}, amount={self.amount}, status={self.status})>"
        )


__all__ = ["PenaltyAccrual", "PenaltyStatus"]
