"""Accrual period and charge ORM models."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from snt_ledger.models import Base, BaseModel, enum_type


class AccrualCategory(str, Enum):
    """Billing category of an accrual period."""

    MEMBERSHIP = "membership"
    """Membership dues"""

    ELECTRICITY = "electricity"
    """Individual electricity consumption"""

    TARGET = "target"
    """Target fund contribution (roads, gas, fences)"""

    OTHER = "other"


class AccrualPeriod(Base, BaseModel):
    """Billing cycle identified by (year, month, category).

    Created on first use and never modified afterwards. The calendar month
    (``key``) is the unit of period closing, shared by all categories.
    """

    __tablename__ = "accrual_periods"

    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[AccrualCategory] = mapped_column(
        enum_type(AccrualCategory),
        nullable=False,
    )
    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Date after which unpaid charges of the period become overdue",
    )

    charges: Mapped[list["Charge"]] = relationship(
        "Charge",
        back_populates="accrual_period",
    )

    __table_args__ = (
        UniqueConstraint("year", "month", "category", name="uq_accrual_period"),
        Index("idx_accrual_period_year_month", "year", "month"),
    )

    @property
    def key(self) -> str:
        """Calendar month as 'YYYY-MM'."""
        return f"{self.year:04d}-{self.month:02d}"

    def __repr__(self) -> str:
        return f"<AccrualPeriod(id={self.id}, key={self.key}, category={self.category})>"


class Charge(Base, BaseModel):
    """Accrual line item owed by one plot for one accrual period.

    amount_paid is a cached derived total: it must always equal the signed sum of
    allocations referencing this charge. Overpayment (amount_paid > amount_accrued)
    is allowed.
    """

    __tablename__ = "charges"

    plot_id: Mapped[int] = mapped_column(
        ForeignKey("plots.id"),
        nullable=False,
        index=True,
    )
    accrual_period_id: Mapped[int] = mapped_column(
        ForeignKey("accrual_periods.id"),
        nullable=False,
        index=True,
    )
    amount_accrued: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Billed amount in rubles",
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Sum of allocations (derived, cached)",
    )
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    plot: Mapped["Plot"] = relationship("Plot", back_populates="charges")  # noqa: F821
    accrual_period: Mapped[AccrualPeriod] = relationship(
        AccrualPeriod,
        back_populates="charges",
        lazy="joined",
    )

    __table_args__ = (Index("idx_charge_plot_period", "plot_id", "accrual_period_id"),)

    @property
    def outstanding(self) -> Decimal:
        """Unpaid part of the charge (never negative)."""
        return max(Decimal("0.00"), self.amount_accrued - self.amount_paid)

    def __repr__(self) -> str:
        return (
            f"<Charge(id={self.id}, plot_id={self.plot_id}, period_id={self.accrual_period_id}, "
            f"accrued={self.amount_accrued}, paid={self.amount_paid})>"
        )


__all__ = ["AccrualPeriod", "AccrualCategory", "Charge"]
