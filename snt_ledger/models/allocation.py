"""Allocation ORM model: ledger edge between a payment and a charge."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from snt_ledger.models import Base, BaseModel, enum_type


class AllocationKind(str, Enum):
    """Origin of an allocation row."""

    AUTO = "auto"
    """Created by auto-allocation (oldest period first)"""

    MANUAL = "manual"
    """Created by an explicit staff allocation"""

    REVERSAL = "reversal"
    """Negative counter-entry produced by unapply"""


class Allocation(Base, BaseModel):
    """Signed amount of a payment applied to a charge.

    Rows are append-only. Unapply never mutates or deletes an original: it adds a
    REVERSAL row with the negated amount pointing back via reverses_allocation_id.
    """

    __tablename__ = "allocations"

    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id"),
        nullable=False,
        index=True,
    )
    charge_id: Mapped[int] = mapped_column(
        ForeignKey("charges.id"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Signed amount: positive for originals, negative for reversals",
    )
    kind: Mapped[AllocationKind] = mapped_column(enum_type(AllocationKind), nullable=False)
    reverses_allocation_id: Mapped[int | None] = mapped_column(
        ForeignKey("allocations.id"),
        nullable=True,
        unique=True,
    )
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    payment: Mapped["Payment"] = relationship("Payment")  # noqa: F821
    charge: Mapped["Charge"] = relationship("Charge")  # noqa: F821

    __table_args__ = (Index("idx_allocation_payment_charge", "payment_id", "charge_id"),)

    def __repr__(self) -> str:
        return (
            f"<Allocation(id={self.id}, payment_id={self.payment_id}, charge_id={self.charge_id}, "
            f"amount={self.amount}, kind={self.kind})>"
        )


__all__ = ["Allocation", "AllocationKind"]
