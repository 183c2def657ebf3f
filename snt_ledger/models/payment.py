"""Payment and import batch ORM models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from snt_ledger.models import Base, BaseModel, enum_type


class PaymentMethod(str, Enum):
    """How the money was received."""

    BANK = "bank"
    CASH = "cash"
    CARD = "card"
    OTHER = "other"


class MatchStatus(str, Enum):
    """Result of matching a payment to a plot."""

    UNMATCHED = "unmatched"
    AMBIGUOUS = "ambiguous"
    MATCHED = "matched"


class AllocationStatus(str, Enum):
    """How much of a payment has been applied to charges."""

    UNALLOCATED = "unallocated"
    PARTIAL = "partial"
    ALLOCATED = "allocated"


class ImportBatchStatus(str, Enum):
    """Lifecycle of an import batch."""

    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


class ImportBatch(Base, BaseModel):
    """Group of payments created by one import operation.

    Supports bulk rollback: every payment of the batch is voided, but their
    fingerprints stay so the same rows cannot be imported again.
    """

    __tablename__ = "import_batches"

    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Import source: 'statement' (bank statement) or 'payments' (registry file)",
    )
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[ImportBatchStatus] = mapped_column(
        enum_type(ImportBatchStatus),
        nullable=False,
        default=ImportBatchStatus.COMPLETED,
    )
    totals: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rolled_back_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rolled_back_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="import_batch",
        order_by="Payment.id",
    )

    def __repr__(self) -> str:
        return f"<ImportBatch(id={self.id}, source={self.source}, status={self.status})>"


class Payment(Base, BaseModel):
    """Money receipt from a resident.

    Derived totals (allocated_amount, remaining_amount, allocation_status) are
    recomputed from allocation rows by the ledger store after every write.
    The version column enables optimistic concurrency: a concurrent writer that
    loaded a stale row fails with StaleDataError on flush.
    """

    __tablename__ = "payments"

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Received amount in rubles",
    )
    paid_at: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
        comment="Date of the receipt (bank value date)",
    )
    payer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    purpose: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    method: Mapped[PaymentMethod] = mapped_column(
        enum_type(PaymentMethod),
        nullable=False,
        default=PaymentMethod.BANK,
    )
    bank_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    fingerprint: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        unique=True,
        comment="Dedup key: 'ref:<bank ref>' or 'hash:<sha256>'",
    )

    # Matching
    match_status: Mapped[MatchStatus] = mapped_column(
        enum_type(MatchStatus),
        nullable=False,
        default=MatchStatus.UNMATCHED,
        index=True,
    )
    matched_plot_id: Mapped[int | None] = mapped_column(
        ForeignKey("plots.id"),
        nullable=True,
        index=True,
    )
    match_candidates: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)
    match_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Allocation (derived, cached)
    allocation_status: Mapped[AllocationStatus] = mapped_column(
        enum_type(AllocationStatus),
        nullable=False,
        default=AllocationStatus.UNALLOCATED,
    )
    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    remaining_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    auto_allocate_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Voiding
    is_voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    import_batch_id: Mapped[int | None] = mapped_column(
        ForeignKey("import_batches.id"),
        nullable=True,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    import_batch: Mapped[ImportBatch | None] = relationship(ImportBatch, back_populates="payments")
    matched_plot: Mapped["Plot | None"] = relationship("Plot")  # noqa: F821

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("idx_payment_plot_status", "matched_plot_id", "is_voided"),)

    @property
    def period_key(self) -> str:
        """Calendar month of the receipt as 'YYYY-MM'."""
        return self.paid_at.strftime("%Y-%m")

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, amount={self.amount}, paid_at={self.paid_at}, "
            f"allocated={self.allocated_amount}, remaining={self.remaining_amount})>"
        )


__all__ = [
    "Payment",
    "PaymentMethod",
    "MatchStatus",
    "AllocationStatus",
    "ImportBatch",
    "ImportBatchStatus",
]
