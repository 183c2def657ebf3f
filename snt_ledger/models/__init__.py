"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


def enum_type(enum_cls: type[Enum]) -> SQLEnum:
    """Store enum values (not names) as plain strings, portable across backends."""
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from snt_ledger.models.accrual import AccrualCategory, AccrualPeriod, Charge  # noqa: E402
from snt_ledger.models.allocation import Allocation, AllocationKind  # noqa: E402
from snt_ledger.models.audit_log import AuditLog  # noqa: E402
from snt_ledger.models.job import JobStatus, OfficeJob  # noqa: E402
from snt_ledger.models.payment import (  # noqa: E402
    AllocationStatus,
    ImportBatch,
    ImportBatchStatus,
    MatchStatus,
    Payment,
    PaymentMethod,
)
from snt_ledger.models.penalty import PenaltyAccrual, PenaltyStatus  # noqa: E402
from snt_ledger.models.period_close import (  # noqa: E402
    PeriodCloseRecord,
    PeriodCloseStatus,
    PostCloseChange,
)
from snt_ledger.models.plot import MembershipStatus, Plot  # noqa: E402

__all__ = [
    "Base",
    "BaseModel",
    "Plot",
    "MembershipStatus",
    "AccrualPeriod",
    "AccrualCategory",
    "Charge",
    "Payment",
    "PaymentMethod",
    "MatchStatus",
    "AllocationStatus",
    "ImportBatch",
    "ImportBatchStatus",
    "Allocation",
    "AllocationKind",
    "PenaltyAccrual",
    "PenaltyStatus",
    "PeriodCloseRecord",
    "PeriodCloseStatus",
    "PostCloseChange",
    "OfficeJob",
    "JobStatus",
    "AuditLog",
]
