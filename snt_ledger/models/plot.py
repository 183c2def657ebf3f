"""Plot ORM model: the billable unit of the association (land parcel)."""

from enum import Enum

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from snt_ledger.models import Base, BaseModel, enum_type


class MembershipStatus(str, Enum):
    """Membership of the plot owner in the association."""

    MEMBER = "member"
    NON_MEMBER = "non_member"
    UNKNOWN = "unknown"


class Plot(Base, BaseModel):
    """Model representing a billable plot with its owner contacts.

    Identity (plot_number) never changes; label and membership status may be edited.
    Plots are never deleted: archiving removes them from matching and accrual
    generation while keeping their ledger history.
    """

    __tablename__ = "plots"

    plot_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True,
        comment="Plot code as written on the association map (e.g., '12', '12А')",
    )
    street: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Line/street name (e.g., 'Лесная', 'Линия 3')",
    )
    label: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Display label shown in registries and receipts",
    )
    owner_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Owner full name used for payer matching",
    )
    phone: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Owner phone, last digits are used for payer matching",
    )
    telegram_chat_id: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Notification recipient for debtor campaigns",
    )
    membership_status: Mapped[MembershipStatus] = mapped_column(
        enum_type(MembershipStatus),
        nullable=False,
        default=MembershipStatus.UNKNOWN,
    )
    is_archived: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )

    # Relationships
    charges: Mapped[list["Charge"]] = relationship(  # noqa: F821
        "Charge",
        back_populates="plot",
    )

    __table_args__ = (Index("idx_plot_archived_number", "is_archived", "plot_number"),)

    def __repr__(self) -> str:
        return f"<Plot(id={self.id}, plot_number={self.plot_number}, label={self.label})>"


__all__ = ["Plot", "MembershipStatus"]
