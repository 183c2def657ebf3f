"""Office job ORM model for the background job runner."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from snt_ledger.models import Base, BaseModel, enum_type


class JobStatus(str, Enum):
    """Job state machine: queued -> running -> done | queued (retry) | failed."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class OfficeJob(Base, BaseModel):
    """Asynchronous unit of work, mutated only by the job runner."""

    __tablename__ = "jobs"

    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[JobStatus] = mapped_column(
        enum_type(JobStatus),
        nullable=False,
        default=JobStatus.QUEUED,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Earliest time the scheduler may pick the job (retry backoff)",
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (Index("idx_job_status_available", "status", "available_at"),)

    def __repr__(self) -> str:
        return (
            f"<OfficeJob(id={self.id}, type={self.type}, status={self.status}, "
            f"attempts={self.attempts}/{self.max_attempts})>"
        )


__all__ = ["OfficeJob", "JobStatus"]
