"""Pydantic schemas for the billing and jobs API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from snt_ledger.config import settings
from snt_ledger.models import (
    AllocationKind,
    AllocationStatus,
    JobStatus,
    MatchStatus,
    PaymentMethod,
    PenaltyStatus,
    PeriodCloseStatus,
)


class ReasonPayload(BaseModel):
    """Body of mutating calls that only carry a justification."""

    reason: str | None = Field(None, description="Required when a closed period is touched")


class RequiredReasonPayload(BaseModel):
    reason: str = Field(..., min_length=1, description="Justification for the change")


# ----------------------------------------------------------------------
# Allocations
# ----------------------------------------------------------------------


class AllocationPreviewRequest(BaseModel):
    payment_ids: list[int] | None = None
    plot_id: int | None = None
    period: str | None = Field(None, description="Month 'YYYY-MM' of payment dates")


class AutoAllocateRequest(ReasonPayload):
    payment_ids: list[int] | None = None
    period: str | None = None


class ManualAllocateRequest(ReasonPayload):
    payment_id: int
    charge_id: int
    amount: Decimal = Field(..., gt=0)


class UnapplyRequest(ReasonPayload):
    payment_id: int | None = None
    allocation_id: int | None = None


class PlannedAllocationResponse(BaseModel):
    payment_id: int
    charge_id: int
    plot_id: int
    period: str
    amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class AllocationResponse(BaseModel):
    id: int
    payment_id: int
    charge_id: int
    amount: Decimal
    kind: AllocationKind
    reverses_allocation_id: int | None
    actor_id: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AllocationsResult(BaseModel):
    allocations: list[AllocationResponse]
    warnings: list[str] = []


# ----------------------------------------------------------------------
# Penalties
# ----------------------------------------------------------------------


class PenaltyPreviewRequest(BaseModel):
    as_of: date
    rate: Decimal = Field(default=settings.penalty_default_rate, ge=0)
    min_penalty: Decimal = Field(default=Decimal("0"), ge=0)


class PenaltyApplyRequest(ReasonPayload):
    as_of: date
    rate: Decimal = Field(default=settings.penalty_default_rate, ge=0)


class PenaltyRecalcRequest(PenaltyApplyRequest):
    create_missing: bool = False
    period: str | None = Field(default=None, description="Only this month (YYYY-MM)")
    plot_ids: list[int] | None = None
    limit: int | None = Field(default=None, ge=1)


class PenaltyAccrualResponse(BaseModel):
    id: int
    plot_id: int
    accrual_period_id: int
    amount: Decimal
    status: PenaltyStatus
    as_of: date
    rate: Decimal
    base_debt: Decimal
    days_overdue: int
    policy_version: str
    void_reason: str | None = None
    freeze_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PenaltyAccrualResult(BaseModel):
    accrual: PenaltyAccrualResponse
    warnings: list[str] = []


# ----------------------------------------------------------------------
# Periods
# ----------------------------------------------------------------------


class PeriodCloseResponse(BaseModel):
    id: int
    association_id: str
    period: str
    status: PeriodCloseStatus
    snapshot: dict[str, Any] | None
    closed_at: datetime | None
    closed_by: str | None

    model_config = ConfigDict(from_attributes=True)


class PostCloseChangeResponse(BaseModel):
    id: int
    period: str
    entity_type: str
    entity_id: int | None
    action: str
    reason: str
    actor_id: str | None
    details: dict[str, Any] | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ----------------------------------------------------------------------
# Imports and payments
# ----------------------------------------------------------------------


class ImportRequest(ReasonPayload):
    rows: list[dict[str, Any]]
    file_name: str | None = None


class PaymentCreateRequest(ReasonPayload):
    amount: Decimal = Field(..., gt=0)
    paid_at: date
    payer: str | None = None
    purpose: str | None = None
    method: str = "cash"
    plot_id: int | None = None
    bank_ref: str | None = None


class AssignPlotRequest(ReasonPayload):
    plot_id: int


class PaymentResponse(BaseModel):
    id: int
    amount: Decimal
    paid_at: date
    payer: str | None
    purpose: str | None
    method: PaymentMethod
    match_status: MatchStatus
    matched_plot_id: int | None
    match_candidates: list[int] | None
    match_reason: str | None
    match_confidence: float | None
    allocation_status: AllocationStatus
    allocated_amount: Decimal
    remaining_amount: Decimal
    is_voided: bool
    void_reason: str | None
    import_batch_id: int | None

    model_config = ConfigDict(from_attributes=True)


class PaymentResult(BaseModel):
    payment: PaymentResponse
    warnings: list[str] = []


class DebtorResponse(BaseModel):
    plot_id: int
    plot_number: str
    label: str | None
    owner_name: str | None
    charge_debt: Decimal
    penalty_total: Decimal
    total_debt: Decimal


# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------


class JobCreateRequest(BaseModel):
    type: str = Field(..., description="Job type, e.g. 'penalty.apply'")
    payload: dict[str, Any] = Field(default_factory=dict)
    max_attempts: int | None = Field(None, ge=1, le=10)


class JobResponse(BaseModel):
    id: int
    type: str
    status: JobStatus
    progress: int
    payload: dict[str, Any] | None
    result: dict[str, Any] | None
    error: str | None
    attempts: int
    max_attempts: int
    available_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    actor_id: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
