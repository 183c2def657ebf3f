"""Billing API routes: allocations, penalties, periods, imports, payments, debtors."""

import logging
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from snt_ledger.api.deps import get_store, mutation_context, require_staff
from snt_ledger.api.schemas import (
    AllocationPreviewRequest,
    AllocationResponse,
    AllocationsResult,
    AssignPlotRequest,
    AutoAllocateRequest,
    DebtorResponse,
    ImportRequest,
    ManualAllocateRequest,
    PaymentCreateRequest,
    PaymentResponse,
    PaymentResult,
    PenaltyAccrualResponse,
    PenaltyAccrualResult,
    PenaltyApplyRequest,
    PenaltyPreviewRequest,
    PenaltyRecalcRequest,
    PeriodCloseResponse,
    PlannedAllocationResponse,
    PostCloseChangeResponse,
    ReasonPayload,
    RequiredReasonPayload,
    UnapplyRequest,
)
from snt_ledger.models import MatchStatus, PenaltyStatus
from snt_ledger.services.allocation_service import AllocationService
from snt_ledger.services.balance_service import BalanceService
from snt_ledger.services.import_service import ImportService
from snt_ledger.services.ledger_store import LedgerStore
from snt_ledger.services.payment_service import PaymentService
from snt_ledger.services.penalty_service import PenaltyService
from snt_ledger.services.period_service import PeriodCloseService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


# ----------------------------------------------------------------------
# Allocations
# ----------------------------------------------------------------------


@router.post("/allocations/preview", response_model=list[PlannedAllocationResponse])
def preview_allocations(
    body: AllocationPreviewRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
) -> list[PlannedAllocationResponse]:
    """Planned auto-allocation lines; nothing is persisted."""
    plan = AllocationService(store).preview_allocation(body.payment_ids, body.plot_id, body.period)
    return [PlannedAllocationResponse.model_validate(line) for line in plan]


@router.post("/allocations/auto")
def auto_allocate(
    body: AutoAllocateRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> dict[str, Any]:
    summary = AllocationService(store).auto_allocate(
        mutation_context(actor_id, body.reason),
        payment_ids=body.payment_ids,
        period=body.period,
    )
    return summary.to_dict()


@router.post("/allocations/manual", response_model=AllocationsResult, status_code=status.HTTP_201_CREATED)
def manual_allocate(
    body: ManualAllocateRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> AllocationsResult:
    allocation, warnings = AllocationService(store).manual_allocate(
        body.payment_id, body.charge_id, body.amount, mutation_context(actor_id, body.reason)
    )
    return AllocationsResult(
        allocations=[AllocationResponse.model_validate(allocation)], warnings=warnings
    )


@router.post("/allocations/unapply", response_model=AllocationsResult)
def unapply(
    body: UnapplyRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> AllocationsResult:
    """Reverse all allocations of a payment, or a single allocation, with counter-entries."""
    reversals, warnings = AllocationService(store).unapply(
        mutation_context(actor_id, body.reason),
        payment_id=body.payment_id,
        allocation_id=body.allocation_id,
    )
    return AllocationsResult(
        allocations=[AllocationResponse.model_validate(r) for r in reversals], warnings=warnings
    )


# ----------------------------------------------------------------------
# Penalties
# ----------------------------------------------------------------------


@router.post("/penalty/preview")
def preview_penalties(
    body: PenaltyPreviewRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
) -> list[dict[str, Any]]:
    rows = PenaltyService(store).preview(body.as_of, body.rate, body.min_penalty)
    return [row.to_dict() for row in rows]


@router.post("/penalty/apply")
def apply_penalties(
    body: PenaltyApplyRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> dict[str, Any]:
    summary = PenaltyService(store).apply(body.as_of, body.rate, mutation_context(actor_id, body.reason))
    return summary.to_dict()


@router.post("/penalty/recalc")
def recalc_penalties(
    body: PenaltyRecalcRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> dict[str, Any]:
    summary = PenaltyService(store).recalc(
        body.as_of,
        body.rate,
        mutation_context(actor_id, body.reason),
        create_missing=body.create_missing,
        period=body.period,
        plot_ids=body.plot_ids,
        limit=body.limit,
    )
    return summary.to_dict()


def _penalty_action(action: str, accrual_id: int, reason: str | None, store: LedgerStore, actor_id: str):
    service = PenaltyService(store)
    accrual, warnings = getattr(service, action)(accrual_id, mutation_context(actor_id, reason))
    return PenaltyAccrualResult(accrual=PenaltyAccrualResponse.model_validate(accrual), warnings=warnings)


@router.post("/penalty/{accrual_id}/void", response_model=PenaltyAccrualResult)
def void_penalty(
    accrual_id: int,
    body: ReasonPayload,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> PenaltyAccrualResult:
    return _penalty_action("void", accrual_id, body.reason, store, actor_id)


@router.post("/penalty/{accrual_id}/freeze", response_model=PenaltyAccrualResult)
def freeze_penalty(
    accrual_id: int,
    body: ReasonPayload,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> PenaltyAccrualResult:
    return _penalty_action("freeze", accrual_id, body.reason, store, actor_id)


@router.post("/penalty/{accrual_id}/unfreeze", response_model=PenaltyAccrualResult)
def unfreeze_penalty(
    accrual_id: int,
    body: ReasonPayload,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> PenaltyAccrualResult:
    return _penalty_action("unfreeze", accrual_id, body.reason, store, actor_id)


@router.get("/penalty", response_model=list[PenaltyAccrualResponse])
def list_penalties(
    plot_id: int | None = None,
    period: str | None = None,
    status_filter: PenaltyStatus | None = Query(None, alias="status"),  # noqa: B008
    store: LedgerStore = Depends(get_store),  # noqa: B008
) -> list[PenaltyAccrualResponse]:
    accruals = PenaltyService(store).list_accruals(plot_id=plot_id, period=period, status=status_filter)
    return [PenaltyAccrualResponse.model_validate(a) for a in accruals]


# ----------------------------------------------------------------------
# Periods
# ----------------------------------------------------------------------


@router.post("/periods/{period}/close", response_model=PeriodCloseResponse)
def close_period(
    period: str,
    body: ReasonPayload | None = None,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> PeriodCloseResponse:
    reason = body.reason if body else None
    record = PeriodCloseService(store).close_period(period, mutation_context(actor_id, reason))
    return PeriodCloseResponse.model_validate(record)


@router.get("/periods/{period}")
def get_period(period: str, store: LedgerStore = Depends(get_store)) -> dict[str, Any]:  # noqa: B008
    """Status, close snapshot, current aggregates and drift of a month."""
    return PeriodCloseService(store).get_period_status(period)


@router.get("/periods/{period}/changes", response_model=list[PostCloseChangeResponse])
def list_period_changes(
    period: str,
    store: LedgerStore = Depends(get_store),  # noqa: B008
) -> list[PostCloseChangeResponse]:
    changes = PeriodCloseService(store).list_post_close_changes(period)
    return [PostCloseChangeResponse.model_validate(c) for c in changes]


@router.get("/periods", response_model=list[PeriodCloseResponse])
def list_periods(store: LedgerStore = Depends(get_store)) -> list[PeriodCloseResponse]:  # noqa: B008
    return [PeriodCloseResponse.model_validate(r) for r in PeriodCloseService(store).list_periods()]


# ----------------------------------------------------------------------
# Imports
# ----------------------------------------------------------------------


@router.post("/imports/statement", status_code=status.HTTP_201_CREATED)
def import_statement(
    body: ImportRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> dict[str, Any]:
    result = ImportService(store).import_statement(
        body.rows, mutation_context(actor_id, body.reason), file_name=body.file_name
    )
    return result.to_dict()


@router.post("/imports/payments", status_code=status.HTTP_201_CREATED)
def import_payments(
    body: ImportRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> dict[str, Any]:
    result = ImportService(store).import_payments(
        body.rows, mutation_context(actor_id, body.reason), file_name=body.file_name
    )
    return result.to_dict()


@router.post("/imports/{batch_id}/rollback")
def rollback_import(
    batch_id: int,
    body: ReasonPayload | None = None,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> dict[str, Any]:
    reason = body.reason if body else None
    return ImportService(store).rollback_batch(batch_id, mutation_context(actor_id, reason))


# ----------------------------------------------------------------------
# Payments
# ----------------------------------------------------------------------


@router.post("/payments", response_model=PaymentResult, status_code=status.HTTP_201_CREATED)
def create_payment(
    body: PaymentCreateRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> PaymentResult:
    payment, warnings = PaymentService(store).record_payment(
        body.amount,
        body.paid_at,
        mutation_context(actor_id, body.reason),
        payer=body.payer,
        purpose=body.purpose,
        method=body.method,
        plot_id=body.plot_id,
        bank_ref=body.bank_ref,
    )
    return PaymentResult(payment=PaymentResponse.model_validate(payment), warnings=warnings)


@router.get("/payments", response_model=list[PaymentResponse])
def list_payments(
    period: str | None = None,
    match_status: MatchStatus | None = None,
    plot_id: int | None = None,
    include_voided: bool = False,
    store: LedgerStore = Depends(get_store),  # noqa: B008
) -> list[PaymentResponse]:
    payments = PaymentService(store).list_payments(period, match_status, plot_id, include_voided)
    return [PaymentResponse.model_validate(p) for p in payments]


@router.post("/payments/{payment_id}/void", response_model=PaymentResult)
def void_payment(
    payment_id: int,
    body: RequiredReasonPayload,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> PaymentResult:
    payment, warnings = PaymentService(store).void_payment(
        payment_id, mutation_context(actor_id, body.reason)
    )
    return PaymentResult(payment=PaymentResponse.model_validate(payment), warnings=warnings)


@router.post("/payments/{payment_id}/assign", response_model=PaymentResponse)
def assign_payment(
    payment_id: int,
    body: AssignPlotRequest,
    store: LedgerStore = Depends(get_store),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> PaymentResponse:
    payment = PaymentService(store).assign_plot(
        payment_id, body.plot_id, mutation_context(actor_id, body.reason)
    )
    return PaymentResponse.model_validate(payment)


# ----------------------------------------------------------------------
# Balances
# ----------------------------------------------------------------------


@router.get("/debtors", response_model=list[DebtorResponse])
def list_debtors(
    min_debt: Decimal = Query(Decimal("0"), ge=0),  # noqa: B008
    store: LedgerStore = Depends(get_store),  # noqa: B008
) -> list[DebtorResponse]:
    return [DebtorResponse(**d) for d in BalanceService(store).list_debtors(min_debt)]


@router.get("/receipts")
def list_receipts(
    period: str,
    filter: str = "debtors",
    limit: int = 100,
    plot_ids: list[int] | None = Query(None),  # noqa: B008
    store: LedgerStore = Depends(get_store),  # noqa: B008
) -> list[dict[str, Any]]:
    receipts = BalanceService(store).build_receipts(period, plot_ids=plot_ids, filter=filter, limit=limit)
    return [r.to_dict() for r in receipts]


@router.get("/plots/{plot_id}/balance")
def plot_balance(plot_id: int, store: LedgerStore = Depends(get_store)) -> dict[str, Any]:  # noqa: B008
    balance = BalanceService(store).plot_balance(plot_id)
    return {name: str(value) if isinstance(value, Decimal) else value for name, value in balance._asdict().items()}


__all__ = ["router"]
