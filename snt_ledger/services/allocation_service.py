"""Allocation engine: applies payments to a plot's open charges and reverses them.

Auto-allocation is greedy, oldest period first, and never crosses plots.
Unapply never deletes: it appends negative counter-entries, so the original
allocation history stays intact.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select

from snt_ledger.models import (
    Allocation,
    AllocationKind,
    Charge,
    MatchStatus,
    Payment,
)
from snt_ledger.services.audit_service import AuditService
from snt_ledger.services.context import MutationContext
from snt_ledger.services.errors import InsufficientRemaining, ValidationError
from snt_ledger.services.ledger_store import (
    ZERO,
    LedgerStore,
    month_bounds,
    to_money,
)
from snt_ledger.services.period_service import GuardOutcome, PeriodCloseService

logger = logging.getLogger(__name__)


@dataclass
class PlannedAllocation:
    """One line of an allocation plan (preview or executed)."""

    payment_id: int
    charge_id: int
    plot_id: int
    period: str
    amount: Decimal


@dataclass
class AllocationSummary:
    updated_count: int = 0
    charge_count: int = 0
    allocation_count: int = 0
    total_allocated: Decimal = ZERO
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "updated_count": self.updated_count,
            "charge_count": self.charge_count,
            "allocation_count": self.allocation_count,
            "total_allocated": str(self.total_allocated),
            "warnings": list(self.warnings),
        }


def _merge_warnings(target: list[str], outcome: GuardOutcome) -> None:
    for warning in outcome.warnings:
        if warning not in target:
            target.append(warning)


class AllocationService:
    """Service for applying payments to charges."""

    def __init__(self, store: LedgerStore, periods: PeriodCloseService | None = None):
        self.store = store
        self.db = store.db
        self.periods = periods or PeriodCloseService(store)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _eligible_query(self, payment_ids: list[int] | None, plot_id: int | None, period: str | None):
        query = (
            select(Payment)
            .where(
                Payment.is_voided.is_(False),
                Payment.auto_allocate_disabled.is_(False),
                Payment.remaining_amount > 0,
                Payment.match_status == MatchStatus.MATCHED,
                Payment.matched_plot_id.is_not(None),
            )
            .order_by(Payment.paid_at, Payment.id)
        )
        if payment_ids:
            query = query.where(Payment.id.in_(payment_ids))
        if plot_id is not None:
            query = query.where(Payment.matched_plot_id == plot_id)
        if period:
            first, last = month_bounds(period)
            query = query.where(Payment.paid_at >= first, Payment.paid_at <= last)
        return query

    def _plan(self, payments: list[Payment]) -> list[PlannedAllocation]:
        """Greedy plan over each plot's open charges, consuming capacity across payments."""
        plan: list[PlannedAllocation] = []
        open_by_plot: dict[int, list[list[Any]]] = {}
        for payment in payments:
            plot_id = payment.matched_plot_id
            if plot_id not in open_by_plot:
                open_by_plot[plot_id] = [
                    [charge, charge.amount_accrued - charge.amount_paid]
                    for charge in self.store.open_charges_for_plot(plot_id)
                ]
            remaining = to_money(payment.remaining_amount)
            for slot in open_by_plot[plot_id]:
                if remaining <= ZERO:
                    break
                charge, capacity = slot
                if capacity <= ZERO:
                    continue
                amount = min(remaining, capacity)
                plan.append(
                    PlannedAllocation(
                        payment_id=payment.id,
                        charge_id=charge.id,
                        plot_id=plot_id,
                        period=charge.accrual_period.key,
                        amount=amount,
                    )
                )
                slot[1] = capacity - amount
                remaining -= amount
        return plan

    def preview_allocation(
        self,
        payment_ids: list[int] | None = None,
        plot_id: int | None = None,
        period: str | None = None,
    ) -> list[PlannedAllocation]:
        """Planned auto-allocation lines without persisting anything.

        Advisory only: the plan is recomputed when allocation actually runs.
        """
        payments = list(self.db.scalars(self._eligible_query(payment_ids, plot_id, period)))
        return self._plan(payments)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def auto_allocate(
        self,
        ctx: MutationContext,
        payment_ids: list[int] | None = None,
        period: str | None = None,
    ) -> AllocationSummary:
        """Allocate eligible payments greedily, oldest period first.

        Idempotent: payments that are already fully allocated are skipped.
        """
        summary = AllocationSummary()
        with self.store.transaction():
            candidate_ids = list(
                self.db.scalars(
                    self._eligible_query(payment_ids, None, period).with_only_columns(Payment.id)
                )
            )
            if not candidate_ids:
                return summary

            self.store.lock_payments(candidate_ids)
            # Re-read under lock: eligibility may have changed since the id scan
            payments = list(self.db.scalars(self._eligible_query(candidate_ids, None, None)))
            plan = self._plan(payments)
            if not plan:
                return summary

            outcome = self.periods.guard({line.period for line in plan}, ctx)

            payment_by_id = {p.id: p for p in payments}
            touched_payments: set[int] = set()
            touched_charges: set[int] = set()
            for line in plan:
                payment = payment_by_id[line.payment_id]
                charge = self.store.get(Charge, line.charge_id)
                allocation = self.store.add_allocation(
                    payment, charge, line.amount, AllocationKind.AUTO, ctx.actor_id
                )
                touched_payments.add(payment.id)
                touched_charges.add(charge.id)
                summary.allocation_count += 1
                summary.total_allocated += line.amount
                AuditService.log(
                    self.db,
                    "allocation",
                    allocation.id,
                    "auto_allocate",
                    ctx.actor_id,
                    {
                        "payment_id": payment.id,
                        "charge_id": charge.id,
                        "amount": str(line.amount),
                        "period": line.period,
                    },
                )
                if line.period in outcome.closed:
                    self.periods.record_post_close(
                        GuardOutcome(closed=[line.period], reason=outcome.reason),
                        ctx,
                        "allocation",
                        allocation.id,
                        "auto_allocate",
                        {"payment_id": payment.id, "charge_id": charge.id, "amount": str(line.amount)},
                    )

            summary.updated_count = len(touched_payments)
            summary.charge_count = len(touched_charges)
            _merge_warnings(summary.warnings, outcome)

        logger.info(
            "Auto-allocated %s across %d payments, %d charges (%d allocations) by %s",
            summary.total_allocated,
            summary.updated_count,
            summary.charge_count,
            summary.allocation_count,
            ctx.actor_id,
        )
        return summary

    def manual_allocate(
        self,
        payment_id: int,
        charge_id: int,
        amount,
        ctx: MutationContext,
    ) -> tuple[Allocation, list[str]]:
        """Allocate an explicit amount of a payment to a charge.

        Raises:
            ValidationError: If amount <= 0 or the payment is voided
            InsufficientRemaining: If amount exceeds the payment's remaining amount
            NotFound: If payment or charge does not exist
            PeriodClosedRequiresReason: If the charge's period is closed and no reason given
        """
        value = to_money(amount)
        if value <= ZERO:
            raise ValidationError(f"Allocation amount must be positive, got {value}")

        with self.store.transaction():
            (payment,) = self.store.lock_payments([payment_id])
            charge = self.store.get(Charge, charge_id)
            if payment.is_voided:
                raise ValidationError(f"Payment {payment_id} is voided")
            if value > payment.remaining_amount:
                raise InsufficientRemaining(payment_id, value, payment.remaining_amount)

            outcome = self.periods.guard([charge.accrual_period.key], ctx)
            allocation = self.store.add_allocation(
                payment, charge, value, AllocationKind.MANUAL, ctx.actor_id
            )
            details = {"payment_id": payment.id, "charge_id": charge.id, "amount": str(value)}
            AuditService.log(
                self.db, "allocation", allocation.id, "manual_allocate", ctx.actor_id, details
            )
            self.periods.record_post_close(
                outcome, ctx, "allocation", allocation.id, "manual_allocate", details
            )

        logger.info(
            "Manual allocation %d: payment=%d, charge=%d, amount=%s by %s",
            allocation.id,
            payment_id,
            charge_id,
            value,
            ctx.actor_id,
        )
        return allocation, outcome.warnings

    def reverse_payment_allocations(
        self, payment: Payment, ctx: MutationContext, action: str
    ) -> tuple[list[Allocation], GuardOutcome]:
        """Counter every live allocation of a locked payment (caller holds the transaction).

        Guards the charges' periods; records post-close changes for closed ones.
        """
        live = self.store.live_allocations(payment.id)
        if not live:
            return [], GuardOutcome()
        outcome = self.periods.guard({a.charge.accrual_period.key for a in live}, ctx)
        reversals = []
        for original in live:
            reversal = self.store.reverse_allocation(original, ctx.actor_id)
            reversals.append(reversal)
            details = {
                "payment_id": payment.id,
                "charge_id": original.charge_id,
                "reverses_allocation_id": original.id,
                "amount": str(reversal.amount),
            }
            AuditService.log(self.db, "allocation", reversal.id, action, ctx.actor_id, details)
            period = original.charge.accrual_period.key
            if period in outcome.closed:
                self.periods.record_post_close(
                    GuardOutcome(closed=[period], reason=outcome.reason),
                    ctx,
                    "allocation",
                    reversal.id,
                    action,
                    details,
                )
        return reversals, outcome

    def unapply(
        self,
        ctx: MutationContext,
        payment_id: int | None = None,
        allocation_id: int | None = None,
    ) -> tuple[list[Allocation], list[str]]:
        """Reverse allocations of a payment, or a single allocation.

        Returns:
            (created counter-entries, warnings)

        Raises:
            ValidationError: If neither/both ids are given, or the allocation is a
                reversal or already reversed
        """
        if (payment_id is None) == (allocation_id is None):
            raise ValidationError("Exactly one of payment_id or allocation_id is required")

        with self.store.transaction():
            if allocation_id is not None:
                original = self.store.get(Allocation, allocation_id)
                self.store.lock_payments([original.payment_id])
                if original.kind == AllocationKind.REVERSAL:
                    raise ValidationError(f"Allocation {allocation_id} is a reversal entry")
                if self.store.reversed_allocation_ids([original.id]):
                    raise ValidationError(f"Allocation {allocation_id} is already reversed")
                period = original.charge.accrual_period.key
                outcome = self.periods.guard([period], ctx)
                reversal = self.store.reverse_allocation(original, ctx.actor_id)
                details = {
                    "payment_id": original.payment_id,
                    "charge_id": original.charge_id,
                    "reverses_allocation_id": original.id,
                    "amount": str(reversal.amount),
                }
                AuditService.log(self.db, "allocation", reversal.id, "unapply", ctx.actor_id, details)
                self.periods.record_post_close(
                    outcome, ctx, "allocation", reversal.id, "unapply", details
                )
                reversals = [reversal]
            else:
                (payment,) = self.store.lock_payments([payment_id])
                reversals, outcome = self.reverse_payment_allocations(payment, ctx, "unapply")

        logger.info(
            "Unapplied %d allocation(s) (payment=%s, allocation=%s) by %s",
            len(reversals),
            payment_id,
            allocation_id,
            ctx.actor_id,
        )
        return reversals, outcome.warnings


__all__ = ["AllocationService", "AllocationSummary", "PlannedAllocation"]
