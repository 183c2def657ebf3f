"""Penalty engine: daily-rate penalties on overdue plot debt.

penalty = debt * rate * days_overdue / 365, rounded to kopecks, per
(plot, accrual period). Accruals move active <-> frozen and either state may be
voided; voiding is terminal and only ever done by a person.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select

from snt_ledger.config import settings
from snt_ledger.models import AccrualPeriod, Charge, PenaltyAccrual, PenaltyStatus
from snt_ledger.services.audit_service import AuditService
from snt_ledger.services.context import MutationContext
from snt_ledger.services.errors import InvalidTransition, ValidationError
from snt_ledger.services.ledger_store import ZERO, LedgerStore, parse_period, to_money
from snt_ledger.services.period_service import GuardOutcome, PeriodCloseService

logger = logging.getLogger(__name__)

DAYS_IN_YEAR = Decimal(365)
RATE_PER_DAY_QUANT = Decimal("0.0000000001")
PENALTY_POLICY_VERSION = settings.penalty_policy_version


@dataclass
class PenaltyRow:
    """Computed penalty for one (plot, accrual period)."""

    plot_id: int
    accrual_period_id: int
    period: str
    due_date: date
    debt: Decimal
    days_overdue: int
    rate: Decimal
    rate_per_day: Decimal
    penalty: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "plot_id": self.plot_id,
            "accrual_period_id": self.accrual_period_id,
            "period": self.period,
            "due_date": self.due_date.isoformat(),
            "debt": str(self.debt),
            "days_overdue": self.days_overdue,
            "rate": str(self.rate),
            "rate_per_day": str(self.rate_per_day),
            "penalty": str(self.penalty),
        }


@dataclass
class PenaltySummary:
    created: int = 0
    updated: int = 0
    skipped_existing: int = 0
    skipped_zero: int = 0
    skipped_frozen: int = 0
    skipped_voided: int = 0
    skipped_zero_debt: int = 0
    total_amount: Decimal = ZERO
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = {
            name: getattr(self, name)
            for name in (
                "created",
                "updated",
                "skipped_existing",
                "skipped_zero",
                "skipped_frozen",
                "skipped_voided",
                "skipped_zero_debt",
            )
        }
        data["total_amount"] = str(self.total_amount)
        data["warnings"] = list(self.warnings)
        return data


def compute_penalty(debt: Decimal, rate: Decimal, days_overdue: int) -> Decimal:
    """debt * rate * days / 365 rounded half-up to kopecks.

    Example:
        >>> compute_penalty(Decimal("10000"), Decimal("0.365"), 10)
        Decimal('100.00')
    """
    if debt <= ZERO or days_overdue <= 0:
        return ZERO
    return (debt * rate * Decimal(days_overdue) / DAYS_IN_YEAR).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


class PenaltyService:
    """Service for previewing, applying and maintaining penalty accruals."""

    def __init__(
        self,
        store: LedgerStore,
        periods: PeriodCloseService | None = None,
        policy_version: str | None = None,
    ):
        self.store = store
        self.db = store.db
        self.periods = periods or PeriodCloseService(store)
        self.policy_version = policy_version or PENALTY_POLICY_VERSION

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_rate(rate) -> Decimal:
        try:
            value = Decimal(str(rate))
        except ArithmeticError as e:
            raise ValidationError(f"Invalid penalty rate: {rate!r}") from e
        if not value.is_finite() or value < 0:
            raise ValidationError(f"Penalty rate must be a non-negative number, got {rate!r}")
        return value

    def _debt_rows(self) -> dict[tuple[int, int], tuple[Decimal, AccrualPeriod]]:
        """Outstanding debt per (plot, accrual period) from current charge state."""
        self.db.flush()
        rows = self.db.execute(
            select(Charge, AccrualPeriod).join(
                AccrualPeriod, Charge.accrual_period_id == AccrualPeriod.id
            )
        )
        debts: dict[tuple[int, int], tuple[Decimal, AccrualPeriod]] = {}
        for charge, period in rows:
            key = (charge.plot_id, period.id)
            outstanding = max(ZERO, charge.amount_accrued - charge.amount_paid)
            current = debts.get(key, (ZERO, period))[0]
            debts[key] = (current + outstanding, period)
        return debts

    def _row(self, plot_id: int, period: AccrualPeriod, debt: Decimal, as_of: date, rate: Decimal) -> PenaltyRow:
        days_overdue = max(0, (as_of - period.due_date).days)
        return PenaltyRow(
            plot_id=plot_id,
            accrual_period_id=period.id,
            period=period.key,
            due_date=period.due_date,
            debt=to_money(debt),
            days_overdue=days_overdue,
            rate=rate,
            rate_per_day=(rate / DAYS_IN_YEAR).quantize(RATE_PER_DAY_QUANT, rounding=ROUND_HALF_UP),
            penalty=compute_penalty(to_money(debt), rate, days_overdue),
        )

    def preview(self, as_of: date, rate, min_penalty=0) -> list[PenaltyRow]:
        """Penalty rows for every (plot, period) with positive debt, without persisting.

        Rows with a penalty below min_penalty are dropped. Ordered by plot id,
        then period.
        """
        value = self._validate_rate(rate)
        minimum = to_money(min_penalty)
        rows = []
        for (plot_id, _), (debt, period) in self._debt_rows().items():
            if debt <= ZERO:
                continue
            row = self._row(plot_id, period, debt, as_of, value)
            if row.penalty >= minimum:
                rows.append(row)
        rows.sort(key=lambda r: (r.plot_id, r.period, r.accrual_period_id))
        return rows

    def _accruals_by_key(self) -> dict[tuple[int, int], list[PenaltyAccrual]]:
        by_key: dict[tuple[int, int], list[PenaltyAccrual]] = {}
        query = select(PenaltyAccrual).order_by(PenaltyAccrual.id).execution_options(populate_existing=True)
        for accrual in self.db.scalars(query):
            by_key.setdefault((accrual.plot_id, accrual.accrual_period_id), []).append(accrual)
        return by_key

    def _new_accrual(self, row: PenaltyRow, as_of: date, ctx: MutationContext) -> PenaltyAccrual:
        accrual = PenaltyAccrual(
            plot_id=row.plot_id,
            accrual_period_id=row.accrual_period_id,
            amount=row.penalty,
            status=PenaltyStatus.ACTIVE,
            as_of=as_of,
            rate=row.rate,
            rate_per_day=row.rate_per_day,
            base_debt=row.debt,
            days_overdue=row.days_overdue,
            policy_version=self.policy_version,
            created_by=ctx.actor_id,
        )
        self.db.add(accrual)
        self.db.flush()
        return accrual

    def _record_changes(
        self,
        accrual: PenaltyAccrual,
        period: str,
        action: str,
        ctx: MutationContext,
        outcome: GuardOutcome,
        details: dict[str, Any],
    ) -> None:
        AuditService.log(self.db, "penalty", accrual.id, action, ctx.actor_id, details)
        if period in outcome.closed:
            self.periods.record_post_close(
                GuardOutcome(closed=[period], reason=outcome.reason),
                ctx,
                "penalty",
                accrual.id,
                action,
                details,
            )

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    def apply(self, as_of: date, rate, ctx: MutationContext) -> PenaltySummary:
        """Persist positive preview rows as active accruals.

        (plot, period) pairs that already have an active or frozen accrual are skipped.
        """
        summary = PenaltySummary()
        with self.store.transaction():
            rows = self.preview(as_of, rate)
            self.store.lock_penalty_keys((row.plot_id, row.accrual_period_id) for row in rows)
            existing = self._accruals_by_key()
            to_create = []
            for row in rows:
                current = existing.get((row.plot_id, row.accrual_period_id), [])
                if any(a.status != PenaltyStatus.VOIDED for a in current):
                    summary.skipped_existing += 1
                elif row.penalty <= ZERO:
                    summary.skipped_zero += 1
                else:
                    to_create.append(row)

            outcome = self.periods.guard({row.period for row in to_create}, ctx)
            for row in to_create:
                accrual = self._new_accrual(row, as_of, ctx)
                summary.created += 1
                summary.total_amount += row.penalty
                self._record_changes(
                    accrual,
                    row.period,
                    "apply",
                    ctx,
                    outcome,
                    {"amount": str(row.penalty), "as_of": as_of.isoformat(), "base_debt": str(row.debt)},
                )
            summary.warnings = outcome.warnings

        logger.info(
            "Penalty apply as_of=%s rate=%s by %s: created=%d, skipped_existing=%d, skipped_zero=%d, total=%s",
            as_of,
            rate,
            ctx.actor_id,
            summary.created,
            summary.skipped_existing,
            summary.skipped_zero,
            summary.total_amount,
        )
        return summary

    def _recalc_keys(
        self,
        debts: dict[tuple[int, int], tuple[Decimal, AccrualPeriod]],
        existing: dict[tuple[int, int], list[PenaltyAccrual]],
        period: str | None,
        plot_ids: list[int] | None,
        limit: int | None,
    ) -> list[tuple[int, int]]:
        """(plot, accrual period) keys a recalc covers, ordered by plot then period id."""
        period_of = {key: accrual_period.key for key, (_, accrual_period) in debts.items()}
        for key, accruals in existing.items():
            period_of.setdefault(key, accruals[0].accrual_period.key)
        wanted_plots = set(plot_ids or ())
        keys = [
            key
            for key in sorted(period_of)
            if (period is None or period_of[key] == period) and (not wanted_plots or key[0] in wanted_plots)
        ]
        return keys[:limit] if limit is not None else keys

    def recalc(
        self,
        as_of: date,
        rate,
        ctx: MutationContext,
        create_missing: bool = False,
        period: str | None = None,
        plot_ids: list[int] | None = None,
        limit: int | None = None,
    ) -> PenaltySummary:
        """Recompute active accruals from current debt.

        Frozen and voided accruals are left untouched. Active accruals whose debt
        reached zero keep their last amount (never auto-voided). With
        create_missing, debt rows that never had an accrual get one.

        period ('YYYY-MM'), plot_ids and limit narrow the (plot, period) pairs
        considered; limit counts pairs in plot, then period order.
        """
        value = self._validate_rate(rate)
        if period is not None:
            parse_period(period)
        if limit is not None and limit < 1:
            raise ValidationError(f"Limit must be positive, got {limit}")
        summary = PenaltySummary()
        with self.store.transaction():
            debts = self._debt_rows()
            keys = self._recalc_keys(debts, self._accruals_by_key(), period, plot_ids, limit)
            self.store.lock_penalty_keys(keys)
            existing = self._accruals_by_key()

            updates: list[tuple[PenaltyAccrual, PenaltyRow]] = []
            for key in keys:
                for accrual in existing.get(key, []):
                    if accrual.status == PenaltyStatus.VOIDED:
                        summary.skipped_voided += 1
                        continue
                    if accrual.status == PenaltyStatus.FROZEN:
                        summary.skipped_frozen += 1
                        continue
                    debt, accrual_period = debts.get(key, (ZERO, accrual.accrual_period))
                    if debt <= ZERO:
                        summary.skipped_zero_debt += 1
                        continue
                    updates.append((accrual, self._row(accrual.plot_id, accrual_period, debt, as_of, value)))

            creates: list[PenaltyRow] = []
            if create_missing:
                for key in keys:
                    if key not in debts or key in existing:
                        continue
                    debt, accrual_period = debts[key]
                    if debt <= ZERO:
                        continue
                    row = self._row(key[0], accrual_period, debt, as_of, value)
                    if row.penalty > ZERO:
                        creates.append(row)

            outcome = self.periods.guard(
                {row.period for _, row in updates} | {row.period for row in creates}, ctx
            )

            for accrual, row in updates:
                previous = accrual.amount
                accrual.amount = row.penalty
                accrual.as_of = as_of
                accrual.rate = row.rate
                accrual.rate_per_day = row.rate_per_day
                accrual.base_debt = row.debt
                accrual.days_overdue = row.days_overdue
                accrual.policy_version = self.policy_version
                summary.updated += 1
                summary.total_amount += row.penalty
                self._record_changes(
                    accrual,
                    row.period,
                    "recalc",
                    ctx,
                    outcome,
                    {"previous_amount": str(previous), "amount": str(row.penalty), "as_of": as_of.isoformat()},
                )

            for row in creates:
                accrual = self._new_accrual(row, as_of, ctx)
                summary.created += 1
                summary.total_amount += row.penalty
                self._record_changes(
                    accrual,
                    row.period,
                    "recalc_create",
                    ctx,
                    outcome,
                    {"amount": str(row.penalty), "as_of": as_of.isoformat()},
                )
            summary.warnings = outcome.warnings

        logger.info(
            "Penalty recalc as_of=%s rate=%s by %s: updated=%d, created=%d, frozen=%d, voided=%d, zero_debt=%d",
            as_of,
            rate,
            ctx.actor_id,
            summary.updated,
            summary.created,
            summary.skipped_frozen,
            summary.skipped_voided,
            summary.skipped_zero_debt,
        )
        return summary

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(
        self,
        accrual_id: int,
        ctx: MutationContext,
        action: str,
        allowed_from: set[PenaltyStatus],
    ) -> tuple[PenaltyAccrual, GuardOutcome]:
        accrual = self.store.get(PenaltyAccrual, accrual_id)
        self.store.lock_penalty_keys([(accrual.plot_id, accrual.accrual_period_id)])
        self.db.refresh(accrual)
        if accrual.status not in allowed_from:
            raise InvalidTransition("penalty", accrual_id, accrual.status.value, action)
        outcome = self.periods.guard([accrual.accrual_period.key], ctx)
        return accrual, outcome

    def void(self, accrual_id: int, ctx: MutationContext) -> tuple[PenaltyAccrual, list[str]]:
        """Void an active or frozen accrual permanently. Reason is mandatory."""
        if not ctx.has_reason:
            raise ValidationError("A reason is required to void a penalty accrual")
        with self.store.transaction():
            accrual, outcome = self._transition(
                accrual_id, ctx, "void", {PenaltyStatus.ACTIVE, PenaltyStatus.FROZEN}
            )
            previous = accrual.status
            accrual.status = PenaltyStatus.VOIDED
            accrual.void_reason = ctx.reason.strip()
            accrual.voided_by = ctx.actor_id
            accrual.voided_at = self.store.clock.now()
            self._record_changes(
                accrual,
                accrual.accrual_period.key,
                "void",
                ctx,
                outcome,
                {"from": previous.value, "amount": str(accrual.amount), "reason": accrual.void_reason},
            )
        logger.info("Voided penalty accrual %d by %s: %s", accrual_id, ctx.actor_id, ctx.reason)
        return accrual, outcome.warnings

    def freeze(self, accrual_id: int, ctx: MutationContext) -> tuple[PenaltyAccrual, list[str]]:
        """Freeze an active accrual (kept in debt totals, excluded from recalc). Reason is mandatory."""
        if not ctx.has_reason:
            raise ValidationError("A reason is required to freeze a penalty accrual")
        with self.store.transaction():
            accrual, outcome = self._transition(accrual_id, ctx, "freeze", {PenaltyStatus.ACTIVE})
            accrual.status = PenaltyStatus.FROZEN
            accrual.freeze_reason = ctx.reason.strip()
            accrual.frozen_by = ctx.actor_id
            accrual.frozen_at = self.store.clock.now()
            self._record_changes(
                accrual,
                accrual.accrual_period.key,
                "freeze",
                ctx,
                outcome,
                {"amount": str(accrual.amount), "reason": accrual.freeze_reason},
            )
        logger.info("Froze penalty accrual %d by %s: %s", accrual_id, ctx.actor_id, ctx.reason)
        return accrual, outcome.warnings

    def unfreeze(self, accrual_id: int, ctx: MutationContext) -> tuple[PenaltyAccrual, list[str]]:
        """Return a frozen accrual to active."""
        with self.store.transaction():
            accrual, outcome = self._transition(accrual_id, ctx, "unfreeze", {PenaltyStatus.FROZEN})
            accrual.status = PenaltyStatus.ACTIVE
            accrual.unfrozen_by = ctx.actor_id
            accrual.unfrozen_at = self.store.clock.now()
            self._record_changes(
                accrual,
                accrual.accrual_period.key,
                "unfreeze",
                ctx,
                outcome,
                {"amount": str(accrual.amount)},
            )
        logger.info("Unfroze penalty accrual %d by %s", accrual_id, ctx.actor_id)
        return accrual, outcome.warnings

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_accruals(
        self,
        plot_id: int | None = None,
        period: str | None = None,
        status: PenaltyStatus | None = None,
    ) -> list[PenaltyAccrual]:
        query = (
            select(PenaltyAccrual)
            .join(AccrualPeriod, PenaltyAccrual.accrual_period_id == AccrualPeriod.id)
            .order_by(PenaltyAccrual.plot_id, AccrualPeriod.year, AccrualPeriod.month, PenaltyAccrual.id)
        )
        if plot_id is not None:
            query = query.where(PenaltyAccrual.plot_id == plot_id)
        if period:
            year, month = parse_period(period)
            query = query.where(AccrualPeriod.year == year, AccrualPeriod.month == month)
        if status is not None:
            query = query.where(PenaltyAccrual.status == status)
        return list(self.db.scalars(query))

    def summary(self, period: str | None = None) -> dict[str, dict[str, Any]]:
        """Count and amount per status."""
        result = {s.value: {"count": 0, "amount": ZERO} for s in PenaltyStatus}
        for accrual in self.list_accruals(period=period):
            bucket = result[accrual.status.value]
            bucket["count"] += 1
            bucket["amount"] += to_money(accrual.amount)
        for bucket in result.values():
            bucket["amount"] = str(bucket["amount"])
        return result


__all__ = [
    "PenaltyService",
    "PenaltyRow",
    "PenaltySummary",
    "compute_penalty",
    "PENALTY_POLICY_VERSION",
]
