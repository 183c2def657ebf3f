"""Period close manager: month snapshots, the closed-period guard and drift reports."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select

from snt_ledger.config import settings
from snt_ledger.models import (
    AccrualPeriod,
    Charge,
    Payment,
    PenaltyAccrual,
    PenaltyStatus,
    PeriodCloseRecord,
    PeriodCloseStatus,
    PostCloseChange,
)
from snt_ledger.services.audit_service import AuditService
from snt_ledger.services.context import MutationContext
from snt_ledger.services.errors import AlreadyClosed, NotFound, PeriodClosedRequiresReason
from snt_ledger.services.ledger_store import ZERO, LedgerStore, month_bounds, parse_period, to_money

logger = logging.getLogger(__name__)

MONEY_AGGREGATES = ("accrued_total", "paid_total", "debt_total", "penalty_total")
COUNT_AGGREGATES = ("payment_count", "debtor_count")


@dataclass
class GuardOutcome:
    """Closed periods a guarded mutation touches (empty when all are open)."""

    closed: list[str] = field(default_factory=list)
    reason: str | None = None

    @property
    def warnings(self) -> list[str]:
        return [
            f"Period {period} is closed; change recorded as post-close correction"
            for period in self.closed
        ]


@dataclass
class PeriodAggregates:
    accrued_total: Decimal = ZERO
    paid_total: Decimal = ZERO
    debt_total: Decimal = ZERO
    penalty_total: Decimal = ZERO
    payment_count: int = 0
    debtor_count: int = 0

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe form (money as strings)."""
        data: dict[str, Any] = {name: str(getattr(self, name)) for name in MONEY_AGGREGATES}
        data.update({name: getattr(self, name) for name in COUNT_AGGREGATES})
        return data

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any]) -> "PeriodAggregates":
        return cls(
            **{name: to_money(snapshot[name]) for name in MONEY_AGGREGATES},
            **{name: int(snapshot[name]) for name in COUNT_AGGREGATES},
        )

    def minus(self, other: "PeriodAggregates") -> "PeriodAggregates":
        return PeriodAggregates(
            **{name: getattr(self, name) - getattr(other, name) for name in MONEY_AGGREGATES},
            **{name: getattr(self, name) - getattr(other, name) for name in COUNT_AGGREGATES},
        )


class PeriodCloseService:
    """Closes calendar months and guards later mutations of closed months.

    The guard is the one predicate every ledger-mutating operation consults:
    a closed month can only be touched with a reason, and each such change is
    appended to the month's post-close change log.
    """

    def __init__(self, store: LedgerStore, association_id: str | None = None):
        self.store = store
        self.db = store.db
        self.association_id = association_id or settings.association_id

    # ------------------------------------------------------------------
    # Guard
    # ------------------------------------------------------------------

    def closed_periods(self, periods: Iterable[str]) -> list[str]:
        """Subset of the given 'YYYY-MM' keys that are closed, sorted."""
        keys = sorted(set(periods))
        if not keys:
            return []
        rows = self.db.scalars(
            select(PeriodCloseRecord.period).where(
                PeriodCloseRecord.association_id == self.association_id,
                PeriodCloseRecord.period.in_(keys),
                PeriodCloseRecord.status == PeriodCloseStatus.CLOSED,
            )
        )
        return sorted(rows)

    def guard(self, periods: Iterable[str], ctx: MutationContext) -> GuardOutcome:
        """Check a mutation against closed periods.

        Returns:
            GuardOutcome listing the closed periods the mutation touches

        Raises:
            PeriodClosedRequiresReason: If any period is closed and ctx has no reason
        """
        closed = self.closed_periods(periods)
        if not closed:
            return GuardOutcome()
        if not ctx.has_reason:
            raise PeriodClosedRequiresReason(closed)
        return GuardOutcome(closed=closed, reason=ctx.reason.strip())

    def record_post_close(
        self,
        outcome: GuardOutcome,
        ctx: MutationContext,
        entity_type: str,
        entity_id: int | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> list[PostCloseChange]:
        """Append one post-close change per closed period plus an audit entry."""
        changes = []
        for period in outcome.closed:
            change = PostCloseChange(
                association_id=self.association_id,
                period=period,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                reason=outcome.reason,
                actor_id=ctx.actor_id,
                details=details,
            )
            self.db.add(change)
            changes.append(change)
        if changes:
            AuditService.log(
                self.db,
                "post_close_change",
                entity_id,
                action,
                ctx.actor_id,
                {
                    "entity_type": entity_type,
                    "periods": outcome.closed,
                    "reason": outcome.reason,
                    **(details or {}),
                },
            )
            logger.info(
                "Post-close change %s on %s %s in %s by %s: %s",
                action,
                entity_type,
                entity_id,
                ", ".join(outcome.closed),
                ctx.actor_id,
                outcome.reason,
            )
        return changes

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def compute_aggregates(self, period: str) -> PeriodAggregates:
        """Current month aggregates over charges, payments and penalties."""
        year, month = parse_period(period)
        first, last = month_bounds(period)
        self.db.flush()

        month_charges = (
            select(Charge.plot_id, Charge.amount_accrued, Charge.amount_paid)
            .join(AccrualPeriod, Charge.accrual_period_id == AccrualPeriod.id)
            .where(AccrualPeriod.year == year, AccrualPeriod.month == month)
        )
        accrued = ZERO
        unpaid: dict[int, Decimal] = {}
        for plot_id, amount_accrued, amount_paid in self.db.execute(month_charges):
            accrued += to_money(amount_accrued)
            unpaid[plot_id] = unpaid.get(plot_id, ZERO) + max(
                ZERO, to_money(amount_accrued) - to_money(amount_paid)
            )

        paid_total, payment_count = self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0), func.count(Payment.id)).where(
                Payment.is_voided.is_(False),
                Payment.paid_at >= first,
                Payment.paid_at <= last,
            )
        ).one()

        penalty_total = self.db.scalar(
            select(func.coalesce(func.sum(PenaltyAccrual.amount), 0))
            .join(AccrualPeriod, PenaltyAccrual.accrual_period_id == AccrualPeriod.id)
            .where(
                AccrualPeriod.year == year,
                AccrualPeriod.month == month,
                PenaltyAccrual.status.in_([PenaltyStatus.ACTIVE, PenaltyStatus.FROZEN]),
            )
        )

        paid = to_money(paid_total)
        return PeriodAggregates(
            accrued_total=accrued,
            paid_total=paid,
            debt_total=accrued - paid,
            penalty_total=to_money(penalty_total),
            payment_count=int(payment_count),
            debtor_count=sum(1 for amount in unpaid.values() if amount > ZERO),
        )

    # ------------------------------------------------------------------
    # Close / status
    # ------------------------------------------------------------------

    def _record(self, period: str) -> PeriodCloseRecord | None:
        return self.db.scalars(
            select(PeriodCloseRecord).where(
                PeriodCloseRecord.association_id == self.association_id,
                PeriodCloseRecord.period == period,
            )
        ).first()

    def close_period(self, period: str, ctx: MutationContext) -> PeriodCloseRecord:
        """Capture the month snapshot and mark it closed.

        Raises:
            ValidationError: If period is not 'YYYY-MM'
            AlreadyClosed: If the month is already closed
        """
        parse_period(period)
        with self.store.transaction():
            record = self._record(period)
            if record is not None and record.status == PeriodCloseStatus.CLOSED:
                raise AlreadyClosed(period)

            aggregates = self.compute_aggregates(period)
            if record is None:
                record = PeriodCloseRecord(association_id=self.association_id, period=period)
                self.db.add(record)
            record.status = PeriodCloseStatus.CLOSED
            record.snapshot = aggregates.to_snapshot()
            record.closed_at = self.store.clock.now()
            record.closed_by = ctx.actor_id
            self.db.flush()

            AuditService.log(self.db, "period", record.id, "close", ctx.actor_id, record.snapshot)

        logger.info(
            "Closed period %s by %s: accrued=%s, paid=%s, debt=%s, penalty=%s",
            period,
            ctx.actor_id,
            aggregates.accrued_total,
            aggregates.paid_total,
            aggregates.debt_total,
            aggregates.penalty_total,
        )
        return record

    def get_period_status(self, period: str) -> dict[str, Any]:
        """Status, snapshot, current aggregates and drift for a month."""
        parse_period(period)
        record = self._record(period)
        current = self.compute_aggregates(period)
        closed = record is not None and record.status == PeriodCloseStatus.CLOSED
        drift = None
        if closed:
            drift = current.minus(PeriodAggregates.from_snapshot(record.snapshot)).to_snapshot()
        return {
            "period": period,
            "status": PeriodCloseStatus.CLOSED.value if closed else PeriodCloseStatus.OPEN.value,
            "closed_at": record.closed_at if closed else None,
            "closed_by": record.closed_by if closed else None,
            "snapshot": record.snapshot if closed else None,
            "current": current.to_snapshot(),
            "drift": drift,
        }

    def drift_report(self, period: str) -> PeriodAggregates:
        """current - snapshot per aggregate. Informational, never reconciled.

        Raises:
            NotFound: If the month was never closed
        """
        parse_period(period)
        record = self._record(period)
        if record is None or record.status != PeriodCloseStatus.CLOSED:
            raise NotFound("Closed period", period)
        return self.compute_aggregates(period).minus(PeriodAggregates.from_snapshot(record.snapshot))

    def list_post_close_changes(self, period: str) -> list[PostCloseChange]:
        parse_period(period)
        return list(
            self.db.scalars(
                select(PostCloseChange)
                .where(
                    PostCloseChange.association_id == self.association_id,
                    PostCloseChange.period == period,
                )
                .order_by(PostCloseChange.id)
            )
        )

    def list_periods(self) -> list[PeriodCloseRecord]:
        return list(
            self.db.scalars(
                select(PeriodCloseRecord)
                .where(PeriodCloseRecord.association_id == self.association_id)
                .order_by(PeriodCloseRecord.period)
            )
        )


__all__ = ["PeriodCloseService", "GuardOutcome", "PeriodAggregates"]
