"""Payments and accruals administration: plots, charges, manual payments, voiding."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select

from snt_ledger.models import (
    AccrualCategory,
    AccrualPeriod,
    Charge,
    MatchStatus,
    MembershipStatus,
    Payment,
    PaymentMethod,
    Plot,
)
from snt_ledger.services.allocation_service import AllocationService
from snt_ledger.services.audit_service import AuditService
from snt_ledger.services.context import MutationContext
from snt_ledger.services.errors import InvalidTransition, ValidationError
from snt_ledger.services.ledger_store import (
    ZERO,
    LedgerStore,
    month_bounds,
    parse_period,
    period_key,
    to_money,
)
from snt_ledger.services.matching_service import MatchingService, MatchResult
from snt_ledger.services.period_service import GuardOutcome, PeriodCloseService

logger = logging.getLogger(__name__)


def _category(value) -> AccrualCategory:
    try:
        return AccrualCategory(value)
    except ValueError as e:
        raise ValidationError(f"Unknown accrual category {value!r}") from e


def _positive(amount, what: str = "Amount") -> Decimal:
    value = to_money(amount)
    if value <= ZERO:
        raise ValidationError(f"{what} must be positive, got {value}")
    return value


class PaymentService:
    """Service for plot, charge and payment records.

    Every write runs in one ledger transaction, is audited, and goes through the
    closed-period guard for the months it affects.
    """

    def __init__(
        self,
        store: LedgerStore,
        matcher: MatchingService | None = None,
        periods: PeriodCloseService | None = None,
    ):
        self.store = store
        self.db = store.db
        self.matcher = matcher or MatchingService()
        self.periods = periods or PeriodCloseService(store)
        self.allocations = AllocationService(store, self.periods)

    # ------------------------------------------------------------------
    # Plots
    # ------------------------------------------------------------------

    def active_plots(self) -> list[Plot]:
        return list(
            self.db.scalars(select(Plot).where(Plot.is_archived.is_(False)).order_by(Plot.id))
        )

    def find_plot(self, code: str | None) -> Plot | None:
        """Resolve a non-archived plot by number or label (case-insensitive)."""
        if not code:
            return None
        value = code.strip().lower()
        for plot in self.active_plots():
            if plot.plot_number.lower() == value or plot.label.strip().lower() == value:
                return plot
        return None

    def create_plot(
        self,
        plot_number: str,
        ctx: MutationContext,
        label: str | None = None,
        street: str | None = None,
        owner_name: str | None = None,
        phone: str | None = None,
        telegram_chat_id: str | None = None,
        membership_status: MembershipStatus = MembershipStatus.UNKNOWN,
    ) -> Plot:
        number = (plot_number or "").strip()
        if not number:
            raise ValidationError("Plot number is required")
        with self.store.transaction():
            exists = self.db.scalar(select(func.count(Plot.id)).where(Plot.plot_number == number))
            if exists:
                raise ValidationError(f"Plot {number} already exists")
            plot = Plot(
                plot_number=number,
                label=label or f"Участок {number}",
                street=street,
                owner_name=owner_name,
                phone=phone,
                telegram_chat_id=telegram_chat_id,
                membership_status=membership_status,
            )
            self.db.add(plot)
            self.db.flush()
            AuditService.log(self.db, "plot", plot.id, "create", ctx.actor_id, {"plot_number": number})
        logger.info("Created plot %s (id=%d) by %s", number, plot.id, ctx.actor_id)
        return plot

    def archive_plot(self, plot_id: int, ctx: MutationContext) -> Plot:
        with self.store.transaction():
            plot = self.store.get(Plot, plot_id)
            if plot.is_archived:
                raise InvalidTransition("plot", plot_id, "archived", "archive")
            plot.is_archived = True
            AuditService.log(self.db, "plot", plot.id, "archive", ctx.actor_id)
        logger.info("Archived plot %d by %s", plot_id, ctx.actor_id)
        return plot

    # ------------------------------------------------------------------
    # Accruals
    # ------------------------------------------------------------------

    def get_or_create_period(
        self, year: int, month: int, category, due_date: date | None = None
    ) -> AccrualPeriod:
        with self.store.transaction():
            return self.store.get_or_create_period(year, month, _category(category), due_date)

    def create_charge(
        self,
        plot_id: int,
        period: str,
        category,
        amount,
        ctx: MutationContext,
        note: str | None = None,
        due_date: date | None = None,
    ) -> tuple[Charge, list[str]]:
        """Accrue an amount to a plot for (period, category).

        Raises:
            ValidationError: If amount <= 0, period or category malformed
            PeriodClosedRequiresReason: If the month is closed and no reason given
        """
        value = _positive(amount)
        year, month = parse_period(period)
        cat = _category(category)
        with self.store.transaction():
            plot = self.store.get(Plot, plot_id)
            outcome = self.periods.guard([period], ctx)
            accrual_period = self.store.get_or_create_period(year, month, cat, due_date)
            charge = Charge(
                plot_id=plot.id,
                accrual_period_id=accrual_period.id,
                amount_accrued=value,
                amount_paid=ZERO,
                note=note,
            )
            self.db.add(charge)
            self.db.flush()
            details = {"plot_id": plot.id, "period": period, "category": cat.value, "amount": str(value)}
            AuditService.log(self.db, "charge", charge.id, "create", ctx.actor_id, details)
            self.periods.record_post_close(outcome, ctx, "charge", charge.id, "create", details)
        logger.info(
            "Created charge %d: plot=%d, period=%s/%s, amount=%s by %s",
            charge.id,
            plot_id,
            period,
            cat.value,
            value,
            ctx.actor_id,
        )
        return charge, outcome.warnings

    def generate_accruals(
        self,
        period: str,
        category,
        amount,
        ctx: MutationContext,
        plot_ids: list[int] | None = None,
        due_date: date | None = None,
    ) -> dict[str, Any]:
        """One charge per non-archived plot that has none for the accrual period yet."""
        value = _positive(amount)
        year, month = parse_period(period)
        cat = _category(category)
        created = 0
        skipped = 0
        with self.store.transaction():
            outcome = self.periods.guard([period], ctx)
            accrual_period = self.store.get_or_create_period(year, month, cat, due_date)
            charged = set(
                self.db.scalars(
                    select(Charge.plot_id).where(Charge.accrual_period_id == accrual_period.id)
                )
            )
            plots = self.active_plots()
            if plot_ids:
                wanted = set(plot_ids)
                plots = [p for p in plots if p.id in wanted]
            for plot in plots:
                if plot.id in charged:
                    skipped += 1
                    continue
                self.db.add(
                    Charge(
                        plot_id=plot.id,
                        accrual_period_id=accrual_period.id,
                        amount_accrued=value,
                        amount_paid=ZERO,
                    )
                )
                created += 1
            self.db.flush()
            details = {"period": period, "category": cat.value, "amount": str(value), "created": created}
            AuditService.log(
                self.db, "accrual_period", accrual_period.id, "generate", ctx.actor_id, details
            )
            if created:
                self.periods.record_post_close(
                    outcome, ctx, "accrual_period", accrual_period.id, "generate", details
                )
        logger.info(
            "Generated %d charges for %s/%s (skipped %d) by %s",
            created,
            period,
            cat.value,
            skipped,
            ctx.actor_id,
        )
        return {"created": created, "skipped": skipped, "warnings": outcome.warnings if created else []}

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def new_payment(
        self,
        amount: Decimal,
        paid_at: date,
        match: MatchResult,
        payer: str | None = None,
        purpose: str | None = None,
        method: PaymentMethod = PaymentMethod.BANK,
        bank_ref: str | None = None,
        fingerprint: str | None = None,
        import_batch_id: int | None = None,
    ) -> Payment:
        """Build and add an unallocated payment carrying its match result (caller holds the transaction)."""
        payment = Payment(
            amount=amount,
            paid_at=paid_at,
            payer=payer,
            purpose=purpose,
            method=method,
            bank_ref=bank_ref,
            fingerprint=fingerprint,
            match_status=match.match_status,
            matched_plot_id=match.matched_plot_id,
            match_candidates=match.candidates,
            match_reason=match.reason,
            match_confidence=match.confidence,
            allocated_amount=ZERO,
            remaining_amount=amount,
            import_batch_id=import_batch_id,
        )
        self.db.add(payment)
        return payment

    def record_payment(
        self,
        amount,
        paid_at: date,
        ctx: MutationContext,
        payer: str | None = None,
        purpose: str | None = None,
        method=PaymentMethod.CASH,
        plot_id: int | None = None,
        bank_ref: str | None = None,
    ) -> tuple[Payment, list[str]]:
        """Record a manually entered payment; matched automatically unless a plot is given."""
        value = _positive(amount)
        try:
            payment_method = PaymentMethod(method)
        except ValueError as e:
            raise ValidationError(f"Unknown payment method {method!r}") from e
        with self.store.transaction():
            if plot_id is not None:
                plot = self.store.get(Plot, plot_id)
                if plot.is_archived:
                    raise ValidationError(f"Plot {plot_id} is archived")
                match = MatchResult(
                    match_status=MatchStatus.MATCHED,
                    matched_plot_id=plot.id,
                    candidates=[plot.id],
                    confidence=1.0,
                    reason="manual",
                )
            else:
                match = self.matcher.match(self.active_plots(), payer=payer, purpose=purpose, amount=value)
            fingerprint = f"ref:{bank_ref.strip()}" if bank_ref and bank_ref.strip() else None
            if fingerprint and self.db.scalar(
                select(func.count(Payment.id)).where(Payment.fingerprint == fingerprint)
            ):
                raise ValidationError(f"Payment with bank reference {bank_ref} already exists")

            outcome = self.periods.guard([period_key(paid_at)], ctx)
            payment = self.new_payment(
                value, paid_at, match, payer, purpose, payment_method, bank_ref, fingerprint
            )
            self.db.flush()
            details = {
                "amount": str(value),
                "paid_at": paid_at.isoformat(),
                "match_status": match.match_status.value,
                "matched_plot_id": match.matched_plot_id,
            }
            AuditService.log(self.db, "payment", payment.id, "create", ctx.actor_id, details)
            self.periods.record_post_close(outcome, ctx, "payment", payment.id, "create", details)
        logger.info(
            "Recorded payment %d: amount=%s, paid_at=%s, match=%s (plot=%s) by %s",
            payment.id,
            value,
            paid_at,
            match.match_status.value,
            match.matched_plot_id,
            ctx.actor_id,
        )
        return payment, outcome.warnings

    def assign_plot(self, payment_id: int, plot_id: int, ctx: MutationContext) -> Payment:
        """Resolve an ambiguous/unmatched payment to a plot by hand.

        Raises:
            ValidationError: If the payment is voided, the plot archived, or the
                payment still has live allocations on another plot
        """
        with self.store.transaction():
            (payment,) = self.store.lock_payments([payment_id])
            plot = self.store.get(Plot, plot_id)
            if payment.is_voided:
                raise ValidationError(f"Payment {payment_id} is voided")
            if plot.is_archived:
                raise ValidationError(f"Plot {plot_id} is archived")
            live = self.store.live_allocations(payment.id)
            if any(a.charge.plot_id != plot.id for a in live):
                raise ValidationError(
                    f"Payment {payment_id} has allocations on another plot, unapply them first"
                )
            previous = payment.matched_plot_id
            payment.match_status = MatchStatus.MATCHED
            payment.matched_plot_id = plot.id
            payment.match_reason = "manual"
            payment.match_confidence = 1.0
            AuditService.log(
                self.db,
                "payment",
                payment.id,
                "assign_plot",
                ctx.actor_id,
                {"from_plot_id": previous, "to_plot_id": plot.id},
            )
        logger.info("Assigned payment %d to plot %d by %s", payment_id, plot_id, ctx.actor_id)
        return payment

    def set_auto_allocate(self, payment_id: int, enabled: bool, ctx: MutationContext) -> Payment:
        with self.store.transaction():
            (payment,) = self.store.lock_payments([payment_id])
            payment.auto_allocate_disabled = not enabled
            AuditService.log(
                self.db,
                "payment",
                payment.id,
                "set_auto_allocate",
                ctx.actor_id,
                {"enabled": enabled},
            )
        logger.info(
            "Payment %d auto-allocation %s by %s",
            payment_id,
            "enabled" if enabled else "disabled",
            ctx.actor_id,
        )
        return payment

    def void_locked(self, payment: Payment, ctx: MutationContext, reason: str) -> GuardOutcome:
        """Void a locked payment and reverse its allocations (caller holds the transaction)."""
        if payment.is_voided:
            raise InvalidTransition("payment", payment.id, "voided", "void")
        outcome = self.periods.guard([payment.period_key], ctx)
        _, reversal_outcome = self.allocations.reverse_payment_allocations(payment, ctx, "void_reversal")
        payment.is_voided = True
        payment.voided_at = self.store.clock.now()
        payment.voided_by = ctx.actor_id
        payment.void_reason = reason
        details = {"amount": str(payment.amount), "paid_at": payment.paid_at.isoformat(), "reason": reason}
        AuditService.log(self.db, "payment", payment.id, "void", ctx.actor_id, details)
        self.periods.record_post_close(outcome, ctx, "payment", payment.id, "void", details)
        return GuardOutcome(
            closed=sorted(set(outcome.closed) | set(reversal_outcome.closed)),
            reason=outcome.reason or reversal_outcome.reason,
        )

    def void_payment(self, payment_id: int, ctx: MutationContext) -> tuple[Payment, list[str]]:
        """Void a payment. Voiding is manual only and needs a reason.

        Raises:
            ValidationError: If no reason is given
            InvalidTransition: If already voided

        Closed months touched by the void are recorded as post-close changes.
        """
        if not ctx.has_reason:
            raise ValidationError("A reason is required to void a payment")
        with self.store.transaction():
            (payment,) = self.store.lock_payments([payment_id])
            outcome = self.void_locked(payment, ctx, ctx.reason.strip())
        logger.info(
            "Voided payment %d (amount=%s) by %s: %s",
            payment_id,
            payment.amount,
            ctx.actor_id,
            ctx.reason,
        )
        return payment, outcome.warnings

    def list_payments(
        self,
        period: str | None = None,
        match_status: MatchStatus | None = None,
        plot_id: int | None = None,
        include_voided: bool = False,
    ) -> list[Payment]:
        query = select(Payment).order_by(Payment.paid_at, Payment.id)
        if period:
            first, last = month_bounds(period)
            query = query.where(Payment.paid_at >= first, Payment.paid_at <= last)
        if match_status is not None:
            query = query.where(Payment.match_status == match_status)
        if plot_id is not None:
            query = query.where(Payment.matched_plot_id == plot_id)
        if not include_voided:
            query = query.where(Payment.is_voided.is_(False))
        return list(self.db.scalars(query))


__all__ = ["PaymentService"]
