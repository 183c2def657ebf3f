"""Integration tests for auto/manual allocation, unapply and payment voiding."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from snt_ledger.models import Allocation, AllocationKind, AllocationStatus, Charge, MatchStatus
from snt_ledger.services.allocation_service import AllocationService
from snt_ledger.services.audit_service import AuditService
from snt_ledger.services.errors import (
    InsufficientRemaining,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from snt_ledger.services.ledger_store import to_money


@pytest.fixture
def allocations(store):
    return AllocationService(store)


def allocation_sum(db, column, value) -> Decimal:
    total = db.scalar(select(func.coalesce(func.sum(Allocation.amount), 0)).where(column == value))
    return to_money(total)


class TestAutoAllocate:
    """Test greedy oldest-first allocation."""

    def test_payment_split_across_two_periods(self, allocations, jan_feb_charges, plot, pay, ctx):
        """Test 5000 against 3000 (Jan) and 4000 (Feb) charges."""
        jan, feb = jan_feb_charges
        payment = pay(plot.id, "5000")

        summary = allocations.auto_allocate(ctx)

        assert summary.updated_count == 1
        assert summary.charge_count == 2
        assert summary.allocation_count == 2
        assert summary.total_allocated == Decimal("5000")
        assert jan.amount_paid == Decimal("3000")
        assert feb.amount_paid == Decimal("2000")
        assert jan.outstanding == Decimal("0")
        assert payment.remaining_amount == Decimal("0")
        assert payment.allocated_amount == Decimal("5000")
        assert payment.allocation_status == AllocationStatus.ALLOCATED

    def test_totals_equal_allocation_rows(self, allocations, jan_feb_charges, plot, pay, ctx, db_session):
        """Test derived totals always equal the signed sum of allocation rows."""
        jan, feb = jan_feb_charges
        first = pay(plot.id, "2000")
        second = pay(plot.id, "4000", paid_at=date(2025, 2, 20))

        allocations.auto_allocate(ctx)

        for payment in (first, second):
            assert payment.allocated_amount == allocation_sum(db_session, Allocation.payment_id, payment.id)
            assert payment.allocated_amount + payment.remaining_amount == payment.amount
        for charge in (jan, feb):
            assert charge.amount_paid == allocation_sum(db_session, Allocation.charge_id, charge.id)
        # Earlier payment fills January first, the later one finishes it
        assert jan.amount_paid == Decimal("3000")
        assert feb.amount_paid == Decimal("3000")
        assert second.remaining_amount == Decimal("0")

    def test_is_idempotent(self, allocations, jan_feb_charges, plot, pay, ctx, db_session):
        """Test running auto-allocation twice creates nothing new."""
        pay(plot.id, "5000")
        allocations.auto_allocate(ctx)

        again = allocations.auto_allocate(ctx)

        assert again.allocation_count == 0
        assert db_session.scalar(select(func.count(Allocation.id))) == 2

    def test_overpayment_keeps_remaining(self, allocations, jan_feb_charges, plot, pay, ctx):
        """Test a payment larger than the debt stays partially allocated."""
        payment = pay(plot.id, "8000")

        allocations.auto_allocate(ctx)

        assert payment.allocated_amount == Decimal("7000")
        assert payment.remaining_amount == Decimal("1000")
        assert payment.allocation_status == AllocationStatus.PARTIAL

    def test_never_crosses_plots(self, allocations, payments, jan_feb_charges, plot, pay, ctx):
        """Test a payment is applied only to its own plot's charges."""
        other = payments.create_plot("14", ctx)
        other_charge, _ = payments.create_charge(other.id, "2024-12", "membership", "1000", ctx)
        pay(plot.id, "1000")

        allocations.auto_allocate(ctx)

        assert other_charge.amount_paid == Decimal("0")
        assert jan_feb_charges[0].amount_paid == Decimal("1000")

    def test_unmatched_payments_are_skipped(self, allocations, payments, jan_feb_charges, ctx):
        """Test payments without a plot are not allocated."""
        payment, _ = payments.record_payment("1000", date(2025, 2, 1), ctx, purpose="взнос")

        summary = allocations.auto_allocate(ctx)

        assert payment.match_status == MatchStatus.UNMATCHED
        assert summary.allocation_count == 0

    def test_auto_allocate_disabled_payment(self, allocations, payments, jan_feb_charges, plot, pay, ctx):
        """Test payments excluded from auto-allocation stay unallocated."""
        payment = pay(plot.id, "1000")
        payments.set_auto_allocate(payment.id, False, ctx)

        summary = allocations.auto_allocate(ctx)

        assert summary.allocation_count == 0

    def test_limited_to_period_of_payment(self, allocations, jan_feb_charges, plot, pay, ctx):
        """Test the period filter selects payments by payment month."""
        pay(plot.id, "1000", paid_at=date(2025, 1, 15))
        march = pay(plot.id, "1000", paid_at=date(2025, 3, 3))

        summary = allocations.auto_allocate(ctx, period="2025-01")

        assert summary.updated_count == 1
        assert march.remaining_amount == Decimal("1000")

    def test_allocations_are_audited(self, allocations, jan_feb_charges, plot, pay, ctx, db_session):
        pay(plot.id, "5000")

        allocations.auto_allocate(ctx)

        entries = AuditService.list_for(db_session, "allocation")
        assert [e.action for e in entries] == ["auto_allocate", "auto_allocate"]
        assert entries[0].actor_id == "accountant-1"


class TestPreviewAllocation:
    """Test allocation previews."""

    def test_preview_matches_execution_and_persists_nothing(
        self, allocations, jan_feb_charges, plot, pay, ctx, db_session
    ):
        pay(plot.id, "5000")

        plan = allocations.preview_allocation()

        assert [(line.period, line.amount) for line in plan] == [
            ("2025-01", Decimal("3000")),
            ("2025-02", Decimal("2000")),
        ]
        assert db_session.scalar(select(func.count(Allocation.id))) == 0

    def test_preview_by_plot(self, allocations, payments, jan_feb_charges, plot, pay, ctx):
        other = payments.create_plot("14", ctx)
        pay(plot.id, "5000")

        assert allocations.preview_allocation(plot_id=other.id) == []


class TestManualAllocate:
    """Test manual allocation."""

    def test_manual_allocation(self, allocations, jan_feb_charges, plot, pay, ctx):
        _, feb = jan_feb_charges
        payment = pay(plot.id, "5000")

        allocation, warnings = allocations.manual_allocate(payment.id, feb.id, "1500", ctx)

        assert allocation.kind == AllocationKind.MANUAL
        assert allocation.amount == Decimal("1500")
        assert warnings == []
        assert feb.amount_paid == Decimal("1500")
        assert payment.remaining_amount == Decimal("3500")

    def test_insufficient_remaining(self, allocations, jan_feb_charges, plot, pay, ctx, db_session):
        """Test rejection leaves no allocation and no audit entry."""
        _, feb = jan_feb_charges
        payment = pay(plot.id, "1000")

        with pytest.raises(InsufficientRemaining):
            allocations.manual_allocate(payment.id, feb.id, "1000.01", ctx)

        assert db_session.scalar(select(func.count(Allocation.id))) == 0
        assert AuditService.list_for(db_session, "allocation") == []
        assert payment.remaining_amount == Decimal("1000")

    def test_non_positive_amount(self, allocations, jan_feb_charges, plot, pay, ctx):
        payment = pay(plot.id, "1000")

        with pytest.raises(ValidationError):
            allocations.manual_allocate(payment.id, jan_feb_charges[0].id, "0", ctx)

    def test_unknown_charge(self, allocations, plot, pay, ctx):
        payment = pay(plot.id, "1000")

        with pytest.raises(NotFound):
            allocations.manual_allocate(payment.id, 999, "10", ctx)


class TestUnapply:
    """Test reversal of allocations with counter-entries."""

    def test_unapply_payment_restores_state(self, allocations, jan_feb_charges, plot, pay, ctx, db_session):
        """Test unapply fully reverses, keeps history, and allows re-allocation."""
        jan, feb = jan_feb_charges
        payment = pay(plot.id, "5000")
        allocations.auto_allocate(ctx)

        reversals, _ = allocations.unapply(ctx, payment_id=payment.id)

        assert len(reversals) == 2
        assert all(r.kind == AllocationKind.REVERSAL for r in reversals)
        assert sorted(r.amount for r in reversals) == [Decimal("-3000"), Decimal("-2000")]
        assert payment.remaining_amount == Decimal("5000")
        assert payment.allocation_status == AllocationStatus.UNALLOCATED
        assert jan.amount_paid == Decimal("0")
        assert feb.amount_paid == Decimal("0")
        assert db_session.scalar(select(func.count(Allocation.id))) == 4

        summary = allocations.auto_allocate(ctx)
        assert summary.total_allocated == Decimal("5000")
        assert jan.amount_paid == Decimal("3000")

    def test_unapply_single_allocation(self, allocations, jan_feb_charges, plot, pay, ctx, db_session):
        _, feb = jan_feb_charges
        payment = pay(plot.id, "5000")
        allocations.auto_allocate(ctx)
        feb_allocation = db_session.scalar(select(Allocation).where(Allocation.charge_id == feb.id))

        reversals, _ = allocations.unapply(ctx, allocation_id=feb_allocation.id)

        assert reversals[0].reverses_allocation_id == feb_allocation.id
        assert payment.remaining_amount == Decimal("2000")
        assert payment.allocation_status == AllocationStatus.PARTIAL

        with pytest.raises(ValidationError, match="already reversed"):
            allocations.unapply(ctx, allocation_id=feb_allocation.id)
        with pytest.raises(ValidationError, match="reversal"):
            allocations.unapply(ctx, allocation_id=reversals[0].id)

    def test_exactly_one_target(self, allocations, ctx):
        with pytest.raises(ValidationError):
            allocations.unapply(ctx)
        with pytest.raises(ValidationError):
            allocations.unapply(ctx, payment_id=1, allocation_id=1)

    def test_unapply_without_allocations(self, allocations, plot, pay, ctx):
        payment = pay(plot.id, "100")

        reversals, warnings = allocations.unapply(ctx, payment_id=payment.id)

        assert reversals == []
        assert warnings == []


class TestVoidPayment:
    """Test voiding a payment."""

    def test_void_reverses_allocations(self, allocations, payments, jan_feb_charges, plot, pay, ctx_reason):
        jan, feb = jan_feb_charges
        payment = pay(plot.id, "5000")
        allocations.auto_allocate(ctx_reason)

        voided, _ = payments.void_payment(payment.id, ctx_reason)

        assert voided.is_voided
        assert voided.void_reason == "Bank statement correction"
        assert voided.remaining_amount == Decimal("5000")
        assert jan.amount_paid == Decimal("0")
        assert feb.amount_paid == Decimal("0")

        # Voided payments are never allocated again
        assert allocations.auto_allocate(ctx_reason).allocation_count == 0

    def test_void_requires_reason(self, payments, plot, pay, ctx):
        payment = pay(plot.id, "100")

        with pytest.raises(ValidationError, match="reason"):
            payments.void_payment(payment.id, ctx)

    def test_void_twice(self, payments, plot, pay, ctx_reason):
        payment = pay(plot.id, "100")
        payments.void_payment(payment.id, ctx_reason)

        with pytest.raises(InvalidTransition):
            payments.void_payment(payment.id, ctx_reason)


class TestPaymentRecords:
    """Test plot, charge and payment administration."""

    def test_duplicate_bank_reference(self, payments, plot, ctx):
        payments.record_payment("100", date(2025, 2, 1), ctx, plot_id=plot.id, bank_ref="REF-1")

        with pytest.raises(ValidationError, match="already exists"):
            payments.record_payment("100", date(2025, 2, 2), ctx, plot_id=plot.id, bank_ref="REF-1")

    def test_automatic_match_on_record(self, payments, plot, ctx):
        payment, _ = payments.record_payment("100", date(2025, 2, 1), ctx, purpose="Взнос уч. 12")

        assert payment.match_status == MatchStatus.MATCHED
        assert payment.matched_plot_id == plot.id

    def test_assign_plot(self, payments, plot, ctx):
        payment, _ = payments.record_payment("100", date(2025, 2, 1), ctx, purpose="взнос")

        payments.assign_plot(payment.id, plot.id, ctx)

        assert payment.match_status == MatchStatus.MATCHED
        assert payment.match_reason == "manual"

    def test_generate_accruals_skips_existing(self, payments, plot, ctx, db_session):
        payments.create_plot("14", ctx)

        first = payments.generate_accruals("2025-04", "membership", "2500", ctx)
        second = payments.generate_accruals("2025-04", "membership", "2500", ctx)

        assert first["created"] == 2
        assert second == {"created": 0, "skipped": 2, "warnings": []}
        assert db_session.scalar(select(func.count(Charge.id))) == 2

    def test_charge_validation(self, payments, plot, ctx):
        with pytest.raises(ValidationError):
            payments.create_charge(plot.id, "2025-01", "membership", "-1", ctx)
        with pytest.raises(ValidationError):
            payments.create_charge(plot.id, "2025-01", "parking", "100", ctx)

    def test_archived_plot_not_matched(self, payments, plot, ctx):
        payments.archive_plot(plot.id, ctx)

        payment, _ = payments.record_payment("100", date(2025, 2, 1), ctx, purpose="Взнос уч. 12")

        assert payment.match_status == MatchStatus.UNMATCHED
