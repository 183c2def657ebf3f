"""Property tests: ledger totals stay consistent over any sequence of payment operations."""

from datetime import date, datetime, timezone
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from snt_ledger.models import Allocation, Base, Charge, Payment
from snt_ledger.services import build_engine
from snt_ledger.services.clock import ManualClock
from snt_ledger.services.context import MutationContext
from snt_ledger.services.errors import InsufficientRemaining, InvalidTransition, ValidationError
from snt_ledger.services.ledger_store import ZERO, LedgerStore, to_money
from snt_ledger.services.locks import KeyedLocks
from snt_ledger.services.payment_service import PaymentService

CTX = MutationContext(actor_id="accountant-1", reason="Reconciliation")
EXPECTED_REJECTIONS = (InsufficientRemaining, InvalidTransition, ValidationError)

cents = st.integers(min_value=1, max_value=900_000)
payment_index = st.integers(min_value=0, max_value=5)
operations = st.lists(
    st.one_of(
        st.tuples(st.just("pay"), cents),
        st.tuples(st.just("auto")),
        st.tuples(st.just("manual"), payment_index, st.integers(min_value=0, max_value=2), cents),
        st.tuples(st.just("unapply"), payment_index),
        st.tuples(st.just("void"), payment_index),
    ),
    max_size=12,
)


def money(value: int) -> Decimal:
    return Decimal(value) / 100


def run(payments: PaymentService, charge_ids: list[int], plot_id: int, payment_ids: list[int], op) -> None:
    kind = op[0]
    if kind == "pay":
        payment, _ = payments.record_payment(money(op[1]), date(2025, 2, 10), CTX, plot_id=plot_id)
        payment_ids.append(payment.id)
        return
    if kind == "auto":
        payments.allocations.auto_allocate(CTX)
        return
    if op[1] >= len(payment_ids):
        return
    payment_id = payment_ids[op[1]]
    try:
        if kind == "manual":
            payments.allocations.manual_allocate(payment_id, charge_ids[op[2]], money(op[3]), CTX)
        elif kind == "unapply":
            payments.allocations.unapply(CTX, payment_id=payment_id)
        else:
            payments.void_payment(payment_id, CTX)
    except EXPECTED_REJECTIONS:
        pass


def sums_by(db: Session, column) -> dict[int, Decimal]:
    rows = db.execute(select(column, func.sum(Allocation.amount)).group_by(column))
    return {key: to_money(total) for key, total in rows}


def assert_consistent(db: Session) -> None:
    allocated_by_payment = sums_by(db, Allocation.payment_id)
    paid_by_charge = sums_by(db, Allocation.charge_id)

    for payment in db.scalars(select(Payment)):
        assert payment.allocated_amount + payment.remaining_amount == payment.amount
        assert payment.allocated_amount >= ZERO
        assert payment.remaining_amount >= ZERO
        assert payment.allocated_amount == allocated_by_payment.get(payment.id, ZERO)
        if payment.is_voided:
            assert payment.allocated_amount == ZERO

    for charge in db.scalars(select(Charge)):
        assert charge.amount_paid >= ZERO
        assert charge.amount_paid == paid_by_charge.get(charge.id, ZERO)

    allocated_total = db.scalar(select(func.coalesce(func.sum(Payment.allocated_amount), 0)))
    paid_total = db.scalar(select(func.coalesce(func.sum(Charge.amount_paid), 0)))
    assert to_money(allocated_total) == to_money(paid_total)


class TestLedgerConservation:
    """Test allocated + remaining == amount and non-negative totals after every step."""

    @given(operations)
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_any_operation_sequence(self, steps):
        engine = build_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)
        try:
            with Session(engine) as db:
                store = LedgerStore(
                    db, clock=ManualClock(datetime(2025, 3, 1, tzinfo=timezone.utc)), locks=KeyedLocks()
                )
                payments = PaymentService(store)
                plot = payments.create_plot("12", CTX)
                charge_ids = [
                    payments.create_charge(plot.id, period, "membership", amount, CTX)[0].id
                    for period, amount in (("2025-01", "3000"), ("2025-02", "4000"), ("2025-03", "1500"))
                ]
                payment_ids: list[int] = []

                for step in steps:
                    run(payments, charge_ids, plot.id, payment_ids, step)
                    assert_consistent(db)
        finally:
            engine.dispose()
