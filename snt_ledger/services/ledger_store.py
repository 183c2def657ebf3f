"""Ledger store: transaction boundary, row locking and derived totals.

All ledger writes go through one LedgerStore bound to a session. The store owns
the transaction (re-entrant, so a job handler can wrap several operations in a
single unit of work), serializes writers per payment, and recomputes the cached
totals of payments and charges from their allocation rows after every write.
"""

import calendar
import logging
import re
from collections.abc import Callable, Iterable, Iterator
from contextlib import ExitStack, contextmanager
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from snt_ledger.models import (
    AccrualPeriod,
    Allocation,
    AllocationKind,
    AllocationStatus,
    Charge,
    Payment,
)
from snt_ledger.services.clock import Clock, SystemClock
from snt_ledger.services.errors import (
    ConcurrentModification,
    LedgerError,
    LedgerInvariantError,
    NotFound,
    ValidationError,
)
from snt_ledger.services.locks import KeyedLocks, payment_locks, penalty_locks

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")

T = TypeVar("T")


def to_money(value) -> Decimal:
    """Convert to Decimal rounded to kopecks (ROUND_HALF_UP).

    Raises:
        ValidationError: If value is not a number
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def period_key(value: date) -> str:
    """Calendar month of a date as 'YYYY-MM'."""
    return f"{value.year:04d}-{value.month:02d}"


def parse_period(period: str) -> tuple[int, int]:
    """Parse 'YYYY-MM' into (year, month).

    Raises:
        ValidationError: If the string is not a valid month key
    """
    match = PERIOD_RE.match(period or "")
    if not match:
        raise ValidationError(f"Invalid period {period!r}, expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid period {period!r}, month must be 01..12")
    return year, month


def month_bounds(period: str) -> tuple[date, date]:
    """First and last day of a 'YYYY-MM' month."""
    year, month = parse_period(period)
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


class LedgerStore:
    """System of record for plots, charges, payments and allocations.

    Pure data access with invariants; business rules live in the services.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock | None = None,
        locks: KeyedLocks | None = None,
        penalty_keys: KeyedLocks | None = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.locks = locks or payment_locks
        self.penalty_keys = penalty_keys or penalty_locks
        self._depth = 0
        self._held: ExitStack | None = None
        self.commit_guard: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Run a unit of work; only the outermost level commits.

        Any exception rolls the whole unit back. StaleDataError from the
        payment version check and IntegrityError from a unique index another
        writer got to first both surface as ConcurrentModification.
        """
        outermost = self._depth == 0
        if outermost:
            self._held = ExitStack()
        self._depth += 1
        try:
            yield self.db
            if outermost:
                self.db.flush()
                if self.commit_guard is not None:
                    self.commit_guard()
                self.db.commit()
        except StaleDataError as e:
            if outermost:
                self.db.rollback()
                logger.warning("Concurrent modification detected, rolled back: %s", e)
                raise ConcurrentModification() from e
            raise
        except IntegrityError as e:
            if outermost:
                self.db.rollback()
                logger.warning("Unique constraint hit by a concurrent writer, rolled back: %s", e.orig)
                raise ConcurrentModification() from e
            raise
        except LedgerError as e:
            if outermost:
                self.db.rollback()
                logger.warning("Ledger operation rejected (%s): %s", e.code, e.message)
            raise
        except BaseException:
            if outermost:
                self.db.rollback()
            raise
        finally:
            self._depth -= 1
            if outermost and self._held is not None:
                held, self._held = self._held, None
                held.close()

    def _require_transaction(self) -> None:
        if not self.in_transaction:
            raise RuntimeError("Ledger write outside of LedgerStore.transaction()")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, model: type[T], entity_id: int) -> T:
        """Load an entity by primary key or raise NotFound."""
        entity = self.db.get(model, entity_id)
        if entity is None:
            raise NotFound(model.__name__, entity_id)
        return entity

    def lock_payments(self, payment_ids: Iterable[int]) -> list[Payment]:
        """Acquire per-payment locks (held until the transaction ends) and load rows FOR UPDATE.

        Returns payments ordered by id. Raises NotFound if any id is unknown.
        """
        self._require_transaction()
        ids = sorted(set(payment_ids))
        if not ids:
            return []
        self._held.enter_context(self.locks.hold(ids))
        payments = list(
            self.db.scalars(
                select(Payment)
                .where(Payment.id.in_(ids))
                .order_by(Payment.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        )
        found = {p.id for p in payments}
        for payment_id in ids:
            if payment_id not in found:
                raise NotFound("Payment", payment_id)
        return payments

    def lock_penalty_keys(self, keys: Iterable[tuple[int, int]]) -> None:
        """Serialize penalty writers per (plot_id, accrual_period_id) until the transaction ends.

        Callers must re-read accruals after this returns.
        """
        self._require_transaction()
        ordered = sorted(set(keys))
        if ordered:
            self._held.enter_context(self.penalty_keys.hold(ordered))

    def get_or_create_period(self, year: int, month: int, category, due_date: date | None = None) -> AccrualPeriod:
        """Return the accrual period for (year, month, category), creating it on first use.

        The due date defaults to the last day of the month and is never changed
        for an existing period.
        """
        period = self.db.scalars(
            select(AccrualPeriod).where(
                AccrualPeriod.year == year,
                AccrualPeriod.month == month,
                AccrualPeriod.category == category,
            )
        ).first()
        if period is not None:
            return period
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month {month}")
        if due_date is None:
            due_date = date(year, month, calendar.monthrange(year, month)[1])
        period = AccrualPeriod(year=year, month=month, category=category, due_date=due_date)
        self.db.add(period)
        self.db.flush()
        logger.info("Created accrual period %s/%s (id=%d)", period.key, category, period.id)
        return period

    def open_charges_for_plot(self, plot_id: int) -> list[Charge]:
        """Charges of a plot with outstanding amount, oldest period first, then charge id."""
        self.db.flush()
        rows = self.db.scalars(
            select(Charge)
            .join(AccrualPeriod, Charge.accrual_period_id == AccrualPeriod.id)
            .where(Charge.plot_id == plot_id, Charge.amount_paid < Charge.amount_accrued)
            .order_by(AccrualPeriod.year, AccrualPeriod.month, Charge.id)
        )
        return list(rows)

    def allocations_for_payment(self, payment_id: int) -> list[Allocation]:
        self.db.flush()
        return list(
            self.db.scalars(
                select(Allocation).where(Allocation.payment_id == payment_id).order_by(Allocation.id)
            )
        )

    def reversed_allocation_ids(self, allocation_ids: Iterable[int]) -> set[int]:
        """Ids among the given originals that already have a counter-entry."""
        ids = list(allocation_ids)
        if not ids:
            return set()
        self.db.flush()
        return set(
            self.db.scalars(
                select(Allocation.reverses_allocation_id).where(
                    Allocation.reverses_allocation_id.in_(ids)
                )
            )
        )

    def live_allocations(self, payment_id: int) -> list[Allocation]:
        """Original allocations of a payment that have not been reversed."""
        originals = [
            a for a in self.allocations_for_payment(payment_id) if a.kind != AllocationKind.REVERSAL
        ]
        reversed_ids = self.reversed_allocation_ids(a.id for a in originals)
        return [a for a in originals if a.id not in reversed_ids]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_allocation(
        self,
        payment: Payment,
        charge: Charge,
        amount: Decimal,
        kind: AllocationKind,
        actor_id: str | None = None,
        reverses: Allocation | None = None,
    ) -> Allocation:
        """Append an allocation row and recompute both sides' derived totals."""
        self._require_transaction()
        allocation = Allocation(
            payment_id=payment.id,
            charge_id=charge.id,
            amount=to_money(amount),
            kind=kind,
            actor_id=actor_id,
            reverses_allocation_id=reverses.id if reverses is not None else None,
        )
        self.db.add(allocation)
        self.db.flush()
        self.recompute_payment(payment)
        self.recompute_charge(charge)
        return allocation

    def reverse_allocation(self, original: Allocation, actor_id: str | None = None) -> Allocation:
        """Create the negative counter-entry of an original allocation."""
        return self.add_allocation(
            original.payment,
            original.charge,
            -original.amount,
            AllocationKind.REVERSAL,
            actor_id=actor_id,
            reverses=original,
        )

    def recompute_payment(self, payment: Payment) -> None:
        """Recompute allocated/remaining/status of a payment from its allocation rows.

        Raises:
            LedgerInvariantError: If remaining would become negative
        """
        self.db.flush()
        allocated = to_money(
            self.db.scalar(
                select(func.coalesce(func.sum(Allocation.amount), 0)).where(
                    Allocation.payment_id == payment.id
                )
            )
        )
        remaining = to_money(payment.amount) - allocated
        if remaining < ZERO or allocated < ZERO:
            raise LedgerInvariantError(
                f"Payment {payment.id}: allocated {allocated} exceeds amount {payment.amount}"
            )
        payment.allocated_amount = allocated
        payment.remaining_amount = remaining
        if allocated == ZERO:
            payment.allocation_status = AllocationStatus.UNALLOCATED
        elif remaining == ZERO:
            payment.allocation_status = AllocationStatus.ALLOCATED
        else:
            payment.allocation_status = AllocationStatus.PARTIAL

    def recompute_charge(self, charge: Charge) -> None:
        """Recompute charge.amount_paid from its allocation rows.

        Raises:
            LedgerInvariantError: If the paid total would become negative
        """
        self.db.flush()
        paid = to_money(
            self.db.scalar(
                select(func.coalesce(func.sum(Allocation.amount), 0)).where(
                    Allocation.charge_id == charge.id
                )
            )
        )
        if paid < ZERO:
            raise LedgerInvariantError(f"Charge {charge.id}: paid total {paid} is negative")
        charge.amount_paid = paid


__all__ = [
    "LedgerStore",
    "ZERO",
    "CENT",
    "to_money",
    "period_key",
    "parse_period",
    "month_bounds",
]
