"""Plot balances, debtor lists and receipt data."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, NamedTuple
from urllib.parse import urlencode

from sqlalchemy import select

from snt_ledger.models import AccrualPeriod, Charge, Payment, PenaltyAccrual, PenaltyStatus, Plot
from snt_ledger.services.errors import ValidationError
from snt_ledger.services.ledger_store import ZERO, LedgerStore, parse_period, to_money

logger = logging.getLogger(__name__)

RECEIPTS_MAX_LIMIT = 500
RECEIPT_FILTERS = ("debtors", "has_accruals", "all")
RECEIPT_PDF_PATH = "/api/billing/receipts/pdf"


class PlotBalance(NamedTuple):
    """Balance of one plot (debt is positive when the plot owes money)."""

    plot_id: int
    accrued: Decimal
    paid: Decimal
    charge_debt: Decimal
    penalty_total: Decimal
    total_debt: Decimal


@dataclass
class Receipt:
    plot_id: int
    plot_number: str
    label: str
    period: str
    charges: list[dict[str, Any]]
    accrued: Decimal
    paid: Decimal
    debt: Decimal
    link: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "plot_id": self.plot_id,
            "plot_number": self.plot_number,
            "label": self.label,
            "period": self.period,
            "charges": self.charges,
            "accrued": str(self.accrued),
            "paid": str(self.paid),
            "debt": str(self.debt),
            "link": self.link,
        }


class BalanceService:
    """Read-only balance calculations. Takes no locks; results are advisory."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.db = store.db

    def _charge_totals(self) -> dict[int, tuple[Decimal, Decimal, Decimal]]:
        """plot_id -> (accrued, paid, outstanding) over all charges."""
        totals: dict[int, tuple[Decimal, Decimal, Decimal]] = {}
        for charge in self.db.scalars(select(Charge)):
            accrued, paid, outstanding = totals.get(charge.plot_id, (ZERO, ZERO, ZERO))
            totals[charge.plot_id] = (
                accrued + to_money(charge.amount_accrued),
                paid + to_money(charge.amount_paid),
                outstanding + max(ZERO, to_money(charge.amount_accrued) - to_money(charge.amount_paid)),
            )
        return totals

    def _penalty_totals(self) -> dict[int, Decimal]:
        totals: dict[int, Decimal] = {}
        rows = self.db.execute(
            select(PenaltyAccrual.plot_id, PenaltyAccrual.amount).where(
                PenaltyAccrual.status.in_([PenaltyStatus.ACTIVE, PenaltyStatus.FROZEN])
            )
        )
        for plot_id, amount in rows:
            totals[plot_id] = totals.get(plot_id, ZERO) + to_money(amount)
        return totals

    def plot_balance(self, plot_id: int) -> PlotBalance:
        """Accrued, paid, charge debt, penalties (active + frozen) and total debt of a plot."""
        self.store.get(Plot, plot_id)
        accrued, paid, outstanding = self._charge_totals().get(plot_id, (ZERO, ZERO, ZERO))
        penalty = self._penalty_totals().get(plot_id, ZERO)
        return PlotBalance(plot_id, accrued, paid, outstanding, penalty, outstanding + penalty)

    def list_debtors(self, min_debt=0) -> list[dict[str, Any]]:
        """Plots with positive total debt >= min_debt, largest debt first, then plot id."""
        minimum = to_money(min_debt)
        charges = self._charge_totals()
        penalties = self._penalty_totals()
        debtors = []
        for plot in self.db.scalars(select(Plot).order_by(Plot.id)):
            _, _, outstanding = charges.get(plot.id, (ZERO, ZERO, ZERO))
            penalty = penalties.get(plot.id, ZERO)
            total = outstanding + penalty
            if total > ZERO and total >= minimum:
                debtors.append(
                    {
                        "plot_id": plot.id,
                        "plot_number": plot.plot_number,
                        "label": plot.label,
                        "owner_name": plot.owner_name,
                        "telegram_chat_id": plot.telegram_chat_id,
                        "charge_debt": outstanding,
                        "penalty_total": penalty,
                        "total_debt": total,
                    }
                )
        debtors.sort(key=lambda d: (-d["total_debt"], d["plot_id"]))
        return debtors

    def unmatched_payments(self) -> list[Payment]:
        """Non-voided payments still waiting for a plot (reconciliation queue)."""
        return list(
            self.db.scalars(
                select(Payment)
                .where(Payment.is_voided.is_(False), Payment.matched_plot_id.is_(None))
                .order_by(Payment.paid_at, Payment.id)
            )
        )

    def build_receipts(
        self,
        period: str,
        plot_ids: list[int] | None = None,
        filter: str = "debtors",
        limit: int = 100,
    ) -> list[Receipt]:
        """Receipt rows for a month with download links.

        Args:
            period: Month 'YYYY-MM'
            plot_ids: Restrict to these plots (optional)
            filter: 'debtors' (month debt > 0), 'has_accruals' or 'all'
            limit: At most 500 receipts

        Raises:
            ValidationError: On unknown filter or limit out of range
        """
        year, month = parse_period(period)
        if filter not in RECEIPT_FILTERS:
            raise ValidationError(f"Unknown receipt filter {filter!r}")
        if not 1 <= limit <= RECEIPTS_MAX_LIMIT:
            raise ValidationError(f"Receipt limit must be between 1 and {RECEIPTS_MAX_LIMIT}")

        charges_by_plot: dict[int, list[Charge]] = {}
        rows = self.db.scalars(
            select(Charge)
            .join(AccrualPeriod, Charge.accrual_period_id == AccrualPeriod.id)
            .where(AccrualPeriod.year == year, AccrualPeriod.month == month)
            .order_by(Charge.plot_id, Charge.id)
        )
        for charge in rows:
            charges_by_plot.setdefault(charge.plot_id, []).append(charge)

        query = select(Plot).where(Plot.is_archived.is_(False)).order_by(Plot.id)
        if plot_ids:
            query = query.where(Plot.id.in_(plot_ids))

        receipts = []
        for plot in self.db.scalars(query):
            charges = charges_by_plot.get(plot.id, [])
            accrued = sum((to_money(c.amount_accrued) for c in charges), ZERO)
            paid = sum((to_money(c.amount_paid) for c in charges), ZERO)
            debt = sum((c.outstanding for c in charges), ZERO)
            if filter == "debtors" and debt <= ZERO:
                continue
            if filter == "has_accruals" and not charges:
                continue
            receipts.append(
                Receipt(
                    plot_id=plot.id,
                    plot_number=plot.plot_number,
                    label=plot.label,
                    period=period,
                    charges=[
                        {
                            "charge_id": c.id,
                            "category": c.accrual_period.category.value,
                            "accrued": str(to_money(c.amount_accrued)),
                            "paid": str(to_money(c.amount_paid)),
                        }
                        for c in charges
                    ],
                    accrued=accrued,
                    paid=paid,
                    debt=debt,
                    link=f"{RECEIPT_PDF_PATH}?{urlencode({'period': period, 'plot_id': plot.id})}",
                )
            )
            if len(receipts) >= limit:
                break
        logger.info("Built %d receipts for %s (filter=%s)", len(receipts), period, filter)
        return receipts


__all__ = ["BalanceService", "PlotBalance", "Receipt", "RECEIPTS_MAX_LIMIT"]
