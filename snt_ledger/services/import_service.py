"""Import deduplicator: bank statement and payment registry imports.

Each row gets a stable fingerprint, 'ref:<bank reference>' when the bank gave
one, otherwise 'hash:<sha256 of core attributes>'. Fingerprints are checked
against every stored payment (voided ones included) and against rows accepted
earlier in the same file, so re-importing a file, or a file after its batch was
rolled back, creates nothing.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select

from snt_ledger.models import (
    ImportBatch,
    ImportBatchStatus,
    MatchStatus,
    Payment,
    PaymentMethod,
)
from snt_ledger.services.audit_service import AuditService
from snt_ledger.services.context import MutationContext
from snt_ledger.services.errors import InvalidTransition
from snt_ledger.services.ledger_store import LedgerStore, period_key, to_money
from snt_ledger.services.matching_service import MatchingService, MatchResult
from snt_ledger.services.parsers import normalize_registry_row, normalize_statement_row
from snt_ledger.services.payment_service import PaymentService
from snt_ledger.services.period_service import GuardOutcome, PeriodCloseService

logger = logging.getLogger(__name__)

SOURCE_STATEMENT = "statement"
SOURCE_PAYMENTS = "payments"


def _hash(*parts: Any) -> str:
    raw = "|".join("" if part is None else str(part) for part in parts)
    return "hash:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


def statement_fingerprint(
    paid_at: date,
    amount: Decimal,
    payer: str | None,
    purpose: str | None,
    bank_ref: str | None = None,
) -> str:
    """Dedup key of a statement row: bank reference when present, else content hash."""
    if bank_ref:
        return f"ref:{bank_ref}"
    return _hash(paid_at.isoformat(), to_money(amount), payer, purpose)


def registry_fingerprint(paid_at: date, amount: Decimal, plot: str | None, payer: str | None) -> str:
    return _hash(paid_at.isoformat(), to_money(amount), plot, payer)


@dataclass
class ImportTotals:
    total: int = 0
    imported: int = 0
    matched: int = 0
    ambiguous: int = 0
    unmatched: int = 0
    duplicates: int = 0
    skipped_out: int = 0

    def count_match(self, status: MatchStatus) -> None:
        if status == MatchStatus.MATCHED:
            self.matched += 1
        elif status == MatchStatus.AMBIGUOUS:
            self.ambiguous += 1
        else:
            self.unmatched += 1

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass
class ImportResult:
    batch_id: int | None
    totals: ImportTotals
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "totals": self.totals.to_dict(),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class _Accepted:
    paid_at: date
    amount: Decimal
    payer: str | None
    purpose: str | None
    bank_ref: str | None
    fingerprint: str
    match: MatchResult


class ImportService:
    """Service for deduplicated payment imports and batch rollback."""

    def __init__(
        self,
        store: LedgerStore,
        matcher: MatchingService | None = None,
        periods: PeriodCloseService | None = None,
    ):
        self.store = store
        self.db = store.db
        self.periods = periods or PeriodCloseService(store)
        self.payments = PaymentService(store, matcher, self.periods)
        self.matcher = self.payments.matcher

    def _known_fingerprints(self, fingerprints: set[str]) -> set[str]:
        if not fingerprints:
            return set()
        return set(
            self.db.scalars(select(Payment.fingerprint).where(Payment.fingerprint.in_(fingerprints)))
        )

    def _store_batch(
        self,
        source: str,
        accepted: list[_Accepted],
        totals: ImportTotals,
        method: PaymentMethod,
        ctx: MutationContext,
        file_name: str | None,
    ) -> tuple[ImportBatch, GuardOutcome]:
        outcome = self.periods.guard({period_key(row.paid_at) for row in accepted}, ctx)
        batch = ImportBatch(
            source=source,
            file_name=file_name,
            status=ImportBatchStatus.COMPLETED,
            totals=totals.to_dict(),
            created_by=ctx.actor_id,
        )
        self.db.add(batch)
        self.db.flush()
        for row in accepted:
            payment = self.payments.new_payment(
                row.amount,
                row.paid_at,
                row.match,
                payer=row.payer,
                purpose=row.purpose,
                method=method,
                bank_ref=row.bank_ref,
                fingerprint=row.fingerprint,
                import_batch_id=batch.id,
            )
            self.db.flush()
            if period_key(row.paid_at) in outcome.closed:
                self.periods.record_post_close(
                    GuardOutcome(closed=[period_key(row.paid_at)], reason=outcome.reason),
                    ctx,
                    "payment",
                    payment.id,
                    "import",
                    {"amount": str(row.amount), "batch_id": batch.id},
                )
        AuditService.log(
            self.db,
            "import_batch",
            batch.id,
            f"import_{source}",
            ctx.actor_id,
            {"file_name": file_name, **totals.to_dict()},
        )
        return batch, outcome

    def import_statement(
        self,
        rows: list[dict[str, Any]],
        ctx: MutationContext,
        file_name: str | None = None,
    ) -> ImportResult:
        """Import bank statement rows {date, amount, direction?, payer, purpose, bank_ref}.

        Outbound rows are counted in skipped_out, malformed rows reported in
        errors, duplicates counted; the rest are matched and stored in one batch.
        """
        totals = ImportTotals(total=len(rows))
        errors: list[dict[str, Any]] = []
        with self.store.transaction():
            plots = self.payments.active_plots()
            parsed = []
            for index, raw in enumerate(rows):
                try:
                    row = normalize_statement_row(raw)
                except ValueError as e:
                    errors.append({"row_index": index, "message": str(e)})
                    continue
                if row.outbound:
                    totals.skipped_out += 1
                    continue
                fingerprint = statement_fingerprint(
                    row.paid_at, row.amount, row.payer, row.purpose, row.bank_ref
                )
                parsed.append((row, to_money(row.amount), fingerprint))

            known = self._known_fingerprints({fp for _, _, fp in parsed})
            accepted: list[_Accepted] = []
            for row, amount, fingerprint in parsed:
                if fingerprint in known:
                    totals.duplicates += 1
                    continue
                known.add(fingerprint)
                match = self.matcher.match(plots, payer=row.payer, purpose=row.purpose, amount=amount)
                totals.imported += 1
                totals.count_match(match.match_status)
                accepted.append(
                    _Accepted(row.paid_at, amount, row.payer, row.purpose, row.bank_ref, fingerprint, match)
                )

            batch, outcome = self._store_batch(
                SOURCE_STATEMENT, accepted, totals, PaymentMethod.BANK, ctx, file_name
            )

        logger.info(
            "Statement import batch %d (%s) by %s: total=%d, imported=%d, matched=%d, ambiguous=%d, "
            "unmatched=%d, duplicates=%d, skipped_out=%d, errors=%d",
            batch.id,
            file_name,
            ctx.actor_id,
            totals.total,
            totals.imported,
            totals.matched,
            totals.ambiguous,
            totals.unmatched,
            totals.duplicates,
            totals.skipped_out,
            len(errors),
        )
        return ImportResult(batch_id=batch.id, totals=totals, errors=errors, warnings=outcome.warnings)

    def import_payments(
        self,
        rows: list[dict[str, Any]],
        ctx: MutationContext,
        file_name: str | None = None,
    ) -> ImportResult:
        """Import registry rows {date, amount, plot, payer}; plots resolved by number or label."""
        totals = ImportTotals(total=len(rows))
        errors: list[dict[str, Any]] = []
        with self.store.transaction():
            parsed = []
            for index, raw in enumerate(rows):
                try:
                    row = normalize_registry_row(raw)
                except ValueError as e:
                    errors.append({"row_index": index, "message": str(e)})
                    continue
                amount = to_money(row.amount)
                parsed.append((row, amount, registry_fingerprint(row.paid_at, amount, row.plot, row.payer)))

            known = self._known_fingerprints({fp for _, _, fp in parsed})
            accepted: list[_Accepted] = []
            for row, amount, fingerprint in parsed:
                if fingerprint in known:
                    totals.duplicates += 1
                    continue
                known.add(fingerprint)
                plot = self.payments.find_plot(row.plot)
                if plot is not None:
                    match = MatchResult(
                        match_status=MatchStatus.MATCHED,
                        matched_plot_id=plot.id,
                        candidates=[plot.id],
                        confidence=1.0,
                        reason="plot_number",
                    )
                else:
                    match = MatchResult(
                        match_status=MatchStatus.UNMATCHED,
                        reason="plot_not_found" if row.plot else "unmatched",
                    )
                totals.imported += 1
                totals.count_match(match.match_status)
                purpose = f"Участок {row.plot}" if row.plot else None
                accepted.append(_Accepted(row.paid_at, amount, row.payer, purpose, None, fingerprint, match))

            batch, outcome = self._store_batch(
                SOURCE_PAYMENTS, accepted, totals, PaymentMethod.OTHER, ctx, file_name
            )

        logger.info(
            "Registry import batch %d (%s) by %s: total=%d, imported=%d, matched=%d, unmatched=%d, "
            "duplicates=%d, errors=%d",
            batch.id,
            file_name,
            ctx.actor_id,
            totals.total,
            totals.imported,
            totals.matched,
            totals.unmatched,
            totals.duplicates,
            len(errors),
        )
        return ImportResult(batch_id=batch.id, totals=totals, errors=errors, warnings=outcome.warnings)

    def rollback_batch(self, batch_id: int, ctx: MutationContext) -> dict[str, Any]:
        """Void every payment of a batch, reversing their allocations.

        Fingerprints are kept, so re-importing the same rows is rejected as duplicates.

        Raises:
            NotFound: If the batch does not exist
            InvalidTransition: If the batch was already rolled back
        """
        with self.store.transaction():
            batch = self.store.get(ImportBatch, batch_id)
            if batch.status == ImportBatchStatus.ROLLED_BACK:
                raise InvalidTransition("import batch", batch_id, batch.status.value, "roll back")
            payments = self.store.lock_payments(p.id for p in batch.payments)
            reason = ctx.reason.strip() if ctx.has_reason else f"Import batch {batch_id} rollback"

            closed: set[str] = set()
            voided = 0
            for payment in payments:
                if payment.is_voided:
                    continue
                outcome = self.payments.void_locked(payment, ctx, reason)
                closed.update(outcome.closed)
                voided += 1

            batch.status = ImportBatchStatus.ROLLED_BACK
            batch.rolled_back_at = self.store.clock.now()
            batch.rolled_back_by = ctx.actor_id
            AuditService.log(
                self.db,
                "import_batch",
                batch.id,
                "rollback",
                ctx.actor_id,
                {"voided": voided, "reason": reason},
            )

        warnings = GuardOutcome(closed=sorted(closed)).warnings
        logger.info("Rolled back import batch %d by %s: voided %d payments", batch_id, ctx.actor_id, voided)
        return {"batch_id": batch_id, "voided": voided, "warnings": warnings}


__all__ = [
    "ImportService",
    "ImportResult",
    "ImportTotals",
    "statement_fingerprint",
    "registry_fingerprint",
]
