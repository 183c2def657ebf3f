"""Job handlers, one per job type.

Sync handlers run in a worker thread and do all ledger writes inside one
LedgerStore transaction, so an attempt either commits entirely or not at all.
Each handler is safe to re-run: imports dedupe by fingerprint, allocation and
penalty application skip what is already done.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from snt_ledger.config import settings
from snt_ledger.jobs import payloads
from snt_ledger.jobs.runner import JobContext
from snt_ledger.services.allocation_service import AllocationService
from snt_ledger.services.balance_service import BalanceService
from snt_ledger.services.errors import JobHandlerError
from snt_ledger.services.import_service import ImportService
from snt_ledger.services.notification_service import (
    NotificationSender,
    NotificationService,
    TelegramSender,
)
from snt_ledger.services.penalty_service import PenaltyService
from snt_ledger.services.period_service import PeriodCloseService


def import_statement(ctx: JobContext, payload: payloads.ImportStatementPayload) -> dict[str, Any]:
    with ctx.ledger() as store:
        result = ImportService(store).import_statement(
            payload.rows, ctx.mutation(payload.reason), file_name=payload.file_name
        )
    return result.to_dict()


def import_payments(ctx: JobContext, payload: payloads.ImportPaymentsPayload) -> dict[str, Any]:
    with ctx.ledger() as store:
        result = ImportService(store).import_payments(
            payload.rows, ctx.mutation(payload.reason), file_name=payload.file_name
        )
    return result.to_dict()


def auto_allocate(ctx: JobContext, payload: payloads.AutoAllocatePayload) -> dict[str, Any]:
    with ctx.ledger() as store:
        summary = AllocationService(store).auto_allocate(
            ctx.mutation(payload.reason),
            payment_ids=payload.payment_ids,
            period=payload.period,
        )
    return summary.to_dict()


def penalty_apply(ctx: JobContext, payload: payloads.PenaltyApplyPayload) -> dict[str, Any]:
    with ctx.ledger() as store:
        summary = PenaltyService(store).apply(payload.as_of, payload.rate, ctx.mutation(payload.reason))
    return summary.to_dict()


def penalty_recalc(ctx: JobContext, payload: payloads.PenaltyRecalcPayload) -> dict[str, Any]:
    with ctx.ledger() as store:
        summary = PenaltyService(store).recalc(
            payload.as_of,
            payload.rate,
            ctx.mutation(payload.reason),
            create_missing=payload.create_missing,
            period=payload.period,
            plot_ids=payload.plot_ids,
            limit=payload.limit,
        )
    return summary.to_dict()


def receipts_batch(ctx: JobContext, payload: payloads.ReceiptsBatchPayload) -> dict[str, Any]:
    with ctx.ledger() as store:
        receipts = BalanceService(store).build_receipts(
            payload.period,
            plot_ids=payload.plot_ids,
            filter=payload.filter,
            limit=payload.limit,
        )
    return {
        "period": payload.period,
        "count": len(receipts),
        "receipts": [receipt.to_dict() for receipt in receipts],
        "links": [receipt.link for receipt in receipts],
    }


def period_aggregates(ctx: JobContext, payload: payloads.PeriodAggregatesPayload) -> dict[str, Any]:
    report = {}
    with ctx.ledger() as store:
        periods = PeriodCloseService(store)
        for index, period in enumerate(payload.periods, start=1):
            report[period] = periods.compute_aggregates(period).to_snapshot()
            ctx.report_progress(5 + 90 * index // len(payload.periods))
    return {"periods": report}


@asynccontextmanager
async def campaign_sender(ctx: JobContext) -> AsyncIterator[NotificationSender]:
    """The injected sender, or a Telegram bot that lives only for this attempt."""
    injected = ctx.services.get("sender")
    if injected is not None:
        yield injected
        return
    async with TelegramSender.from_token(settings.telegram_bot_token) as sender:
        yield sender


async def campaign_send(ctx: JobContext, payload: payloads.CampaignSendPayload) -> dict[str, Any]:
    """Send the debtor campaign; all-recipients-failed is a job error so it is retried."""
    with ctx.ledger() as store:
        async with campaign_sender(ctx) as sender:
            service = NotificationService(BalanceService(store), sender)
            result = await service.send_debtor_campaign(
                payload.template, min_debt=payload.min_debt, plot_ids=payload.plot_ids
            )
    if result["failed"] and not result["sent"]:
        raise JobHandlerError(f"Campaign send failed for all {result['failed']} recipients")
    return result


HANDLERS = {
    payloads.IMPORT_STATEMENT: import_statement,
    payloads.IMPORT_PAYMENTS: import_payments,
    payloads.AUTO_ALLOCATE: auto_allocate,
    payloads.PENALTY_APPLY: penalty_apply,
    payloads.PENALTY_RECALC: penalty_recalc,
    payloads.RECEIPTS_BATCH: receipts_batch,
    payloads.PERIOD_AGGREGATES: period_aggregates,
    payloads.CAMPAIGN_SEND: campaign_send,
}

__all__ = ["HANDLERS"]
