"""Notification service: debtor campaign sends over a send(text, recipient) capability."""

import asyncio
import logging
from typing import Any, Protocol

from telegram.ext import Application

from snt_ledger.services.balance_service import BalanceService
from snt_ledger.services.errors import ValidationError
from snt_ledger.services.locale_service import format_amount

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    """Delivery channel consumed by campaigns."""

    async def send(self, text: str, recipient: str) -> None: ...


class TelegramSender:
    """Sends campaign messages through a Telegram bot.

    Use as an async context manager: the application is initialized on enter
    and shut down on exit, so its HTTP client does not outlive the campaign.
    """

    def __init__(self, app: Application):
        self.app = app
        self.bot = app.bot

    @classmethod
    def from_token(cls, token: str) -> "TelegramSender":
        return cls(Application.builder().token(token).build())

    async def __aenter__(self) -> "TelegramSender":
        await self.app.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.app.shutdown()

    async def send(self, text: str, recipient: str) -> None:
        """Send message to a Telegram chat.

        Args:
            text: Message text
            recipient: Telegram chat ID
        """
        try:
            await self.bot.send_message(chat_id=int(recipient), text=text)
        except Exception as e:
            logger.warning("Error sending message to %s: %s", recipient, e)
            raise


def render_campaign_text(template: str, plot: str, owner: str, debt) -> str:
    """Render a campaign template with {plot}, {owner} and {debt} placeholders."""
    return template.format(plot=plot, owner=owner, debt=format_amount(debt))


class NotificationService:
    """Service for debtor notification campaigns."""

    def __init__(self, balances: BalanceService, sender: NotificationSender):
        self.balances = balances
        self.sender = sender

    async def load_recipients(self, min_debt=0, plot_ids: list[int] | None = None) -> list[dict[str, Any]]:
        """Debtor rows for a campaign, queried in a worker thread off the event loop."""
        debtors = await asyncio.to_thread(self.balances.list_debtors, min_debt)
        if plot_ids:
            wanted = set(plot_ids)
            debtors = [d for d in debtors if d["plot_id"] in wanted]
        return debtors

    async def send_debtor_campaign(
        self,
        template: str,
        min_debt=0,
        plot_ids: list[int] | None = None,
    ) -> dict[str, Any]:
        """Notify every debtor that has a Telegram chat.

        One failing recipient does not abort the campaign.

        Returns:
            {"sent", "failed", "skipped", "errors": [{"plot_id", "message"}]}

        Raises:
            ValidationError: If the template has unknown placeholders
        """
        try:
            render_campaign_text(template, "1", "", 0)
        except (KeyError, IndexError, ValueError) as e:
            raise ValidationError(f"Invalid campaign template: {e}") from e

        debtors = await self.load_recipients(min_debt, plot_ids)

        sent = failed = skipped = 0
        errors = []
        for debtor in debtors:
            recipient = debtor["telegram_chat_id"]
            if not recipient:
                skipped += 1
                continue
            text = render_campaign_text(
                template,
                debtor["label"] or debtor["plot_number"],
                debtor["owner_name"] or "",
                debtor["total_debt"],
            )
            try:
                await self.sender.send(text, recipient)
                sent += 1
            except Exception as e:
                failed += 1
                errors.append({"plot_id": debtor["plot_id"], "message": str(e)})
                logger.warning("Campaign send to plot %d failed: %s", debtor["plot_id"], e)

        logger.info("Debtor campaign: sent=%d, failed=%d, skipped=%d", sent, failed, skipped)
        return {"sent": sent, "failed": failed, "skipped": skipped, "errors": errors}


__all__ = ["NotificationService", "NotificationSender", "TelegramSender", "render_campaign_text"]
