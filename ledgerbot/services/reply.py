from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from loguru import logger

from ledgerbot.core.errors import ReplyDeliveryFailure
from ledgerbot.schemas.intent import FinancialIntent, IntentKind
from ledgerbot.schemas.ledger import StatementEntry, TransactionResult
from ledgerbot.services.gateway import GatewayClient

UNAUTHORIZED_REPLY = "❌ Unauthorized access. Please link your WhatsApp number in the app first."
AUDIO_ERROR_REPLY = "❌ Error processing audio."
IMAGE_ERROR_REPLY = "❌ Error analyzing image."
CLASSIFICATION_ERROR_REPLY = "❌ Sorry, I couldn't understand that message. Please try again."
TRANSACTION_ERROR_REPLY = "❌ Error recording the transaction. Please try again later."
BALANCE_ERROR_REPLY = "❌ Error fetching balance."
STATEMENT_ERROR_REPLY = "❌ Error fetching your statement."
CLARIFICATION_REPLY = (
    "🤔 I didn't quite get that. Could you tell me the amount and what it was for?\n\n"
    "Example: _Spent 50 on lunch_"
)
EMPTY_STATEMENT_REPLY = "📄 No recent transactions."


class ReplyFormatter:
    def __init__(self, currency_symbol: str = "R$", timezone: str = "UTC"):
        self.currency_symbol = currency_symbol
        self.tz = ZoneInfo(timezone)

    def local_day(self, moment: datetime) -> str:
        """dd/mm of `moment` in the configured zone; naive values are taken as UTC."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz).strftime("%d/%m")

    def money(self, amount: Decimal | float | int) -> str:
        return f"{self.currency_symbol} {Decimal(str(amount)):,.2f}"

    def balance(self, amount: Decimal) -> str:
        return f"💰 Your current balance is: *{self.money(amount)}*"

    def statement(self, entries: list[StatementEntry]) -> str:
        if not entries:
            return EMPTY_STATEMENT_REPLY
        lines = [f"📄 *Statement (last {len(entries)}):*", ""]
        for entry in entries:
            icon = "🟢" if entry.ledger_type == "income" else "🔴"
            day = self.local_day(entry.created_at)
            description = entry.description or "-"
            lines.append(f"{icon} {day} {description}: {self.money(entry.amount)}")
        return "\n".join(lines)

    def confirmation(
        self,
        intent: FinancialIntent,
        result: TransactionResult,
    ) -> str:
        if intent.kind == IntentKind.INCOME:
            title, emoji = "Income", "💰"
        elif result.is_credit_card:
            title, emoji = "Card expense", "💳"
        else:
            title, emoji = "Expense", "💸"

        lines = [
            f"✅ *{title} recorded!*",
            "",
            f"{emoji} *Amount:* {self.money(intent.amount)}",
            f"📝 *Description:* {intent.description}",
            f"🏷️ *Category:* {intent.category or 'Uncategorized'}",
            f"🏦 *Destination:* {result.destination_name or 'Account'}",
            "",
            f"📊 *Overall balance:* {self.money(result.new_balance)}",
        ]
        return "\n".join(lines)


class ReplyDispatcher:
    """Sends replies through the gateway. Delivery failures are logged, never raised."""

    def __init__(self, gateway: GatewayClient, formatter: ReplyFormatter):
        self.gateway = gateway
        self.formatter = formatter

    async def send(self, number: str | None, text: str) -> bool:
        if not number:
            logger.warning("No phone number to reply to, skipping reply")
            return False
        try:
            await self.gateway.send_text(number, text)
        except ReplyDeliveryFailure as exc:
            logger.error(
                "Reply delivery failed",
                number=number,
                status_code=exc.status_code,
                error=str(exc),
            )
            return False
        return True
