from __future__ import annotations

from datetime import date
from decimal import Decimal

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from ledgerbot.core.errors import TransactionFailure
from ledgerbot.db.repositories import LedgerRepository
from ledgerbot.schemas.intent import FinancialIntent
from ledgerbot.schemas.ledger import StatementEntry, TransactionRequest, TransactionResult
from ledgerbot.services.resolver import ResolvedTargets


class TransactionExecutor:
    """Ledger writes and reads; every storage error surfaces as TransactionFailure."""

    def __init__(self, ledger: LedgerRepository, source: str = "whatsapp"):
        self.ledger = ledger
        self.source = source

    async def process_transaction(
        self,
        user_id: str,
        intent: FinancialIntent,
        targets: ResolvedTargets,
        transaction_date: date | None = None,
    ) -> TransactionResult:
        if not intent.is_transaction or not intent.is_complete:
            raise TransactionFailure(f"Intent {intent.kind.value} cannot be recorded")

        request = TransactionRequest(
            user_id=user_id,
            ledger_type=intent.ledger_type,
            amount=intent.amount,
            description=intent.description,
            category_id=targets.category_id,
            bank_account_id=targets.bank_account_id,
            transaction_date=transaction_date,
            source=self.source,
        )
        try:
            result = await self.ledger.process_transaction(request)
        except (SQLAlchemyError, ValueError) as exc:
            logger.error(
                "Ledger write failed",
                user_id=user_id,
                ledger_type=request.ledger_type,
                error=str(exc),
            )
            raise TransactionFailure(f"Ledger write failed: {exc}") from exc

        logger.info(
            "Transaction recorded",
            user_id=user_id,
            ledger_type=request.ledger_type,
            amount=str(request.amount),
            category_id=request.category_id,
            bank_account_id=request.bank_account_id,
        )
        return result

    async def get_balance(self, user_id: str) -> Decimal:
        try:
            return await self.ledger.get_liquid_balance(user_id)
        except (SQLAlchemyError, ValueError) as exc:
            raise TransactionFailure(f"Balance lookup failed: {exc}") from exc

    async def get_last_transactions(self, user_id: str, limit: int = 5) -> list[StatementEntry]:
        try:
            return await self.ledger.list_recent(user_id, limit)
        except (SQLAlchemyError, ValueError) as exc:
            raise TransactionFailure(f"Statement lookup failed: {exc}") from exc
