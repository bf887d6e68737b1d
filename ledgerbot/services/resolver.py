from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from ledgerbot.db.repositories import AccountRepository, CategoryRepository
from ledgerbot.schemas.intent import FinancialIntent, PaymentMethod

# Preferred account tag per payment method. Undetermined has no preference.
PAYMENT_METHOD_ACCOUNT_TYPES: dict[PaymentMethod, str] = {
    PaymentMethod.CREDIT: "credit_card",
    PaymentMethod.CASH: "cash",
    PaymentMethod.INSTANT_TRANSFER: "checking",
    PaymentMethod.DEBIT: "checking",
    PaymentMethod.BILL: "checking",
}


@dataclass(frozen=True)
class ResolvedTargets:
    category_id: str | None
    bank_account_id: str | None


class CategoryAccountResolver:
    def __init__(
        self,
        categories: CategoryRepository,
        accounts: AccountRepository,
        fallback_marker: str = "outros",
    ):
        self.categories = categories
        self.accounts = accounts
        self.fallback_marker = fallback_marker

    async def resolve_category(self, user_id: str, intent: FinancialIntent) -> str | None:
        ledger_type = intent.ledger_type
        if intent.category:
            category_id = await self.categories.find_by_name(user_id, intent.category, ledger_type)
            if category_id:
                return category_id

        category_id = await self.categories.find_fallback(user_id, ledger_type, self.fallback_marker)
        if category_id is None:
            logger.info(
                "No category matched, recording without one",
                user_id=user_id,
                suggestion=intent.category,
            )
        return category_id

    async def resolve_account(self, user_id: str, intent: FinancialIntent) -> str | None:
        account_type = PAYMENT_METHOD_ACCOUNT_TYPES.get(intent.payment_method)
        if account_type:
            account_id = await self.accounts.find_by_type(user_id, account_type)
            if account_id:
                return account_id

        account_id = await self.accounts.get_profile_default(user_id, intent.ledger_type)
        if account_id:
            return account_id
        return await self.accounts.find_any_active(user_id)

    async def resolve(self, user_id: str, intent: FinancialIntent) -> ResolvedTargets:
        return ResolvedTargets(
            category_id=await self.resolve_category(user_id, intent),
            bank_account_id=await self.resolve_account(user_id, intent),
        )
