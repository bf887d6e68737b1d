from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class IntentKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    DOUBT = "doubt"
    BALANCE_QUERY = "balance_query"
    STATEMENT_QUERY = "statement_query"


class PaymentMethod(str, Enum):
    INSTANT_TRANSFER = "instant_transfer"
    DEBIT = "debit"
    CREDIT = "credit"
    CASH = "cash"
    BILL = "bill"
    UNDETERMINED = "undetermined"


class Completeness(str, Enum):
    OK = "ok"
    INCOMPLETE = "incomplete"


TRANSACTION_KINDS = {IntentKind.INCOME, IntentKind.EXPENSE}
QUERY_KINDS = {IntentKind.BALANCE_QUERY, IntentKind.STATEMENT_QUERY}

DEFAULT_DESCRIPTIONS = {
    IntentKind.INCOME: "General income",
    IntentKind.EXPENSE: "General expense",
}


class FinancialIntent(BaseModel):
    """
    Structured result of classifying one message.

    Normalisation guarantees:
    - income/expense without a positive amount is always `incomplete`
    - income/expense always carries a non-empty description
    - queries carry amount 0, an empty description and no category
    """

    kind: IntentKind
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    description: str = ""
    category: str | None = None
    payment_method: PaymentMethod = PaymentMethod.UNDETERMINED
    completeness: Completeness = Completeness.OK

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Any:
        if v is None or v == "":
            return Decimal("0")
        if isinstance(v, str):
            cleaned = v.replace("R$", "").replace(" ", "").strip()
            if "," in cleaned and "." in cleaned:
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", ".")
            try:
                return Decimal(cleaned)
            except InvalidOperation:
                return Decimal("0")
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("payment_method", mode="before")
    @classmethod
    def coerce_payment_method(cls, v: Any) -> Any:
        if v is None or v == "":
            return PaymentMethod.UNDETERMINED
        if isinstance(v, str):
            lowered = v.strip().lower().replace("-", "_").replace(" ", "_")
            if lowered in PaymentMethod._value2member_map_:
                return lowered
            return PaymentMethod.UNDETERMINED
        return v

    @field_validator("description", mode="before")
    @classmethod
    def coerce_description(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: Any) -> str | None:
        if v is None:
            return None
        value = str(v).strip()
        return value or None

    @model_validator(mode="after")
    def normalize(self) -> "FinancialIntent":
        if self.kind in QUERY_KINDS:
            self.amount = Decimal("0")
            self.description = ""
            self.category = None
            self.completeness = Completeness.OK
        elif self.kind in TRANSACTION_KINDS:
            if self.amount <= 0:
                self.completeness = Completeness.INCOMPLETE
            if not self.description:
                self.description = DEFAULT_DESCRIPTIONS[self.kind]
        return self

    @property
    def is_transaction(self) -> bool:
        return self.kind in TRANSACTION_KINDS

    @property
    def is_complete(self) -> bool:
        return self.completeness == Completeness.OK

    @property
    def ledger_type(self) -> str:
        """Value passed as the ledger transaction type."""
        return "income" if self.kind == IntentKind.INCOME else "expense"
