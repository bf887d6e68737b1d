from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

LedgerType = Literal["income", "expense"]


@dataclass(frozen=True)
class IdentityLink:
    id: int
    user_id: str
    phone_number: str | None
    linked_id: str | None
    is_verified: bool


class TransactionRequest(BaseModel):
    """Parameters of one atomic ledger write."""

    user_id: str
    ledger_type: LedgerType
    amount: Decimal = Field(..., gt=0)
    description: str
    category_id: Optional[str] = None
    bank_account_id: Optional[str] = None
    transaction_date: Optional[date] = None
    source: str = "whatsapp"


class TransactionResult(BaseModel):
    new_balance: Decimal = Decimal("0")
    is_credit_card: bool = False
    destination_name: Optional[str] = None


class StatementEntry(BaseModel):
    ledger_type: LedgerType
    amount: Decimal
    description: Optional[str] = None
    created_at: datetime
