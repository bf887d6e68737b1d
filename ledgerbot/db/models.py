from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbot.db.base import Base

# Tables created by this service's migrations. Everything else is owned by the ledger.
OWNED_TABLES = {"whatsapp_logs", "whatsapp_users"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class WhatsAppLog(Base, TimestampMixin):
    __tablename__ = "whatsapp_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    message_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    dedup_key: Mapped[str | None] = mapped_column(String(255), unique=True)
    phone_number: Mapped[str] = mapped_column(String(64), nullable=False)
    message_type: Mapped[str | None] = mapped_column(String(32))
    message_content: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processing_result: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    error_message: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("ix_whatsapp_logs_phone_number", "phone_number"),
        Index("ix_whatsapp_logs_created_at", "created_at"),
    )


class WhatsAppUser(Base, TimestampMixin):
    __tablename__ = "whatsapp_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32))
    linked_id: Mapped[str | None] = mapped_column(String(64))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_whatsapp_users_user_id", "user_id"),
        Index("ix_whatsapp_users_phone_number", "phone_number"),
        Index("ix_whatsapp_users_linked_id", "linked_id"),
    )


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False))
    name: Mapped[str] = mapped_column(String(120))
    type: Mapped[str] = mapped_column(String(16))


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False))
    name: Mapped[str] = mapped_column(String(120))
    account_type: Mapped[str | None] = mapped_column(String(32))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    wa_default_expense_account_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False))
    wa_default_income_account_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False))


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False))
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Income(Base):
    __tablename__ = "incomes"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False))
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
