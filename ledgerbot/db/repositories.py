"""
Typed storage access for the webhook pipeline.

Each concern has a `Protocol` the services depend on and a SQLAlchemy
implementation bound to an `async_sessionmaker`. Every call opens its own
short session and commits immediately; the message log row in particular must
be durable before any side effect runs.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from loguru import logger
from sqlalchemy import Uuid, cast, func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledgerbot.core.errors import DuplicateMessage
from ledgerbot.db import models
from ledgerbot.schemas.ledger import (
    IdentityLink,
    LedgerType,
    StatementEntry,
    TransactionRequest,
    TransactionResult,
)


class MessageLogRepository(Protocol):
    async def create(
        self,
        *,
        message_id: str,
        phone_number: str,
        message_type: str | None,
        content: dict[str, Any],
        dedup_key: str | None = None,
    ) -> int:
        """Insert the log row; raises DuplicateMessage on a unique violation."""
        ...

    async def update(
        self,
        log_id: int,
        *,
        processed: bool | None = None,
        processing_result: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None: ...


class IdentityLinkRepository(Protocol):
    async def find_by_linked_id(self, linked_id: str) -> IdentityLink | None: ...

    async def find_by_phone_numbers(self, numbers: list[str]) -> IdentityLink | None: ...

    async def set_linked_id(self, link_id: int, linked_id: str) -> None: ...

    async def set_phone_number(self, link_id: int, phone_number: str) -> None: ...


class CategoryRepository(Protocol):
    async def find_by_name(self, user_id: str, name: str, ledger_type: LedgerType) -> str | None: ...

    async def find_fallback(self, user_id: str, ledger_type: LedgerType, marker: str) -> str | None: ...


class AccountRepository(Protocol):
    async def get_profile_default(self, user_id: str, ledger_type: LedgerType) -> str | None: ...

    async def find_by_type(self, user_id: str, account_type: str) -> str | None: ...

    async def find_any_active(self, user_id: str) -> str | None: ...


class LedgerRepository(Protocol):
    async def process_transaction(self, request: TransactionRequest) -> TransactionResult: ...

    async def get_liquid_balance(self, user_id: str) -> Decimal: ...

    async def list_recent(self, user_id: str, limit: int) -> list[StatementEntry]: ...


class _SessionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory


class SQLMessageLogRepository(_SessionRepository):
    async def create(
        self,
        *,
        message_id: str,
        phone_number: str,
        message_type: str | None,
        content: dict[str, Any],
        dedup_key: str | None = None,
    ) -> int:
        row = models.WhatsAppLog(
            message_id=message_id,
            phone_number=phone_number,
            message_type=message_type,
            message_content=content,
            dedup_key=dedup_key,
            processed=False,
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info(
                    "Message log insert hit a unique constraint",
                    message_id=message_id,
                    dedup_key=dedup_key,
                )
                raise DuplicateMessage(message_id) from exc
            return row.id

    async def update(
        self,
        log_id: int,
        *,
        processed: bool | None = None,
        processing_result: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        values: dict[str, Any] = {}
        if processed is not None:
            values["processed"] = processed
        if processing_result is not None:
            values["processing_result"] = processing_result
        if error_message is not None:
            values["error_message"] = error_message
        if not values:
            return

        stmt = update(models.WhatsAppLog).where(models.WhatsAppLog.id == log_id).values(**values)
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()


def _to_link(row: models.WhatsAppUser) -> IdentityLink:
    return IdentityLink(
        id=row.id,
        user_id=str(row.user_id),
        phone_number=row.phone_number,
        linked_id=row.linked_id,
        is_verified=row.is_verified,
    )


class SQLIdentityLinkRepository(_SessionRepository):
    async def find_by_linked_id(self, linked_id: str) -> IdentityLink | None:
        stmt = (
            select(models.WhatsAppUser)
            .where(models.WhatsAppUser.linked_id == linked_id)
            .order_by(models.WhatsAppUser.is_verified.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            row = await session.scalar(stmt)
        return _to_link(row) if row else None

    async def find_by_phone_numbers(self, numbers: list[str]) -> IdentityLink | None:
        if not numbers:
            return None
        stmt = (
            select(models.WhatsAppUser)
            .where(models.WhatsAppUser.phone_number.in_(numbers))
            .order_by(models.WhatsAppUser.is_verified.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            row = await session.scalar(stmt)
        return _to_link(row) if row else None

    async def set_linked_id(self, link_id: int, linked_id: str) -> None:
        await self._set(link_id, linked_id=linked_id)

    async def set_phone_number(self, link_id: int, phone_number: str) -> None:
        await self._set(link_id, phone_number=phone_number)

    async def _set(self, link_id: int, **values: Any) -> None:
        stmt = update(models.WhatsAppUser).where(models.WhatsAppUser.id == link_id).values(**values)
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()


class SQLCategoryRepository(_SessionRepository):
    async def find_by_name(self, user_id: str, name: str, ledger_type: LedgerType) -> str | None:
        stmt = (
            select(models.Category.id)
            .where(
                models.Category.user_id == user_id,
                models.Category.type == ledger_type,
                models.Category.name.ilike(name),
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            category_id = await session.scalar(stmt)
        return str(category_id) if category_id else None

    async def find_fallback(self, user_id: str, ledger_type: LedgerType, marker: str) -> str | None:
        stmt = (
            select(models.Category.id)
            .where(
                models.Category.user_id == user_id,
                models.Category.type == ledger_type,
                models.Category.name.ilike(f"%{marker}%"),
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            category_id = await session.scalar(stmt)
        return str(category_id) if category_id else None


class SQLAccountRepository(_SessionRepository):
    async def get_profile_default(self, user_id: str, ledger_type: LedgerType) -> str | None:
        column = (
            models.Profile.wa_default_income_account_id
            if ledger_type == "income"
            else models.Profile.wa_default_expense_account_id
        )
        stmt = select(column).where(models.Profile.id == user_id)
        async with self._session_factory() as session:
            account_id = await session.scalar(stmt)
        return str(account_id) if account_id else None

    async def find_by_type(self, user_id: str, account_type: str) -> str | None:
        stmt = (
            select(models.BankAccount.id)
            .where(
                models.BankAccount.user_id == user_id,
                models.BankAccount.is_active.is_(True),
                models.BankAccount.account_type == account_type,
            )
            .order_by(models.BankAccount.name)
            .limit(1)
        )
        async with self._session_factory() as session:
            account_id = await session.scalar(stmt)
        return str(account_id) if account_id else None

    async def find_any_active(self, user_id: str) -> str | None:
        stmt = (
            select(models.BankAccount.id)
            .where(
                models.BankAccount.user_id == user_id,
                models.BankAccount.is_active.is_(True),
            )
            .order_by(models.BankAccount.account_type, models.BankAccount.name)
            .limit(1)
        )
        async with self._session_factory() as session:
            account_id = await session.scalar(stmt)
        return str(account_id) if account_id else None


PROCESS_TRANSACTION_SQL = text(
    """
    SELECT process_financial_transaction(
        p_user_id => CAST(:user_id AS uuid),
        p_type => :ledger_type,
        p_amount => :amount,
        p_description => :description,
        p_category_id => CAST(:category_id AS uuid),
        p_bank_account_id => CAST(:bank_account_id AS uuid),
        p_date => CAST(:transaction_date AS date),
        p_source => :source
    )
    """
)


def parse_transaction_result(raw: Any) -> TransactionResult:
    """
    Map the stored procedure's JSON summary onto TransactionResult.

    The write has already committed when this runs, so an odd summary is logged
    and replaced by defaults instead of failing the request.
    """
    if raw is None:
        return TransactionResult()
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Ledger summary is not JSON", raw=str(raw)[:200])
            return TransactionResult()
    if not isinstance(raw, Mapping):
        logger.warning("Ledger summary is not an object", raw_type=type(raw).__name__)
        return TransactionResult()

    destination = raw.get("dest_name") or raw.get("destination_name")
    return TransactionResult(
        new_balance=_parse_balance(raw.get("new_balance")),
        is_credit_card=bool(raw.get("is_credit_card")),
        destination_name=str(destination) if destination else None,
    )


def _parse_balance(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        balance = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        balance = None
    if balance is None or not balance.is_finite():
        logger.warning("Ledger summary has an unreadable balance", new_balance=str(value)[:50])
        return Decimal("0")
    return balance


class SQLLedgerRepository(_SessionRepository):
    async def process_transaction(self, request: TransactionRequest) -> TransactionResult:
        params = {
            "user_id": request.user_id,
            "ledger_type": request.ledger_type,
            "amount": request.amount,
            "description": request.description,
            "category_id": request.category_id,
            "bank_account_id": request.bank_account_id,
            "transaction_date": request.transaction_date,
            "source": request.source,
        }
        async with self._session_factory() as session:
            raw = await session.scalar(PROCESS_TRANSACTION_SQL, params)
            await session.commit()
        return parse_transaction_result(raw)

    async def get_liquid_balance(self, user_id: str) -> Decimal:
        stmt = select(func.calculate_liquid_balance(cast(user_id, Uuid(as_uuid=False))))
        async with self._session_factory() as session:
            value = await session.scalar(stmt)
        return Decimal(str(value)) if value is not None else Decimal("0")

    async def list_recent(self, user_id: str, limit: int) -> list[StatementEntry]:
        entries: list[StatementEntry] = []
        async with self._session_factory() as session:
            for ledger_type, model in (("expense", models.Expense), ("income", models.Income)):
                stmt = (
                    select(model)
                    .where(model.user_id == user_id)
                    .order_by(model.created_at.desc())
                    .limit(limit)
                )
                rows = (await session.scalars(stmt)).all()
                entries.extend(
                    StatementEntry(
                        ledger_type=ledger_type,
                        amount=row.amount,
                        description=row.description,
                        created_at=row.created_at,
                    )
                    for row in rows
                )
        return merge_statement(entries, limit)


def merge_statement(entries: list[StatementEntry], limit: int) -> list[StatementEntry]:
    return sorted(entries, key=lambda entry: entry.created_at, reverse=True)[:limit]
