from __future__ import annotations

import asyncio
from pathlib import Path

from alembic import command
from alembic.config import Config
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ledgerbot.core.config import get_settings

settings = get_settings()
engine = create_async_engine(settings.database_url, echo=False, future=True, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


async def init_db() -> None:
    """Ensure database migrations are applied before serving traffic."""

    if not settings.auto_run_migrations:
        return

    if not ALEMBIC_INI.exists():
        logger.warning("alembic.ini not found, skipping migrations", path=str(ALEMBIC_INI))
        return

    config = Config(str(ALEMBIC_INI))
    try:
        await asyncio.to_thread(command.upgrade, config, "head")
        logger.info("Database migrations are up-to-date")
    except Exception:
        logger.exception("Failed to apply database migrations")
        raise
