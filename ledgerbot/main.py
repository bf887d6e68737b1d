from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledgerbot.api.routes import router as api_router
from ledgerbot.core.config import AppConfig, Settings, get_settings
from ledgerbot.core.logging import configure_logging
from ledgerbot.db.repositories import (
    SQLAccountRepository,
    SQLCategoryRepository,
    SQLIdentityLinkRepository,
    SQLLedgerRepository,
    SQLMessageLogRepository,
)
from ledgerbot.providers.chat import AIProviderManager
from ledgerbot.providers.speech import STTProviderManager
from ledgerbot.services.classifier import IntentClassifier
from ledgerbot.services.gateway import GatewayClient
from ledgerbot.services.identity import IdentityGate
from ledgerbot.services.ledger import TransactionExecutor
from ledgerbot.services.media import MediaDecryptor
from ledgerbot.services.pipeline import WebhookPipeline
from ledgerbot.services.reply import ReplyDispatcher, ReplyFormatter
from ledgerbot.services.resolver import CategoryAccountResolver
from ledgerbot.services.transcription import TranscriptionAdapter, VisionAdapter

app_config = AppConfig()


def build_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    ai_manager: AIProviderManager,
    stt_manager: STTProviderManager,
    transport: httpx.AsyncBaseTransport | None = None,
) -> WebhookPipeline:
    gateway = GatewayClient.from_settings(settings, transport=transport)
    return WebhookPipeline(
        gate=IdentityGate(
            logs=SQLMessageLogRepository(session_factory),
            links=SQLIdentityLinkRepository(session_factory),
            broadcast_jid=settings.broadcast_jid,
            country_code=settings.phone_country_code,
            dedup_window_seconds=settings.dedup_window_seconds,
        ),
        media=MediaDecryptor.default(
            gateway,
            timeout=settings.media_download_timeout,
            verify_mac=settings.verify_media_mac,
        ),
        transcriber=TranscriptionAdapter(stt_manager, language=settings.stt_language),
        vision=VisionAdapter(ai_manager, model=settings.get_effective_vision_model()),
        classifier=IntentClassifier(
            ai_manager,
            balance_commands=settings.balance_commands,
            statement_commands=settings.statement_commands,
        ),
        resolver=CategoryAccountResolver(
            SQLCategoryRepository(session_factory),
            SQLAccountRepository(session_factory),
            fallback_marker=settings.fallback_category_marker,
        ),
        executor=TransactionExecutor(SQLLedgerRepository(session_factory)),
        dispatcher=ReplyDispatcher(gateway, ReplyFormatter(settings.currency_symbol, settings.timezone)),
        statement_limit=settings.statement_limit,
        timezone=settings.timezone,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    from ledgerbot.db.session import AsyncSessionLocal, engine, init_db

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    await init_db()

    app.state.ai_manager = AIProviderManager(settings)
    app.state.stt_manager = STTProviderManager(settings)
    app.state.pipeline = build_pipeline(
        settings, AsyncSessionLocal, app.state.ai_manager, app.state.stt_manager
    )
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    application = FastAPI(
        title=app_config.description, version=app_config.version, lifespan=lifespan
    )
    application.include_router(api_router)

    @application.get("/")
    async def root():
        return {"message": "ledgerbot up", "version": app_config.version}

    return application


app = create_app()
