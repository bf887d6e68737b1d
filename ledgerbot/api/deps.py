from fastapi import Request

from ledgerbot.providers.chat import AIProviderManager
from ledgerbot.providers.speech import STTProviderManager
from ledgerbot.services.pipeline import WebhookPipeline


def get_pipeline(request: Request) -> WebhookPipeline:
    return request.app.state.pipeline


def get_ai_provider_manager(request: Request) -> AIProviderManager:
    return request.app.state.ai_manager


def get_stt_provider_manager(request: Request) -> STTProviderManager:
    return request.app.state.stt_manager
