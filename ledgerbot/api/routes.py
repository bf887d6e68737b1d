from __future__ import annotations

import json
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from loguru import logger
from pydantic import ValidationError

from ledgerbot.api.deps import get_ai_provider_manager, get_pipeline, get_stt_provider_manager
from ledgerbot.core.logging import redact_sensitive_data
from ledgerbot.providers.chat import AIProviderManager
from ledgerbot.providers.speech import STTProviderManager
from ledgerbot.schemas.webhook import InboundEvent, WebhookPayload
from ledgerbot.services.pipeline import PipelineContext, PipelineOutcome, WebhookPipeline

router = APIRouter()

# Plain-text bodies for outcomes that are not a completed run
OUTCOME_BODIES: dict[PipelineOutcome, str] = {
    PipelineOutcome.IGNORED: "Ignored",
    PipelineOutcome.DUPLICATE: "Duplicate",
    PipelineOutcome.UNAUTHORIZED: "Unauthorized",
    PipelineOutcome.NO_CONTENT: "No content",
    PipelineOutcome.COMMAND: "Command Executed",
    PipelineOutcome.QUERY: "OK",
    PipelineOutcome.INCOMPLETE: "Incomplete intent",
    PipelineOutcome.CLASSIFICATION_ERROR: "No Intent",
}

MEDIA_ERROR_BODIES = {"audio": "Audio Error", "image": "Image Error"}


@router.get("/healthz", response_model=dict)
async def healthz() -> dict:
    return {"status": "ok"}


@router.get("/health/providers", response_model=dict)
async def provider_health(
    ai_manager: AIProviderManager = Depends(get_ai_provider_manager),
    stt_manager: STTProviderManager = Depends(get_stt_provider_manager),
) -> dict:
    ai_health = await ai_manager.get_health_status()
    stt_health = await stt_manager.get_health_status()

    ai_status = ai_health.get("status", "unknown")
    stt_status = stt_health.get("status", "unknown")
    if ai_status == "healthy" and stt_status == "healthy":
        overall_status = "ok"
    elif ai_status in ("healthy", "degraded") or stt_status == "healthy":
        overall_status = "degraded"
    else:
        overall_status = "unhealthy"

    return {"status": overall_status, "ai_providers": ai_health, "stt_provider": stt_health}


def _parse_event(raw: object) -> InboundEvent | None:
    if not isinstance(raw, dict):
        return None
    try:
        payload = WebhookPayload.model_validate(raw)
        return InboundEvent.from_payload(payload, raw)
    except (ValidationError, ValueError) as exc:
        logger.debug("Webhook payload ignored", reason=str(exc))
        return None


def _to_response(ctx: PipelineContext) -> Response:
    outcome = ctx.outcome
    if outcome == PipelineOutcome.MEDIA_ERROR:
        kind = ctx.event.kind.value if ctx.event else ""
        return PlainTextResponse(MEDIA_ERROR_BODIES.get(kind, "Media Error"))
    if outcome == PipelineOutcome.RECORDED:
        return JSONResponse({"success": True, "duration": ctx.duration_ms})
    if outcome == PipelineOutcome.TRANSACTION_ERROR:
        return JSONResponse({"success": False, "duration": ctx.duration_ms})
    return PlainTextResponse(OUTCOME_BODIES.get(outcome, "OK"))


@router.post("/whatsapp/webhook")
async def whatsapp_webhook(
    request: Request, pipeline: WebhookPipeline = Depends(get_pipeline)
) -> Response:
    started = time.perf_counter()
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return PlainTextResponse("Ignored")

    logger.debug("Webhook received", payload=redact_sensitive_data(raw))
    event = _parse_event(raw)

    try:
        ctx = await pipeline.handle(event)
    except Exception as exc:
        duration = int((time.perf_counter() - started) * 1000)
        return JSONResponse({"error": str(exc), "duration": duration}, status_code=500)

    logger.info(
        "Webhook processed",
        message_id=event.message_id if event else None,
        **pipeline.describe(ctx),
    )
    return _to_response(ctx)
