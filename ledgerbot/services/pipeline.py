"""
Webhook processing as an explicit state machine.

    RECEIVED -> DEDUPLICATED -> IDENTIFIED -> MEDIA_RESOLVED -> CLASSIFIED
             -> RESOLVED -> EXECUTED -> REPLIED

Every run ends with exactly one PipelineOutcome. States only move forward;
queries skip RESOLVED and early exits stop wherever they happen.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from loguru import logger

from ledgerbot.core.errors import (
    ClassificationFailure,
    DuplicateMessage,
    MediaDecryptionFailure,
    TranscriptionFailure,
    TransactionFailure,
    UnauthorizedSender,
    VisionFailure,
)
from ledgerbot.schemas.intent import FinancialIntent, IntentKind
from ledgerbot.schemas.ledger import TransactionResult
from ledgerbot.schemas.webhook import InboundEvent, MessageKind
from ledgerbot.services import reply as replies
from ledgerbot.services.classifier import IntentClassifier
from ledgerbot.services.identity import IdentityGate
from ledgerbot.services.ledger import TransactionExecutor
from ledgerbot.services.media import MediaDecryptor
from ledgerbot.services.reply import ReplyDispatcher
from ledgerbot.services.resolver import CategoryAccountResolver, ResolvedTargets
from ledgerbot.services.transcription import TranscriptionAdapter, VisionAdapter


class PipelineState(str, Enum):
    RECEIVED = "received"
    DEDUPLICATED = "deduplicated"
    IDENTIFIED = "identified"
    MEDIA_RESOLVED = "media_resolved"
    CLASSIFIED = "classified"
    RESOLVED = "resolved"
    EXECUTED = "executed"
    REPLIED = "replied"


STATE_ORDER = list(PipelineState)


class PipelineOutcome(str, Enum):
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    UNAUTHORIZED = "unauthorized"
    NO_CONTENT = "no_content"
    MEDIA_ERROR = "media_error"
    COMMAND = "command"
    QUERY = "query"
    INCOMPLETE = "incomplete"
    CLASSIFICATION_ERROR = "classification_error"
    TRANSACTION_ERROR = "transaction_error"
    RECORDED = "recorded"


@dataclass
class PipelineContext:
    event: InboundEvent | None
    started_at: float = field(default_factory=time.perf_counter)
    state: PipelineState = PipelineState.RECEIVED
    transitions: list[PipelineState] = field(default_factory=lambda: [PipelineState.RECEIVED])
    outcome: PipelineOutcome | None = None
    log_id: int | None = None
    user_id: str | None = None
    reply_to: str | None = None
    text: str | None = None
    intent: FinancialIntent | None = None
    targets: ResolvedTargets | None = None
    result: TransactionResult | None = None
    reply_delivered: bool = False
    error: str | None = None

    def advance(self, state: PipelineState) -> None:
        if STATE_ORDER.index(state) <= STATE_ORDER.index(self.state):
            raise ValueError(f"Illegal transition {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def finish(self, outcome: PipelineOutcome, error: str | None = None) -> "PipelineContext":
        self.outcome = outcome
        self.error = error
        return self

    @property
    def duration_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)


class WebhookPipeline:
    def __init__(
        self,
        gate: IdentityGate,
        media: MediaDecryptor,
        transcriber: TranscriptionAdapter,
        vision: VisionAdapter,
        classifier: IntentClassifier,
        resolver: CategoryAccountResolver,
        executor: TransactionExecutor,
        dispatcher: ReplyDispatcher,
        statement_limit: int = 5,
        timezone: str = "UTC",
    ):
        self.gate = gate
        self.media = media
        self.transcriber = transcriber
        self.vision = vision
        self.classifier = classifier
        self.resolver = resolver
        self.executor = executor
        self.dispatcher = dispatcher
        self.formatter = dispatcher.formatter
        self.statement_limit = statement_limit
        self.tz = ZoneInfo(timezone)

    async def handle(self, event: InboundEvent | None) -> PipelineContext:
        """
        Run one inbound event to completion.

        Benign and user-facing failures end in an outcome. Anything else is
        written to the message log (when one exists) and re-raised.
        """
        ctx = PipelineContext(event=event)
        if event is None or self.gate.should_ignore(event):
            return ctx.finish(PipelineOutcome.IGNORED)

        try:
            ctx.log_id = await self.gate.register(event)
        except DuplicateMessage:
            logger.info("Duplicate delivery ignored", message_id=event.message_id)
            return ctx.finish(PipelineOutcome.DUPLICATE)
        ctx.advance(PipelineState.DEDUPLICATED)

        try:
            return await self._process(ctx, event)
        except Exception as exc:
            logger.exception("Webhook processing failed", message_id=event.message_id)
            await self.gate.logs.update(ctx.log_id, processed=True, error_message=str(exc))
            raise

    async def _process(self, ctx: PipelineContext, event: InboundEvent) -> PipelineContext:
        try:
            sender = await self.gate.resolve(event)
        except UnauthorizedSender as exc:
            candidates = self.gate.phone_candidates(event)
            reply_to = candidates[0] if candidates else None
            await self._reply(ctx, reply_to, replies.UNAUTHORIZED_REPLY)
            await self.gate.logs.update(ctx.log_id, processed=True, error_message="Unverified")
            return ctx.finish(PipelineOutcome.UNAUTHORIZED, str(exc))

        ctx.user_id = sender.user_id
        ctx.reply_to = sender.reply_to
        ctx.advance(PipelineState.IDENTIFIED)

        if event.kind == MessageKind.AUDIO:
            try:
                audio = await self.media.fetch_and_decrypt(event.media, "audio", event.raw)
                ctx.text = await self.transcriber.transcribe(audio, event.media.mimetype)
            except (MediaDecryptionFailure, TranscriptionFailure) as exc:
                return await self._fail(ctx, PipelineOutcome.MEDIA_ERROR, replies.AUDIO_ERROR_REPLY, exc)
        elif event.kind == MessageKind.IMAGE:
            try:
                image = await self.media.fetch_and_decrypt(event.media, "image", event.raw)
                ctx.intent = await self.vision.extract_intent(
                    image, event.media.mimetype, caption=event.text
                )
            except (MediaDecryptionFailure, VisionFailure) as exc:
                return await self._fail(ctx, PipelineOutcome.MEDIA_ERROR, replies.IMAGE_ERROR_REPLY, exc)
        else:
            ctx.text = (event.text or "").strip() or None

        if ctx.intent is None and not ctx.text:
            logger.info("No content to process", message_id=event.message_id, kind=event.kind.value)
            await self.gate.logs.update(ctx.log_id, processed=True, error_message="No content")
            return ctx.finish(PipelineOutcome.NO_CONTENT)
        ctx.advance(PipelineState.MEDIA_RESOLVED)

        fast_path = False
        if ctx.intent is None:
            ctx.intent = self.classifier.match_command(ctx.text)
            fast_path = ctx.intent is not None
        if ctx.intent is None:
            try:
                ctx.intent = await self.classifier.classify(ctx.text)
            except ClassificationFailure as exc:
                return await self._fail(
                    ctx, PipelineOutcome.CLASSIFICATION_ERROR, replies.CLASSIFICATION_ERROR_REPLY, exc
                )
        ctx.advance(PipelineState.CLASSIFIED)

        intent = ctx.intent
        await self.gate.logs.update(
            ctx.log_id,
            processing_result=intent.model_dump(mode="json"),
            processed=intent.is_complete,
        )

        if intent.kind == IntentKind.BALANCE_QUERY:
            return await self._balance(ctx, fast_path)
        if intent.kind == IntentKind.STATEMENT_QUERY:
            return await self._statement(ctx, fast_path)
        if not intent.is_transaction or not intent.is_complete:
            await self._reply(ctx, ctx.reply_to, replies.CLARIFICATION_REPLY)
            return ctx.finish(PipelineOutcome.INCOMPLETE)

        return await self._record(ctx)

    async def _record(self, ctx: PipelineContext) -> PipelineContext:
        ctx.targets = await self.resolver.resolve(ctx.user_id, ctx.intent)
        ctx.advance(PipelineState.RESOLVED)

        try:
            ctx.result = await self.executor.process_transaction(
                ctx.user_id, ctx.intent, ctx.targets, transaction_date=self._today()
            )
        except TransactionFailure as exc:
            return await self._fail(
                ctx, PipelineOutcome.TRANSACTION_ERROR, replies.TRANSACTION_ERROR_REPLY, exc
            )
        ctx.advance(PipelineState.EXECUTED)

        await self._reply(ctx, ctx.reply_to, self.formatter.confirmation(ctx.intent, ctx.result))
        return ctx.finish(PipelineOutcome.RECORDED)

    async def _balance(self, ctx: PipelineContext, fast_path: bool) -> PipelineContext:
        try:
            balance = await self.executor.get_balance(ctx.user_id)
        except TransactionFailure as exc:
            logger.error("Balance query failed", user_id=ctx.user_id, error=str(exc))
            await self._reply(ctx, ctx.reply_to, replies.BALANCE_ERROR_REPLY)
        else:
            ctx.advance(PipelineState.EXECUTED)
            await self._reply(ctx, ctx.reply_to, self.formatter.balance(balance))
        return ctx.finish(PipelineOutcome.COMMAND if fast_path else PipelineOutcome.QUERY)

    async def _statement(self, ctx: PipelineContext, fast_path: bool) -> PipelineContext:
        try:
            entries = await self.executor.get_last_transactions(ctx.user_id, self.statement_limit)
        except TransactionFailure as exc:
            logger.error("Statement query failed", user_id=ctx.user_id, error=str(exc))
            await self._reply(ctx, ctx.reply_to, replies.STATEMENT_ERROR_REPLY)
        else:
            ctx.advance(PipelineState.EXECUTED)
            await self._reply(ctx, ctx.reply_to, self.formatter.statement(entries))
        return ctx.finish(PipelineOutcome.COMMAND if fast_path else PipelineOutcome.QUERY)

    async def _fail(
        self,
        ctx: PipelineContext,
        outcome: PipelineOutcome,
        reply_text: str,
        exc: Exception,
    ) -> PipelineContext:
        logger.error(
            "Pipeline step failed",
            outcome=outcome.value,
            state=ctx.state.value,
            user_id=ctx.user_id,
            error=str(exc),
        )
        await self._reply(ctx, ctx.reply_to, reply_text)
        await self.gate.logs.update(ctx.log_id, processed=True, error_message=str(exc))
        return ctx.finish(outcome, str(exc))

    async def _reply(self, ctx: PipelineContext, number: str | None, text: str) -> None:
        ctx.reply_delivered = await self.dispatcher.send(number, text)
        if ctx.state != PipelineState.REPLIED:
            ctx.advance(PipelineState.REPLIED)

    def _today(self) -> date:
        return datetime.now(self.tz).date()

    def describe(self, ctx: PipelineContext) -> dict[str, Any]:
        return {
            "outcome": ctx.outcome.value if ctx.outcome else None,
            "states": [state.value for state in ctx.transitions],
            "duration": ctx.duration_ms,
        }
