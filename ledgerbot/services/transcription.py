"""
Adapters from decrypted media to text or intents.

Audio goes through the configured speech-to-text provider; images go to a
vision-capable chat model that extracts the intent fields in one call.
"""

from __future__ import annotations

import base64
from typing import Any

from loguru import logger
from pydantic import ValidationError

from ledgerbot.core.errors import TranscriptionFailure, VisionFailure
from ledgerbot.providers.base import ProviderError
from ledgerbot.providers.chat import AIProviderManager
from ledgerbot.providers.speech import STTProviderManager
from ledgerbot.schemas.intent import FinancialIntent
from ledgerbot.services.classifier import JSON_RESPONSE_FORMAT, SYSTEM_PROMPT, extract_json_payload

VISION_INSTRUCTION = (
    "Read this receipt, invoice or payment screenshot and extract the transaction. "
    "Use the total amount paid. Reply only with the JSON object."
)


class TranscriptionAdapter:
    def __init__(self, stt: STTProviderManager, language: str | None = None):
        self.stt = stt
        self.language = language

    async def transcribe(self, audio: bytes, mime_type: str | None = None) -> str:
        try:
            result = await self.stt.transcribe(
                audio,
                language=self.language,
                mime_type=mime_type,
            )
        except ProviderError as exc:
            raise TranscriptionFailure(f"Transcription failed: {exc}") from exc

        text = result.text.strip()
        if not text:
            raise TranscriptionFailure("Transcription returned no text")
        logger.debug("Audio transcribed", text_length=len(text), provider=result.provider)
        return text


def image_data_url(image: bytes, mime_type: str | None) -> str:
    bare = (mime_type or "image/jpeg").split(";")[0].strip() or "image/jpeg"
    return f"data:{bare};base64,{base64.b64encode(image).decode('ascii')}"


class VisionAdapter:
    def __init__(self, manager: AIProviderManager, model: str | None = None):
        self.manager = manager
        self.model = model

    def build_messages(
        self, image: bytes, mime_type: str | None, caption: str | None
    ) -> list[dict[str, Any]]:
        instruction = VISION_INSTRUCTION
        if caption:
            instruction += f"\nThe sender added this caption: {caption}"
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": instruction},
                    {"type": "image_url", "image_url": {"url": image_data_url(image, mime_type)}},
                ],
            },
        ]

    async def extract_intent(
        self, image: bytes, mime_type: str | None = None, caption: str | None = None
    ) -> FinancialIntent:
        try:
            response = await self.manager.chat_completion(
                messages=self.build_messages(image, mime_type, caption),
                model=self.model,
                temperature=0,
                max_tokens=300,
                response_format=JSON_RESPONSE_FORMAT,
                use_fallback=False,
            )
        except ProviderError as exc:
            raise VisionFailure(f"Vision provider failed: {exc}") from exc

        try:
            intent = FinancialIntent.model_validate(extract_json_payload(response.content))
        except (ValueError, ValidationError) as exc:
            raise VisionFailure(f"Vision returned an invalid intent: {exc}") from exc

        logger.info(
            "Image analysed",
            kind=intent.kind.value,
            completeness=intent.completeness.value,
            provider=response.provider,
        )
        return intent
