"""
Hosted Whisper transcription for voice notes.

OpenAI and Groq accept the same multipart upload and only differ in where the
API is mounted and which model is the default.
"""

import time
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from ledgerbot.core.config import Settings
from ledgerbot.providers.base import AuthenticationError, BearerAPI, ProviderError

# vendor -> (API root, default model)
WHISPER_VENDORS: dict[str, tuple[str, str]] = {
    "openai": ("https://api.openai.com/v1", "whisper-1"),
    "groq": ("https://api.groq.com/openai/v1", "whisper-large-v3"),
}

AUDIO_EXTENSIONS: dict[str, str] = {
    "audio/ogg": "ogg",
    "audio/opus": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/aac": "m4a",
    "audio/wav": "wav",
    "audio/webm": "webm",
}


def audio_upload(audio: bytes, mime_type: str | None) -> tuple[str, bytes, str]:
    """Multipart `file` tuple; "audio/ogg; codecs=opus" is sent as audio.ogg."""
    bare = (mime_type or "audio/ogg").split(";")[0].strip().lower()
    return f"audio.{AUDIO_EXTENSIONS.get(bare, 'ogg')}", audio, bare


@dataclass
class Transcript:
    text: str
    provider: str
    model: str
    language: str | None = None
    duration_seconds: float | None = None
    latency_ms: float = 0.0


class WhisperProvider(BearerAPI):
    def __init__(
        self,
        vendor: str,
        api_key: str | None,
        model: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        vendor = vendor.lower()
        if vendor not in WHISPER_VENDORS:
            raise ValueError(f"Unknown speech-to-text provider: {vendor}")
        root, default_model = WHISPER_VENDORS[vendor]
        super().__init__(vendor, api_key, root, timeout, transport)
        self.model = model or default_model

    async def transcribe(
        self, audio: bytes, language: str | None = None, mime_type: str | None = None
    ) -> Transcript:
        fields = {"model": self.model, "response_format": "verbose_json"}
        if language:
            fields["language"] = language

        started = time.perf_counter()
        body = await self.post(
            "/audio/transcriptions",
            files={"file": audio_upload(audio, mime_type)},
            data=fields,
        )
        return Transcript(
            text=str(body.get("text") or "").strip(),
            provider=self.vendor,
            model=self.model,
            language=body.get("language"),
            duration_seconds=body.get("duration"),
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def health_check(self) -> dict[str, Any]:
        health, _ = await self.list_models("/models")
        health["model"] = self.model
        return health


class STTProviderManager:
    """Builds the configured Whisper vendor; an unusable config leaves it unset."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.vendor = settings.stt_provider
        self._provider: WhisperProvider | None = None
        try:
            self._provider = WhisperProvider(
                self.vendor,
                settings.get_effective_stt_api_key(),
                model=settings.get_effective_stt_model(),
                timeout=settings.ai_timeout,
                transport=transport,
            )
        except (AuthenticationError, ValueError) as exc:
            logger.error("Speech-to-text provider not configured", provider=self.vendor, error=str(exc))
        else:
            logger.info("Speech-to-text provider ready", provider=self.vendor, model=self._provider.model)

    @property
    def is_configured(self) -> bool:
        return self._provider is not None

    @property
    def provider(self) -> WhisperProvider:
        if self._provider is None:
            raise ProviderError("Speech-to-text provider not configured", self.vendor)
        return self._provider

    async def transcribe(
        self, audio: bytes, language: str | None = None, mime_type: str | None = None
    ) -> Transcript:
        transcript = await self.provider.transcribe(audio, language=language, mime_type=mime_type)
        logger.info(
            "Transcription completed",
            provider=transcript.provider,
            model=transcript.model,
            latency_ms=round(transcript.latency_ms, 2),
            text_length=len(transcript.text),
        )
        return transcript

    async def get_health_status(self) -> dict[str, Any]:
        if self._provider is None:
            return {"status": "unhealthy", "provider": self.vendor, "error": "not configured"}
        return await self._provider.health_check()
