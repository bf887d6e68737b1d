"""
Chat completion clients for the intent classifier and the receipt reader.

Every supported vendor serves the OpenAI `/v1/chat/completions` contract, so a
vendor is just a base URL and a default model. JSON mode and `image_url`
message parts pass through untouched.
"""

import time
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from ledgerbot.core.config import Settings
from ledgerbot.core.logging import redact_sensitive_data
from ledgerbot.providers.base import AuthenticationError, BearerAPI, ProviderError

# vendor -> (base url, default model)
VENDORS: dict[str, tuple[str, str]] = {
    "openai": ("https://api.openai.com", "gpt-4o-mini"),
    "groq": ("https://api.groq.com/openai", "llama-3.1-8b-instant"),
    "together": ("https://api.together.xyz", "meta-llama/Llama-3-8b-chat-hf"),
    "deepseek": ("https://api.deepseek.com", "deepseek-chat"),
    "qwen": ("https://dashscope.aliyuncs.com/compatible-mode", "qwen-turbo"),
    "kimi": ("https://api.moonshot.cn", "moonshot-v1-8k"),
    "moonshot": ("https://api.moonshot.cn", "moonshot-v1-8k"),
    "openrouter": ("https://openrouter.ai/api", "openai/gpt-4o-mini"),
}

COMPLETIONS_PATH = "/v1/chat/completions"

ChatMessage = dict[str, Any]


@dataclass
class ChatReply:
    content: str
    provider: str
    model: str
    usage: dict[str, int] | None = None
    latency_ms: float = 0.0


class ChatProvider(BearerAPI):
    def __init__(
        self,
        vendor: str,
        api_key: str | None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        vendor = vendor.lower()
        if vendor not in VENDORS:
            raise ValueError(f"Unknown AI provider: {vendor}")
        default_url, default_model = VENDORS[vendor]
        super().__init__(vendor, api_key, base_url or default_url, timeout, transport)
        self.model = model or default_model

    @staticmethod
    def build_request_payload(
        messages: list[ChatMessage],
        model: str,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": model, "messages": messages, "temperature": temperature}
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if response_format is not None:
            payload["response_format"] = response_format
        return payload

    async def complete(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> ChatReply:
        model = model or self.model
        started = time.perf_counter()
        body = await self.post(
            COMPLETIONS_PATH,
            json=self.build_request_payload(messages, model, temperature, max_tokens, response_format),
        )
        usage = body.get("usage")
        return ChatReply(
            content=self._message_content(body),
            provider=self.vendor,
            model=body.get("model") or model,
            usage={
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0),
            }
            if isinstance(usage, dict)
            else None,
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    def _message_content(self, body: dict[str, Any]) -> str:
        try:
            return body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            logger.warning("Chat reply carried no message", provider=self.vendor, keys=list(body))
            return ""

    async def health_check(self) -> dict[str, Any]:
        health, model_ids = await self.list_models("/v1/models")
        health["model"] = self.model
        if model_ids:
            health["model_available"] = self.model in model_ids
        return health


class AIProviderManager:
    """Primary chat provider plus an optional fallback, both built from Settings."""

    def __init__(self, config: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.debug_logging = config.ai_debug_logging
        self.primary = self._build(
            "primary",
            config.ai_provider,
            config.ai_api_key,
            config.ai_base_url,
            config.ai_model,
            config.ai_timeout,
            transport,
        )
        self.fallback: ChatProvider | None = None
        if config.ai_fallback_provider:
            self.fallback = self._build(
                "fallback",
                config.ai_fallback_provider,
                config.ai_fallback_api_key,
                config.ai_fallback_base_url,
                config.ai_fallback_model,
                config.ai_timeout,
                transport,
            )

    @staticmethod
    def _build(
        role: str,
        vendor: str,
        api_key: str | None,
        base_url: str | None,
        model: str | None,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None,
    ) -> ChatProvider | None:
        try:
            provider = ChatProvider(vendor, api_key, base_url, model, timeout, transport)
        except (AuthenticationError, ValueError) as exc:
            logger.error("AI provider not configured", role=role, provider=vendor, error=str(exc))
            return None
        logger.info("AI provider ready", role=role, provider=provider.name, model=provider.model)
        return provider

    @property
    def has_primary(self) -> bool:
        return self.primary is not None

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
        use_fallback: bool = True,
    ) -> ChatReply:
        """
        Ask the primary provider, then the fallback once when allowed.

        `model` only overrides the primary; the fallback keeps its configured model.

        Raises:
            ProviderError: when no provider produced a reply
        """
        attempts: list[tuple[ChatProvider | None, str | None]] = [(self.primary, model)]
        if use_fallback and self.fallback is not None:
            attempts.append((self.fallback, None))

        errors: list[ProviderError] = []
        for provider, override in attempts:
            if provider is None:
                errors.append(ProviderError("No primary provider configured", "none"))
                continue
            try:
                return await self._call(
                    provider, messages, override, temperature, max_tokens, response_format
                )
            except ProviderError as exc:
                errors.append(exc)

        if len(errors) == 1:
            raise errors[0]
        raise ProviderError(
            "All providers failed: " + "; ".join(str(error) for error in errors), "manager"
        ) from errors[-1]

    async def _call(
        self,
        provider: ChatProvider,
        messages: list[ChatMessage],
        model: str | None,
        temperature: float,
        max_tokens: int | None,
        response_format: dict[str, Any] | None,
    ) -> ChatReply:
        logger.info(
            "AI request started",
            provider=provider.name,
            model=model or provider.model,
            message_count=len(messages),
        )
        if self.debug_logging:
            logger.debug(
                "AI request payload", provider=provider.name, messages=redact_sensitive_data(messages)
            )

        try:
            reply = await provider.complete(messages, model, temperature, max_tokens, response_format)
        except ProviderError as exc:
            logger.warning(
                "AI request failed",
                provider=provider.name,
                status_code=exc.status_code,
                retryable=exc.retryable,
                error=str(exc),
            )
            raise

        logger.info(
            "AI response received",
            provider=reply.provider,
            model=reply.model,
            latency_ms=round(reply.latency_ms, 2),
            usage=reply.usage,
        )
        if self.debug_logging:
            logger.debug(
                "AI response payload",
                provider=reply.provider,
                content=redact_sensitive_data(reply.content[:500]),
            )
        return reply

    async def get_health_status(self) -> dict[str, Any]:
        """`healthy` when the primary answers, `degraded` when only the fallback does."""
        primary = await self.primary.health_check() if self.primary else None
        fallback = await self.fallback.health_check() if self.fallback else None

        if primary and primary["status"] == "healthy":
            status = "healthy"
        elif fallback and fallback["status"] == "healthy":
            status = "degraded"
        else:
            status = "unhealthy"
        return {"status": status, "primary": primary, "fallback": fallback}
