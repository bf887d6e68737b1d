"""
HTTP client for the messaging gateway (Evolution-style WhatsApp API).
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from ledgerbot.core.config import Settings
from ledgerbot.core.errors import ReplyDeliveryFailure


class GatewayError(Exception):
    """Gateway call failed or returned an unusable body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GatewayClient:
    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        instance: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = str(base_url).rstrip("/")
        self.api_key = api_key or ""
        self.instance = instance
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "GatewayClient":
        return cls(
            base_url=str(settings.gateway_url),
            api_key=settings.gateway_api_key,
            instance=settings.gateway_instance,
            timeout=settings.gateway_timeout,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        return {"apikey": self.api_key, "Content-Type": "application/json"}

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport)

    async def send_text(self, number: str, text: str) -> None:
        """
        POST {gateway}/message/sendText/{instance}.

        Raises:
            ReplyDeliveryFailure: on a non-2xx answer or a transport error
        """
        url = f"{self.base_url}/message/sendText/{self.instance}"
        try:
            async with self._client() as client:
                response = await client.post(
                    url, headers=self._headers(), json={"number": number, "text": text}
                )
        except httpx.HTTPError as exc:
            raise ReplyDeliveryFailure(f"Gateway send failed: {exc}") from exc

        if not response.is_success:
            raise ReplyDeliveryFailure(
                f"Gateway send returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        logger.debug("Reply delivered", number=number, status_code=response.status_code)

    async def fetch_media_base64(self, message: dict[str, Any], timeout: float | None = None) -> str:
        """
        Ask the gateway to decode a media message it already holds.

        POST {gateway}/chat/base64FromMessage/{instance} with the full message
        payload; the answer must carry a `base64` field.

        Raises:
            GatewayError: on transport errors, non-2xx answers or a missing field
        """
        url = f"{self.base_url}/chat/base64FromMessage/{self.instance}"
        try:
            async with self._client(timeout) as client:
                response = await client.post(
                    url,
                    headers=self._headers(),
                    json={"message": message, "convertToMp4": False},
                )
        except httpx.HTTPError as exc:
            raise GatewayError(f"Gateway media request failed: {exc}") from exc

        if not response.is_success:
            raise GatewayError(
                f"Gateway media request returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayError("Gateway media response is not JSON") from exc

        encoded = body.get("base64") if isinstance(body, dict) else None
        if not encoded:
            raise GatewayError("Gateway media response has no base64 field")
        return encoded

    async def download(self, url: str, timeout: float | None = None) -> bytes:
        """Plain GET of an encrypted media blob."""
        try:
            async with self._client(timeout) as client:
                response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise GatewayError(f"Media download failed: {exc}") from exc

        if not response.is_success:
            raise GatewayError(
                f"Media download returned {response.status_code}",
                status_code=response.status_code,
            )
        return response.content
