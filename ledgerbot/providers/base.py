"""
Shared HTTP plumbing for the hosted model APIs.

Chat, vision and transcription all go to OpenAI-style endpoints authenticated
with a Bearer key. `BearerAPI` owns the request, the mapping of HTTP statuses
to `ProviderError` and the models listing used by `/health/providers`.
"""

import time
from typing import Any

import httpx
from loguru import logger

HEALTH_TIMEOUT = 10.0


class ProviderError(Exception):
    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class AuthenticationError(ProviderError):
    """Missing or rejected API key."""


class BearerAPI:
    """One vendor endpoint reached with `Authorization: Bearer <key>`."""

    def __init__(
        self,
        vendor: str,
        api_key: str | None,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.vendor = vendor.lower()
        if not api_key or not api_key.strip():
            raise AuthenticationError(f"No API key configured for {self.vendor}", self.vendor)
        self.api_key = api_key.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return self.vendor

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    def _check_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 401:
            raise AuthenticationError(f"{self.vendor} rejected the API key", self.vendor, status_code=401)
        raise ProviderError(
            f"{self.vendor} returned HTTP {status}",
            self.vendor,
            status_code=status,
            retryable=status == 429 or status >= 500,
        )

    async def post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        """POST to `path` and return the decoded JSON object."""
        try:
            async with self._client(self.timeout) as client:
                response = await client.post(self.url(path), **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                f"{self.vendor} timed out after {self.timeout}s", self.vendor, retryable=True
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderError(f"{self.vendor} unreachable: {exc}", self.vendor, retryable=True) from exc

        self._check_status(response)
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.vendor} sent a non-JSON body", self.vendor, status_code=response.status_code
            ) from exc
        if not isinstance(body, dict):
            raise ProviderError(f"{self.vendor} sent an unexpected body", self.vendor)
        return body

    async def list_models(self, path: str) -> tuple[dict[str, Any], list[str]]:
        """GET the models listing; returns a health entry and the model ids it named."""
        started = time.perf_counter()
        health: dict[str, Any] = {"provider": self.vendor, "base_url": self.base_url}
        model_ids: list[str] = []
        try:
            async with self._client(HEALTH_TIMEOUT) as client:
                response = await client.get(self.url(path))
            self._check_status(response)
            listed = response.json().get("data") or []
            model_ids = [item["id"] for item in listed if isinstance(item, dict) and item.get("id")]
        except (httpx.HTTPError, ProviderError, ValueError, AttributeError) as exc:
            logger.warning("Provider health check failed", provider=self.vendor, error=str(exc))
            health.update(status="unhealthy", error=str(exc))
        else:
            health["status"] = "healthy"
        health["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
        return health, model_ids
