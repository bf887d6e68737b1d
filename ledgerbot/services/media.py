"""
Media retrieval for encrypted attachments.

Strategies are tried in order inside one call. The first one that returns bytes
wins; otherwise every failure reason is kept and raised together.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from ledgerbot.core.errors import DecryptionFailure, MediaDecryptionFailure
from ledgerbot.schemas.webhook import MediaDescriptor
from ledgerbot.services import crypto
from ledgerbot.services.gateway import GatewayClient, GatewayError


class MediaStrategy(ABC):
    name: str

    @abstractmethod
    async def fetch(
        self, descriptor: MediaDescriptor, media_kind: str, message: dict[str, Any]
    ) -> bytes:
        """Return decrypted bytes or raise with a readable reason."""


class DirectDownloadStrategy(MediaStrategy):
    """Download the encrypted blob from the CDN url and decrypt it locally."""

    name = "direct"

    def __init__(self, gateway: GatewayClient, timeout: float = 30.0, verify_mac: bool = False):
        self.gateway = gateway
        self.timeout = timeout
        self.verify_mac = verify_mac

    async def fetch(
        self, descriptor: MediaDescriptor, media_kind: str, message: dict[str, Any]
    ) -> bytes:
        if not descriptor.has_direct_source:
            raise DecryptionFailure("No url or mediaKey available")

        media_key = crypto.decode_media_key(descriptor.media_key)
        blob = await self.gateway.download(descriptor.url, timeout=self.timeout)
        logger.debug("Encrypted media downloaded", size=len(blob), media_kind=media_kind)
        return crypto.decrypt(blob, media_key, media_kind, verify_mac=self.verify_mac)


class GatewayBase64Strategy(MediaStrategy):
    """Let the gateway resolve the message to a decoded base64 payload."""

    name = "gateway"

    def __init__(self, gateway: GatewayClient, timeout: float = 30.0):
        self.gateway = gateway
        self.timeout = timeout

    async def fetch(
        self, descriptor: MediaDescriptor, media_kind: str, message: dict[str, Any]
    ) -> bytes:
        if not message:
            raise GatewayError("No message payload to forward")
        encoded = await self.gateway.fetch_media_base64(message, timeout=self.timeout)
        return crypto.b64decode(encoded)


class MediaDecryptor:
    def __init__(self, strategies: list[MediaStrategy]):
        self.strategies = strategies

    @classmethod
    def default(
        cls, gateway: GatewayClient, timeout: float = 30.0, verify_mac: bool = False
    ) -> "MediaDecryptor":
        return cls(
            [
                DirectDownloadStrategy(gateway, timeout=timeout, verify_mac=verify_mac),
                GatewayBase64Strategy(gateway, timeout=timeout),
            ]
        )

    async def fetch_and_decrypt(
        self,
        descriptor: MediaDescriptor,
        media_kind: str,
        message: dict[str, Any] | None = None,
    ) -> bytes:
        """
        Obtain plaintext bytes for an attachment.

        `message` is the raw `data` object of the webhook; the gateway strategy
        forwards it unchanged.

        Raises:
            MediaDecryptionFailure: when every strategy failed
        """
        errors: list[str] = []
        for strategy in self.strategies:
            try:
                data = await strategy.fetch(descriptor, media_kind, message or {})
            except (DecryptionFailure, GatewayError) as exc:
                logger.warning(
                    "Media strategy failed",
                    strategy=strategy.name,
                    media_kind=media_kind,
                    error=str(exc),
                )
                errors.append(f"{strategy.name}: {exc}")
                continue

            if not data:
                errors.append(f"{strategy.name}: empty payload")
                continue

            logger.info(
                "Media resolved",
                strategy=strategy.name,
                media_kind=media_kind,
                size=len(data),
            )
            return data

        raise MediaDecryptionFailure(errors)
