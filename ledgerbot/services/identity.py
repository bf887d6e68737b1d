from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass

from loguru import logger

from ledgerbot.core.errors import UnauthorizedSender
from ledgerbot.db.repositories import IdentityLinkRepository, MessageLogRepository
from ledgerbot.schemas.ledger import IdentityLink
from ledgerbot.schemas.webhook import LINKED_ID_SUFFIX, InboundEvent

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(value: str) -> str:
    """Digits only, jid server suffix and device part removed."""
    return _NON_DIGITS.sub("", value.split("@")[0].split(":")[0])


def phone_variants(phone: str, country_code: str = "55") -> list[str]:
    """
    The number plus its counterpart with or without the mobile ninth digit.

    For country code + two-digit area code numbers, a 13-digit number whose
    subscriber part starts with 9 also matches its 12-digit form, and a 12-digit
    number also matches the form with 9 inserted after the area code.
    """
    digits = normalize_phone(phone)
    variants = [digits] if digits else []
    if not digits.startswith(country_code):
        return variants

    prefix_length = len(country_code) + 2
    subscriber = digits[prefix_length:]
    if len(digits) == prefix_length + 9 and subscriber.startswith("9"):
        variants.append(digits[:prefix_length] + subscriber[1:])
    elif len(digits) == prefix_length + 8:
        variants.append(digits[:prefix_length] + "9" + subscriber)
    return variants


@dataclass(frozen=True)
class ResolvedSender:
    user_id: str
    reply_to: str | None
    link: IdentityLink


class IdentityGate:
    """Filters noise, records each message id once and resolves the sender."""

    def __init__(
        self,
        logs: MessageLogRepository,
        links: IdentityLinkRepository,
        broadcast_jid: str = "status@broadcast",
        country_code: str = "55",
        dedup_window_seconds: int = 0,
    ):
        self.logs = logs
        self.links = links
        self.broadcast_jid = broadcast_jid
        self.country_code = country_code
        self.dedup_window_seconds = dedup_window_seconds

    def should_ignore(self, event: InboundEvent) -> bool:
        return event.from_me or event.remote_jid == self.broadcast_jid

    def dedup_key(self, event: InboundEvent, now: float | None = None) -> str | None:
        """Sender + content hash + time bucket, when the content window is enabled."""
        if self.dedup_window_seconds <= 0:
            return None
        bucket = int((now if now is not None else time.time()) // self.dedup_window_seconds)
        digest = hashlib.sha256(event.content_hash().encode("utf-8")).hexdigest()[:16]
        return f"{event.sender}_{digest}_{bucket}"

    async def register(self, event: InboundEvent) -> int:
        """
        Insert the message log row before any other work.

        Raises:
            DuplicateMessage: the message id (or content window key) was seen before
        """
        log_id = await self.logs.create(
            message_id=event.message_id,
            phone_number=event.sender,
            message_type=event.message_type or event.kind.value,
            content=event.raw,
            dedup_key=self.dedup_key(event),
        )
        logger.debug("Message logged", message_id=event.message_id, log_id=log_id)
        return log_id

    def phone_candidates(self, event: InboundEvent) -> list[str]:
        sources = [] if event.is_linked_id else [event.remote_jid]
        sources.extend(value for value in event.alt_identifiers if not value.endswith(LINKED_ID_SUFFIX))

        candidates: list[str] = []
        for source in sources:
            for variant in phone_variants(source, self.country_code):
                if variant not in candidates:
                    candidates.append(variant)
        return candidates

    def _linked_id(self, event: InboundEvent) -> str | None:
        if event.is_linked_id:
            return event.remote_jid
        for value in event.alt_identifiers:
            if value.endswith(LINKED_ID_SUFFIX):
                return value
        return None

    async def resolve(self, event: InboundEvent) -> ResolvedSender:
        """
        Map the sender to a verified internal user.

        Raises:
            UnauthorizedSender: no verified link matches any identifier form
        """
        linked_id = self._linked_id(event)
        phones = self.phone_candidates(event)

        link: IdentityLink | None = None
        if linked_id:
            link = await self.links.find_by_linked_id(linked_id)
        if (link is None or not link.is_verified) and phones:
            by_phone = await self.links.find_by_phone_numbers(phones)
            if by_phone is not None and (link is None or by_phone.is_verified):
                link = by_phone

        if link is None or not link.is_verified:
            logger.warning(
                "Unverified sender",
                remote_jid=event.remote_jid,
                linked_id=linked_id,
                phone_candidates=phones,
            )
            raise UnauthorizedSender(event.remote_jid)

        await self._remember_aliases(link, linked_id, phones)

        reply_to = link.phone_number or (phones[0] if phones else None)
        return ResolvedSender(user_id=link.user_id, reply_to=reply_to, link=link)

    async def _remember_aliases(
        self, link: IdentityLink, linked_id: str | None, phones: list[str]
    ) -> None:
        if linked_id and link.linked_id != linked_id:
            await self.links.set_linked_id(link.id, linked_id)
            logger.info("Linked id stored for user", user_id=link.user_id)
        if phones and not link.phone_number:
            await self.links.set_phone_number(link.id, phones[0])
            logger.info("Phone number stored for user", user_id=link.user_id)
