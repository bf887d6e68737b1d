from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

LINKED_ID_SUFFIX = "@lid"


class MessageKind(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


class MessageKey(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    remote_jid: str = Field(..., alias="remoteJid", examples=["5511987654321@s.whatsapp.net"])
    from_me: bool = Field(False, alias="fromMe")
    id: str
    participant: Optional[str] = None
    remote_jid_alt: Optional[str] = Field(None, alias="remoteJidAlt")
    sender_pn: Optional[str] = Field(None, alias="senderPn")


class MediaDescriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    url: Optional[str] = None
    media_key: Any = Field(None, alias="mediaKey")
    mimetype: Optional[str] = None
    file_sha256: Any = Field(None, alias="fileSha256")
    caption: Optional[str] = None

    @property
    def has_direct_source(self) -> bool:
        return bool(self.url and self.media_key)


class ExtendedText(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: Optional[str] = None


class MessageContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    conversation: Optional[str] = None
    extended_text_message: Optional[ExtendedText] = Field(None, alias="extendedTextMessage")
    audio_message: Optional[MediaDescriptor] = Field(None, alias="audioMessage")
    image_message: Optional[MediaDescriptor] = Field(None, alias="imageMessage")
    document_message: Optional[MediaDescriptor] = Field(None, alias="documentMessage")


class EventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    key: MessageKey
    message: Optional[MessageContent] = None
    message_type: Optional[str] = Field(None, alias="messageType")


class WebhookPayload(BaseModel):
    """Envelope posted by the messaging gateway."""

    model_config = ConfigDict(extra="allow")

    event: Optional[str] = None
    instance: Optional[str] = None
    data: Optional[EventData] = None


class InboundEvent(BaseModel):
    """Normalised, immutable view of one inbound webhook call."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    remote_jid: str
    from_me: bool
    kind: MessageKind
    message_type: Optional[str] = None
    text: Optional[str] = None
    media: Optional[MediaDescriptor] = None
    alt_identifiers: tuple[str, ...] = ()
    instance: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def sender(self) -> str:
        """Remote jid without the `@server` suffix."""
        return self.remote_jid.split("@")[0]

    @property
    def is_linked_id(self) -> bool:
        return self.remote_jid.endswith(LINKED_ID_SUFFIX)

    def content_hash(self) -> str:
        """Stable fingerprint of the message content for time-window dedup."""
        if self.text:
            return self.text.strip()
        if self.media is not None and self.media.file_sha256:
            return str(self.media.file_sha256)
        return hashlib.sha256(self.message_id.encode("utf-8")).hexdigest()

    @classmethod
    def from_payload(cls, payload: WebhookPayload, raw: dict[str, Any]) -> "InboundEvent":
        data = payload.data
        if data is None:
            raise ValueError("payload has no data")

        message = data.message or MessageContent()
        kind, text, media = _classify_message(data.message_type, message)
        alt = tuple(
            value
            for value in (data.key.remote_jid_alt, data.key.sender_pn, data.key.participant)
            if value and value != data.key.remote_jid
        )
        return cls(
            message_id=data.key.id,
            remote_jid=data.key.remote_jid,
            from_me=data.key.from_me,
            kind=kind,
            message_type=data.message_type,
            text=text,
            media=media,
            alt_identifiers=alt,
            instance=payload.instance,
            raw=raw.get("data") or {},
        )


def _classify_message(
    message_type: str | None, message: MessageContent
) -> tuple[MessageKind, str | None, MediaDescriptor | None]:
    text = message.conversation or (
        message.extended_text_message.text if message.extended_text_message else None
    )

    if message_type in {"conversation", "extendedTextMessage"} or (
        message_type is None and text
    ):
        return MessageKind.TEXT, text or "", None

    if message_type == "audioMessage" or (message_type is None and message.audio_message):
        return MessageKind.AUDIO, None, message.audio_message or MediaDescriptor()

    if message_type == "imageMessage" or (message_type is None and message.image_message):
        media = message.image_message or MediaDescriptor()
        return MessageKind.IMAGE, media.caption, media

    document = message.document_message
    if document is not None and (document.mimetype or "").startswith("audio/"):
        return MessageKind.AUDIO, None, document

    return MessageKind.UNSUPPORTED, text, None
