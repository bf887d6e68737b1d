"""Hosted model APIs: chat for intents and receipts, Whisper for voice notes."""

from .base import AuthenticationError, ProviderError
from .chat import AIProviderManager, ChatProvider, ChatReply
from .speech import STTProviderManager, Transcript, WhisperProvider

__all__ = [
    "AIProviderManager",
    "AuthenticationError",
    "ChatProvider",
    "ChatReply",
    "ProviderError",
    "STTProviderManager",
    "Transcript",
    "WhisperProvider",
]
