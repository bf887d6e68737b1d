"""
Domain exceptions raised along the webhook pipeline.

Benign outcomes (duplicates, unknown senders) short-circuit processing and still
answer the gateway with HTTP 200. Failures before any ledger write are reported to
the user with an apology; failures after it are reported generically.
"""


class LedgerBotError(Exception):
    """Base class for all pipeline errors."""


class DuplicateMessage(LedgerBotError):
    """The inbound message id (or content window key) was already logged."""

    def __init__(self, message_id: str):
        super().__init__(f"Duplicate message {message_id}")
        self.message_id = message_id


class UnauthorizedSender(LedgerBotError):
    """The sender has no verified identity link."""

    def __init__(self, sender: str):
        super().__init__(f"Unverified sender {sender}")
        self.sender = sender


class DecryptionFailure(LedgerBotError):
    """AES-CBC decryption of a media blob failed."""


class MediaDecryptionFailure(LedgerBotError):
    """Every media strategy failed; `errors` keeps one reason per strategy."""

    def __init__(self, errors: list[str]):
        super().__init__("All media strategies failed. Errors: " + " | ".join(errors))
        self.errors = list(errors)


class TranscriptionFailure(LedgerBotError):
    pass


class VisionFailure(LedgerBotError):
    pass


class ClassificationFailure(LedgerBotError):
    pass


class TransactionFailure(LedgerBotError):
    pass


class ReplyDeliveryFailure(LedgerBotError):
    """Outbound send failed. Always logged and swallowed by the reply dispatcher."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
