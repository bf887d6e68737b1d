import re
import sys
from typing import Any

from loguru import logger

SENSITIVE_KEYS = (
    "api_key",
    "apikey",
    "secret",
    "password",
    "token",
    "authorization",
    "credential",
    "mediakey",
    "media_key",
)

# Patterns for redacting sensitive data in logs
SENSITIVE_PATTERNS = [
    (re.compile(r'(api[_-]?key|apikey|authorization|bearer|token|secret|password|credential)["\']?\s*[:=]\s*["\']?([^"\'\s,}\]]+)', re.IGNORECASE), r'\1: [REDACTED]'),
    (re.compile(r'(sk-[a-zA-Z0-9]{20,})', re.IGNORECASE), '[REDACTED_API_KEY]'),
    (re.compile(r'(Bearer\s+)[^\s"\']+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(data:[a-z]+/[a-z0-9.+-]+;base64,)[A-Za-z0-9+/=]+', re.IGNORECASE), r'\1[REDACTED]'),
]


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Replace loguru's default sink with one honouring the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), serialize=json, backtrace=False)


def redact_sensitive_data(data: Any) -> Any:
    """
    Redact sensitive information from data for safe logging.

    Args:
        data: Data to redact (can be dict, list, or string)

    Returns:
        Data with sensitive information redacted
    """
    if isinstance(data, dict):
        redacted = {}
        for key, value in data.items():
            lower_key = str(key).lower()
            if any(sensitive in lower_key for sensitive in SENSITIVE_KEYS):
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = redact_sensitive_data(value)
        return redacted
    elif isinstance(data, list):
        return [redact_sensitive_data(item) for item in data]
    elif isinstance(data, str):
        result = data
        for pattern, replacement in SENSITIVE_PATTERNS:
            result = pattern.sub(replacement, result)
        return result
    else:
        return data
