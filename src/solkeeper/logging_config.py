"""Logging setup.

Key material must never reach a log line. ``SecretRedactingFilter`` is a
last line of defense that masks anything shaped like a secret key in the
formatted message.
"""

import logging
import re
from typing import Optional

from solkeeper.config import Settings, get_settings

# Base58 secret (87-88 chars), bare hex secret (128 chars), 64-number array
_SECRET_PATTERNS = (
    re.compile(r"(?<![1-9A-HJ-NP-Za-km-z])[1-9A-HJ-NP-Za-km-z]{87,88}(?![1-9A-HJ-NP-Za-km-z])"),
    re.compile(r"(?<![0-9a-fA-F])(?:0[xX])?[0-9a-fA-F]{128}(?![0-9a-fA-F])"),
    re.compile(r"\[\s*\d{1,3}(?:\s*,\s*\d{1,3}){63}\s*\]"),
)

REDACTED = "[REDACTED]"


def redact_secrets(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Mask secret-key-shaped substrings in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging and reduce noise from libraries."""
    settings = settings or get_settings()

    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    redactor = SecretRedactingFilter()
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SecretRedactingFilter) for f in handler.filters):
            handler.addFilter(redactor)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiogram").setLevel(logging.INFO)
