"""Structured, secret-safe logging for taskgate.

Runner output and MemOS errors end up in log lines, so every field value
goes through ``redact_secrets`` and is capped at ``MAX_FIELD_CHARS``.
Lines look like ``message | request_id=... | key=value``.
"""

import logging
import re
import uuid
from contextvars import ContextVar
from typing import Any

from taskgate.text import slice_text

MAX_FIELD_CHARS = 500
REDACTED = "***REDACTED***"

_request_id_var: ContextVar[str | None] = ContextVar("taskgate_request_id", default=None)

# (token prefix as a regex, prefix shown in the redacted text, body pattern)
_SECRET_PREFIXES = (
    (r"ghp_", "ghp_", r"[A-Za-z0-9_]+"),
    (r"github_pat_", "github_pat_", r"[A-Za-z0-9_]+"),
    (r"sk-", "sk-", r"[A-Za-z0-9_-]{16,}"),
    (r"xox[abprs]-", "xox*-", r"[A-Za-z0-9-]+"),
)

SECRET_PATTERNS = [
    (re.compile(prefix + body), shown + REDACTED) for prefix, shown, body in _SECRET_PREFIXES
]

AUTH_HEADER_PATTERN = re.compile(
    r"(Authorization[:\s]+(?:Bearer\s+|Basic\s+)?)([^\s,;]+)",
    re.IGNORECASE,
)


def redact_secrets(text: Any) -> str:
    """Return ``text`` as a string with API tokens and auth header values masked.

    ``None`` becomes an empty string; other non-strings are stringified first.
    """
    if text is None:
        return ""
    redacted = text if isinstance(text, str) else str(text)
    for pattern, replacement in SECRET_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return AUTH_HEADER_PATTERN.sub(r"\1" + REDACTED, redacted)


def set_request_id(request_id: str | None = None) -> str:
    """Bind a request id to the current context, generating a UUID4 if none is given."""
    value = request_id or str(uuid.uuid4())
    _request_id_var.set(value)
    return value


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def format_fields(message: str, fields: dict[str, Any]) -> str:
    """Render a log line from a message, the bound request id and ``fields``."""
    parts = [message]
    request_id = get_request_id()
    if request_id:
        parts.append(f"request_id={request_id}")
    parts.extend(
        f"{key}={slice_text(redact_secrets(value), MAX_FIELD_CHARS)}"
        for key, value in fields.items()
    )
    return " | ".join(parts)


def log_with_context(logger: logging.Logger, level: int, message: str, **fields: Any) -> None:
    """Log ``message`` with structured fields at ``level``.

    Formatting is skipped entirely when the level is disabled.
    """
    if logger.isEnabledFor(level):
        logger.log(level, format_fields(message, fields))


def log_debug(logger: logging.Logger, message: str, **fields: Any) -> None:
    """Log a debug message with structured fields."""
    log_with_context(logger, logging.DEBUG, message, **fields)


def log_info(logger: logging.Logger, message: str, **fields: Any) -> None:
    """Log an info message with structured fields.

    Example:
        log_info(logger, "Command started", command_id=record.id, actor="worker")
    """
    log_with_context(logger, logging.INFO, message, **fields)


def log_warning(logger: logging.Logger, message: str, **fields: Any) -> None:
    """Log a warning message with structured fields."""
    log_with_context(logger, logging.WARNING, message, **fields)


def log_error(logger: logging.Logger, message: str, **fields: Any) -> None:
    """Log an error message with structured fields.

    Runner output passed as a field is redacted and capped like any other value.
    """
    log_with_context(logger, logging.ERROR, message, **fields)
