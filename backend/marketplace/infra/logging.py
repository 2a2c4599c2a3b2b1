"""JSON logging with a per-request/per-job context and redaction.

Log calls pass structured fields through ``extra={"extra": {...}}``; the
formatter flattens them next to whatever was bound with
``update_log_context``. Free-text order fields can carry personal details
written by clients, so they never reach the log output.
"""

import contextvars
import json
import logging
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

_SECRET_PATTERNS = (
    (re.compile(r"(?i)\bauthorization\s*[:=]\s*[^\s]+"), "authorization=[REDACTED_TOKEN]"),
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer [REDACTED_TOKEN]"),
    (
        re.compile(r"(?i)(?P<key>token|access_token|signature|sig)=[^&\s]+"),
        r"\g<key>=[REDACTED_TOKEN]",
    ),
)
REDACTED_KEYS = frozenset(
    {
        "authorization",
        "token",
        "access_token",
        "password",
        "secret",
        "description",
        "client_notes",
        "provider_notes",
        "decline_reason",
    }
)
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")

LOG_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("log_context", default={})
_RECORD_ATTRS = frozenset(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def redact_secrets(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def scrub(value: Any, key: str | None = None) -> Any:
    if key is not None and key.lower() in REDACTED_KEYS:
        return "[REDACTED]"
    if isinstance(value, str):
        return redact_secrets(value)
    if isinstance(value, dict):
        return {item_key: scrub(item, item_key) for item_key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub(item) for item in value]
    return value


def update_log_context(**fields: Any) -> dict[str, Any]:
    merged = {**LOG_CONTEXT.get({}), **{key: value for key, value in fields.items() if value is not None}}
    LOG_CONTEXT.set(merged)
    return merged


def clear_log_context() -> None:
    LOG_CONTEXT.set({})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields for the duration of a block, then restore the previous context."""

    token = LOG_CONTEXT.set({**LOG_CONTEXT.get({}), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        LOG_CONTEXT.reset(token)


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS and not key.startswith("_")}
    nested = fields.pop("extra", None)
    if isinstance(nested, dict):
        fields.update(nested)
    return fields


class JsonLogFormatter(logging.Formatter):
    def __init__(self, service_name: str | None = None) -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_secrets(record.getMessage()),
        }
        if self.service_name:
            payload["service"] = self.service_name
        payload.update(scrub(LOG_CONTEXT.get({})))
        payload.update(scrub(_record_fields(record)))
        if record.exc_info:
            payload["exc_info"] = redact_secrets(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO", *, service_name: str | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter(service_name))
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))
