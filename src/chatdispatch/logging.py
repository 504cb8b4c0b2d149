from __future__ import annotations

import contextvars
import errno
import logging
import re
import sys
from collections.abc import Mapping
from typing import Any

import structlog

SECRET_PARAM_RE = re.compile(r"(?i)\b(key|token|apikey|api_key|secret)=([^&\s]+)")
BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._\-]{8,}")


def _redact_text(value: str) -> str:
    redacted = SECRET_PARAM_RE.sub(r"\1=[REDACTED]", value)
    return BEARER_RE.sub("Bearer [REDACTED]", redacted)


def redact_secrets_processor(_, __, event_dict):
    """Processor to mask store credentials in log lines."""
    for name, value in list(event_dict.items()):
        if isinstance(value, str):
            redacted = _redact_text(value)
            if redacted != value:
                event_dict[name] = redacted
    return event_dict


class SafeStreamHandler(logging.StreamHandler):
    def handleError(self, record: logging.LogRecord) -> None:
        exc = sys.exc_info()[1]
        if isinstance(exc, BrokenPipeError) or (
            isinstance(exc, OSError) and exc.errno == errno.EPIPE
        ):
            try:
                self.stream.close()
            except Exception:
                pass
            return
        super().handleError(record)


def setup_logging(*, debug: bool = False) -> None:
    """Configure structlog with console output and secret redaction."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets_processor,
            structlog.dev.ConsoleRenderer(colors=True)
            if debug
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = SafeStreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=[handler],
        force=True,
    )
    logging.getLogger("anyio").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bind_dispatch_context(
    *,
    tenant_id: str | None = None,
    chat_id: str | None = None,
    sender_id: str | None = None,
) -> Mapping[str, contextvars.Token[Any]]:
    context = {
        key: value
        for key, value in (
            ("tenant_id", tenant_id),
            ("chat_id", chat_id),
            ("sender_id", sender_id),
        )
        if value is not None
    }
    if not context:
        return {}
    return structlog.contextvars.bind_contextvars(**context)


def reset_context(tokens: Mapping[str, contextvars.Token[Any]]) -> None:
    if tokens:
        structlog.contextvars.reset_contextvars(**tokens)
