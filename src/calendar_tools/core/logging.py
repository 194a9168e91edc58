"""Structured logging for calendar tools.

Uses structlog's ProcessorFormatter to upgrade every existing
``logging.getLogger(__name__)`` call site without changes at the call sites.

Two output formats:
- ``text``: Colored, human-readable console output (dev default)
- ``json``: Machine-parseable JSON lines

The id of the event whose duplication is in progress and the OTel trace
context are injected automatically via processors that read from a ContextVar
and the current OTel span.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# Event context (asyncio-safe via ContextVar)
# ---------------------------------------------------------------------------

_event_context: ContextVar[str | None] = ContextVar("event_id", default=None)


def set_event_context(event_id: str | None) -> None:
    """Set the event id for the current async context."""
    _event_context.set(event_id)


def get_event_context() -> str | None:
    """Get the event id for the current async context."""
    return _event_context.get()


@contextmanager
def event_context(event_id: str) -> Iterator[None]:
    """Bind *event_id* to log records emitted inside the block."""
    token = _event_context.set(event_id)
    try:
        yield
    finally:
        _event_context.reset(token)


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_event_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``event_id`` from the ContextVar into the event dict."""
    event_dict["event_id"] = _event_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


# ---------------------------------------------------------------------------
# Credential redaction
# ---------------------------------------------------------------------------

_REDACTION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\b(bearer)\s+[A-Za-z0-9._~+/=-]+"), r"\1 [REDACTED]"),
    (
        re.compile(r"(?i)\b(access_token|refresh_token|auth_token|token)\s*=\s*([^\s,;&]+)"),
        r"\1=[REDACTED]",
    ),
    (
        re.compile(
            r"""(?i)(['"]?(?:access_token|refresh_token|auth_token|token)['"]?\s*:\s*)(['"]).*?\2"""
        ),
        r'\1"[REDACTED]"',
    ),
)


def redact_credentials(message: str) -> str:
    """Mask bearer tokens and token-like key/value pairs in *message*."""
    redacted = message
    for pattern, replacement in _REDACTION_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class CredentialRedactionFilter(logging.Filter):
    """Logging filter that rewrites each record's message with tokens masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = redact_credentials(message)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


# ---------------------------------------------------------------------------
# Noise suppression
# ---------------------------------------------------------------------------

_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
)

_LOG_FILE_NAME = "calendar_tools.log"


def _build_processors(
    time_fmt: str,
) -> list[structlog.types.Processor]:
    """Build the pre-chain processor list with the given timestamp format."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_event_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _make_file_handler(path: Path, processors: list) -> logging.FileHandler:
    """Create a JSON file handler at *path*."""
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=processors,
    )
    handler = logging.FileHandler(path)
    handler.setFormatter(formatter)
    handler.setLevel(logging.DEBUG)
    return handler


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
) -> None:
    """Configure structured logging for the process.

    Parameters
    ----------
    level:
        Root log level (e.g. "DEBUG", "INFO", "WARNING").
    fmt:
        Output format: ``"text"`` for colored console, ``"json"`` for JSON lines.
    log_root:
        Directory for the JSON log file.  When set, ``{log_root}/calendar_tools.log``
        receives every record at DEBUG and above.
    """
    if fmt == "json":
        console_processors = _build_processors(time_fmt="iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        # Console: compact HH:MM:SS, no microseconds
        console_processors = _build_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=console_processors,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    # Remove existing handlers to avoid duplicate output on reconfiguration
    root.handlers.clear()
    root.filters.clear()
    root.addHandler(console_handler)
    root.addFilter(CredentialRedactionFilter())
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.addFilter(CredentialRedactionFilter())

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = _make_file_handler(
            log_root / _LOG_FILE_NAME,
            _build_processors(time_fmt="iso"),
        )
        file_handler.addFilter(CredentialRedactionFilter())
        root.addHandler(file_handler)

    # Configure structlog itself (for direct structlog.get_logger() usage)
    structlog.configure(
        processors=[
            *console_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
