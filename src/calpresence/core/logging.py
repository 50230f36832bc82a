"""Structured logging for calpresence, tagged with the user being reconciled.

Modules keep logging through ``logging.getLogger(__name__)``; records are
rendered by structlog's ProcessorFormatter, either as a coloured console line
(``text``) or as one JSON object per line (``json``).

The user currently being reconciled and the OTel trace context are injected
automatically via processors that read from a ContextVar and the current span.

When ``log_root`` is set, application logs are also written as JSON lines to
``{log_root}/{app_name}.log`` and HTTP client logs to
``{log_root}/http/{app_name}.log``.
"""

from __future__ import annotations

import logging
import re
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# User context (asyncio-safe via ContextVar)
# ---------------------------------------------------------------------------

_user_context: ContextVar[str | None] = ContextVar("calpresence_user", default=None)


def set_user_context(user_id: str | None) -> object:
    """Set the user for the current async context and return a reset token."""
    return _user_context.set(user_id)


def reset_user_context(token: object) -> None:
    _user_context.reset(token)  # type: ignore[arg-type]


def get_user_context() -> str | None:
    return _user_context.get()


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_user_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``user`` key from the ContextVar into the event dict."""
    event_dict["user"] = _user_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add the active span's ids, or all-zero ids outside a span."""
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
# Noise suppression
# ---------------------------------------------------------------------------

_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
)

_DIR_HTTP = "http"


# ---------------------------------------------------------------------------
# Credential redaction
# ---------------------------------------------------------------------------

_REDACTED = "[REDACTED]"
_CREDENTIAL_PATTERNS = (
    # Chat platform bot/user tokens (xoxb-..., xoxp-...).
    re.compile(r"\bxox[a-z]-[A-Za-z0-9-]+"),
    re.compile(r"(?<=Bearer )[A-Za-z0-9._~+/=-]+"),
    re.compile(r"(?<=access_token=)[^&\s]+"),
)


class CredentialRedactionFilter(logging.Filter):
    """Scrub chat and calendar credentials from rendered log messages.

    The record is rendered once; when anything is redacted the rendered text
    replaces ``msg`` and ``args`` is cleared. Records are never dropped.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern in _CREDENTIAL_PATTERNS:
            redacted = pattern.sub(_REDACTED, redacted)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


def _build_processors(
    time_fmt: str,
) -> list[structlog.types.Processor]:
    """Processors applied to every record before rendering."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_user_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _make_file_handler(path: Path, processors: list) -> logging.FileHandler:
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=processors,
    )
    handler = logging.FileHandler(path)
    handler.setFormatter(formatter)
    handler.addFilter(CredentialRedactionFilter())
    handler.setLevel(logging.DEBUG)
    return handler


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    app_name: str = "calpresence",
) -> None:
    """Install console (and optional file) handlers on the root logger.

    Parameters
    ----------
    level:
        Root level name; unknown names fall back to INFO.
    fmt:
        Output format: ``"text"`` for colored console, ``"json"`` for JSON lines.
    log_root:
        Directory for JSON log files. Created if missing.
    app_name:
        Used for log file naming.
    """
    if fmt == "json":
        console_processors = _build_processors(time_fmt="iso")
        renderer = structlog.processors.JSONRenderer()
    else:
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
    console_handler.addFilter(CredentialRedactionFilter())

    root = logging.getLogger()
    # Reconfiguring replaces handlers instead of stacking them.
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        file_processors = _build_processors(time_fmt="iso")
        (log_root / _DIR_HTTP).mkdir(parents=True, exist_ok=True)

        root.addHandler(_make_file_handler(log_root / f"{app_name}.log", file_processors))

        http_handler = _make_file_handler(log_root / _DIR_HTTP / f"{app_name}.log", file_processors)
        for name in _NOISE_LOGGERS:
            logging.getLogger(name).addHandler(http_handler)

    # structlog.get_logger() shares the console pre-chain.
    structlog.configure(
        processors=[
            *console_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
