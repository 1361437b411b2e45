"""Structured logging for leadsync.

Every component logs through ``get_logger(<component>)`` with dotted event
names (``stream.opened``, ``poller.tick_failed``). ``configure_logging`` is
called once by the CLI; library users may call it themselves or route the
stdlib ``leadsync`` records wherever they like.

The auth token is the one secret this client handles. It travels in the
``Authorization`` header of API calls and in the ``token`` query parameter
of stream URLs, so the sanitizing processor masks both shapes.
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

REDACTED = "[REDACTED]"

# Key fragments whose values are never logged
SENSITIVE_KEYS = ("token", "authorization", "password", "secret")

_TOKEN_QUERY = re.compile(r"([?&]token=)[^&\s]+")


def _redact(key: str, value: Any) -> Any:
    if any(fragment in key.lower() for fragment in SENSITIVE_KEYS):
        return REDACTED
    if isinstance(value, str) and "token=" in value:
        return _TOKEN_QUERY.sub(rf"\g<1>{REDACTED}", value)
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask credentials in values and one level of nested dicts (headers)."""
    return {
        key: (
            {k: _redact(k, v) for k, v in value.items()}
            if isinstance(value, dict)
            else _redact(key, value)
        )
        for key, value in event_dict.items()
    }


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


class LeadsyncLogger:
    """Component logger; the structlog logger is looked up on every call.

    Module-level loggers are created at import time, before the CLI has
    configured structlog, so nothing is cached here.
    """

    def __init__(self, component: str, **context: Any) -> None:
        self._context: dict[str, Any] = {"component": component, **context}

    def bind(self, **context: Any) -> LeadsyncLogger:
        bound = LeadsyncLogger.__new__(LeadsyncLogger)
        bound._context = {**self._context, **context}
        return bound

    def _emit(self, method: str, event: str, kw: dict[str, Any]) -> None:
        logger = structlog.get_logger("leadsync").bind(**self._context)
        getattr(logger, method)(event, **kw)

    def debug(self, event: str, **kw: Any) -> None:
        self._emit("debug", event, kw)

    def info(self, event: str, **kw: Any) -> None:
        self._emit("info", event, kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._emit("warning", event, kw)

    def error(self, event: str, **kw: Any) -> None:
        self._emit("error", event, kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._emit("exception", event, kw)


def _get_processors(
    renderer: Processor,
    include_timestamps: bool,
) -> list[Processor]:
    """Build the structlog processor chain ending in ``renderer``."""
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 10,
    backup_count: int = 3,
    include_timestamps: bool = True,
) -> None:
    """Configure leadsync structured logging.

    Call once at application startup before any logging occurs.

    Args:
        level: Minimum log level to capture.
        format: ``"console"`` for colored human-readable output on stderr,
            ``"json"`` for one JSON object per line.
        file_path: Optional log file. When given, records are written to a
            rotating file instead of the terminal.
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to include ISO8601 timestamps.
    """
    log_level = getattr(logging, level)

    handler: logging.Handler
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
    elif format == "json":
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # httpx logs every request at INFO, including stream URLs with tokens
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    if format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=file_path is None)

    # cache_logger_on_first_use=False so module-level loggers pick up
    # configuration applied after import
    structlog.configure(
        processors=_get_processors(renderer, include_timestamps),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> LeadsyncLogger:
    """Get a logger bound to ``component``.

    Example:
        logger = get_logger("poller")
        logger.info("poller.tick", degraded=2)
    """
    return LeadsyncLogger(component, **initial_context)


__all__ = [
    "LeadsyncLogger",
    "REDACTED",
    "configure_logging",
    "get_logger",
]
