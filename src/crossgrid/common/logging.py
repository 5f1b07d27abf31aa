"""Logging configuration and helpers for crossgrid.

This module configures console-style logging for the process and exposes
helpers for:

* binding the client currently receiving query results, and
* building consistent `extra` payloads for structured logs.

Everything uses the standard :mod:`logging` library. The only customization is
the formatter, which renders one human-readable line per log record, including
timestamp, level, logger name, client name, and any `extra` fields as
``key=value`` pairs.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from crossgrid.settings import Settings

# ---------------------------------------------------------------------------
# Context and constants
# ---------------------------------------------------------------------------

# Name of the client whose query is being delivered, set by the coordinator.
_CLIENT_NAME: ContextVar[str | None] = ContextVar(
    "crossgrid_client_name",
    default=None,
)

# Attributes that are already handled by logging and should not be copied into
# the extra key=value list.
_STANDARD_ATTRS: set[str] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "asctime",
    "client_name",
    "taskName",
    "color_message",
}

_CONFIGURED_FLAG = "_crossgrid_configured"

# SQL strings can get long; keep console lines readable.
_MAX_EXTRA_LEN = 2000


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class ConsoleLogFormatter(logging.Formatter):
    """Render log records as single-line console output.

    Example line:

        2025-11-27T02:57:00.302Z DEBUG crossgrid.table [client=orders] table.query.built
        page_index=0 page_size=20 filters=1
    """

    _time_format = "%Y-%m-%dT%H:%M:%S"

    def __init__(self) -> None:
        fmt = "%(asctime)s %(levelname)-5s %(name)s [client=%(client_name)s] %(message)s"
        super().__init__(fmt=fmt, datefmt=self._time_format)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.fromtimestamp(record.created, tz=UTC)
        pattern = datefmt or self._time_format
        base = dt.strftime(pattern)
        return f"{base}.{int(record.msecs):03d}Z"

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - std signature
        name = getattr(record, "client_name", None) or _CLIENT_NAME.get() or "-"
        record.client_name = name

        base = super().format(record)

        extras: list[str] = []
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            extras.append(f"{key}={_format_extra_value(value)}")

        if extras:
            return f"{base} " + " ".join(extras)
        return base


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def setup_logging(settings: Settings) -> None:
    """Configure root logging for a process embedding crossgrid.

    Installs a single console-style StreamHandler and sets the root log level
    from ``settings.logging_level`` (env: ``CROSSGRID_LOGGING_LEVEL``).

    SQLAlchemy, aiosqlite and uvicorn loggers are wired to propagate into the
    root logger so that all logs share one format.
    """
    root_logger = logging.getLogger()

    level = getattr(logging, settings.logging_level.upper(), logging.INFO)

    if getattr(root_logger, _CONFIGURED_FLAG, False):
        root_logger.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setFormatter(ConsoleLogFormatter())

    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in (
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
        "sqlalchemy",
        "sqlalchemy.engine",
        "aiosqlite",
    ):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True

    setattr(root_logger, _CONFIGURED_FLAG, True)


# ---------------------------------------------------------------------------
# Context helpers
# ---------------------------------------------------------------------------


def bind_client_context(client_name: str | None) -> None:
    """Bind the name of the client whose results are being handled."""
    _CLIENT_NAME.set(client_name)


def clear_client_context() -> None:
    _CLIENT_NAME.set(None)


def log_context(
    *,
    client: str | None = None,
    column_id: str | None = None,
    selection: str | None = None,
    facet_key: str | None = None,
    sql: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a consistent `extra` payload for structured logs.

    Example:
        logger.debug(
            "table.query.built",
            extra=log_context(client=self.name, page_index=0, page_size=20),
        )
    """
    ctx: dict[str, Any] = {}

    if client is not None:
        ctx["client"] = client
    if column_id is not None:
        ctx["column_id"] = column_id
    if selection is not None:
        ctx["selection"] = selection
    if facet_key is not None:
        ctx["facet_key"] = facet_key
    if sql is not None:
        ctx["sql"] = sql

    for key, value in extra.items():
        ctx[key] = value

    return ctx


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _format_extra_value(value: Any) -> str:
    """Format an `extra` value for console output."""
    if isinstance(value, (int, float, bool)):
        return str(value)
    if value is None:
        return "null"
    text = " ".join(str(value).split())
    if len(text) > _MAX_EXTRA_LEN:
        return text[:_MAX_EXTRA_LEN] + "..."
    return text


__all__ = [
    "ConsoleLogFormatter",
    "bind_client_context",
    "clear_client_context",
    "log_context",
    "setup_logging",
]
