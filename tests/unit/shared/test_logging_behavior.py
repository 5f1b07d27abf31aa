"""Smoke tests for logging helpers."""

from __future__ import annotations

import logging

from crossgrid.common.logging import (
    ConsoleLogFormatter,
    bind_client_context,
    clear_client_context,
    log_context,
    setup_logging,
)
from crossgrid.settings import Settings


class _CaptureHandler(logging.Handler):
    """Handler that stores log records and formatted strings."""

    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []
        self.formatted: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        msg = self.format(record)
        self.records.append(record)
        self.formatted.append(msg)


def _attach() -> _CaptureHandler:
    setup_logging(Settings(_env_file=None, logging_level="DEBUG"))
    handler = _CaptureHandler()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(ConsoleLogFormatter())
    logging.getLogger().addHandler(handler)
    return handler


def test_log_context_fields_and_client_binding():
    handler = _attach()
    try:
        bind_client_context("orders-grid")
        logger = logging.getLogger("test.logging")
        logger.debug(
            "table.query.built",
            extra=log_context(column_id="status", sql="SELECT 1", page_index=0, highlight=False),
        )

        record = handler.records[-1]
        assert getattr(record, "column_id", None) == "status"
        assert getattr(record, "page_index", None) == 0
        line = handler.formatted[-1]
        assert "[client=orders-grid] table.query.built" in line
        assert "sql=SELECT 1" in line
        assert "highlight=False" in line
    finally:
        clear_client_context()
        logging.getLogger().removeHandler(handler)


def test_log_context_skips_unset_fields():
    ctx = log_context(client="grid", facet_key=None, selection=None, rows=3)

    assert ctx == {"client": "grid", "rows": 3}


def test_formatter_collapses_and_truncates_long_values():
    handler = _attach()
    try:
        clear_client_context()
        logging.getLogger("test.logging").info(
            "coordinator.query.failed",
            extra=log_context(sql="SELECT *\n  FROM orders " + "x" * 3000, error=None),
        )

        line = handler.formatted[-1]
        assert "[client=-]" in line
        assert "sql=SELECT * FROM orders " in line
        assert "x... error=null" in line
        assert "\n" not in line
    finally:
        logging.getLogger().removeHandler(handler)


def test_setup_logging_is_idempotent():
    setup_logging(Settings(_env_file=None, logging_level="DEBUG"))
    handlers = list(logging.getLogger().handlers)

    setup_logging(Settings(_env_file=None, logging_level="WARNING"))

    root = logging.getLogger()
    assert root.handlers == handlers
    assert root.level == logging.WARNING
