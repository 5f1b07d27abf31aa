"""Exception types raised by crossgrid."""

from __future__ import annotations


class CrossgridError(Exception):
    """Base class for crossgrid errors."""


class UnsafeIdentifierError(CrossgridError, ValueError):
    """Raised when a string cannot be used as a SQL identifier."""

    def __init__(self, raw: object, reason: str) -> None:
        self.raw = raw
        self.reason = reason
        super().__init__(f"Unsafe SQL identifier {raw!r}: {reason}")


class ColumnConfigError(CrossgridError, ValueError):
    """Raised when column configuration cannot be mapped to SQL."""


class ClientNotConnectedError(CrossgridError):
    """Raised when a client needs a coordinator it does not have."""


class QueryExecutionError(CrossgridError):
    """Raised when the engine rejects a statement.

    ``sql`` carries the rendered statement so callers can log it.
    """

    def __init__(self, message: str, *, sql: str | None = None) -> None:
        self.sql = sql
        super().__init__(message)


__all__ = [
    "ClientNotConnectedError",
    "ColumnConfigError",
    "CrossgridError",
    "QueryExecutionError",
    "UnsafeIdentifierError",
]
