"""Validated SQL identifiers.

Identifiers are always emitted quoted, so the rules here only reject text
that could escape the quotes or start a second statement. Everything else
(leading digits, spaces, colons, unicode) is a legal quoted identifier.
Dots separate struct path segments.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from crossgrid.common.exceptions import UnsafeIdentifierError

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

# (fragment, reason) pairs checked in order.
_FORBIDDEN: tuple[tuple[str, str], ...] = (
    ('"', "double quotes are not allowed"),
    (";", "statement separators are not allowed"),
    ("--", "line comments are not allowed"),
    ("/*", "block comments are not allowed"),
    ("*/", "block comments are not allowed"),
)


@dataclass(frozen=True)
class SqlIdentifier:
    raw: str
    parts: tuple[str, ...] = field(init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        _validate(self.raw)
        object.__setattr__(self, "parts", tuple(self.raw.split(".")))

    @classmethod
    def from_raw(cls, raw: object) -> SqlIdentifier:
        if isinstance(raw, SqlIdentifier):
            return raw
        return cls(raw)  # type: ignore[arg-type]

    @property
    def is_nested(self) -> bool:
        return len(self.parts) > 1

    @property
    def leaf(self) -> str:
        return self.parts[-1]

    def __str__(self) -> str:
        return self.raw


def is_safe_identifier(raw: object) -> bool:
    try:
        _validate(raw)
    except UnsafeIdentifierError:
        return False
    return True


def _validate(raw: object) -> None:
    if not isinstance(raw, str):
        raise UnsafeIdentifierError(raw, "identifier must be a string")
    if not raw.strip():
        raise UnsafeIdentifierError(raw, "identifier must not be empty")
    for fragment, reason in _FORBIDDEN:
        if fragment in raw:
            raise UnsafeIdentifierError(raw, reason)
    if _CONTROL_CHARS.search(raw):
        raise UnsafeIdentifierError(raw, "control characters are not allowed")
    if any(not segment.strip() for segment in raw.split(".")):
        raise UnsafeIdentifierError(raw, "struct path segments must not be empty")


__all__ = ["SqlIdentifier", "is_safe_identifier"]
