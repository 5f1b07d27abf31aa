"""SQLAlchemy helpers shared by the query builder, filters and facets."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy import column, literal, literal_column, table
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import Dialect
from sqlalchemy.engine.default import StrCompileDialect
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import quoted_name
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.expression import ClauseElement, TableClause
from sqlalchemy.sql.functions import GenericFunction
from sqlalchemy.types import Boolean, NullType

from crossgrid.domain.identifier import SqlIdentifier
from crossgrid.settings import get_settings

LIKE_ESCAPE = "\\"

_DIALECTS: dict[str, type[Dialect]] = {
    "postgresql": postgresql.dialect,
    "sqlite": sqlite.dialect,
    "mysql": mysql.dialect,
}


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def quote_ident(name: str) -> str:
    return '"' + name + '"'


def struct_access(identifier: SqlIdentifier | str) -> ColumnElement[Any]:
    """Return a column expression for a plain or dotted identifier.

    ``status`` renders as ``"status"``; ``meta.region`` renders as
    ``"meta"."region"``. Every caller (SELECT, WHERE, ORDER BY, facets) goes
    through here so the three clauses always agree.
    """
    ident = SqlIdentifier.from_raw(identifier)
    if not ident.is_nested:
        return column(quoted_name(ident.raw, True))
    return literal_column(".".join(quote_ident(part) for part in ident.parts))


def source_table(name: str) -> TableClause:
    """Build a quoted table clause, honouring a ``schema.table`` prefix."""
    ident = SqlIdentifier.from_raw(name)
    if len(ident.parts) == 1:
        return table(quoted_name(ident.raw, True))
    schema = ".".join(ident.parts[:-1])
    return table(quoted_name(ident.leaf, True), schema=quoted_name(schema, True))


# ---------------------------------------------------------------------------
# LIKE patterns
# ---------------------------------------------------------------------------


def escape_like(token: str) -> str:
    return (
        token.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def contains_pattern(token: str) -> str:
    return f"%{escape_like(token)}%"


# ---------------------------------------------------------------------------
# List literals
# ---------------------------------------------------------------------------


class ListLiteral(ColumnElement[Any]):
    """A bracketed list literal such as ``['a', 'b']``."""

    inherit_cache = False
    type = NullType()

    def __init__(self, values: Iterable[Any]) -> None:
        self.values = tuple(values)


@compiles(ListLiteral)
def _compile_list_literal(element: ListLiteral, compiler: Any, **kw: Any) -> str:
    rendered = [compiler.process(literal(value), **kw) for value in element.values]
    return "[" + ", ".join(rendered) + "]"


class list_has_any(GenericFunction[bool]):  # noqa: N801 - mirrors the SQL function name
    """``list_has_any(column, [values])`` for list-typed columns."""

    name = "list_has_any"
    type = Boolean()
    inherit_cache = True

    def __init__(self, expr: ColumnElement[Any], values: Sequence[Any], **kw: Any) -> None:
        super().__init__(expr, ListLiteral(values), **kw)


class unnest(GenericFunction[Any]):  # noqa: N801
    name = "unnest"
    inherit_cache = True


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def to_range_value(value: Any) -> int | float | date | datetime | None:
    """Coerce one range bound.

    Returns ``None`` for anything that cannot serve as a bound so that one bad
    side never poisons the other.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    if isinstance(value, (datetime, date)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        number = _parse_number(text)
        if number is not None:
            return number
        return parse_temporal(text)
    return None


def parse_temporal(text: str) -> date | datetime | None:
    candidate = text.strip()
    if not candidate:
        return None
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    if len(candidate) == 10:
        try:
            return date.fromisoformat(candidate)
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def _parse_number(text: str) -> int | float | None:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def get_dialect(name: str | None = None) -> Dialect:
    """Dialect used for rendering only.

    The ``named`` paramstyle keeps literal ``%`` signs single, so rendered
    SQL can be pasted into a console as is.
    """
    if name is None:
        name = get_settings().sql_dialect
    factory = _DIALECTS.get(name.lower())
    if factory is None:
        return StrCompileDialect()
    return factory(paramstyle="named")


def render_sql(statement: ClauseElement, dialect: str | Dialect | None = None) -> str:
    """Render a statement with inlined literals, for logs and debugging."""
    resolved = dialect if isinstance(dialect, Dialect) else get_dialect(dialect)
    compiled = statement.compile(
        dialect=resolved,
        compile_kwargs={"literal_binds": True},
    )
    return " ".join(str(compiled).split())


__all__ = [
    "LIKE_ESCAPE",
    "ListLiteral",
    "contains_pattern",
    "escape_like",
    "get_dialect",
    "list_has_any",
    "parse_temporal",
    "quote_ident",
    "render_sql",
    "source_table",
    "struct_access",
    "to_range_value",
    "unnest",
]
