"""Engine connectors.

The rest of the package only talks to a :class:`Connector`. The bundled
:class:`SqlAlchemyConnector` runs statements on a SQLAlchemy ``AsyncEngine``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql import Executable

from crossgrid.columns import SqlType
from crossgrid.common.exceptions import QueryExecutionError
from crossgrid.common.logging import log_context
from crossgrid.common.sql import render_sql

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldInfoRequest:
    table: str
    column: str
    stats: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldInfo:
    table: str
    column: str
    sql_type: SqlType | None = None
    nullable: bool = True


@dataclass
class QueryResult:
    """Rows keyed by SELECT alias, plus the column order."""

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index: int) -> dict[str, Any]:
        return self.rows[index]

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self.rows)

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        row = self.first()
        if row is None or not self.columns:
            return None
        return row.get(self.columns[0])


@runtime_checkable
class Connector(Protocol):
    async def query(self, statement: Executable) -> QueryResult: ...

    async def describe(self, requests: Sequence[FieldInfoRequest]) -> list[FieldInfo]: ...


def _sql_type_for(column_type: Any) -> SqlType:
    if isinstance(column_type, Boolean):
        return SqlType.BOOLEAN
    if isinstance(column_type, Integer):
        return SqlType.INTEGER
    if isinstance(column_type, (Float, Numeric)):
        return SqlType.FLOAT
    if isinstance(column_type, DateTime):
        return SqlType.TIMESTAMP
    if isinstance(column_type, Date):
        return SqlType.DATE
    return SqlType.VARCHAR


class SqlAlchemyConnector:
    """Run statements against an ``AsyncEngine``."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def query(self, statement: Executable) -> QueryResult:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(statement)
                columns = list(result.keys())
                rows = [dict(row._mapping) for row in result]
        except SQLAlchemyError as exc:
            sql = render_sql(statement, self._engine.dialect.name)
            logger.warning(
                "connector.query.failed",
                extra=log_context(sql=sql, error=str(exc)),
            )
            raise QueryExecutionError(str(exc), sql=sql) from exc
        return QueryResult(columns=columns, rows=rows)

    async def describe(self, requests: Sequence[FieldInfoRequest]) -> list[FieldInfo]:
        by_table: dict[str, list[FieldInfoRequest]] = {}
        for request in requests:
            by_table.setdefault(request.table, []).append(request)

        fields: list[FieldInfo] = []
        async with self._engine.connect() as conn:
            for table_name, table_requests in by_table.items():
                schema, _, name = table_name.rpartition(".")

                def _columns(sync_conn: Any, name: str = name, schema: str = schema) -> list[dict[str, Any]]:
                    return inspect(sync_conn).get_columns(name, schema=schema or None)

                described = {col["name"]: col for col in await conn.run_sync(_columns)}
                wanted = [request.column for request in table_requests]
                names = list(described) if "*" in wanted else wanted
                for column_name in names:
                    col = described.get(column_name)
                    if col is None:
                        fields.append(FieldInfo(table=table_name, column=column_name))
                        continue
                    fields.append(
                        FieldInfo(
                            table=table_name,
                            column=column_name,
                            sql_type=_sql_type_for(col["type"]),
                            nullable=bool(col.get("nullable", True)),
                        )
                    )
        return fields


__all__ = [
    "Connector",
    "FieldInfo",
    "FieldInfoRequest",
    "QueryResult",
    "SqlAlchemyConnector",
]
