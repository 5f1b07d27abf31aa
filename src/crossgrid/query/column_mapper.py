"""Bidirectional mapping between grid column ids and SQL columns."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import literal_column
from sqlalchemy.sql import quoted_name
from sqlalchemy.sql.elements import ColumnElement

from crossgrid.columns import (
    ColumnConfig,
    ColumnKind,
    ColumnType,
    FacetKind,
    FacetSortMode,
    FilterKind,
    FilterOptions,
    SqlColumnMapping,
    SqlType,
)
from crossgrid.common.exceptions import ColumnConfigError, UnsafeIdentifierError
from crossgrid.common.logging import log_context
from crossgrid.common.sql import struct_access
from crossgrid.connectors import FieldInfo, FieldInfoRequest
from crossgrid.domain.identifier import SqlIdentifier

logger = logging.getLogger(__name__)


class MapperMode(str, Enum):
    CONFIGURED = "configured"
    INFERRED = "inferred"


@dataclass(frozen=True)
class MappedColumn:
    column_id: str
    sql: SqlIdentifier
    alias: str
    config: ColumnConfig
    sql_type: SqlType | None = None
    filter_kind: FilterKind | None = None
    filter_options: FilterOptions | None = None

    @property
    def facet(self) -> FacetKind | None:
        return self.config.facet

    @property
    def facet_sort_mode(self) -> FacetSortMode:
        return self.config.facet_sort_mode

    @property
    def column_type(self) -> ColumnType:
        return self.config.column_type

    @property
    def expression(self) -> ColumnElement[Any]:
        return struct_access(self.sql)

    def select_expression(self) -> ColumnElement[Any]:
        if self.alias == self.sql.raw:
            return self.expression
        return self.expression.label(quoted_name(self.alias, True))


class ColumnMapper:
    """Map column ids to SQL identifiers and back.

    The mapper is immutable: when the column set changes, build a new one.
    """

    def __init__(
        self,
        columns: Sequence[ColumnConfig] = (),
        mapping: Mapping[str, SqlColumnMapping] | None = None,
        *,
        mode: MapperMode = MapperMode.CONFIGURED,
    ) -> None:
        self.mode = mode
        self._columns = tuple(columns)
        self._mapping = dict(mapping or {})
        self._by_id: dict[str, MappedColumn] = {}
        self._by_sql: dict[str, MappedColumn] = {}
        for index, config in enumerate(self._columns):
            mapped = self._map_column(index, config)
            if mapped is None:
                continue
            if mapped.column_id in self._by_id:
                raise ColumnConfigError(f"Duplicate column id '{mapped.column_id}'")
            if mapped.sql.raw in self._by_sql:
                other = self._by_sql[mapped.sql.raw].column_id
                raise ColumnConfigError(
                    f"Columns '{other}' and '{mapped.column_id}' both map to SQL column "
                    f"'{mapped.sql.raw}'"
                )
            self._by_id[mapped.column_id] = mapped
            self._by_sql[mapped.sql.raw] = mapped

        unknown = set(self._mapping) - set(self._by_id)
        if unknown:
            logger.warning(
                "column_mapper.mapping.unknown_ids",
                extra=log_context(column_ids=",".join(sorted(unknown))),
            )

    @classmethod
    def from_schema(cls, fields: Iterable[FieldInfo]) -> ColumnMapper:
        columns = [
            ColumnConfig(accessor_key=field.column, sql_type=field.sql_type)
            for field in fields
        ]
        return cls(columns, mode=MapperMode.INFERRED)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def columns(self) -> tuple[ColumnConfig, ...]:
        return self._columns

    @property
    def search_all_columns(self) -> bool:
        return not self._by_id

    def get_sql_column(self, column_id: str) -> SqlIdentifier | None:
        mapped = self._by_id.get(column_id)
        return mapped.sql if mapped else None

    def get_column_def(self, sql_name: str | SqlIdentifier) -> ColumnConfig | None:
        mapped = self._by_sql.get(str(sql_name))
        return mapped.config if mapped else None

    def get(self, column_id: str) -> MappedColumn | None:
        return self._by_id.get(column_id)

    def get_select_columns(self) -> list[MappedColumn]:
        return list(self._by_id.values())

    def select_expressions(self) -> list[ColumnElement[Any]]:
        if self.search_all_columns:
            return [literal_column("*")]
        return [mapped.select_expression() for mapped in self._by_id.values()]

    def get_field_requests(self, table: str) -> list[FieldInfoRequest]:
        if self.search_all_columns:
            return [FieldInfoRequest(table=table, column="*")]
        return [
            FieldInfoRequest(table=table, column=mapped.sql.raw)
            for mapped in self._by_id.values()
        ]

    def __contains__(self, column_id: object) -> bool:
        return column_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _map_column(self, index: int, config: ColumnConfig) -> MappedColumn | None:
        kind = config.kind
        if kind is ColumnKind.DISPLAY:
            logger.debug(
                "column_mapper.column.skipped",
                extra=log_context(column_id=config.id, index=index),
            )
            return None

        column_id = config.resolved_id
        if not column_id:
            raise ColumnConfigError(
                f"Column #{index} ({config.label}) needs an 'id' when it uses an accessor function"
            )

        override = self._mapping.get(column_id)
        if kind is ColumnKind.COMPUTED:
            raw_sql = override.sql_column if override else config.sql_column
            if not raw_sql:
                raise ColumnConfigError(
                    f"Column #{index} ({config.label}) uses an accessor function and needs an "
                    "explicit sql_column"
                )
        else:
            raw_sql = (override.sql_column if override else None) or config.sql_column or config.accessor_key

        try:
            sql = SqlIdentifier.from_raw(raw_sql)
        except UnsafeIdentifierError as exc:
            raise ColumnConfigError(f"Column #{index} ({config.label}): {exc}") from exc

        if kind is ColumnKind.OVERRIDE or (override and override.sql_column != config.accessor_key):
            logger.debug(
                "column_mapper.column.override",
                extra=log_context(column_id=column_id, sql_column=sql.raw),
            )

        return MappedColumn(
            column_id=column_id,
            sql=sql,
            alias=column_id,
            config=config,
            sql_type=(override.sql_type if override and override.sql_type else config.sql_type),
            filter_kind=(
                override.filter_kind if override and override.filter_kind else config.filter_kind
            ),
            filter_options=(
                override.filter_options
                if override and override.filter_options
                else config.filter_options
            ),
        )


__all__ = ["ColumnMapper", "MappedColumn", "MapperMode"]
