from __future__ import annotations

import logging

import pytest
from sqlalchemy import select

from crossgrid.columns import (
    ColumnConfig,
    ColumnKind,
    FilterKind,
    SqlColumnMapping,
    SqlType,
)
from crossgrid.common.exceptions import ColumnConfigError
from crossgrid.common.sql import render_sql
from crossgrid.connectors import FieldInfo
from crossgrid.query.column_mapper import ColumnMapper, MapperMode


def _row_total(row: dict) -> float:
    return row["qty"] * row["price"]


def test_column_kinds_are_derived_from_configuration() -> None:
    assert ColumnConfig(accessor_key="status").kind is ColumnKind.IDENTITY
    assert ColumnConfig(accessor_key="status", sql_column="order_status").kind is ColumnKind.OVERRIDE
    assert ColumnConfig(id="total", accessor_fn=_row_total, sql_column="total").kind is ColumnKind.COMPUTED
    assert ColumnConfig(id="actions", header="Actions").kind is ColumnKind.DISPLAY


def test_mapper_resolves_ids_to_sql_and_back() -> None:
    mapper = ColumnMapper(
        [
            ColumnConfig(accessor_key="status"),
            ColumnConfig(accessor_key="customer", sql_column="customer_name"),
            ColumnConfig(id="region", accessor_key="region", sql_column="meta.region"),
        ]
    )

    assert str(mapper.get_sql_column("status")) == "status"
    assert str(mapper.get_sql_column("customer")) == "customer_name"
    assert str(mapper.get_sql_column("region")) == "meta.region"
    assert mapper.get_sql_column("missing") is None
    assert mapper.get_column_def("customer_name").accessor_key == "customer"
    for column_id in ("status", "customer", "region"):
        assert mapper.get_column_def(mapper.get_sql_column(column_id)).resolved_id == column_id
    assert "status" in mapper
    assert len(mapper) == 3


def test_select_expressions_alias_overridden_columns() -> None:
    mapper = ColumnMapper(
        [
            ColumnConfig(accessor_key="status"),
            ColumnConfig(accessor_key="customer", sql_column="customer_name"),
            ColumnConfig(id="region", accessor_key="region", sql_column="meta.region"),
        ]
    )

    rendered = render_sql(select(*mapper.select_expressions()))

    assert rendered == 'SELECT "status", "customer_name" AS "customer", "meta"."region" AS "region"'


def test_display_columns_are_skipped() -> None:
    mapper = ColumnMapper(
        [ColumnConfig(accessor_key="status"), ColumnConfig(id="actions", header="Actions")]
    )

    assert [m.column_id for m in mapper.get_select_columns()] == ["status"]


def test_mapping_override_wins_over_column_configuration() -> None:
    mapper = ColumnMapper(
        [ColumnConfig(accessor_key="amount", filter_kind=FilterKind.EQUALS)],
        mapping={
            "amount": SqlColumnMapping(
                sql_column="amount_usd",
                sql_type=SqlType.FLOAT,
                filter_kind=FilterKind.RANGE,
            )
        },
    )

    mapped = mapper.get("amount")
    assert mapped is not None
    assert mapped.sql.raw == "amount_usd"
    assert mapped.sql_type is SqlType.FLOAT
    assert mapped.filter_kind is FilterKind.RANGE


def test_unknown_mapping_ids_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="crossgrid.query.column_mapper"):
        ColumnMapper(
            [ColumnConfig(accessor_key="status")],
            mapping={"ghost": SqlColumnMapping(sql_column="ghost")},
        )

    assert any(r.getMessage() == "column_mapper.mapping.unknown_ids" for r in caplog.records)


def test_computed_column_without_sql_column_is_rejected() -> None:
    with pytest.raises(ColumnConfigError, match="explicit sql_column"):
        ColumnMapper([ColumnConfig(id="total", accessor_fn=_row_total)])


def test_computed_column_without_id_is_rejected() -> None:
    with pytest.raises(ColumnConfigError, match="needs an 'id'"):
        ColumnMapper([ColumnConfig(accessor_fn=_row_total, sql_column="total")])


def test_duplicate_ids_and_sql_columns_are_rejected() -> None:
    with pytest.raises(ColumnConfigError, match="Duplicate column id"):
        ColumnMapper([ColumnConfig(accessor_key="status"), ColumnConfig(accessor_key="status")])

    with pytest.raises(ColumnConfigError, match="both map to SQL column"):
        ColumnMapper(
            [
                ColumnConfig(accessor_key="status"),
                ColumnConfig(accessor_key="state", sql_column="status"),
            ]
        )


def test_unsafe_sql_column_is_a_configuration_error() -> None:
    with pytest.raises(ColumnConfigError, match="Unsafe SQL identifier"):
        ColumnMapper([ColumnConfig(accessor_key="status", sql_column='status"; drop')])


def test_empty_mapper_searches_all_columns() -> None:
    mapper = ColumnMapper()

    assert mapper.search_all_columns
    assert [render_sql(e) for e in mapper.select_expressions()] == ["*"]
    requests = mapper.get_field_requests("orders")
    assert [(r.table, r.column) for r in requests] == [("orders", "*")]


def test_from_schema_builds_an_inferred_mapper() -> None:
    mapper = ColumnMapper.from_schema(
        [
            FieldInfo(table="orders", column="id", sql_type=SqlType.INTEGER),
            FieldInfo(table="orders", column="status", sql_type=SqlType.VARCHAR),
        ]
    )

    assert mapper.mode is MapperMode.INFERRED
    assert [m.column_id for m in mapper.get_select_columns()] == ["id", "status"]
    assert mapper.get("id").sql_type is SqlType.INTEGER


def test_column_config_accepts_camel_case_input() -> None:
    config = ColumnConfig.model_validate(
        {"accessorKey": "status", "sqlColumn": "order_status", "filterKind": "PARTIAL_ILIKE"}
    )

    assert config.accessor_key == "status"
    assert config.sql_column == "order_status"
    assert config.filter_kind is FilterKind.PARTIAL_ILIKE
