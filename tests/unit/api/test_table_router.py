"""Tests for the grid HTTP endpoints."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from crossgrid.api import create_table_router
from crossgrid.columns import ColumnConfig, FacetKind, FilterKind
from crossgrid.coordinator import Coordinator
from crossgrid.selection import Param
from crossgrid.settings import reload_settings
from crossgrid.table import DataTable, DataTableOptions

COLUMNS = [
    ColumnConfig(accessor_key="id"),
    ColumnConfig(accessor_key="status", filter_kind=FilterKind.EQUALS, facet=FacetKind.UNIQUE),
    ColumnConfig(accessor_key="region", filter_kind=FilterKind.EQUALS),
    ColumnConfig(accessor_key="amount", filter_kind=FilterKind.RANGE),
]


def _app(table: DataTable) -> FastAPI:
    app = FastAPI()
    app.include_router(create_table_router(lambda: table), prefix="/api/orders")
    return app


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


@pytest_asyncio.fixture()
async def orders_table(coordinator: Coordinator) -> DataTable:
    table = DataTable(
        DataTableOptions(table="orders", columns=COLUMNS, total_rows=True),
        coordinator=coordinator,
    )
    await coordinator.drain()
    return table


@pytest_asyncio.fixture()
async def async_client(orders_table: DataTable) -> AsyncIterator[AsyncClient]:
    async with _client(_app(orders_table)) as client:
        yield client


@pytest.mark.asyncio
async def test_rows_returns_a_camel_cased_page(async_client: AsyncClient) -> None:
    response = await async_client.get(
        "/api/orders/rows",
        params={"pageSize": 2, "sort": json.dumps([{"id": "id", "desc": True}])},
    )

    assert response.status_code == 200
    payload = response.json()
    assert [row["id"] for row in payload["rows"]] == [5, 4]
    assert payload["pageIndex"] == 0
    assert payload["pageSize"] == 2
    assert payload["totalRows"] == 5
    assert payload["pageCount"] == 3


@pytest.mark.asyncio
async def test_rows_applies_filters(async_client: AsyncClient) -> None:
    response = await async_client.get(
        "/api/orders/rows",
        params={
            "page": 1,
            "pageSize": 2,
            "sort": json.dumps([{"id": "id"}]),
            "filters": json.dumps({"status": "active"}),
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert [row["id"] for row in payload["rows"]] == [5]
    assert payload["totalRows"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("params", "detail"),
    [
        ({"sort": "[{"}, "sort must be valid JSON"),
        ({"sort": json.dumps([{"id": "id", "desc": "yes"}])}, "Sort #1 'desc' must be a boolean"),
        ({"sort": json.dumps([{"desc": True}])}, "Sort #1 must include a non-empty 'id'"),
        ({"filters": "not json"}, "filters must be valid JSON"),
        ({"filters": json.dumps("status")}, "filters must be a JSON array or object"),
        ({"pageSize": 5000}, "pageSize must be at most 1000"),
    ],
)
async def test_rows_rejects_malformed_params(
    async_client: AsyncClient, params: dict[str, object], detail: str
) -> None:
    response = await async_client.get("/api/orders/rows", params=params)

    assert response.status_code == 422
    assert response.json()["detail"] == detail


@pytest.mark.asyncio
async def test_rows_limits_sort_fields(
    async_client: AsyncClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CROSSGRID_MAX_SORT_FIELDS", "1")
    reload_settings()

    response = await async_client.get(
        "/api/orders/rows",
        params={"sort": json.dumps([{"id": "id"}, {"id": "status"}])},
    )

    assert response.status_code == 422
    assert response.json()["detail"] == "Too many sort fields (max 1)."


@pytest.mark.asyncio
async def test_facets_return_unique_values(async_client: AsyncClient) -> None:
    response = await async_client.get("/api/orders/facets", params={"columnId": "region"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["key"] == "region:unique"
    assert payload["columnId"] == "region"
    assert payload["values"] == ["east", "west", "north"]
    assert payload["hasMore"] is False


@pytest.mark.asyncio
async def test_facets_return_min_and_max(async_client: AsyncClient) -> None:
    response = await async_client.get(
        "/api/orders/facets", params={"columnId": "amount", "kind": "minmax"}
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["min"] == 10.0
    assert payload["max"] == 50.0


@pytest.mark.asyncio
async def test_facets_reject_unknown_columns_and_total_count(async_client: AsyncClient) -> None:
    missing = await async_client.get("/api/orders/facets", params={"columnId": "ghost"})
    total = await async_client.get(
        "/api/orders/facets", params={"columnId": "status", "kind": "total_count"}
    )

    assert missing.status_code == 404
    assert total.status_code == 422


@pytest.mark.asyncio
async def test_disconnected_table_is_unavailable() -> None:
    table = DataTable(DataTableOptions(table="orders", columns=COLUMNS))

    async with _client(_app(table)) as client:
        response = await client.get("/api/orders/rows")

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_failed_query_maps_to_bad_gateway(coordinator: Coordinator) -> None:
    source = Param("orders")
    table = DataTable(DataTableOptions(table=source, columns=COLUMNS), coordinator=coordinator)
    await coordinator.drain()
    source.update("missing_table")
    await coordinator.drain()

    async with _client(_app(table)) as client:
        response = await client.get("/api/orders/rows", params={"pageSize": 3})

    assert response.status_code == 502
    assert response.json()["detail"] == "Query failed."


@pytest.mark.asyncio
async def test_concurrent_requests_get_their_own_pages(
    async_client: AsyncClient, orders_table: DataTable
) -> None:
    closed, pending = await asyncio.gather(
        async_client.get("/api/orders/rows", params={"filters": json.dumps({"status": "closed"})}),
        async_client.get("/api/orders/rows", params={"filters": json.dumps({"status": "pending"})}),
    )

    assert [row["status"] for row in closed.json()["rows"]] == ["closed"]
    assert [row["status"] for row in pending.json()["rows"]] == ["pending"]
    assert closed.json()["totalRows"] == 1
    assert pending.json()["totalRows"] == 1
    assert orders_table.state.column_filters == ()
    assert len(orders_table.rows) == 5


@pytest.mark.asyncio
async def test_requests_recover_once_the_source_exists(
    coordinator: Coordinator, engine: AsyncEngine
) -> None:
    table = DataTable(
        DataTableOptions(table="late_orders", columns=COLUMNS, total_rows=True),
        coordinator=coordinator,
    )
    await coordinator.drain()

    async with _client(_app(table)) as client:
        failed_rows = await client.get("/api/orders/rows")
        failed_facet = await client.get("/api/orders/facets", params={"columnId": "status"})

        async with engine.begin() as conn:
            await conn.execute(text("CREATE TABLE late_orders AS SELECT * FROM orders"))

        rows = await client.get("/api/orders/rows")
        facet = await client.get("/api/orders/facets", params={"columnId": "status"})

    assert failed_rows.status_code == 502
    assert failed_facet.status_code == 502
    assert rows.status_code == 200
    assert rows.json()["totalRows"] == 5
    assert facet.status_code == 200
    assert facet.json()["values"] == ["active", "closed", "pending"]
    assert table.sidecars.get("status:unique").last_error is None
