"""Expose one :class:`~crossgrid.table.DataTable` over HTTP."""

import logging
from collections.abc import Callable
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from crossgrid.api.params import table_state_params
from crossgrid.api.schemas import FacetOut, TablePage
from crossgrid.columns import FacetKind
from crossgrid.common.exceptions import QueryExecutionError
from crossgrid.common.logging import log_context
from crossgrid.coordinator import Coordinator
from crossgrid.facets.manager import facet_key
from crossgrid.facets.strategies import FacetValues
from crossgrid.state import TableState
from crossgrid.table import DataTable

logger = logging.getLogger(__name__)


def _require_connected(table: DataTable) -> Coordinator:
    if table.coordinator is None:
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Table is not connected to a coordinator.",
        )
    return table.coordinator


def _facet_out(key: str, column_id: str, kind: FacetKind, value: Any) -> FacetOut:
    if isinstance(value, FacetValues):
        return FacetOut(key=key, column_id=column_id, kind=kind.value, values=value.values, has_more=value.has_more)
    if kind is FacetKind.MINMAX:
        low, high = value if value is not None else (None, None)
        return FacetOut(key=key, column_id=column_id, kind=kind.value, min=low, max=high)
    if kind is FacetKind.TOTAL_COUNT:
        return FacetOut(key=key, column_id=column_id, kind=kind.value, count=value)
    return FacetOut(key=key, column_id=column_id, kind=kind.value)


def create_table_router(get_table: Callable[..., DataTable], *, tags: list[str] | None = None) -> APIRouter:
    router = APIRouter(tags=tags or ["table"])
    table_dep = Annotated[DataTable, Depends(get_table)]

    @router.get(
        "/rows",
        response_model=TablePage,
        status_code=status.HTTP_200_OK,
        summary="Fetch one page of rows",
        response_model_by_alias=True,
    )
    async def read_rows(
        table: table_dep,
        requested: Annotated[TableState, Depends(table_state_params)],
    ) -> TablePage:
        _require_connected(table)
        state = table.state.model_copy(
            update={
                "pagination": requested.pagination,
                "sorting": requested.sorting,
                "column_filters": requested.column_filters,
            }
        )
        try:
            page = await table.fetch_page(state)
        except QueryExecutionError as exc:
            logger.warning(
                "api.table.query_failed",
                extra=log_context(client=table.name, error=str(exc)),
            )
            raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Query failed.") from exc
        return TablePage(
            rows=page.rows,
            page_index=state.pagination.page_index,
            page_size=state.pagination.page_size,
            total_rows=page.total_rows,
            page_count=page.page_count,
        )

    @router.get(
        "/facets",
        response_model=FacetOut,
        status_code=status.HTTP_200_OK,
        summary="Fetch a facet for one column",
        response_model_by_alias=True,
    )
    async def read_facet(
        table: table_dep,
        column_id: Annotated[str, Query(alias="columnId", min_length=1)],
        kind: Annotated[FacetKind, Query()] = FacetKind.UNIQUE,
    ) -> FacetOut:
        coordinator = _require_connected(table)
        if kind is FacetKind.TOTAL_COUNT:
            raise HTTPException(
                status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail="Use /rows for the total row count.",
            )
        sidecar = table.request_facet(column_id, kind)
        if sidecar is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Unknown column '{column_id}'.")
        if sidecar.last_error is not None:
            # Retry instead of reporting the previous failure again.
            sidecar.request_query()
        await coordinator.drain()
        if sidecar.last_error is not None:
            logger.warning(
                "api.facet.query_failed",
                extra=log_context(client=table.name, facet_key=sidecar.key, error=str(sidecar.last_error)),
            )
            raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Facet query failed.")
        key = facet_key(column_id, kind)
        return _facet_out(key, column_id, kind, table.facet_values.get(key))

    return router


__all__ = ["create_table_router"]
