"""Parse grid query parameters into a :class:`~crossgrid.state.TableState`."""

from __future__ import annotations

import json
from typing import Any

from fastapi import HTTPException, Query, status
from pydantic import ValidationError

from crossgrid.settings import get_settings
from crossgrid.state import ColumnFilter, PaginationState, SortItem, TableState

MAX_FILTERS_RAW_LENGTH = 8 * 1024

SORT_EXAMPLE = '[{"id":"created_at","desc":true}]'
FILTERS_EXAMPLE = '[{"id":"status","value":["active"]}]'


def _decode_json(raw: str, *, name: str) -> Any:
    if len(raw) > MAX_FILTERS_RAW_LENGTH:
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"{name} exceeds {MAX_FILTERS_RAW_LENGTH} characters",
        )
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"{name} must be valid JSON",
        ) from exc


def parse_sort_param(raw: str | None, *, max_fields: int) -> tuple[SortItem, ...]:
    if raw is None or not raw.strip():
        return ()
    decoded = _decode_json(raw.strip(), name="sort")
    if isinstance(decoded, dict):
        decoded = [decoded]
    if not isinstance(decoded, list):
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_CONTENT, detail="sort must be a JSON array")

    items: list[SortItem] = []
    seen: set[str] = set()
    for index, item in enumerate(decoded):
        if not isinstance(item, dict):
            raise HTTPException(
                status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail=f"Sort #{index + 1} must be an object",
            )
        raw_id = item.get("id")
        if not isinstance(raw_id, str) or not raw_id.strip():
            raise HTTPException(
                status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail=f"Sort #{index + 1} must include a non-empty 'id'",
            )
        desc = item.get("desc", False)
        if not isinstance(desc, bool):
            raise HTTPException(
                status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail=f"Sort #{index + 1} 'desc' must be a boolean",
            )
        name = raw_id.strip()
        if name in seen:
            continue
        seen.add(name)
        items.append(SortItem(id=name, desc=desc))

    if len(items) > max_fields:
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Too many sort fields (max {max_fields}).",
        )
    return tuple(items)


def parse_filters_param(raw: str | None, *, max_filters: int) -> tuple[ColumnFilter, ...]:
    if raw is None or not raw.strip():
        return ()
    decoded = _decode_json(raw.strip(), name="filters")
    if isinstance(decoded, dict):
        decoded = [{"id": key, "value": value} for key, value in decoded.items()]
    if not isinstance(decoded, list):
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="filters must be a JSON array or object",
        )
    if len(decoded) > max_filters:
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Too many filters (max {max_filters}).",
        )

    items: list[ColumnFilter] = []
    for index, item in enumerate(decoded):
        if not isinstance(item, dict):
            raise HTTPException(
                status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail=f"Filter #{index + 1} must be an object",
            )
        try:
            parsed = ColumnFilter.model_validate(item)
        except ValidationError as exc:
            raise HTTPException(
                status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail=exc.errors(include_url=False),
            ) from exc
        if parsed.value is None:
            continue
        items.append(parsed)
    return tuple(items)


def table_state_params(
    page: int = Query(0, ge=0, description="0-based page index"),
    page_size: int | None = Query(
        None,
        ge=1,
        alias="pageSize",
        description="Rows per page.",
    ),
    sort: str | None = Query(
        None,
        description="URL-encoded JSON array of {id, desc} objects.",
        examples={"newestFirst": {"summary": "Newest first", "value": SORT_EXAMPLE}},
    ),
    filters: str | None = Query(
        None,
        description="URL-encoded JSON array of {id, value} objects, or an {id: value} object.",
        examples={"statusIn": {"summary": "Status filter", "value": FILTERS_EXAMPLE}},
    ),
) -> TableState:
    settings = get_settings()
    size = page_size if page_size is not None else settings.default_page_size
    if size > settings.max_page_size:
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"pageSize must be at most {settings.max_page_size}",
        )
    return TableState(
        pagination=PaginationState(page_index=page, page_size=size),
        sorting=parse_sort_param(sort, max_fields=settings.max_sort_fields),
        column_filters=parse_filters_param(filters, max_filters=settings.max_filters),
    )


__all__ = [
    "parse_filters_param",
    "parse_sort_param",
    "table_state_params",
]
