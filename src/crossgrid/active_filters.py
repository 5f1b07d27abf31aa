"""Collect the active filters of several selections into one labelled list."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from crossgrid.selection import VALUE_EVENT, EventSource, Selection, SelectionClause

FILTERS_EVENT = "filters"
DEFAULT_PRIORITY = 999

Formatter = Callable[[Any], str]


@dataclass(frozen=True)
class FilterGroup:
    id: str
    label: str
    priority: int = DEFAULT_PRIORITY


@dataclass(frozen=True)
class ActiveFilter:
    id: str
    group_id: str
    source_id: str
    label: str
    value: Any
    formatted_value: str
    selection: Selection = field(compare=False)
    source: Any = field(compare=False)
    sub_id: str | None = None


@dataclass
class _Registration:
    selection: Selection
    group_id: str
    label_map: Mapping[str, str]
    formatter_map: Mapping[str, Formatter]
    listener: Callable[[Any], None]


def format_filter_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        if len(value) == 2 and all(isinstance(v, (int, float)) or v is None for v in value):
            low, high = value
            return f"{'' if low is None else low} - {'' if high is None else high}".strip()
        return ", ".join(str(v) for v in value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return json.dumps(value, default=str, sort_keys=True)
    return str(value)


def _source_id(source: Any) -> str:
    row_selection = getattr(getattr(source, "options", None), "row_selection", None)
    if row_selection is not None:
        return str(row_selection.column)
    column = getattr(source, "column", None)
    if column is not None:
        return str(column)
    name = getattr(source, "name", None)
    return str(name) if name else "unknown"


def _is_filter_array(value: Any) -> bool:
    return (
        isinstance(value, list)
        and bool(value)
        and isinstance(value[0], Mapping)
        and "id" in value[0]
        and "value" in value[0]
    )


class ActiveFilterRegistry(EventSource):
    def __init__(self) -> None:
        super().__init__()
        self._groups: dict[str, FilterGroup] = {}
        self._registrations: dict[int, _Registration] = {}
        self._filters: list[ActiveFilter] = []

    @property
    def filters(self) -> list[ActiveFilter]:
        return list(self._filters)

    def register_group(self, group: FilterGroup) -> None:
        self._groups[group.id] = group
        self._rebuild()

    def register_selection(
        self,
        selection: Selection,
        group_id: str,
        *,
        label_map: Mapping[str, str] | None = None,
        formatter_map: Mapping[str, Formatter] | None = None,
    ) -> None:
        self.unregister_selection(selection)

        def _listener(_value: Any) -> None:
            self._rebuild()

        self._registrations[id(selection)] = _Registration(
            selection=selection,
            group_id=group_id,
            label_map=dict(label_map or {}),
            formatter_map=dict(formatter_map or {}),
            listener=_listener,
        )
        selection.add_event_listener(VALUE_EVENT, _listener)
        self._rebuild()

    def unregister_selection(self, selection: Selection) -> None:
        registration = self._registrations.pop(id(selection), None)
        if registration is None:
            return
        selection.remove_event_listener(VALUE_EVENT, registration.listener)
        self._rebuild()

    def remove_filter(self, active: ActiveFilter) -> None:
        source = active.source
        clear = getattr(source, "clear_filter", None)
        if callable(clear):
            clear(active.sub_id, active.selection)
            return
        active.selection.update(SelectionClause.build(source, None, None))

    def clear_group(self, group_id: str) -> None:
        for active in [f for f in self._filters if f.group_id == group_id]:
            self.remove_filter(active)

    def _rebuild(self) -> None:
        collected: list[ActiveFilter] = []
        for registration in self._registrations.values():
            for clause in registration.selection.clauses:
                if clause.value is None:
                    continue
                source_id = _source_id(clause.source)
                if _is_filter_array(clause.value):
                    for item in clause.value:
                        collected.append(
                            self._build(registration, clause, str(item["id"]), item["value"], sub_id=str(item["id"]))
                        )
                else:
                    collected.append(self._build(registration, clause, source_id, clause.value))

        collected.sort(key=lambda f: self._groups.get(f.group_id, FilterGroup(f.group_id, f.group_id)).priority)
        self._filters = collected
        self.emit(FILTERS_EVENT, self.filters)

    def _build(
        self,
        registration: _Registration,
        clause: SelectionClause,
        source_id: str,
        value: Any,
        *,
        sub_id: str | None = None,
    ) -> ActiveFilter:
        label = registration.label_map.get(source_id) or registration.label_map.get("*") or source_id
        formatter = registration.formatter_map.get(source_id)
        formatted = formatter(value) if formatter is not None else format_filter_value(value)
        return ActiveFilter(
            id=f"{registration.group_id}-{source_id}-{json.dumps(value, default=str, sort_keys=True)}",
            group_id=registration.group_id,
            source_id=source_id,
            label=label,
            value=value,
            formatted_value=formatted,
            selection=registration.selection,
            source=clause.source,
            sub_id=sub_id,
        )


__all__ = [
    "ActiveFilter",
    "ActiveFilterRegistry",
    "FILTERS_EVENT",
    "FilterGroup",
    "format_filter_value",
]
