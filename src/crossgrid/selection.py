"""Selections and params: the shared bus clients filter each other through.

A :class:`Selection` holds one clause per source. Each clause carries the
semantic ``value``, its SQL ``predicate`` and the set of ``clients`` that must
not be filtered by it. Readers ask for :meth:`Selection.predicate_for` with
their own identity, so a client never filters itself by its own clause.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import and_, false, or_
from sqlalchemy.sql.elements import ColumnElement

from crossgrid.common.logging import log_context

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]

VALUE_EVENT = "value"
ACTIVE_EVENT = "active"


class EventSource:
    """Synchronous named-event fan-out."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def add_event_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.setdefault(event, [])
        if listener not in listeners:
            listeners.append(listener)

    def remove_event_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            listener(payload)


class Param(EventSource):
    """A late-bound value, e.g. the name of the table a grid reads."""

    def __init__(self, value: Any = None, *, name: str | None = None) -> None:
        super().__init__()
        self._value = value
        self.name = name

    @property
    def value(self) -> Any:
        return self._value

    def update(self, value: Any) -> None:
        if value == self._value:
            return
        self._value = value
        self.emit(VALUE_EVENT, value)

    def __repr__(self) -> str:
        return f"Param(name={self.name!r}, value={self._value!r})"


@dataclass(frozen=True)
class SelectionClause:
    source: Any
    value: Any = None
    predicate: ColumnElement[bool] | None = None
    clients: frozenset[Any] = field(default_factory=frozenset)
    meta: dict[str, Any] | None = None

    @classmethod
    def build(
        cls,
        source: Any,
        value: Any,
        predicate: ColumnElement[bool] | None,
        *,
        clients: Iterable[Any] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> SelectionClause:
        excluded = frozenset(clients) if clients is not None else frozenset({source})
        return cls(source=source, value=value, predicate=predicate, clients=excluded, meta=meta)

    @property
    def is_empty(self) -> bool:
        return self.value is None and self.predicate is None


class Resolver(str, Enum):
    INTERSECT = "intersect"
    UNION = "union"
    SINGLE = "single"


class Selection(EventSource):
    """Multi-writer, multi-reader filter state with per-reader exclusion."""

    def __init__(
        self,
        *,
        resolver: Resolver = Resolver.INTERSECT,
        empty: bool = False,
        cross: bool = False,
        name: str | None = None,
    ) -> None:
        super().__init__()
        self.resolver = Resolver(resolver)
        self.empty = empty
        self.cross = cross
        self.name = name
        self._clauses: list[SelectionClause] = []
        self._active: SelectionClause | None = None

    @classmethod
    def intersect(cls, **kwargs: Any) -> Selection:
        return cls(resolver=Resolver.INTERSECT, **kwargs)

    @classmethod
    def union(cls, **kwargs: Any) -> Selection:
        return cls(resolver=Resolver.UNION, **kwargs)

    @classmethod
    def single(cls, **kwargs: Any) -> Selection:
        return cls(resolver=Resolver.SINGLE, **kwargs)

    @classmethod
    def crossfilter(cls, **kwargs: Any) -> Selection:
        return cls(resolver=Resolver.INTERSECT, cross=True, **kwargs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def clauses(self) -> tuple[SelectionClause, ...]:
        return tuple(self._clauses)

    @property
    def active(self) -> SelectionClause | None:
        return self._active

    @property
    def value(self) -> Any:
        return self._clauses[-1].value if self._clauses else None

    def value_for(self, source: Any) -> Any:
        for clause in self._clauses:
            if clause.source is source:
                return clause.value
        return None

    def clause_for(self, source: Any) -> SelectionClause | None:
        for clause in self._clauses:
            if clause.source is source:
                return clause
        return None

    def skip(self, client: Any, clause: SelectionClause) -> bool:
        """True when ``clause`` must not filter ``client``."""
        if client is None:
            return False
        if client in clause.clients:
            return True
        return self.cross and clause.source is client

    def predicate_for(self, client: Any = None) -> ColumnElement[bool] | None:
        """Combined predicate as seen by ``client``; ``None`` means everyone."""
        predicates = [
            clause.predicate
            for clause in self._clauses
            if clause.predicate is not None and not self.skip(client, clause)
        ]
        if not predicates:
            return false() if self.empty and not self._clauses else None
        if self.resolver is Resolver.SINGLE:
            return predicates[-1]
        if len(predicates) == 1:
            return predicates[0]
        if self.resolver is Resolver.UNION:
            return or_(*predicates)
        return and_(*predicates)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update(self, clause: SelectionClause) -> None:
        if self.resolver is Resolver.SINGLE:
            remaining: list[SelectionClause] = []
        else:
            remaining = [c for c in self._clauses if c.source is not clause.source]
        if not clause.is_empty:
            remaining.append(clause)
        self._clauses = remaining
        self._active = clause
        logger.debug(
            "selection.updated",
            extra=log_context(
                selection=self.name,
                source=_describe(clause.source),
                clauses=len(self._clauses),
            ),
        )
        self.emit(ACTIVE_EVENT, clause)
        self.emit(VALUE_EVENT, self.value)

    def activate(self, clause: SelectionClause) -> None:
        """Announce an upcoming clause without changing the resolved state."""
        self.emit(ACTIVE_EVENT, clause)

    def reset(self, source: Any = None) -> None:
        self._clauses = []
        self._active = SelectionClause(source=source)
        self.emit(ACTIVE_EVENT, self._active)
        self.emit(VALUE_EVENT, None)

    def __repr__(self) -> str:
        return f"Selection(name={self.name!r}, resolver={self.resolver.value}, clauses={len(self._clauses)})"


def _describe(source: Any) -> str:
    return getattr(source, "name", None) or type(source).__name__


__all__ = [
    "ACTIVE_EVENT",
    "EventSource",
    "Param",
    "Resolver",
    "Selection",
    "SelectionClause",
    "VALUE_EVENT",
]
