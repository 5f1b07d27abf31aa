"""Named strategy lookup shared by filters and facets."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


def _key(name: str | Enum) -> str:
    return name.value if isinstance(name, Enum) else str(name)


class StrategyRegistry(Generic[T]):
    def __init__(self, entries: Mapping[str | Enum, T] | None = None) -> None:
        self._entries: dict[str, T] = {}
        for name, strategy in (entries or {}).items():
            self.register(name, strategy)

    def register(self, name: str | Enum, strategy: T) -> None:
        self._entries[_key(name)] = strategy

    def unregister(self, name: str | Enum) -> None:
        self._entries.pop(_key(name), None)

    def get(self, name: str | Enum | None) -> T | None:
        if name is None:
            return None
        return self._entries.get(_key(name))

    def names(self) -> tuple[str, ...]:
        return tuple(self._entries.keys())

    def copy(self) -> StrategyRegistry[T]:
        return StrategyRegistry(dict(self._entries))

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, (str, Enum)):
            return False
        return _key(name) in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)


__all__ = ["StrategyRegistry"]
