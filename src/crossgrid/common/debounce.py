"""Trailing-edge debounce on the running event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any


class Debouncer:
    """Call ``callback`` once calls stop arriving for ``delay`` seconds.

    With a zero delay, or outside a running loop, the callback runs
    immediately.
    """

    def __init__(self, callback: Callable[..., Any], delay: float) -> None:
        self._callback = callback
        self.delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self._args: tuple[Any, ...] = ()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args: Any) -> None:
        self.cancel()
        self._args = args
        if self.delay <= 0:
            self._fire()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._fire()
            return
        self._handle = loop.call_later(self.delay, self._fire)

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        args, self._args = self._args, ()
        self._callback(*args)


__all__ = ["Debouncer"]
