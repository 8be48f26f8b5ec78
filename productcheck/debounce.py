"""Debouncer collapsing bursts of input events into one trigger."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

Callback = Callable[[T], Union[None, Awaitable[Any]]]


class Debouncer(Generic[T]):
    """Fire ``callback`` once with the latest value after a quiet window.

    Each :meth:`trigger` restarts the countdown, so earlier values in the
    same window never reach the callback. Coroutine callbacks are scheduled
    as tasks on the running loop.
    """

    def __init__(self, callback: Callback[T], window_ms: int, *, name: str = "debouncer") -> None:
        self._callback = callback
        self.window_ms = window_ms
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, value: T, window_ms: Optional[int] = None) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        delay = (self.window_ms if window_ms is None else window_ms) / 1000
        self._handle = loop.call_later(delay, self._fire, value)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def drain(self) -> None:
        """Wait for callbacks that already fired to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self, value: T) -> None:
        self._handle = None
        logger.debug("%s fired value=%r", self.name, value)
        result = self._callback(value)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s callback failed", self.name, exc_info=task.exception())
