"""Request supersession and the published suggestion state."""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable, List

from .errors import RequestSuperseded
from .models import SuggestionState

logger = logging.getLogger(__name__)

Subscriber = Callable[[SuggestionState], None]


class RequestToken:
    """Opaque identity of one triggered query."""

    __slots__ = ("seq", "query", "_tasks")

    def __init__(self, seq: int, query: str = "") -> None:
        self.seq = seq
        self.query = query
        self._tasks: set[asyncio.Future[Any]] = set()

    def attach(self, task: asyncio.Future[Any]) -> None:
        """Register in-flight work to abort once this token goes stale."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def abort(self) -> int:
        aborted = 0
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
                aborted += 1
        self._tasks.clear()
        return aborted

    def __repr__(self) -> str:
        return f"RequestToken(seq={self.seq}, query={self.query!r})"


class RequestCoordinator:
    """Keeps exactly one current token and gates every visible update on it.

    Supersession follows issuance order: once a newer token exists, nothing
    tied to an older one is published, whenever its I/O completes.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._current: RequestToken | None = None
        self._latest = SuggestionState()
        self._subscribers: List[Subscriber] = []

    @property
    def current(self) -> RequestToken | None:
        return self._current

    @property
    def latest(self) -> SuggestionState:
        return self._latest

    def begin_request(self, query: str = "") -> RequestToken:
        previous = self._current
        token = RequestToken(next(self._counter), query)
        self._current = token
        if previous is not None:
            aborted = previous.abort()
            if aborted:
                logger.debug("request #%s superseded by #%s, aborted %s task(s)", previous.seq, token.seq, aborted)
        return token

    def is_current(self, token: RequestToken) -> bool:
        return self._current is token

    def ensure_current(self, token: RequestToken) -> None:
        if not self.is_current(token):
            raise RequestSuperseded(token.seq)

    def publish(self, token: RequestToken, state: SuggestionState) -> bool:
        """Make ``state`` visible if ``token`` is still current."""
        if not self.is_current(token):
            logger.debug("dropping publish for stale request #%s", token.seq)
            return False
        self._latest = state
        for subscriber in list(self._subscribers):
            try:
                subscriber(state)
            except Exception:
                logger.exception("suggestion subscriber failed")
        return True

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe
