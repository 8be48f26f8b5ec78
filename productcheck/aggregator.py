"""Suggestion aggregation over the internal catalog and external databases."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Optional, Sequence

from .cache import SuggestionCache
from .coordinator import RequestCoordinator, RequestToken
from .errors import QueryValidationError
from .models import ExternalProduct, InternalProduct, SearchFilters, SuggestionState
from .sources.base import ExternalSource, InternalSource
from .utils import normalize_key

logger = logging.getLogger(__name__)


@dataclass
class _FetchResult:
    suggestions: list[str]
    external_products: list[ExternalProduct]
    # False when the internal catalog failed; such results are not cached.
    complete: bool


class _Flight:
    """One shared fetch for a cache key, joined by every concurrent request."""

    __slots__ = ("internal", "task", "waiters", "cancelled")

    def __init__(self, internal: "asyncio.Future[list[InternalProduct]]") -> None:
        self.internal = internal
        self.task: Optional["asyncio.Task[_FetchResult]"] = None
        self.waiters = 0
        # Set once the last waiter has left; the flight must not be joined again.
        self.cancelled = False

    @property
    def joinable(self) -> bool:
        return not self.cancelled and self.task is not None and not self.task.done()


class Aggregator:
    """Cache first, then internal catalog, then external sources when needed.

    Internal results are published as soon as they arrive. External sources
    are only queried when the catalog returns fewer than
    ``external_threshold`` matches. Nothing is cached or published for a
    request whose token has been superseded.
    """

    def __init__(
        self,
        internal: InternalSource,
        externals: Sequence[ExternalSource],
        cache: SuggestionCache,
        coordinator: RequestCoordinator,
        *,
        min_query_length: int = 2,
        external_threshold: int = 3,
    ) -> None:
        self._internal = internal
        self._externals = list(externals)
        self._cache = cache
        self._coordinator = coordinator
        self.min_query_length = min_query_length
        self.external_threshold = external_threshold
        self._inflight: dict[str, _Flight] = {}

    def check_query(self, query: str) -> None:
        if len((query or "").strip()) < self.min_query_length:
            raise QueryValidationError(query, self.min_query_length)

    @staticmethod
    def cache_key(query: str, filters: SearchFilters | None = None) -> str:
        key = normalize_key(query)
        if filters is not None:
            key += filters.cache_suffix()
        return key

    async def suggest(
        self,
        query: str,
        token: RequestToken,
        filters: SearchFilters | None = None,
        *,
        coordinator: RequestCoordinator | None = None,
    ) -> SuggestionState:
        self.check_query(query)
        coordinator = coordinator if coordinator is not None else self._coordinator
        started = perf_counter()
        key = self.cache_key(query, filters)

        cached = self._cache.get(key)
        if cached is not None:
            coordinator.ensure_current(token)
            state = SuggestionState(
                query=query,
                suggestions=list(cached.suggestions),
                external_products=list(cached.external_products),
            )
            coordinator.publish(token, state)
            logger.info("timing: total=%.2fms cache_hit=1 q=%r", (perf_counter() - started) * 1000, key)
            return state

        flight = self._join(key, query, filters)
        flight.waiters += 1
        try:
            internal = await asyncio.shield(flight.internal)
            coordinator.ensure_current(token)
            if self._needs_external(internal, filters):
                coordinator.publish(
                    token,
                    SuggestionState(query=query, suggestions=[item.name for item in internal], is_loading=True),
                )
            internal_ms = (perf_counter() - started) * 1000
            result = await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and flight.joinable:
                self._abandon(key, flight)

        coordinator.ensure_current(token)
        if result.complete:
            self._cache.put(key, result.suggestions, result.external_products)
        state = SuggestionState(
            query=query,
            suggestions=list(result.suggestions),
            external_products=list(result.external_products),
        )
        coordinator.publish(token, state)
        logger.info(
            "timing: total=%.2fms internal=%.2fms cache_hit=0 internal_hits=%s external_hits=%s q=%r",
            (perf_counter() - started) * 1000,
            internal_ms,
            len(result.suggestions),
            len(result.external_products),
            key,
        )
        return state

    def _join(self, key: str, query: str, filters: SearchFilters | None) -> _Flight:
        flight = self._inflight.get(key)
        if flight is not None and flight.joinable:
            logger.debug("joining in-flight fetch key=%r waiters=%s", key, flight.waiters)
            return flight
        flight = _Flight(asyncio.get_running_loop().create_future())
        flight.task = asyncio.create_task(self._fetch(key, query, filters, flight))
        self._inflight[key] = flight
        return flight

    def _abandon(self, key: str, flight: _Flight) -> None:
        """Cancel a fetch nobody waits for and forget it, even if its task never started."""
        flight.cancelled = True
        flight.task.cancel()
        if not flight.internal.done():
            flight.internal.cancel()
        if self._inflight.get(key) is flight:
            del self._inflight[key]
        logger.debug("abandoned in-flight fetch key=%r", key)

    def _needs_external(self, internal: Sequence[InternalProduct], filters: SearchFilters | None) -> bool:
        return len(internal) < self.external_threshold and bool(self._external_candidates(filters))

    def _external_candidates(self, filters: SearchFilters | None) -> list[ExternalSource]:
        category = filters.category if filters is not None else None
        return [source for source in self._externals if source.covers(category)]

    async def _fetch(self, key: str, query: str, filters: SearchFilters | None, flight: _Flight) -> _FetchResult:
        try:
            internal, complete = await self._search_internal(query, filters)
            if not flight.internal.done():
                flight.internal.set_result(internal)
            names = [item.name for item in internal]
            if not self._needs_external(internal, filters):
                return _FetchResult(names, [], complete)
            external = await self._search_external(query, filters)
            return _FetchResult(names, external, complete)
        finally:
            if not flight.internal.done():
                flight.internal.cancel()
            if self._inflight.get(key) is flight:
                del self._inflight[key]

    async def _search_internal(
        self, query: str, filters: SearchFilters | None
    ) -> tuple[list[InternalProduct], bool]:
        try:
            return list(await self._internal.search(query, filters)), True
        except Exception as exc:
            logger.warning("internal suggestions failed q=%r: %s", query, exc)
            return [], False

    async def _search_external(self, query: str, filters: SearchFilters | None) -> list[ExternalProduct]:
        sources = self._external_candidates(filters)
        batches = await asyncio.gather(*(source.quick_search(query) for source in sources))
        products = [product for batch in batches for product in batch]
        if filters is not None and filters.nutri_score:
            grades = {grade.strip().upper() for grade in filters.nutri_score}
            products = [product for product in products if product.nutri_score in grades]
        return products
