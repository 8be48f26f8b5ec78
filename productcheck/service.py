"""Consumer-facing facade: suggestions, verification and selection."""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Callable, Optional, Sequence

from elasticsearch import Elasticsearch

from .aggregator import Aggregator
from .cache import CacheBackend, SuggestionCache, create_validation_cache
from .config import Settings, settings
from .coordinator import RequestCoordinator
from .debounce import Debouncer
from .errors import QueryValidationError, RequestSuperseded
from .es_client import create_client
from .models import (
    ExternalProduct,
    SearchFilters,
    SessionState,
    SuggestionState,
    VerificationMode,
    VerificationReport,
)
from .sources.base import ExternalSource, InternalSource
from .sources.fda import FDASource
from .sources.internal import ElasticsearchCatalog
from .sources.nafdac import NafdacSource
from .sources.openfoodfacts import OpenFoodFactsSource
from .verification import VerificationOrchestrator, VerificationSession

logger = logging.getLogger(__name__)

LOCAL_CLIENT = "local"
MAX_TRACKED_SESSIONS = 1024


class ProductLookupService:
    """Wires the debouncers, request coordinator, aggregator and orchestrator.

    ``state`` always reflects the most recently issued suggestion request;
    results of superseded requests are dropped, never published.
    """

    def __init__(
        self,
        internal: InternalSource,
        externals: Sequence[ExternalSource],
        *,
        config: Settings = settings,
        suggestion_cache: SuggestionCache | None = None,
        validation_cache: CacheBackend | None = None,
        coordinator: RequestCoordinator | None = None,
    ) -> None:
        self.config = config
        self.internal = internal
        self.externals = list(externals)
        self.coordinator = coordinator if coordinator is not None else RequestCoordinator()
        self.suggestion_cache = (
            suggestion_cache if suggestion_cache is not None else SuggestionCache.from_settings(config)
        )
        self.aggregator = Aggregator(
            internal,
            self.externals,
            self.suggestion_cache,
            self.coordinator,
            min_query_length=config.min_query_length,
            external_threshold=config.external_lookup_threshold,
        )
        self.orchestrator = VerificationOrchestrator(
            internal,
            self.externals,
            validation_cache=validation_cache,
            validation_ttl_seconds=config.validation_cache_ttl_seconds,
        )
        self.suggestion_debouncer: Debouncer[str] = Debouncer(
            self.get_suggestions, config.suggestion_debounce_ms, name="suggestions"
        )
        self.barcode_debouncer: Debouncer[str] = Debouncer(
            self._verify_scanned, config.barcode_debounce_ms, name="barcode"
        )
        self._sessions: "OrderedDict[str, VerificationSession]" = OrderedDict()

    @property
    def state(self) -> SuggestionState:
        return self.coordinator.latest

    @property
    def session(self) -> Optional[VerificationSession]:
        return self.session_for(LOCAL_CLIENT)

    def session_for(self, client_id: str | None) -> Optional[VerificationSession]:
        if client_id is None:
            return None
        return self._sessions.get(client_id)

    def _remember(self, client_id: str | None, session: VerificationSession) -> None:
        """Sessions are kept per client; anonymous callers (``None``) get no history."""
        if client_id is None:
            return
        self._sessions[client_id] = session
        self._sessions.move_to_end(client_id)
        while len(self._sessions) > MAX_TRACKED_SESSIONS:
            self._sessions.popitem(last=False)

    def subscribe(self, subscriber: Callable[[SuggestionState], None]) -> Callable[[], None]:
        return self.coordinator.subscribe(subscriber)

    def type_query(self, text: str) -> None:
        """Debounced entry point for keystrokes."""
        self.suggestion_debouncer.trigger(text)

    def scan_barcode(self, code: str) -> None:
        """Debounced entry point for scanner input; verifies the final code."""
        self.barcode_debouncer.trigger(code)

    async def get_suggestions(
        self,
        query: str,
        filters: SearchFilters | None = None,
        *,
        coordinator: RequestCoordinator | None = None,
    ) -> SuggestionState:
        """Suggestions for ``query``; ``coordinator`` scopes supersession to one client."""
        coordinator = coordinator if coordinator is not None else self.coordinator
        token = coordinator.begin_request(query)
        try:
            self.aggregator.check_query(query)
        except QueryValidationError:
            state = SuggestionState(query=query)
            coordinator.publish(token, state)
            return state

        task = asyncio.ensure_future(self.aggregator.suggest(query, token, filters, coordinator=coordinator))
        token.attach(task)
        try:
            return await task
        except RequestSuperseded:
            logger.debug("suggestions for %r superseded", query)
        except asyncio.CancelledError:
            if coordinator.is_current(token):
                raise
            logger.debug("suggestions for %r aborted by a newer request", query)
        return coordinator.latest

    async def verify_product(
        self,
        query: str,
        mode: VerificationMode | str = VerificationMode.COMBINED,
        *,
        barcode: str | None = None,
        user_id: str | None = None,
        filters: SearchFilters | None = None,
        client_id: str | None = LOCAL_CLIENT,
    ) -> VerificationReport:
        """Verify ``query``; an external answer is reused only within the same ``client_id``."""
        mode = VerificationMode(mode)
        known_external = None
        previous = self.session_for(client_id)
        if previous is not None and previous.query == (query or "").strip():
            known_external = previous.report.external
        try:
            session = await self.orchestrator.verify(
                query,
                mode,
                barcode=barcode,
                user_id=user_id,
                filters=filters,
                known_external=known_external,
            )
        except QueryValidationError as exc:
            return VerificationReport(query=query or "", mode=mode, state=SessionState.IDLE, errors=[str(exc)])
        self._remember(client_id, session)
        return session.report

    async def select_suggestion(
        self,
        item: str | ExternalProduct,
        *,
        user_id: str | None = None,
        client_id: str | None = LOCAL_CLIENT,
    ) -> VerificationReport:
        if isinstance(item, ExternalProduct):
            session = self.orchestrator.select_external(item, user_id=user_id)
            self._remember(client_id, session)
            return session.report
        return await self.verify_product(item, VerificationMode.COMBINED, user_id=user_id, client_id=client_id)

    async def _verify_scanned(self, code: str) -> VerificationReport:
        return await self.verify_product(code, VerificationMode.COMBINED, barcode=code)


def build_external_sources(config: Settings) -> list[ExternalSource]:
    sources: list[ExternalSource] = []
    for source_id in config.external_source_ids:
        if source_id == "openfoodfacts":
            sources.append(
                OpenFoodFactsSource(
                    config.openfoodfacts_url,
                    timeout_budget_ms=config.external_timeout_ms,
                    page_size=config.external_suggestion_limit,
                )
            )
        elif source_id == "fda":
            sources.append(
                FDASource(
                    config.fda_url,
                    timeout_budget_ms=config.external_timeout_ms,
                    limit=config.external_suggestion_limit,
                )
            )
        elif source_id == "nafdac":
            sources.append(
                NafdacSource(
                    config.nafdac_url,
                    timeout_budget_ms=config.external_timeout_ms,
                    limit=config.external_suggestion_limit,
                )
            )
        else:
            logger.warning("Unknown external source %r ignored", source_id)
    return sources


def build_service(config: Settings = settings, es: Elasticsearch | None = None) -> ProductLookupService:
    es = es if es is not None else create_client(config)
    catalog = ElasticsearchCatalog(
        es,
        config.es_index,
        verification_index=config.es_verification_index,
        limit=config.internal_suggestion_limit,
    )
    return ProductLookupService(
        catalog,
        build_external_sources(config),
        config=config,
        validation_cache=create_validation_cache(config),
    )
