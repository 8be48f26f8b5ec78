"""Verification strategies over the internal catalog and external databases.

Three modes share the same adapters:

* ``internal``: catalog verdict, falling back once to the external databases
  when the catalog errors and no external answer exists yet.
* ``external``: external databases only; failures are reported, not retried.
* ``combined``: both branches run concurrently and the report is completed
  only once both have settled. Both verdicts are kept side by side.

Picking an external product from the suggestion list short-circuits to an
immediate report built from the product itself, while the catalog is checked
in the background to supplement it.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from .cache import CacheBackend
from .errors import AllSourcesFailedError, QueryValidationError, SourceError, SourceFailureError, SourceTimeoutError
from .models import (
    ExternalProduct,
    InternalVerdict,
    SearchFilters,
    SessionState,
    SourceStatus,
    VerificationMode,
    VerificationReport,
    VerificationResult,
)
from .risk import assess_risk
from .sources.base import ExternalSource, InternalSource
from .utils import clean_barcode, hash_key, is_valid_barcode, looks_like_barcode

logger = logging.getLogger(__name__)

T = TypeVar("T")

INTERNAL = "internal"
BARCODE_VALIDATION = "barcode_validation"

ReportListener = Callable[[VerificationReport], None]


class VerificationSession:
    """Tracks one verification from IDLE through SEARCHING to its outcome."""

    def __init__(self, query: str, mode: VerificationMode) -> None:
        self.query = query
        self.mode = mode
        self._report = VerificationReport(query=query, mode=mode, state=SessionState.IDLE)
        self._listeners: list[ReportListener] = []
        self.background: Optional[asyncio.Task[None]] = None

    @property
    def report(self) -> VerificationReport:
        return self._report

    @property
    def state(self) -> SessionState:
        return self._report.state

    def subscribe(self, listener: ReportListener) -> None:
        self._listeners.append(listener)

    def publish(self, report: VerificationReport) -> None:
        self._report = report
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception:
                logger.exception("verification listener failed")

    async def settled(self) -> VerificationReport:
        """Wait for background enrichment, then return the final report."""
        if self.background is not None:
            await asyncio.gather(self.background, return_exceptions=True)
        return self._report


class VerificationOrchestrator:
    def __init__(
        self,
        internal: InternalSource,
        externals: Sequence[ExternalSource],
        *,
        validation_cache: CacheBackend | None = None,
        validation_ttl_seconds: int = 86400,
    ) -> None:
        self._internal = internal
        self._externals = list(externals)
        self._validation_cache = validation_cache
        self.validation_ttl_seconds = validation_ttl_seconds

    async def verify(
        self,
        query: str,
        mode: VerificationMode = VerificationMode.COMBINED,
        *,
        barcode: str | None = None,
        user_id: str | None = None,
        filters: SearchFilters | None = None,
        known_external: VerificationResult | None = None,
    ) -> VerificationSession:
        query = (query or "").strip()
        barcode = clean_barcode(barcode) or None
        if not query and not barcode:
            raise QueryValidationError(query, 1)
        query = query or barcode or ""

        session = VerificationSession(query, mode)
        session.publish(
            VerificationReport(
                query=query,
                mode=mode,
                state=SessionState.SEARCHING,
                sources=self._pending_statuses(mode),
            )
        )
        if mode is VerificationMode.INTERNAL:
            report = await self._verify_internal(query, barcode, user_id, filters, known_external)
        elif mode is VerificationMode.EXTERNAL:
            report = await self._verify_external(query, barcode)
        else:
            report = await self._verify_combined(query, barcode, user_id, filters)
        session.publish(report)
        logger.info("verify q=%r mode=%s state=%s", query, mode.value, report.state.value)
        return session

    def select_external(self, product: ExternalProduct, *, user_id: str | None = None) -> VerificationSession:
        """Immediate verdict from the picked product; catalog check runs in the background."""
        result = VerificationResult(
            found=True,
            verified=product.verified,
            confidence=product.confidence,
            source=product.source,
            product=product,
            sources=[
                SourceStatus(
                    name=product.source,
                    status="success",
                    verified=product.verified,
                    confidence=product.confidence,
                )
            ],
        )
        session = VerificationSession(product.name, VerificationMode.COMBINED)
        session.publish(
            VerificationReport(
                query=product.name,
                mode=VerificationMode.COMBINED,
                state=SessionState.PARTIAL,
                external=result,
                sources=[*result.sources, SourceStatus(name=INTERNAL, status="pending")],
                risk=assess_risk(result),
            )
        )
        session.background = asyncio.create_task(self._enrich(session, product.name, user_id))
        return session

    async def _enrich(self, session: VerificationSession, name: str, user_id: str | None) -> None:
        try:
            verdict = await self._internal_branch(name, user_id, None)
        except SourceError as exc:
            logger.info("background catalog check failed for %r: %s", name, exc)
            current = session.report
            session.publish(
                current.model_copy(
                    update={
                        "sources": self._replace_internal_status(current.sources, self._error_status(INTERNAL, exc)),
                        "errors": [*current.errors, str(exc)],
                    }
                )
            )
            return

        current = session.report
        update: dict[str, Any] = {
            "state": SessionState.RESOLVED,
            "sources": self._replace_internal_status(current.sources, self._internal_status(verdict)),
        }
        # A catalog miss must not downgrade the external verdict already shown.
        if verdict.result != "not_found":
            update["internal"] = verdict
        session.publish(current.model_copy(update=update))

    async def _verify_internal(
        self,
        query: str,
        barcode: str | None,
        user_id: str | None,
        filters: SearchFilters | None,
        known_external: VerificationResult | None,
    ) -> VerificationReport:
        mode = VerificationMode.INTERNAL
        try:
            verdict = await self._internal_branch(barcode or query, user_id, filters, display_name=query)
        except SourceError as exc:
            errors = [str(exc)]
            sources = [self._error_status(INTERNAL, exc)]
            if known_external is not None:
                return VerificationReport(
                    query=query,
                    mode=mode,
                    state=SessionState.PARTIAL,
                    external=known_external,
                    sources=[*sources, *known_external.sources],
                    risk=assess_risk(known_external),
                    errors=errors,
                )
            logger.info("catalog verification failed for %r, falling back to external sources: %s", query, exc)
            try:
                external = await self._external_branch(query, barcode)
            except SourceError as external_exc:
                return VerificationReport(
                    query=query,
                    mode=mode,
                    state=SessionState.FAILED,
                    sources=[*sources, *self._failure_statuses(external_exc)],
                    errors=[*errors, str(external_exc)],
                )
            return VerificationReport(
                query=query,
                mode=mode,
                state=SessionState.PARTIAL,
                external=external,
                sources=[*sources, *external.sources],
                risk=assess_risk(external),
                errors=errors,
            )
        return VerificationReport(
            query=query,
            mode=mode,
            state=SessionState.RESOLVED,
            internal=verdict,
            sources=[self._internal_status(verdict)],
        )

    async def _verify_external(self, query: str, barcode: str | None) -> VerificationReport:
        mode = VerificationMode.EXTERNAL
        try:
            external = await self._external_branch(query, barcode)
        except SourceError as exc:
            return VerificationReport(
                query=query,
                mode=mode,
                state=SessionState.FAILED,
                sources=self._failure_statuses(exc),
                errors=[str(exc)],
            )
        return VerificationReport(
            query=query,
            mode=mode,
            state=SessionState.RESOLVED,
            external=external,
            sources=list(external.sources),
            risk=assess_risk(external),
        )

    async def _verify_combined(
        self,
        query: str,
        barcode: str | None,
        user_id: str | None,
        filters: SearchFilters | None,
    ) -> VerificationReport:
        # Join: neither branch cancels or short-circuits the other.
        (verdict, internal_exc), (external, external_exc) = await asyncio.gather(
            self._settle(self._internal_branch(barcode or query, user_id, filters, display_name=query)),
            self._settle(self._external_branch(query, barcode)),
        )

        sources: list[SourceStatus] = []
        errors: list[str] = []
        if verdict is not None:
            sources.append(self._internal_status(verdict))
        elif internal_exc is not None:
            sources.append(self._error_status(INTERNAL, internal_exc))
            errors.append(str(internal_exc))
        if external is not None:
            sources.extend(external.sources)
        elif external_exc is not None:
            sources.extend(self._failure_statuses(external_exc))
            errors.append(str(external_exc))

        succeeded = (verdict is not None) + (external is not None)
        if succeeded == 2:
            state = SessionState.RESOLVED
        elif succeeded == 1:
            state = SessionState.PARTIAL
        else:
            state = SessionState.FAILED
        return VerificationReport(
            query=query,
            mode=VerificationMode.COMBINED,
            state=state,
            internal=verdict,
            external=external,
            sources=sources,
            risk=assess_risk(external) if external is not None else None,
            errors=errors,
        )

    @staticmethod
    async def _settle(awaitable: Awaitable[T]) -> tuple[Optional[T], Optional[SourceError]]:
        try:
            return await awaitable, None
        except SourceError as exc:
            return None, exc

    async def _internal_branch(
        self,
        query: str,
        user_id: str | None,
        filters: SearchFilters | None,
        *,
        display_name: str | None = None,
    ) -> InternalVerdict:
        try:
            verification = await self._internal.verify(query, user_id, filters)
        except SourceError:
            raise
        except Exception as exc:
            raise SourceFailureError(INTERNAL, str(exc) or type(exc).__name__) from exc

        product = verification.product
        return InternalVerdict(
            product_name=display_name or query,
            result=verification.result,
            is_verified=verification.result == "verified",
            manufacturer=(product.manufacturer_name if product else None) or "Unknown",
            registration_date=(product.registration_date if product else None) or "N/A",
            certification_number=(product.certification_number if product else None) or "N/A",
            product=product,
            similar_products=list(verification.similar_products),
        )

    async def _external_branch(self, query: str, barcode: str | None) -> VerificationResult:
        identifier = barcode or query
        name = query if barcode and query and query != barcode else None

        if (barcode or looks_like_barcode(identifier)) and not is_valid_barcode(identifier):
            logger.info("rejecting invalid barcode %r", identifier)
            return VerificationResult(
                found=False,
                verified=False,
                confidence=0.0,
                source=BARCODE_VALIDATION,
                sources=[SourceStatus(name=BARCODE_VALIDATION, status="success")],
            )
        if not self._externals:
            raise SourceFailureError("external", "no external sources configured")

        cache_key = hash_key(identifier, name)
        cached = self._validation_cache.get(cache_key) if self._validation_cache is not None else None
        if cached is not None:
            logger.debug("validation cache hit identifier=%r", identifier)
            return VerificationResult.model_validate(cached)

        outcomes = await asyncio.gather(
            *(source.validate(identifier, name) for source in self._externals),
            return_exceptions=True,
        )
        statuses: list[SourceStatus] = []
        found: list[VerificationResult] = []
        failures: list[str] = []
        for source, outcome in zip(self._externals, outcomes):
            if isinstance(outcome, SourceTimeoutError):
                statuses.append(SourceStatus(name=source.id, status="timeout", detail=str(outcome)))
                failures.append(str(outcome))
            elif isinstance(outcome, Exception):
                statuses.append(self._error_status(source.id, outcome))
                failures.append(str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                statuses.extend(
                    outcome.sources
                    or [
                        SourceStatus(
                            name=source.id,
                            status="success",
                            verified=outcome.verified,
                            confidence=outcome.confidence,
                        )
                    ]
                )
                if outcome.found:
                    found.append(outcome)

        if len(failures) == len(self._externals):
            raise AllSourcesFailedError(statuses, "; ".join(failures))

        if found:
            main = found[0]
            alternatives = [*main.alternatives, *(item.product for item in found[1:] if item.product is not None)]
            result = VerificationResult(
                found=True,
                verified=main.verified,
                confidence=main.confidence,
                source=main.source,
                product=main.product,
                alternatives=alternatives,
                sources=statuses,
            )
        else:
            result = VerificationResult(found=False, verified=False, confidence=0.0, source="none", sources=statuses)

        if self._validation_cache is not None and not failures:
            self._validation_cache.set(cache_key, result.model_dump(mode="json"), self.validation_ttl_seconds)
        return result

    def _pending_statuses(self, mode: VerificationMode) -> list[SourceStatus]:
        names: list[str] = []
        if mode is not VerificationMode.EXTERNAL:
            names.append(INTERNAL)
        if mode is not VerificationMode.INTERNAL:
            names.extend(source.id for source in self._externals)
        return [SourceStatus(name=name, status="pending") for name in names]

    @staticmethod
    def _internal_status(verdict: InternalVerdict) -> SourceStatus:
        return SourceStatus(
            name=INTERNAL,
            status="success",
            verified=verdict.is_verified,
            confidence=verdict.product.confidence if verdict.product is not None else 0.0,
            detail=verdict.result,
        )

    @staticmethod
    def _error_status(name: str, exc: BaseException) -> SourceStatus:
        status = "timeout" if isinstance(exc, SourceTimeoutError) else "error"
        return SourceStatus(name=name, status=status, detail=str(exc))

    def _failure_statuses(self, exc: SourceError) -> list[SourceStatus]:
        if isinstance(exc, AllSourcesFailedError):
            return list(exc.statuses)
        return [self._error_status(exc.source, exc)]

    @staticmethod
    def _replace_internal_status(statuses: Sequence[SourceStatus], replacement: SourceStatus) -> list[SourceStatus]:
        return [replacement if item.name == INTERNAL else item for item in statuses]
