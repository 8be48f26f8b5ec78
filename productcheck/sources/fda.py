"""openFDA NDC directory adapter for drugs and supplements."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from ..models import ExternalProduct, SourceStatus, VerificationResult
from .base import ExternalSource, SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

SOURCE_ID = "fda"
SEARCH_CONFIDENCE = 0.8
NAME_MATCH_CONFIDENCE = 0.5


class FDASource(ExternalSource):
    def __init__(
        self,
        base_url: str = "https://api.fda.gov",
        timeout_budget_ms: int = 3000,
        limit: int = 5,
    ) -> None:
        super().__init__(
            SourceDescriptor(
                id=SOURCE_ID,
                kind=SourceKind.EXTERNAL,
                timeout_budget_ms=timeout_budget_ms,
                categories=frozenset({"medication", "supplement"}),
            )
        )
        self.base_url = base_url.rstrip("/")
        self.limit = limit

    async def _query(self, term: str, limit: int) -> list[dict[str, Any]]:
        escaped = term.replace('"', " ").strip()
        async with httpx.AsyncClient(timeout=self.descriptor.timeout_seconds) as client:
            response = await client.get(
                f"{self.base_url}/drug/ndc.json",
                params={"search": f'brand_name:"{escaped}"', "limit": limit},
            )
            # openFDA answers 404 when nothing matches.
            if response.status_code == 404:
                logger.debug("fda no match term=%r", escaped)
                return []
            response.raise_for_status()
            payload = response.json()
        return payload.get("results") or []

    async def _search(self, query: str) -> list[ExternalProduct]:
        return [self._to_product(item, query, SEARCH_CONFIDENCE) for item in await self._query(query, self.limit)]

    async def _validate(self, identifier: str, name: str | None) -> VerificationResult:
        results = await self._query(name or identifier, 1)
        if not results:
            return VerificationResult(
                found=False,
                verified=False,
                confidence=0.0,
                source=self.id,
                sources=[SourceStatus(name=self.id, status="success")],
            )
        product = self._to_product(results[0], name or identifier, NAME_MATCH_CONFIDENCE)
        return VerificationResult(
            found=True,
            verified=product.verified,
            confidence=product.confidence,
            source=self.id,
            product=product,
            sources=[SourceStatus(name=self.id, status="success", verified=product.verified, confidence=product.confidence)],
        )

    def _to_product(self, drug: dict[str, Any], fallback_name: str, confidence: float) -> ExternalProduct:
        return ExternalProduct(
            id=str(drug.get("product_ndc") or drug.get("product_id") or fallback_name),
            name=drug.get("brand_name") or drug.get("generic_name") or fallback_name,
            brand=drug.get("labeler_name") or None,
            source=self.id,
            confidence=confidence,
            verified=True,
            category="medication",
        )
