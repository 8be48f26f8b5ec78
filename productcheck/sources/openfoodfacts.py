"""Open Food Facts adapter (barcode lookup and name search)."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import SourceFailureError
from ..models import ExternalProduct, SourceStatus, VerificationResult
from ..utils import clean_barcode, looks_like_barcode
from .base import ExternalSource, SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

SOURCE_ID = "openfoodfacts"
SEARCH_FIELDS = "code,product_name,brands,image_url,nutriscore_grade,categories"
NUTRI_GRADES = {"a", "b", "c", "d", "e"}
# Confidence attached to list entries and to name / barcode hits.
SEARCH_CONFIDENCE = 0.8
NAME_MATCH_CONFIDENCE = 0.5
BARCODE_MATCH_CONFIDENCE = 0.8


class OpenFoodFactsSource(ExternalSource):
    def __init__(
        self,
        base_url: str = "https://world.openfoodfacts.org",
        timeout_budget_ms: int = 3000,
        page_size: int = 5,
    ) -> None:
        super().__init__(
            SourceDescriptor(
                id=SOURCE_ID,
                kind=SourceKind.EXTERNAL,
                timeout_budget_ms=timeout_budget_ms,
                categories=frozenset({"food", "supplement"}),
            )
        )
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.descriptor.timeout_seconds) as client:
            response = await client.get(f"{self.base_url}{path}", params=params, headers={"Accept": "application/json"})
            response.raise_for_status()
            payload = response.json()
        if not isinstance(payload, dict):
            raise SourceFailureError(self.id, "unexpected payload shape")
        return payload

    async def _search(self, query: str) -> list[ExternalProduct]:
        payload = await self._get(
            "/cgi/search.pl",
            params={
                "search_terms": query,
                "json": 1,
                "page_size": self.page_size,
                "fields": SEARCH_FIELDS,
            },
        )
        products = [self._to_product(item, SEARCH_CONFIDENCE) for item in payload.get("products") or []]
        return [product for product in products if product is not None]

    async def _validate(self, identifier: str, name: str | None) -> VerificationResult:
        if looks_like_barcode(identifier):
            barcode = clean_barcode(identifier)
            payload = await self._get(f"/api/v0/product/{barcode}.json")
            if payload.get("status") == 1 and payload.get("product"):
                product = self._to_product({"code": barcode, **payload["product"]}, BARCODE_MATCH_CONFIDENCE)
                if product is not None:
                    return self._found(product)
            if not name:
                return self._not_found()

        payload = await self._get(
            "/cgi/search.pl",
            params={"search_terms": name or identifier, "json": 1, "page_size": 1, "fields": SEARCH_FIELDS},
        )
        for item in payload.get("products") or []:
            product = self._to_product(item, NAME_MATCH_CONFIDENCE)
            if product is not None:
                return self._found(product)
        return self._not_found()

    def _to_product(self, item: dict[str, Any], confidence: float) -> ExternalProduct | None:
        code = item.get("code")
        name = (item.get("product_name") or "").strip()
        if not code and not name:
            return None
        grade = item.get("nutriscore_grade")
        return ExternalProduct(
            id=str(code or name),
            name=name or "Unknown Product",
            brand=item.get("brands") or None,
            source=self.id,
            confidence=confidence,
            verified=True,
            category="food",
            image_url=item.get("image_url") or None,
            nutri_score=grade.upper() if grade in NUTRI_GRADES else None,
        )

    def _found(self, product: ExternalProduct) -> VerificationResult:
        return VerificationResult(
            found=True,
            verified=product.verified,
            confidence=product.confidence,
            source=self.id,
            product=product,
            sources=[SourceStatus(name=self.id, status="success", verified=product.verified, confidence=product.confidence)],
        )

    def _not_found(self) -> VerificationResult:
        return VerificationResult(
            found=False,
            verified=False,
            confidence=0.0,
            source=self.id,
            sources=[SourceStatus(name=self.id, status="success")],
        )
