"""Internal catalog source backed by Elasticsearch.

Only entries in the ``approved`` state are ever offered as suggestions. A
catalog entry flagged ``counterfeit`` is still looked up during verification
so the verdict can say so explicitly.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from elasticsearch import ApiError, Elasticsearch, TransportError

from ..errors import SourceFailureError
from ..models import InternalProduct, InternalVerification, SearchFilters
from ..phonetics import normalize_query, to_phonetic, transliterate_text
from ..utils import clean_barcode, looks_like_barcode
from .base import SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

SOURCE_ID = "internal"
APPROVED = "approved"
COUNTERFEIT = "counterfeit"
SIMILAR_LIMIT = 5

TEXT_FIELDS = ["name^3", "name.autocomplete^1.5", "manufacturer_name"]
SOURCE_FIELDS = [
    "id",
    "name",
    "manufacturer_name",
    "status",
    "category",
    "nutri_score",
    "image_url",
    "country",
    "state",
    "registration_date",
    "certification_number",
]


def _escape_wildcard(text: str) -> str:
    return text.replace("\\", "\\\\").replace("*", "\\*").replace("?", "\\?")


def _filter_clauses(filters: SearchFilters | None) -> List[dict]:
    if filters is None:
        return []
    clauses: List[dict] = []
    if filters.category:
        clauses.append({"term": {"category": filters.category.strip().lower()}})
    if filters.nutri_score:
        clauses.append({"terms": {"nutri_score": [grade.strip().upper() for grade in filters.nutri_score]}})
    if filters.country:
        clauses.append({"term": {"country": filters.country.strip().lower()}})
    if filters.state:
        clauses.append({"term": {"state": filters.state.strip().lower()}})
    return clauses


def build_search_query(query: str, filters: SearchFilters | None, limit: int) -> Dict[str, Any]:
    """Substring, fuzzy and phonetic matching over approved catalog names."""

    lowered = query.strip().lower()
    normalized_q = normalize_query(query)
    transliterated_q = transliterate_text(query)
    phonetic_q = to_phonetic(normalized_q) if normalized_q else ""

    should: List[dict] = [
        {
            "wildcard": {
                "name.keyword": {
                    "value": f"*{_escape_wildcard(lowered)}*",
                    "case_insensitive": True,
                    "boost": 3.0,
                }
            }
        },
        {"match_phrase_prefix": {"name": {"query": lowered, "boost": 2.0}}},
    ]
    if normalized_q:
        should.append(
            {
                "multi_match": {
                    "query": normalized_q,
                    "fields": TEXT_FIELDS,
                    "type": "most_fields",
                    "operator": "and",
                    "fuzziness": "AUTO",
                    "boost": 1.5,
                }
            }
        )
    if transliterated_q and transliterated_q != normalized_q:
        should.append({"match": {"name_translit": {"query": transliterated_q, "fuzziness": "AUTO", "boost": 1.2}}})
    if phonetic_q:
        should.append({"match": {"phonetic": {"query": phonetic_q, "boost": 1.0}}})

    body = {
        "size": limit,
        "_source": SOURCE_FIELDS,
        "sort": ["_score", {"name.keyword": "asc"}],
        "query": {
            "bool": {
                "filter": [{"term": {"status": APPROVED}}, *_filter_clauses(filters)],
                "should": should,
                "minimum_should_match": 1,
            }
        },
    }
    logger.debug("catalog search payload=%s", body)
    return body


def build_verify_query(query: str, filters: SearchFilters | None) -> Dict[str, Any]:
    """Best single match among approved and counterfeit-flagged entries."""

    status_filter = {"terms": {"status": [APPROVED, COUNTERFEIT]}}
    if looks_like_barcode(query):
        match: dict = {"term": {"barcode": clean_barcode(query)}}
    else:
        lowered = query.strip().lower()
        match = {
            "bool": {
                "should": [
                    {"term": {"name.keyword": {"value": lowered, "case_insensitive": True, "boost": 5.0}}},
                    {"match_phrase": {"name": {"query": lowered, "boost": 2.0}}},
                    {
                        "wildcard": {
                            "name.keyword": {"value": f"*{_escape_wildcard(lowered)}*", "case_insensitive": True}
                        }
                    },
                ],
                "minimum_should_match": 1,
            }
        }
    return {
        "size": 1,
        "_source": SOURCE_FIELDS,
        "query": {"bool": {"filter": [status_filter, *_filter_clauses(filters)], "must": [match]}},
    }


def _to_product(hit: dict) -> InternalProduct:
    source = hit.get("_source", {})
    status = source.get("status") or APPROVED
    return InternalProduct(
        id=str(source.get("id") or hit.get("_id")),
        name=source.get("name") or "",
        manufacturer_name=source.get("manufacturer_name"),
        verified=status == APPROVED,
        confidence=0.95 if status == APPROVED else 0.6,
        status=status,
        category=source.get("category"),
        nutri_score=source.get("nutri_score"),
        image_url=source.get("image_url"),
        country=source.get("country"),
        state=source.get("state"),
        registration_date=source.get("registration_date"),
        certification_number=source.get("certification_number"),
    )


class ElasticsearchCatalog:
    """Internal catalog adapter; treated as always available, no timeout budget."""

    def __init__(
        self,
        es: Elasticsearch,
        index: str,
        *,
        verification_index: str | None = None,
        limit: int = 5,
    ) -> None:
        self.descriptor = SourceDescriptor(id=SOURCE_ID, kind=SourceKind.INTERNAL)
        self._es = es
        self.index = index
        self.verification_index = verification_index
        self.limit = limit

    async def _search(self, body: Dict[str, Any]) -> List[dict]:
        try:
            response = await asyncio.to_thread(self._es.search, index=self.index, body=body)
        except (ApiError, TransportError) as exc:
            raise SourceFailureError(SOURCE_ID, str(exc)) from exc
        return response.get("hits", {}).get("hits", [])

    async def search(self, query: str, filters: SearchFilters | None = None) -> list[InternalProduct]:
        if not query.strip():
            return []
        hits = await self._search(build_search_query(query, filters, self.limit))
        products = [_to_product(hit) for hit in hits]
        logger.info("catalog search q=%r filters=%s hits=%s", query, filters, len(products))
        return products

    async def verify(
        self,
        query: str,
        user_id: str | None = None,
        filters: SearchFilters | None = None,
    ) -> InternalVerification:
        hits = await self._search(build_verify_query(query, filters))
        if hits:
            product = _to_product(hits[0])
            result = "counterfeit" if product.status == COUNTERFEIT else "verified"
            verification = InternalVerification(result=result, product=product)
        else:
            first_word = query.strip().split(" ")[0] if query.strip() else ""
            similar = await self.search(first_word, filters) if first_word else []
            verification = InternalVerification(result="not_found", similar_products=similar[:SIMILAR_LIMIT])

        logger.info("catalog verify q=%r result=%s", query, verification.result)
        if user_id:
            await self._record_attempt(user_id, query, verification)
        return verification

    async def _record_attempt(self, user_id: str, query: str, verification: InternalVerification) -> None:
        if not self.verification_index:
            return
        document = {
            "user_id": user_id,
            "product_id": verification.product.id if verification.product else None,
            "result": verification.result,
            "search_query": query,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await asyncio.to_thread(self._es.index, index=self.verification_index, document=document)
        except (ApiError, TransportError) as exc:
            logger.warning("Failed to record verification for user=%s: %s", user_id, exc)
