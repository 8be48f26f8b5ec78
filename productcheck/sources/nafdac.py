"""NAFDAC Green Book adapter: Nigerian registry covering every product category."""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from ..categories import CATEGORY_KEYWORDS
from ..models import ExternalProduct, SourceStatus, VerificationResult
from .base import ExternalSource, SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

SOURCE_ID = "nafdac"
REGISTRY_CONFIDENCE = 0.8
MIN_NAME_LENGTH = 3

# Dosage forms and toiletries named in registry entries.
FORM_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("tablet", "medication"),
    ("capsule", "medication"),
    ("syrup", "medication"),
    ("injection", "medication"),
    ("cream", "cosmetics"),
    ("lotion", "cosmetics"),
    ("soap", "personal_care"),
)


def guess_category(name: str) -> Optional[str]:
    normalized = name.lower()
    for keyword, group in FORM_KEYWORDS + CATEGORY_KEYWORDS:
        if keyword in normalized:
            return group
    return None


def _cell_text(cell) -> str:
    return " ".join(cell.get_text(" ").split())


def parse_registry_rows(html: str, limit: int) -> list[dict[str, str]]:
    """Rows of the Green Book result table as name / manufacturer / number / date."""
    soup = BeautifulSoup(html, "html.parser")
    rows: list[dict[str, str]] = []
    for row in soup.find_all("tr"):
        cells = [_cell_text(cell) for cell in row.find_all("td")]
        if len(cells) < 3 or len(cells[0]) < MIN_NAME_LENGTH:
            continue
        rows.append(
            {
                "name": cells[0],
                "manufacturer": cells[1],
                "registration_number": cells[2],
                "registration_date": cells[3] if len(cells) > 3 else "",
            }
        )
        if len(rows) >= limit:
            break
    return rows


class NafdacSource(ExternalSource):
    """Registered products are approved ones, so every match counts as verified."""

    def __init__(
        self,
        base_url: str = "https://greenbook.nafdac.gov.ng",
        timeout_budget_ms: int = 3000,
        limit: int = 5,
    ) -> None:
        super().__init__(
            SourceDescriptor(
                id=SOURCE_ID,
                kind=SourceKind.EXTERNAL,
                timeout_budget_ms=timeout_budget_ms,
            )
        )
        self.base_url = base_url.rstrip("/")
        self.limit = limit

    async def _lookup(self, term: str, limit: int) -> list[ExternalProduct]:
        async with httpx.AsyncClient(timeout=self.descriptor.timeout_seconds) as client:
            response = await client.get(
                f"{self.base_url}/Search",
                params={"searchTerm": term},
                headers={"Accept": "text/html"},
            )
            if response.status_code == 404:
                logger.debug("nafdac no match term=%r", term)
                return []
            response.raise_for_status()
            html = response.text
        return [self._to_product(row) for row in parse_registry_rows(html, limit)]

    async def _search(self, query: str) -> list[ExternalProduct]:
        return await self._lookup(query, self.limit)

    async def _validate(self, identifier: str, name: str | None) -> VerificationResult:
        products = await self._lookup(name or identifier, self.limit)
        if not products:
            return VerificationResult(
                found=False,
                verified=False,
                source=self.id,
                sources=[SourceStatus(name=self.id, status="success")],
            )
        best, *alternatives = products
        return VerificationResult(
            found=True,
            verified=True,
            confidence=best.confidence,
            source=self.id,
            product=best,
            alternatives=alternatives,
            sources=[SourceStatus(name=self.id, status="success", verified=True, confidence=best.confidence)],
        )

    def _to_product(self, row: dict[str, str]) -> ExternalProduct:
        return ExternalProduct(
            id=row["registration_number"] or row["name"],
            name=row["name"],
            brand=row["manufacturer"] or None,
            source=self.id,
            confidence=REGISTRY_CONFIDENCE,
            verified=True,
            category=guess_category(row["name"]),
        )
