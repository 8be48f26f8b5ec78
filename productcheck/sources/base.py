"""Adapter contracts shared by the internal catalog and external databases."""
from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from ..categories import map_category
from ..errors import SourceError, SourceFailureError, SourceTimeoutError
from ..models import ExternalProduct, InternalProduct, InternalVerification, SearchFilters, VerificationResult

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


@dataclass(frozen=True)
class SourceDescriptor:
    id: str
    kind: SourceKind
    timeout_budget_ms: Optional[int] = None
    categories: frozenset[str] = field(default_factory=frozenset)

    @property
    def timeout_seconds(self) -> Optional[float]:
        if self.timeout_budget_ms is None:
            return None
        return self.timeout_budget_ms / 1000


class InternalSource(Protocol):
    descriptor: SourceDescriptor

    async def search(self, query: str, filters: SearchFilters | None = None) -> list[InternalProduct]: ...

    async def verify(
        self,
        query: str,
        user_id: str | None = None,
        filters: SearchFilters | None = None,
    ) -> InternalVerification: ...


class ExternalSource(abc.ABC):
    """Base for network-backed product databases.

    ``quick_search`` degrades to an empty list on timeout or failure;
    ``validate`` raises :class:`SourceTimeoutError` / :class:`SourceFailureError`
    because the user explicitly asked for it.
    """

    def __init__(self, descriptor: SourceDescriptor) -> None:
        self.descriptor = descriptor

    @property
    def id(self) -> str:
        return self.descriptor.id

    def covers(self, category: str | None) -> bool:
        if not category or not self.descriptor.categories:
            return True
        return map_category(category) in self.descriptor.categories

    async def quick_search(self, query: str) -> list[ExternalProduct]:
        try:
            products = await asyncio.wait_for(self._search(query), timeout=self.descriptor.timeout_seconds)
        except asyncio.TimeoutError:
            logger.info("quick_search source=%s timed out after %sms q=%r", self.id, self.descriptor.timeout_budget_ms, query)
            return []
        except Exception as exc:
            logger.warning("quick_search source=%s failed q=%r: %s", self.id, query, exc)
            return []
        return [self._tag(product) for product in products]

    async def validate(self, identifier: str, name: str | None = None) -> VerificationResult:
        try:
            result = await asyncio.wait_for(self._validate(identifier, name), timeout=self.descriptor.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise SourceTimeoutError(self.id, self.descriptor.timeout_budget_ms or 0) from exc
        except SourceError:
            raise
        except Exception as exc:
            raise SourceFailureError(self.id, str(exc) or type(exc).__name__) from exc
        return result

    def _tag(self, product: ExternalProduct) -> ExternalProduct:
        if product.source == self.id:
            return product
        return product.model_copy(update={"source": self.id})

    @abc.abstractmethod
    async def _search(self, query: str) -> list[ExternalProduct]:
        """Fetch products matching ``query``."""

    @abc.abstractmethod
    async def _validate(self, identifier: str, name: str | None) -> VerificationResult:
        """Look up a single product by barcode or name."""
