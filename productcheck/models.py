"""Pydantic models for products, verification payloads and suggestion state."""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SearchFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str | None = None
    nutri_score: list[str] | None = None
    country: str | None = None
    state: str | None = None

    def is_empty(self) -> bool:
        return not (self.category or self.nutri_score or self.country or self.state)

    def cache_suffix(self) -> str:
        """Canonical, order-independent rendering used in cache keys."""
        if self.is_empty():
            return ""
        parts = []
        if self.category:
            parts.append(f"category={self.category.strip().lower()}")
        if self.nutri_score:
            grades = ",".join(sorted({grade.strip().upper() for grade in self.nutri_score}))
            parts.append(f"nutri={grades}")
        if self.country:
            parts.append(f"country={self.country.strip().lower()}")
        if self.state:
            parts.append(f"state={self.state.strip().lower()}")
        return "|" + ";".join(parts)


class InternalProduct(BaseModel):
    """Catalog entry as returned by the internal source."""

    model_config = ConfigDict(frozen=True)

    origin: Literal["internal"] = "internal"
    id: str
    name: str
    manufacturer_name: str | None = None
    verified: bool = True
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    status: str = "approved"
    category: str | None = None
    nutri_score: str | None = None
    image_url: str | None = None
    country: str | None = None
    state: str | None = None
    registration_date: str | None = None
    certification_number: str | None = None


class ExternalProduct(BaseModel):
    """Product returned by an external database, tagged with its source id."""

    model_config = ConfigDict(frozen=True)

    origin: Literal["external"] = "external"
    id: str
    name: str
    brand: str | None = None
    source: str
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    verified: bool = False
    category: str | None = None
    image_url: str | None = None
    nutri_score: str | None = None


Product = Annotated[Union[InternalProduct, ExternalProduct], Field(discriminator="origin")]


class InternalVerification(BaseModel):
    """Raw verdict of the internal catalog."""

    model_config = ConfigDict(frozen=True)

    result: Literal["verified", "not_found", "counterfeit"]
    product: InternalProduct | None = None
    similar_products: list[InternalProduct] = Field(default_factory=list)


class SourceStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    status: Literal["success", "error", "timeout", "pending"]
    verified: bool = False
    confidence: float = 0.0
    detail: str | None = None


class VerificationResult(BaseModel):
    """Verdict of the external branch (or of a direct selection)."""

    model_config = ConfigDict(frozen=True)

    found: bool
    verified: bool
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    source: str
    product: Product | None = None
    alternatives: list[Product] = Field(default_factory=list)
    sources: list[SourceStatus] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_confidence(self) -> int:
        return round(self.confidence * 100)


class InternalVerdict(BaseModel):
    """Internal branch of a verification, shaped for display."""

    model_config = ConfigDict(frozen=True)

    product_name: str
    result: Literal["verified", "not_found", "counterfeit"]
    is_verified: bool
    manufacturer: str = "Unknown"
    registration_date: str = "N/A"
    certification_number: str = "N/A"
    product: InternalProduct | None = None
    similar_products: list[InternalProduct] = Field(default_factory=list)


class VerificationMode(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    COMBINED = "combined"


class SessionState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    RESOLVED = "resolved"
    PARTIAL = "partial"
    FAILED = "failed"


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall_risk: Literal["low", "medium", "high"]
    risk_factors: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = 0.0


class VerificationReport(BaseModel):
    """Joint outcome of a verification session.

    Both branches are kept side by side; no precedence is applied here.
    """

    model_config = ConfigDict(frozen=True)

    query: str
    mode: VerificationMode
    state: SessionState
    internal: InternalVerdict | None = None
    external: VerificationResult | None = None
    sources: list[SourceStatus] = Field(default_factory=list)
    risk: RiskAssessment | None = None
    errors: list[str] = Field(default_factory=list)


class SuggestionState(BaseModel):
    """Caller-visible suggestion list.

    Internal names occupy indices ``[0, len(suggestions))`` and external
    products follow them in :meth:`item_at`.
    """

    model_config = ConfigDict(frozen=True)

    query: str = ""
    suggestions: list[str] = Field(default_factory=list)
    external_products: list[ExternalProduct] = Field(default_factory=list)
    is_loading: bool = False

    def __len__(self) -> int:
        return len(self.suggestions) + len(self.external_products)

    def item_at(self, index: int) -> str | ExternalProduct:
        if index < 0 or index >= len(self):
            raise IndexError(index)
        if index < len(self.suggestions):
            return self.suggestions[index]
        return self.external_products[index - len(self.suggestions)]


class VerifyRequest(BaseModel):
    q: str = Field(..., description="Product name or barcode")
    mode: VerificationMode = VerificationMode.COMBINED
    barcode: str | None = None
    user_id: str | None = None


class SelectRequest(BaseModel):
    name: str | None = Field(None, description="Internal suggestion picked from the list")
    product: ExternalProduct | None = Field(None, description="External product picked from the list")
