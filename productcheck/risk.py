"""Risk summary derived from an external verification result."""
from __future__ import annotations

from .models import RiskAssessment, VerificationResult

LOW_CONFIDENCE = 0.7


def assess_risk(result: VerificationResult) -> RiskAssessment:
    risk_factors: list[str] = []
    recommendations: list[str] = []

    if not result.found:
        risk_factors.append("Product not found in external databases")
        recommendations.append("Verify product details with manufacturer directly")
    if not result.verified:
        risk_factors.append("Product verification failed in external sources")
        recommendations.append("Exercise caution and seek alternative verified products")
    if result.confidence < LOW_CONFIDENCE:
        risk_factors.append("Low confidence in product data")
        recommendations.append("Cross-check product information from multiple sources")

    if not risk_factors and result.verified:
        overall = "low"
        recommendations.append("Product appears safe based on available data")
    elif len(risk_factors) <= 2 and result.found:
        overall = "medium"
    else:
        overall = "high"

    recommendations.append("Always check expiration dates and storage instructions")
    recommendations.append("Report any adverse reactions to relevant authorities")
    return RiskAssessment(
        overall_risk=overall,
        risk_factors=risk_factors,
        recommendations=recommendations,
        confidence=result.confidence,
    )
