"""
Provider scoring.

Score = health + language affinity + complexity fit
        + cost (economy tier only) + quality (premium tier only)

The numbers are tunable heuristics; what the router relies on is the shape:
a weighted sum, highest wins, ties broken by registration order.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from lingobridge.providers.base_provider import ProviderHealth, TranslationProvider
from lingobridge.translation.context_manager import has_technical_terms
from lingobridge.utils.constants import (
    ASIAN_LANGUAGES,
    AUTO_LANGUAGE,
    EUROPEAN_LANGUAGES,
    HealthStatus,
    LanguageFamily,
    QualityTier,
    TextComplexity,
)


@dataclass(frozen=True)
class ScoringWeights:
    healthy: float = 30
    degraded: float = 15
    unhealthy: float = 0
    max_affinity: float = 25
    max_complexity: float = 25
    max_cost: float = 20
    max_quality: float = 20
    # Complexity classifier thresholds (characters)
    simple_max_length: int = 50
    complex_min_length: int = 500
    large_context_length: int = 500

    def health_points(self, status: HealthStatus) -> float:
        return {
            HealthStatus.HEALTHY: self.healthy,
            HealthStatus.DEGRADED: self.degraded,
            HealthStatus.UNHEALTHY: self.unhealthy,
        }[status]


@dataclass(frozen=True)
class ProviderScore:
    provider: TranslationProvider
    score: float
    registration_index: int
    estimated_cost: Decimal
    breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def provider_id(self) -> str:
        return self.provider.provider_id


def classify_complexity(text: str, context: Optional[str] = None, weights: ScoringWeights = ScoringWeights()) -> TextComplexity:
    """
    simple:  shorter than simple_max_length and no context
    complex: longer than complex_min_length, a large context, or technical tokens
    medium:  everything else
    """
    if (
        len(text) > weights.complex_min_length
        or (context is not None and len(context) > weights.large_context_length)
        or has_technical_terms(text)
    ):
        return TextComplexity.COMPLEX
    if len(text) < weights.simple_max_length and not context:
        return TextComplexity.SIMPLE
    return TextComplexity.MEDIUM


def language_family(source_lang: str, target_lang: str) -> LanguageFamily:
    """
    european: both sides European (an unresolved source counts as matching)
    asian:    either side Asian
    other:    everything else
    """
    source = source_lang.split("-", 1)[0]
    target = target_lang.split("-", 1)[0]

    if source in ASIAN_LANGUAGES or target in ASIAN_LANGUAGES:
        return LanguageFamily.ASIAN
    if target in EUROPEAN_LANGUAGES and (source == AUTO_LANGUAGE or source in EUROPEAN_LANGUAGES):
        return LanguageFamily.EUROPEAN
    return LanguageFamily.OTHER


def score_provider(
    provider: TranslationProvider,
    health: ProviderHealth,
    *,
    family: LanguageFamily,
    complexity: TextComplexity,
    quality_tier: QualityTier,
    estimated_cost: Decimal,
    cheapest_cost: Decimal,
    registration_index: int,
    weights: ScoringWeights = ScoringWeights(),
) -> ProviderScore:
    breakdown = {
        "health": weights.health_points(health.status),
        "affinity": min(float(provider.language_affinity.get(family, 0)), weights.max_affinity),
        "complexity": min(float(provider.complexity_fit.get(complexity, 0)), weights.max_complexity),
        "cost": 0.0,
        "quality": 0.0,
    }

    if quality_tier == QualityTier.ECONOMY:
        if estimated_cost <= 0:
            breakdown["cost"] = weights.max_cost
        else:
            breakdown["cost"] = round(weights.max_cost * float(cheapest_cost / estimated_cost), 4)

    if quality_tier == QualityTier.PREMIUM:
        breakdown["quality"] = round(weights.max_quality * max(0.0, min(provider.quality_score, 1.0)), 4)

    return ProviderScore(
        provider=provider,
        score=round(sum(breakdown.values()), 4),
        registration_index=registration_index,
        estimated_cost=estimated_cost,
        breakdown=breakdown,
    )
