"""Normalizer configuration: single source for scoring constants."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FallbackScoring:
    """Scores for cards recovered from free text."""
    base_match: float = 50.0
    base_overall: float = 5.0
    credit_match_bonus: float = 20.0      # user tier meets card requirement
    credit_overall_bonus: float = 1.5
    fee_match_bonus: float = 15.0         # annual fee within tolerance
    fee_overall_bonus: float = 1.0
    category_match_bonus: float = 25.0    # any spending category overlap
    category_overall_bonus: float = 2.0
    max_match: float = 100.0
    max_overall: float = 10.0


@dataclass(frozen=True)
class VerificationScoring:
    """Confidence adjustments from sources and recency."""
    default_confidence: float = 5.0
    unverified_confidence: float = 2.0
    official_source_bonus: float = 3.0
    multi_source_bonus: float = 1.0
    multi_source_min: int = 2
    stale_penalty: float = 1.0
    stale_after_days: int = 30
    min_confidence: float = 1.0
    max_confidence: float = 10.0
    high_quality_at: float = 8.0
    medium_quality_at: float = 5.0

    def quality(self, confidence: float) -> str:
        if confidence >= self.high_quality_at:
            return "high"
        if confidence >= self.medium_quality_at:
            return "medium"
        return "low"


@dataclass(frozen=True)
class NormalizerConfig:
    fallback: FallbackScoring = field(default_factory=FallbackScoring)
    verification: VerificationScoring = field(default_factory=VerificationScoring)
    summary_excerpt_chars: int = 400


FALLBACK_NOTICE = (
    "Structured recommendations were not available for this answer, so the cards "
    "below were extracted from the advisor's text. Verify terms with the issuer."
)

DEFAULT_CONFIG = NormalizerConfig()
