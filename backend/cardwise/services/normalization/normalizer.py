"""Response normalizer: any provider result -> canonical ``RecommendationResponse``.

Strategy order:
1. structured payload from a schema-constrained provider
2. JSON object embedded in free text
3. text extraction with fallback scoring

Never raises on malformed provider output.
"""

import logging
import math
import re
from datetime import date, datetime, timezone
from typing import Any

from cardwise.data.issuers import is_official_source
from cardwise.schemas.preferences import UserPreferences
from cardwise.schemas.recommendation import (
    UNKNOWN,
    AnnualFee,
    CardRecommendation,
    ParseStrategy,
    RecommendationResponse,
    ResponseMetadata,
    RewardCategory,
    Rewards,
    SearchMetadata,
    UserAnalysis,
    VerificationDetails,
)
from cardwise.services.normalization.card_extractor import ExtractedCard, extract_cards
from cardwise.services.normalization.config import DEFAULT_CONFIG, FALLBACK_NOTICE, NormalizerConfig
from cardwise.services.normalization.json_extractor import JSONExtractionError, extract_json_object
from cardwise.services.providers.base import RawProviderResult, ResultShape

logger = logging.getLogger(__name__)

# An embedded object must carry one of these to count as a recommendation
RECOMMENDATION_KEYS = ("recommendedCards", "summary")


# Lenient coercion helpers

def _as_str(value: Any, default: str = UNKNOWN) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _as_float(value: Any, default: float, low: float | None = None, high: float | None = None) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        match = re.search(r"-?\d+(?:\.\d+)?", value.replace(",", ""))
        value = float(match.group(0)) if match else None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    result = float(value)
    if low is not None:
        result = max(low, result)
    if high is not None:
        result = min(high, result)
    return result


def _as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return default


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _apr_text(value: Any) -> str:
    # Older payloads nest the range as {"purchase": "..."}
    if isinstance(value, dict):
        value = value.get("purchase") or next((v for v in value.values() if isinstance(v, str)), None)
    return _as_str(value)


def _annual_fee(value: Any) -> AnnualFee:
    if isinstance(value, dict):
        return AnnualFee(amount=_as_float(value.get("amount"), 0.0, low=0), waived=_as_bool(value.get("waived")))
    return AnnualFee(amount=_as_float(value, 0.0, low=0))


def _rewards(value: Any) -> Rewards:
    data = _as_dict(value)
    categories = []
    for item in data.get("categories") or []:
        if isinstance(item, dict) and _as_str(item.get("category"), ""):
            categories.append(RewardCategory(
                category=_as_str(item.get("category")),
                rate=_as_float(item.get("rate"), 0.0, low=0),
                cap=_as_str(item.get("cap"), "None"),
            ))
    return Rewards(
        structure=_as_str(data.get("structure")),
        categories=categories,
        base_rate=_as_float(data.get("baseRate"), 0.0, low=0),
        estimated_annual_value=_as_float(data.get("estimatedAnnualValue"), 0.0, low=0),
    )


def _verification(value: Any, config: NormalizerConfig) -> VerificationDetails:
    data = _as_dict(value)
    v = config.verification
    confidence = _as_float(data.get("confidenceScore"), v.default_confidence, v.min_confidence, v.max_confidence)
    quality = _as_str(data.get("dataQuality"), "").lower()
    if quality not in ("high", "medium", "low"):
        quality = v.quality(confidence)
    return VerificationDetails(
        confidence_score=confidence,
        sources=_as_str_list(data.get("sources")),
        last_verified=_as_str(data.get("lastVerified")),
        data_quality=quality,
    )


def _coerce_card(item: Any, config: NormalizerConfig) -> tuple[float, CardRecommendation] | None:
    """``(original_rank, card)`` or None when the item has no card name."""
    if not isinstance(item, dict):
        return None
    name = _as_str(item.get("cardName") or item.get("name"), "")
    if not name:
        return None
    card = CardRecommendation(
        rank=1,
        card_name=name,
        issuer=_as_str(item.get("issuer")),
        overall_score=_as_float(item.get("overallScore"), 5.0, 0, 10),
        match_score=_as_float(item.get("matchScore"), 50.0, 0, 100),
        annual_fee=_annual_fee(item.get("annualFee")),
        apr_range=_apr_text(item.get("aprRange")),
        rewards=_rewards(item.get("rewards")),
        verification_details=_verification(item.get("verificationDetails"), config),
    )
    return _as_float(item.get("rank"), float("inf")), card


def rerank(cards: list[CardRecommendation]) -> list[CardRecommendation]:
    """Assign ranks ``1..N`` in list order."""
    return [card.model_copy(update={"rank": i}) for i, card in enumerate(cards, start=1)]


def _coerce_cards(items: Any, config: NormalizerConfig) -> list[CardRecommendation]:
    if not isinstance(items, list):
        return []
    ranked = [c for c in (_coerce_card(item, config) for item in items) if c is not None]
    # sorted() is stable: equal or missing ranks keep provider order
    ranked = sorted(ranked, key=lambda pair: pair[0])
    return rerank([card for _, card in ranked])


def _coerce_response(data: dict, config: NormalizerConfig) -> RecommendationResponse:
    search = _as_dict(data.get("searchMetadata"))
    analysis = _as_dict(data.get("userAnalysis"))
    return RecommendationResponse(
        success=_as_bool(data.get("success"), True),
        summary=_as_str(data.get("summary"), ""),
        search_metadata=SearchMetadata(
            total_searches=int(_as_float(search.get("totalSearches"), 0, low=0)),
            sources_consulted=_as_str_list(search.get("sourcesConsulted")),
            data_freshness=_as_str(search.get("dataFreshness")),
            last_updated=_as_str(search.get("lastUpdated")),
        ),
        recommended_cards=_coerce_cards(data.get("recommendedCards"), config),
        alternative_cards=_coerce_cards(data.get("alternativeCards"), config),
        user_analysis=UserAnalysis(
            credit_profile=_as_str(analysis.get("creditProfile")),
            spending_pattern=_as_str(analysis.get("spendingPattern"), "Not analyzed"),
            recommendations=_as_str_list(analysis.get("recommendations")),
        ),
    )


class ResponseNormalizer:
    def __init__(self, config: NormalizerConfig = DEFAULT_CONFIG):
        self.config = config

    def normalize(
        self,
        raw: RawProviderResult,
        preferences: UserPreferences,
        *,
        processing_time_ms: int = 0,
        today: date | None = None,
    ) -> RecommendationResponse:
        today = today or date.today()
        parse_error: str | None = None

        if raw.shape is ResultShape.STRUCTURED and isinstance(raw.data, dict):
            response = _coerce_response(raw.data, self.config)
            strategy = ParseStrategy.STRUCTURED
        else:
            try:
                response = _coerce_response(extract_json_object(raw.text, RECOMMENDATION_KEYS), self.config)
                strategy = ParseStrategy.EMBEDDED_JSON
            except JSONExtractionError as e:
                parse_error = str(e)
                logger.info(f"{raw.provider.value}: no usable JSON ({e}), falling back to text extraction")
                response = self.from_text(raw.text, preferences, today=today)
                strategy = ParseStrategy.TEXT_EXTRACTION

        response.response_metadata = ResponseMetadata(
            provider=raw.provider.value,
            model=raw.model or UNKNOWN,
            processing_time_ms=processing_time_ms,
            processing_time=f"{processing_time_ms}ms",
            timestamp=datetime.now(timezone.utc).isoformat(),
            parse_strategy=strategy,
            parse_error=parse_error,
        )
        return response

    # Text-extraction fallback

    def from_text(self, text: str, preferences: UserPreferences, *, today: date | None = None) -> RecommendationResponse:
        today = today or date.today()
        cards = self.cards_from_text(text, preferences, today=today)
        sources: list[str] = []
        for card in cards:
            for source in card.verification_details.sources:
                if source not in sources:
                    sources.append(source)

        verified = [c.verification_details.last_verified for c in cards if c.verification_details.last_verified != UNKNOWN]
        fresh = any(not _is_stale(v, today, self.config) for v in verified)

        excerpt = _excerpt(text, self.config.summary_excerpt_chars)
        return RecommendationResponse(
            success=bool(cards),
            summary=f"{FALLBACK_NOTICE}\n\n{excerpt}" if excerpt else FALLBACK_NOTICE,
            search_metadata=SearchMetadata(
                total_searches=0,
                sources_consulted=sources,
                data_freshness="current" if fresh else UNKNOWN,
                last_updated=today.isoformat(),
            ),
            recommended_cards=cards,
            user_analysis=_user_analysis(preferences),
        )

    def cards_from_text(
        self, text: str, preferences: UserPreferences, *, today: date | None = None
    ) -> list[CardRecommendation]:
        """Extract, score, sort and re-rank the cards mentioned in ``text``."""
        today = today or date.today()
        cards = [self._score(card, preferences, today) for card in extract_cards(text or "")]
        # Stable: ties keep order of appearance
        cards.sort(key=lambda c: c.overall_score, reverse=True)
        return rerank(cards)

    def _score(self, card: ExtractedCard, preferences: UserPreferences, today: date) -> CardRecommendation:
        s = self.config.fallback
        match, overall = s.base_match, s.base_overall

        if (
            preferences.credit_tier is not None
            and card.credit_requirement is not None
            and preferences.credit_tier.level >= card.credit_requirement.level
        ):
            match += s.credit_match_bonus
            overall += s.credit_overall_bonus

        if (
            preferences.annual_fee_tolerance is not None
            and card.annual_fee is not None
            and card.annual_fee <= preferences.annual_fee_tolerance
        ):
            match += s.fee_match_bonus
            overall += s.fee_overall_bonus

        card_categories = [c.category for c in card.categories]
        if any(_category_matches(user, card_categories) is not None for user in preferences.spending_categories):
            match += s.category_match_bonus
            overall += s.category_overall_bonus

        return CardRecommendation(
            rank=1,
            card_name=card.name,
            issuer=card.issuer or UNKNOWN,
            overall_score=min(overall, s.max_overall),
            match_score=min(match, s.max_match),
            annual_fee=AnnualFee(amount=card.annual_fee or 0.0, waived=card.fee_waived),
            apr_range=card.apr_range or UNKNOWN,
            rewards=Rewards(
                structure={"%": "cashback", "x": "points"}.get(card.reward_unit or "", UNKNOWN),
                categories=[RewardCategory(category=c.category, rate=c.rate, cap=c.cap) for c in card.categories],
                base_rate=card.base_rate or 0.0,
                estimated_annual_value=estimated_annual_value(card, preferences),
            ),
            verification_details=self._verify(card, today),
        )

    def _verify(self, card: ExtractedCard, today: date) -> VerificationDetails:
        v = self.config.verification
        if card.confidence is not None:
            confidence = card.confidence
        elif card.unverified:
            confidence = v.unverified_confidence
        else:
            confidence = v.default_confidence

        if any(is_official_source(source) for source in card.sources):
            confidence += v.official_source_bonus
        if len(card.sources) >= v.multi_source_min:
            confidence += v.multi_source_bonus
        if card.last_verified and _is_stale(card.last_verified, today, self.config):
            confidence -= v.stale_penalty
        confidence = max(v.min_confidence, min(v.max_confidence, confidence))

        return VerificationDetails(
            confidence_score=confidence,
            sources=card.sources,
            last_verified=card.last_verified or UNKNOWN,
            data_quality=v.quality(confidence),
        )


def _category_matches(user_category: str, card_categories: list[str]) -> str | None:
    """Card category covering ``user_category`` ("dining" ~ "dining & restaurants")."""
    user = user_category.casefold()
    for category in card_categories:
        other = category.casefold()
        if user in other or other in user:
            return category
    return None


def estimated_annual_value(card: ExtractedCard, preferences: UserPreferences) -> float:
    """Sum of monthly spend x matched rate (base rate otherwise) x 12 / 100."""
    rates = {c.category: c.rate for c in card.categories}
    base = card.base_rate or 0.0
    total = 0.0
    for category, monthly in preferences.category_spending.items():
        matched = _category_matches(category, list(rates))
        rate = rates[matched] if matched is not None else base
        total += monthly * rate * 12 / 100
    return round(total, 2)


def _is_stale(last_verified: str, today: date, config: NormalizerConfig) -> bool:
    try:
        verified = date.fromisoformat(last_verified)
    except ValueError:
        return False
    return (today - verified).days > config.verification.stale_after_days


def _excerpt(text: str, limit: int) -> str:
    cleaned = re.sub(r"\s+", " ", (text or "").replace("**", "")).strip()
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[:limit].rsplit(" ", 1)[0] + "..."


def _user_analysis(preferences: UserPreferences) -> UserAnalysis:
    pattern = "Not analyzed"
    if preferences.spending_categories:
        pattern = f"Spending focused on {', '.join(preferences.spending_categories[:5])}"
    return UserAnalysis(
        credit_profile=preferences.credit_tier.value if preferences.credit_tier else UNKNOWN,
        spending_pattern=pattern,
    )
