"""Canonical recommendation response returned by every provider path.

All fields carry defaults so a sparse provider payload still produces the
complete shape; nothing required is ever ``None``.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNKNOWN = "Unknown"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ParseStrategy(str, Enum):
    STRUCTURED = "structured"
    EMBEDDED_JSON = "embedded_json"
    TEXT_EXTRACTION = "text_extraction"


class SearchMetadata(_CamelModel):
    total_searches: int = 0
    sources_consulted: list[str] = Field(default_factory=list)
    data_freshness: str = UNKNOWN
    last_updated: str = UNKNOWN


class AnnualFee(_CamelModel):
    amount: float = 0.0
    waived: bool = False


class RewardCategory(_CamelModel):
    category: str
    rate: float = 0.0
    cap: str = "None"


class Rewards(_CamelModel):
    structure: str = UNKNOWN
    categories: list[RewardCategory] = Field(default_factory=list)
    base_rate: float = 0.0
    estimated_annual_value: float = 0.0


class VerificationDetails(_CamelModel):
    confidence_score: float = 5.0
    sources: list[str] = Field(default_factory=list)
    last_verified: str = UNKNOWN
    data_quality: str = "medium"


class CardRecommendation(_CamelModel):
    rank: int = Field(ge=1)
    card_name: str
    issuer: str = UNKNOWN
    overall_score: float = Field(default=5.0, ge=0, le=10)
    match_score: float = Field(default=50.0, ge=0, le=100)
    annual_fee: AnnualFee = Field(default_factory=AnnualFee)
    apr_range: str = UNKNOWN
    rewards: Rewards = Field(default_factory=Rewards)
    verification_details: VerificationDetails = Field(default_factory=VerificationDetails)


class UserAnalysis(_CamelModel):
    credit_profile: str = UNKNOWN
    spending_pattern: str = "Not analyzed"
    recommendations: list[str] = Field(default_factory=list)


class ResponseMetadata(_CamelModel):
    provider: str = UNKNOWN
    model: str = UNKNOWN
    processing_time_ms: int = 0
    processing_time: str = "0ms"
    timestamp: str = ""
    parse_strategy: ParseStrategy = ParseStrategy.STRUCTURED
    parse_error: str | None = None
    fallback_used: bool = False
    original_provider: str | None = None
    original_error: str | None = None


class RecommendationResponse(_CamelModel):
    success: bool = True
    summary: str = ""
    search_metadata: SearchMetadata = Field(default_factory=SearchMetadata)
    recommended_cards: list[CardRecommendation] = Field(default_factory=list)
    alternative_cards: list[CardRecommendation] = Field(default_factory=list)
    user_analysis: UserAnalysis = Field(default_factory=UserAnalysis)
    response_metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
