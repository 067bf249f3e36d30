from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CreditTier(str, Enum):
    POOR = "Poor"
    FAIR = "Fair"
    GOOD = "Good"
    VERY_GOOD = "Very Good"
    EXCELLENT = "Excellent"

    @property
    def level(self) -> int:
        return list(CreditTier).index(self)


class CardType(str, Enum):
    CASHBACK = "cashback"
    TRAVEL = "travel"
    REWARDS = "rewards"
    BUSINESS = "business"
    SECURED = "secured"
    STUDENT = "student"


class UserPreferences(BaseModel):
    """Bounded, validated preferences. Build with ``validate_preferences``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    credit_score: int | None = None
    credit_tier: CreditTier | None = None
    spending_categories: list[str] = Field(default_factory=list)
    category_spending: dict[str, int] = Field(default_factory=dict)
    annual_income: int | None = None
    monthly_spending: int | None = None
    annual_fee_tolerance: int | None = None
    card_types: list[CardType] = Field(default_factory=list)

    def to_raw(self) -> dict:
        """Client-shaped dict; feeding it back to the validator is a no-op."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
