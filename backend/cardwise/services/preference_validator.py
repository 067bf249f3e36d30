"""Preference validator: raw client preferences -> bounded ``UserPreferences``.

Each field is checked on its own. A field that fails its type or range check
is dropped; nothing is clamped into range. Only a non-object input raises.
"""

import math
from collections.abc import Mapping
from typing import Any

from cardwise.errors import ValidationError
from cardwise.schemas.preferences import CardType, CreditTier, UserPreferences

MIN_CREDIT_SCORE = 300
MAX_CREDIT_SCORE = 850
MAX_ANNUAL_INCOME = 10_000_000       # exclusive
MAX_MONTHLY_SPENDING = 100_000       # exclusive
MAX_CATEGORY_SPENDING = 100_000      # inclusive, per category per month
MAX_ANNUAL_FEE_TOLERANCE = 10_000
MAX_CATEGORY_NAME_LENGTH = 50
MAX_CATEGORIES = 20


def credit_tier_for(score: int) -> CreditTier:
    if score >= 800:
        return CreditTier.EXCELLENT
    if score >= 740:
        return CreditTier.VERY_GOOD
    if score >= 670:
        return CreditTier.GOOD
    if score >= 580:
        return CreditTier.FAIR
    return CreditTier.POOR


def _as_int(value: Any) -> int | None:
    """Integer value of ``value`` or None. Booleans and fractions are rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if text.startswith("$"):
            text = text[1:]
        if text.isdigit():
            return int(text)
    return None


def _category_name(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    name = value.strip().lower()
    if not name or len(name) > MAX_CATEGORY_NAME_LENGTH:
        return None
    return name


def _spending(raw: Mapping) -> tuple[list[str], dict[str, int]]:
    names: list[str] = []
    amounts: dict[str, int] = {}

    categories = raw.get("spendingCategories")
    if isinstance(categories, Mapping):
        items = list(categories.items())
    elif isinstance(categories, (list, tuple)):
        items = [(c, None) for c in categories]
    else:
        items = []

    for key, amount in items:
        name = _category_name(key)
        if name is None or name in names:
            continue
        if len(names) >= MAX_CATEGORIES:
            break
        names.append(name)
        value = _as_int(amount)
        if value is not None and 0 <= value <= MAX_CATEGORY_SPENDING:
            amounts[name] = value

    # Amounts may also arrive separately (our own dumped output does this).
    extra = raw.get("categorySpending")
    if isinstance(extra, Mapping):
        for key, amount in extra.items():
            name = _category_name(key)
            value = _as_int(amount)
            if name in names and name not in amounts and value is not None and 0 <= value <= MAX_CATEGORY_SPENDING:
                amounts[name] = value

    return names, amounts


def _card_types(raw: Mapping) -> list[CardType]:
    values = raw.get("cardTypes")
    if not isinstance(values, (list, tuple)):
        return []
    valid = {t.value for t in CardType}
    result: list[CardType] = []
    for value in values:
        if isinstance(value, str) and value.strip().lower() in valid:
            card_type = CardType(value.strip().lower())
            if card_type not in result:
                result.append(card_type)
    return result


def _bounded(raw: Mapping, key: str, low: int, high: int, *, low_inclusive: bool, high_inclusive: bool) -> int | None:
    value = _as_int(raw.get(key))
    if value is None:
        return None
    if value < low or (value == low and not low_inclusive):
        return None
    if value > high or (value == high and not high_inclusive):
        return None
    return value


def validate_preferences(raw: Any) -> UserPreferences:
    """Validate raw preferences; ``None`` means no preferences."""
    if raw is None:
        return UserPreferences()
    if isinstance(raw, UserPreferences):
        raw = raw.to_raw()
    if not isinstance(raw, Mapping):
        raise ValidationError("Preferences must be an object")

    credit_score = _bounded(
        raw, "creditScore", MIN_CREDIT_SCORE, MAX_CREDIT_SCORE, low_inclusive=True, high_inclusive=True
    )
    names, amounts = _spending(raw)

    return UserPreferences(
        credit_score=credit_score,
        credit_tier=credit_tier_for(credit_score) if credit_score is not None else None,
        spending_categories=names,
        category_spending=amounts,
        annual_income=_bounded(
            raw, "annualIncome", 0, MAX_ANNUAL_INCOME, low_inclusive=False, high_inclusive=False
        ),
        monthly_spending=_bounded(
            raw, "monthlySpending", 0, MAX_MONTHLY_SPENDING, low_inclusive=False, high_inclusive=False
        ),
        annual_fee_tolerance=_bounded(
            raw, "annualFeeTolerance", 0, MAX_ANNUAL_FEE_TOLERANCE, low_inclusive=True, high_inclusive=True
        ),
        card_types=_card_types(raw),
    )
