"""Prompt builders shared by the provider adapters."""

import json
from datetime import date

from cardwise.schemas.preferences import UserPreferences

_ROLE = """You are a financial data specialist and expert credit card advisor. Your answers \
influence real financial decisions, so accuracy matters more than coverage.

Verify card terms with web search before stating them. Prefer official issuer \
websites over comparison sites and always cite your sources. When you cannot \
verify a detail, write UNVERIFIED next to it instead of guessing."""

_TEXT_FORMAT = """For each recommended card use exactly this layout:

**Card Name**: [exact official name]
**Issuer**: [bank name]
**Annual Fee**: $[amount] (say if waived the first year)
**APR Range**: [X.X% - X.X%] Variable APR
**Rewards Structure**:
- [Category]: [X]x points or [X]% cash back (include caps)
- Base rate: [X]x points or [X]% on all other purchases
**Credit Requirement**: [Excellent / Good / Fair]
**Key Benefits**: [3-4 items]
**Key Drawbacks**: [honest limitations]
**Data Confidence**: [1-10] - Source: [primary source URL]
**Last Verified**: {today}"""

_JSON_FORMAT = """Respond with a single JSON object and nothing else. Use these keys:
success, summary, searchMetadata {{totalSearches, sourcesConsulted, dataFreshness, lastUpdated}},
recommendedCards [{{rank, cardName, issuer, overallScore (0-10), matchScore (0-100),
annualFee {{amount, waived}}, aprRange, rewards {{structure, categories [{{category, rate, cap}}],
baseRate, estimatedAnnualValue}}, verificationDetails {{confidenceScore (1-10), sources,
lastVerified, dataQuality}}}}], userAnalysis {{creditProfile, spendingPattern, recommendations}}.
Rank cards from 1 (best match). Today is {today}."""


def build_system_prompt(preferences: UserPreferences, *, json_output: bool) -> str:
    today = date.today().isoformat()
    contract = _JSON_FORMAT if json_output else _TEXT_FORMAT
    return "\n\n".join([
        _ROLE,
        contract.format(today=today),
        f"User preferences: {json.dumps(preferences.to_raw(), sort_keys=True)}",
        "Tailor the search and the recommendations to these preferences.",
    ])


def build_search_prompt(query: str) -> str:
    return (
        f"Search for current information about: {query}. Focus on credit card offers, "
        "terms, and benefits. Provide a comprehensive summary with sources."
    )
