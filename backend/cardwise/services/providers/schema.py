"""Strict JSON schema for schema-constrained provider output.

Strict mode requires every property to be listed in ``required`` and
``additionalProperties: false`` on every object.
"""


def _obj(properties: dict) -> dict:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


_STRING = {"type": "string"}
_NUMBER = {"type": "number"}
_STRINGS = {"type": "array", "items": _STRING}

_CARD = _obj({
    "rank": _NUMBER,
    "cardName": _STRING,
    "issuer": _STRING,
    "overallScore": _NUMBER,
    "matchScore": _NUMBER,
    "annualFee": _obj({"amount": _NUMBER, "waived": {"type": "boolean"}}),
    "aprRange": _STRING,
    "rewards": _obj({
        "structure": _STRING,
        "categories": {
            "type": "array",
            "items": _obj({"category": _STRING, "rate": _NUMBER, "cap": _STRING}),
        },
        "baseRate": _NUMBER,
        "estimatedAnnualValue": _NUMBER,
    }),
    "verificationDetails": _obj({
        "confidenceScore": _NUMBER,
        "sources": _STRINGS,
        "lastVerified": _STRING,
        "dataQuality": _STRING,
    }),
})

RECOMMENDATION_SCHEMA: dict = _obj({
    "success": {"type": "boolean"},
    "summary": _STRING,
    "searchMetadata": _obj({
        "totalSearches": _NUMBER,
        "sourcesConsulted": _STRINGS,
        "dataFreshness": _STRING,
        "lastUpdated": _STRING,
    }),
    "recommendedCards": {"type": "array", "items": _CARD},
    "alternativeCards": {"type": "array", "items": _CARD},
    "userAnalysis": _obj({
        "creditProfile": _STRING,
        "spendingPattern": _STRING,
        "recommendations": _STRINGS,
    }),
})

RESPONSE_FORMAT: dict = {
    "format": {
        "type": "json_schema",
        "name": "credit_card_recommendations",
        "schema": RECOMMENDATION_SCHEMA,
        "strict": True,
    }
}
