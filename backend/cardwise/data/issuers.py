"""Static card issuer and source-site reference data.

Used for:
- web-search domain allow-list (provider adapters)
- issuer / brand detection in free-text answers (card extractor)
- official-source bonus in verification scoring (normalizer)
- apply links on streamed card events
"""

# Sites the web-search tool may consult by default
FINANCIAL_SITES: list[str] = [
    "nerdwallet.com",
    "creditkarma.com",
    "bankrate.com",
    "chase.com",
    "amex.com",
    "discover.com",
    "capitalone.com",
    "citi.com",
    "wellsfargo.com",
    "usbank.com",
    "creditcards.com",
    "wallethub.com",
    "thepointsguy.com",
    "creditwise.com",
    "experian.com",
    "equifax.com",
    "transunion.com",
]

# Issuer display name -> official domains
ISSUER_DOMAINS: dict[str, list[str]] = {
    "American Express": ["americanexpress.com", "amex.com"],
    "Chase": ["chase.com"],
    "Capital One": ["capitalone.com"],
    "Citi": ["citi.com", "citibank.com"],
    "Bank of America": ["bankofamerica.com"],
    "Wells Fargo": ["wellsfargo.com"],
    "Discover": ["discover.com"],
    "U.S. Bank": ["usbank.com"],
    "Barclays": ["barclaycardus.com", "barclays.com"],
    "Synchrony": ["synchrony.com"],
}

# Lower-cased spellings that identify an issuer in running text
ISSUER_ALIASES: dict[str, str] = {
    "american express": "American Express",
    "amex": "American Express",
    "chase": "Chase",
    "capital one": "Capital One",
    "citibank": "Citi",
    "citi": "Citi",
    "bank of america": "Bank of America",
    "wells fargo": "Wells Fargo",
    "discover": "Discover",
    "u.s. bank": "U.S. Bank",
    "us bank": "U.S. Bank",
    "barclays": "Barclays",
    "synchrony": "Synchrony",
}

# Product families that name a card even without "Card" in the phrase
CARD_BRANDS: list[str] = [
    "sapphire",
    "freedom",
    "ink",
    "venture",
    "quicksilver",
    "savor",
    "platinum",
    "gold",
    "blue cash",
    "double cash",
    "custom cash",
    "premier",
    "active cash",
    "autograph",
    "altitude",
]

ISSUER_APPLY_URLS: dict[str, str] = {
    "American Express": "https://www.americanexpress.com/us/credit-cards/",
    "Chase": "https://creditcards.chase.com/",
    "Capital One": "https://www.capitalone.com/credit-cards/",
    "Citi": "https://www.citi.com/credit-cards/",
    "Bank of America": "https://www.bankofamerica.com/credit-cards/",
    "Wells Fargo": "https://www.wellsfargo.com/credit-cards/",
    "Discover": "https://www.discover.com/credit-cards/",
}
DEFAULT_APPLY_URL = "https://www.creditcards.com/"

OFFICIAL_DOMAINS: frozenset[str] = frozenset(d for domains in ISSUER_DOMAINS.values() for d in domains)


def issuer_in(text: str) -> str | None:
    """First issuer mentioned in ``text`` (longest alias wins), or None."""
    lowered = f" {text.lower()} "
    for alias in sorted(ISSUER_ALIASES, key=len, reverse=True):
        if f" {alias} " in lowered or f" {alias}'" in lowered or f" {alias}," in lowered:
            return ISSUER_ALIASES[alias]
    return None


def is_official_source(source: str) -> bool:
    source = source.lower()
    return any(domain in source for domain in OFFICIAL_DOMAINS)
