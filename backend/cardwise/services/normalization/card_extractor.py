"""Text-extraction fallback: recover card facts from free-form advisor text.

Card names are found three ways, line by line:
- ``**Card Name**: X`` labels
- heading-like phrases ending in "Card" / "Credit Card" with a capitalized qualifier
- emphasized spans at line start that name a known issuer or card brand

Each name opens a section that runs until the next new name; the card's
facts are read from its own section only.
"""

import re
from dataclasses import dataclass, field

from cardwise.data.issuers import CARD_BRANDS, issuer_in
from cardwise.schemas.preferences import CreditTier

# Leading words that are not part of a product name
GENERIC_WORDS = {
    "a", "an", "the", "best", "top", "our", "your", "this", "that", "recommended",
    "recommendation", "overall", "great", "good", "new", "consider", "another",
}
# Lines mentioning these are commentary, not card headings
_SKIP_LINE_RE = re.compile(r"\b(benefits?|features?|drawbacks?|important|consider|recommendations?)\b", re.I)

_LIST_PREFIX_RE = re.compile(r"^\s*(?:#{1,6}\s*)?(?:[-*•]\s+)?(?:\(?\d+[.)]\s*)?")
_LABEL_RE = re.compile(r"^\**\s*Card\s+Name\s*\**\s*:\s*\**\s*(?P<name>.+?)\s*\**\s*$", re.I)
_PHRASE_RE = re.compile(
    r"^\**\s*(?P<name>(?:[A-Z0-9][\w'’&.+®™-]*\s+){1,7}?(?:Credit\s+)?Card)\b[®™]?"
    r"(?:\s+from\s+(?P<issuer>[A-Z][\w&.]*(?:\s+[A-Z][\w&.]*){0,2}))?"
)
_EMPHASIS_RE = re.compile(r"^(?:\*\*|__|\*|_)(?P<name>[^*_\n]{3,80}?)(?:\*\*|__|\*|_)(?P<rest>.*)$")

_ISSUER_LABEL_RE = re.compile(r"Issuer\s*:\s*(?P<issuer>[^\n]+)", re.I)
_NO_FEE_RE = re.compile(r"\bno\s+annual\s+fee\b|\$0\s+annual\s+fee", re.I)
_FEE_RE = re.compile(r"annual[ \t]+fee[ \t]*:?[ \t]*(?:of[ \t]+)?(?P<value>\$\s?\d[\d,]*(?:\.\d+)?|\d[\d,]*(?:\.\d+)?|none|free)", re.I)
_WAIVED_RE = re.compile(r"waived|first\s+year", re.I)
_APR_RE = re.compile(
    r"APR(?:[ \t]+Range)?[ \t]*:?[ \t]*(?:of[ \t]+)?(?P<low>\d+(?:\.\d+)?)\s*%?"
    r"(?:\s*(?:-|–|—|to)\s*(?P<high>\d+(?:\.\d+)?)\s*%?)?",
    re.I,
)
_CREDIT_RE = re.compile(
    r"credit[ \t]+(?:requirement|score|needed|required)[ \t]*:?[ \t]*(?:of[ \t]+)?(?P<tier>excellent|very\s+good|good|fair|poor|bad)",
    re.I,
)
_BASE_RATE_RE = re.compile(r"base\s+rate\s*:?\s*(?P<rate>\d+(?:\.\d+)?)\s*(?P<unit>x|%)", re.I)
_ALL_OTHER_RE = re.compile(
    r"(?P<rate>\d+(?:\.\d+)?)\s*(?P<unit>x|%)[^\n.]*?\b(?:all\s+other|everything\s+else|every\s+purchase|all\s+purchases)",
    re.I,
)
_CATEGORY_LABEL_RE = re.compile(
    r"^[-*•]\s*(?P<category>[A-Za-z][A-Za-z &/,'-]{1,40}?)\s*:\s*(?P<rate>\d+(?:\.\d+)?)\s*(?P<unit>x|%)",
)
_CATEGORY_INLINE_RE = re.compile(
    r"(?P<rate>\d+(?:\.\d+)?)\s*(?P<unit>x|%)\s*(?:points?|miles|cash\s*back|back)?\s+(?:on|at|for)\s+"
    r"(?P<category>[a-z][a-z &/-]{2,40}?)(?=\s*(?:[.,;()]|\bup\s+to\b|\bpurchase[sd]?\b|\bthrough\b|\bwhen\b|\bwith\b|$))",
    re.I,
)
_NOT_CATEGORY_WORDS = {"base", "all", "every", "everything", "other", "purchases"}
_NOT_CATEGORY_TERMS = ("apr", "fee", "confidence", "bonus", "credit", "score")
_CAP_RE = re.compile(r"up\s+to\s+\$[\d,]+[^.;)\n]*", re.I)
_URL_RE = re.compile(r"https?://[^\s)\]>*,]+")
_SOURCE_RE = re.compile(r"Sources?\s*\**\s*:\s*\**\s*(?P<value>[^\n]+)", re.I)
_DOMAIN_RE = re.compile(r"\b(?:www\.)?[a-z0-9-]+(?:\.[a-z0-9-]+)*\.(?:com|org|net|gov)\b", re.I)
_CONFIDENCE_RE = re.compile(r"Data\s+Confidence\s*\**\s*:?\s*\**\s*(?P<value>\d+(?:\.\d+)?)", re.I)
_VERIFIED_RE = re.compile(r"Last\s+Verified\s*\**\s*:?\s*\**\s*(?P<date>\d{4}-\d{2}-\d{2})", re.I)


@dataclass
class ExtractedCategory:
    category: str
    rate: float
    cap: str = "None"


@dataclass
class ExtractedCard:
    name: str
    section: str = ""
    issuer: str | None = None
    annual_fee: float | None = None
    fee_waived: bool = False
    apr_range: str | None = None
    credit_requirement: CreditTier | None = None
    categories: list[ExtractedCategory] = field(default_factory=list)
    base_rate: float | None = None
    reward_unit: str | None = None  # "%" or "x"
    sources: list[str] = field(default_factory=list)
    confidence: float | None = None
    unverified: bool = False
    last_verified: str | None = None


def _plain(text: str) -> str:
    return text.replace("**", "").replace("__", "")


def _clean_name(name: str) -> str:
    name = _plain(name).replace("®", "").replace("™", "")
    name = re.sub(r"\s+", " ", name).strip(" *_:-–—.")
    words = name.split(" ")
    while words and words[0].lower() in GENERIC_WORDS:
        words.pop(0)
    return " ".join(words)


def _has_qualifier(name: str) -> bool:
    qualifier = [w for w in name.split() if w.lower() not in ("card", "credit")]
    return bool(qualifier) and (qualifier[0][:1].isupper() or qualifier[0][:1].isdigit())


def _names_brand(span: str) -> bool:
    lowered = span.lower()
    if issuer_in(span):
        return True
    return any(re.search(rf"\b{re.escape(brand)}\b", lowered) for brand in CARD_BRANDS)


def card_name_in_line(line: str) -> tuple[str, str | None] | None:
    """``(name, issuer_hint)`` when the line introduces a card, else None."""
    stripped = _LIST_PREFIX_RE.sub("", line.strip(), count=1)
    if not stripped:
        return None

    label = _LABEL_RE.match(stripped)
    if label:
        name = _clean_name(label.group("name"))
        return (name, None) if name else None

    if len(stripped) >= 100 or _SKIP_LINE_RE.search(stripped):
        return None

    phrase = _PHRASE_RE.match(stripped)
    if phrase:
        name = _clean_name(phrase.group("name"))
        if name and _has_qualifier(name) and name.lower() not in ("credit card", "card"):
            return name, phrase.group("issuer")

    emphasis = _EMPHASIS_RE.match(stripped)
    if emphasis and not emphasis.group("rest").lstrip().startswith(":") and not emphasis.group("name").rstrip().endswith(":"):
        span = emphasis.group("name")
        if _names_brand(span):
            name = _clean_name(span)
            if name:
                return name, None
    return None


def split_card_sections(text: str) -> list[ExtractedCard]:
    """Card names in order of first appearance, each with its own section text."""
    cards: list[ExtractedCard] = []
    seen: set[str] = set()
    current: ExtractedCard | None = None
    lines: list[str] = []

    for line in text.splitlines():
        found = card_name_in_line(line)
        if found is not None:
            name, issuer_hint = found
            key = name.casefold()
            if key not in seen:
                if current is not None:
                    current.section = "\n".join(lines)
                seen.add(key)
                current = ExtractedCard(name=name, issuer=issuer_hint)
                cards.append(current)
                lines = [line]
                continue
        if current is not None:
            lines.append(line)

    if current is not None:
        current.section = "\n".join(lines)
    return cards


def _rate_unit(text: str) -> str | None:
    if "%" in text:
        return "%"
    if re.search(r"\d\s*x\b", text, re.I):
        return "x"
    return None


def _reward_categories(section: str) -> list[ExtractedCategory]:
    categories: list[ExtractedCategory] = []
    seen: set[str] = set()

    def add(category: str, rate: str, line: str):
        category = re.sub(r"\s+", " ", category).strip(" ,-/").lower()
        if not category or category in seen:
            return
        if category.split()[0] in _NOT_CATEGORY_WORDS or any(w in category for w in _NOT_CATEGORY_TERMS):
            return
        seen.add(category)
        cap = _CAP_RE.search(line)
        categories.append(ExtractedCategory(category=category, rate=float(rate), cap=cap.group(0).strip() if cap else "None"))

    for line in _plain(section).splitlines():
        line = line.strip()
        labelled = _CATEGORY_LABEL_RE.match(line)
        if labelled:
            add(labelled.group("category"), labelled.group("rate"), line)
            continue
        for inline in _CATEGORY_INLINE_RE.finditer(line):
            add(inline.group("category"), inline.group("rate"), line)
    return categories


def _sources(section: str) -> list[str]:
    found: list[str] = []
    for url in _URL_RE.findall(section):
        url = url.rstrip(".")
        if url not in found:
            found.append(url)
    for match in _SOURCE_RE.finditer(_plain(section)):
        for domain in _DOMAIN_RE.findall(match.group("value")):
            domain = domain.lower()
            if not any(domain in s for s in found):
                found.append(domain)
    return found


def parse_card_section(card: ExtractedCard) -> ExtractedCard:
    """Fill the card's fields from its section text."""
    plain = _plain(card.section)

    issuer_label = _ISSUER_LABEL_RE.search(plain)
    if issuer_label:
        value = issuer_label.group("issuer").strip(" *")
        card.issuer = issuer_in(value) or value
    elif card.issuer is None:
        card.issuer = issuer_in(card.name)

    fee = _FEE_RE.search(plain)
    if fee:
        value = fee.group("value").lower()
        if value in ("none", "free"):
            card.annual_fee = 0.0
        else:
            card.annual_fee = float(value.replace("$", "").replace(",", "").strip())
        line_end = plain.find("\n", fee.end())
        card.fee_waived = bool(_WAIVED_RE.search(plain[fee.start(): line_end if line_end != -1 else None]))
    elif _NO_FEE_RE.search(plain):
        card.annual_fee = 0.0

    apr = _APR_RE.search(plain)
    if apr:
        low, high = apr.group("low"), apr.group("high")
        card.apr_range = f"{low}% - {high}%" if high else f"{low}%"

    credit = _CREDIT_RE.search(plain)
    if credit:
        tier = re.sub(r"\s+", " ", credit.group("tier").lower())
        card.credit_requirement = {
            "excellent": CreditTier.EXCELLENT,
            "very good": CreditTier.VERY_GOOD,
            "good": CreditTier.GOOD,
            "fair": CreditTier.FAIR,
            "poor": CreditTier.POOR,
            "bad": CreditTier.POOR,
        }[tier]

    card.categories = _reward_categories(card.section)
    base = _BASE_RATE_RE.search(plain) or _ALL_OTHER_RE.search(plain)
    if base:
        card.base_rate = float(base.group("rate"))
        card.reward_unit = base.group("unit").lower()
    elif card.categories:
        card.reward_unit = _rate_unit(plain)

    card.sources = _sources(card.section)

    confidence = _CONFIDENCE_RE.search(plain)
    if confidence:
        card.confidence = float(confidence.group("value"))
    card.unverified = "UNVERIFIED" in card.section

    verified = _VERIFIED_RE.search(plain)
    if verified:
        card.last_verified = verified.group("date")
    return card


def extract_cards(text: str) -> list[ExtractedCard]:
    return [parse_card_section(card) for card in split_card_sections(text)]
