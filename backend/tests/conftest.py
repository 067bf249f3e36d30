"""Shared fakes: scripted provider adapters and an in-memory conversation store."""

import uuid
from types import SimpleNamespace

import pytest

from cardwise.errors import ConversationNotFoundError, FailureKind, PersistenceError, ProviderError
from cardwise.services.conversation_store import ChatMessage
from cardwise.services.providers.base import (
    InvokeMode,
    Provenance,
    ProviderAdapter,
    ProviderId,
    RawProviderResult,
    ResultShape,
)
from cardwise.services.providers.selector import ProviderSelector

CARD_TEXT = """Here are my top picks for you.

**Card Name**: Chase Sapphire Preferred® Card
**Issuer**: Chase
**Annual Fee**: $95
**APR Range**: 21.49% - 28.49% Variable APR
**Rewards Structure**:
- Dining: 3x points
- Travel: 2x points
- Base rate: 1x points on all other purchases
**Credit Requirement**: Good to Excellent
**Data Confidence**: 8 - Source: https://creditcards.chase.com/rewards-credit-cards/sapphire/preferred

**Card Name**: Citi Double Cash® Card
**Issuer**: Citi
**Annual Fee**: $0
**APR Range**: 18.49% - 28.49% Variable APR
**Rewards Structure**:
- Base rate: 2% cash back on all purchases
**Credit Requirement**: Fair
"""


def structured_payload(*cards: dict) -> dict:
    return {
        "success": True,
        "summary": "Two strong options for dining.",
        "searchMetadata": {
            "totalSearches": 2,
            "sourcesConsulted": ["nerdwallet.com"],
            "dataFreshness": "current",
            "lastUpdated": "2026-10-01",
        },
        "recommendedCards": list(cards),
        "userAnalysis": {"creditProfile": "Good", "spendingPattern": "Dining heavy", "recommendations": []},
    }


def text_result(provider: ProviderId, text: str) -> RawProviderResult:
    return RawProviderResult.from_text(provider, text, model=f"{provider.value}-test")


def structured_result(provider: ProviderId, data: dict) -> RawProviderResult:
    return RawProviderResult(
        provider=provider,
        shape=ResultShape.STRUCTURED,
        provenance=Provenance.STRUCTURED,
        data=data,
        model=f"{provider.value}-test",
    )


def failure(provider: ProviderId, kind: FailureKind, message: str = "boom") -> ProviderError:
    return ProviderError(kind, provider.value, message)


class FakeAdapter(ProviderAdapter):
    """Adapter that replays a script of results and errors, one per vendor call."""

    def __init__(self, provider_id: ProviderId, script=(), *, api_key: str = "test-key", search_summary: str = "summary"):
        super().__init__(api_key, model=f"{provider_id.value}-test", backoff_base=0, backoff_max=0)
        self.provider_id = provider_id
        self.script = list(script)
        self.calls: list[tuple[str, InvokeMode]] = []
        self.search_calls: list[tuple[str, list[str]]] = []
        self.search_summary = search_summary

    async def _invoke_once(self, message, preferences, mode):
        self.calls.append((message, mode))
        step = self.script.pop(0) if self.script else "default answer"
        if isinstance(step, Exception):
            raise step
        if isinstance(step, RawProviderResult):
            return step
        return text_result(self.provider_id, step)

    async def web_search(self, query, domains):
        self.search_calls.append((query, domains))
        return self.search_summary


def make_selector(anthropic=None, openai=None, default=ProviderId.ANTHROPIC):
    anthropic = anthropic or FakeAdapter(ProviderId.ANTHROPIC)
    openai = openai or FakeAdapter(ProviderId.OPENAI)
    return ProviderSelector({ProviderId.ANTHROPIC: anthropic, ProviderId.OPENAI: openai}, default=default)


class FakeStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.conversations: dict[str, dict] = {}

    async def create_conversation(self, user_id, metadata=None):
        if self.fail:
            raise PersistenceError("database down")
        conversation_id = str(uuid.uuid4())
        self.conversations[conversation_id] = {"user_id": user_id, "metadata": metadata or {}, "messages": []}
        return conversation_id

    async def add_message(self, user_id, conversation_id, message: ChatMessage):
        if self.fail:
            raise PersistenceError("database down")
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation["user_id"] != user_id:
            raise ConversationNotFoundError(conversation_id)
        conversation["messages"].append(message)
        return str(uuid.uuid4())

    async def list_conversations(self, user_id, limit=20, offset=0):
        owned = [
            {"id": cid, "messageCount": len(c["messages"])}
            for cid, c in self.conversations.items()
            if c["user_id"] == user_id
        ]
        return owned[offset:offset + limit]


@pytest.fixture
def user():
    return SimpleNamespace(id=uuid.uuid4(), email="ada@example.com", is_active=True)
