import pytest
from fastapi.testclient import TestClient

from conftest import CARD_TEXT, FakeAdapter, FakeStore, failure, make_selector
from cardwise.dependencies import (
    get_chat_rate_limiter,
    get_optional_user,
    get_orchestrator,
    get_search_rate_limiter,
    get_search_service,
    get_selector,
)
from cardwise.errors import FailureKind
from cardwise.main import app
from cardwise.services.cache_service import CacheService
from cardwise.services.chat_orchestrator import ChatOrchestrator
from cardwise.services.providers.base import ProviderId
from cardwise.services.rate_limiter import InMemoryRateLimiter
from cardwise.services.search_service import SearchService

A, B = ProviderId.ANTHROPIC, ProviderId.OPENAI


class Harness:
    """Wires fakes into the app through dependency overrides."""

    def __init__(self):
        self.selector = make_selector(FakeAdapter(A, [CARD_TEXT]), default=A)
        self.store = FakeStore()
        self.user = None
        self.chat_limiter = InMemoryRateLimiter(limit=100, window_seconds=60)
        self.search_limiter = InMemoryRateLimiter(limit=100, window_seconds=60)

    def install(self):
        app.dependency_overrides[get_selector] = lambda: self.selector
        app.dependency_overrides[get_orchestrator] = lambda: ChatOrchestrator(self.selector, store=self.store)
        app.dependency_overrides[get_optional_user] = lambda: self.user
        app.dependency_overrides[get_chat_rate_limiter] = lambda: self.chat_limiter
        app.dependency_overrides[get_search_rate_limiter] = lambda: self.search_limiter
        app.dependency_overrides[get_search_service] = lambda: SearchService(
            self.selector, CacheService(url="redis://localhost:1/0")
        )


@pytest.fixture
def harness():
    h = Harness()
    h.install()
    yield h
    app.dependency_overrides.clear()


@pytest.fixture
def client(harness):
    return TestClient(app, raise_server_exceptions=False)


def test_chat_returns_recommendations_with_provider_headers(client):
    res = client.post("/api/chat", json={"message": "Best card for dining?", "preferences": {"creditScore": 720}})

    assert res.status_code == 200
    assert res.headers["x-ai-provider"] == "anthropic"
    assert res.headers["x-response-time"].endswith("ms")
    assert "x-fallback-used" not in res.headers
    body = res.json()
    assert [c["rank"] for c in body["recommendedCards"]] == [1, 2]
    assert body["responseMetadata"]["parseStrategy"] == "text_extraction"
    assert "conversationId" not in body


def test_fallback_is_reported_in_headers(client, harness):
    overloaded = [failure(A, FailureKind.OVERLOADED) for _ in range(4)]
    harness.selector = make_selector(FakeAdapter(A, overloaded), FakeAdapter(B, [CARD_TEXT]), default=A)

    res = client.post("/api/chat", json={"message": "hi"})

    assert res.status_code == 200
    assert res.headers["x-ai-provider"] == "openai"
    assert res.headers["x-fallback-used"] == "true"
    assert res.headers["x-original-provider"] == "anthropic"


def test_both_providers_overloaded_is_503(client, harness):
    harness.selector = make_selector(
        FakeAdapter(A, [failure(A, FailureKind.OVERLOADED, "anthropic busy")] * 4),
        FakeAdapter(B, [failure(B, FailureKind.OVERLOADED, "openai busy")] * 4),
        default=A,
    )

    res = client.post("/api/chat", json={"message": "hi"})

    assert res.status_code == 503
    body = res.json()
    assert body["status"] == 503
    assert body["error"]
    attempts = body["details"]["attempts"]
    assert [(a["provider"], a["message"]) for a in attempts] == [("anthropic", "anthropic busy"), ("openai", "openai busy")]


def test_no_provider_available_is_503(client, harness):
    harness.selector = make_selector(FakeAdapter(A, api_key=""), FakeAdapter(B, api_key=""))
    res = client.post("/api/chat", json={"message": "hi"})
    assert res.status_code == 503
    assert res.json()["code"] == "NO_PROVIDER_AVAILABLE"


@pytest.mark.parametrize(
    "payload,error",
    [
        ({"message": "x" * 2001}, "Message too long (max 2000 characters)"),
        ({"message": "   "}, "Message is required and must be a string"),
    ],
)
def test_invalid_message_is_400(client, payload, error):
    res = client.post("/api/chat", json=payload)
    assert res.status_code == 400
    assert res.json() == {"error": error, "code": "VALIDATION_ERROR", "status": 400, "details": {"field": "message"}}


def test_missing_message_is_400(client):
    res = client.post("/api/chat", json={"preferences": {}})
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_non_object_preferences_is_400(client):
    res = client.post("/api/chat", json={"message": "hi", "preferences": "excellent credit"})
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_unexpected_error_is_generic_500(client, harness):
    harness.selector = make_selector(FakeAdapter(A, [RuntimeError("kaboom")]), default=A)
    res = client.post("/api/chat", json={"message": "hi"})
    assert res.status_code == 500
    assert "kaboom" not in res.text
    assert res.json()["status"] == 500


def test_rate_limit_is_429(client, harness):
    harness.chat_limiter = InMemoryRateLimiter(limit=1, window_seconds=60)
    assert client.post("/api/chat", json={"message": "hi"}).status_code == 200

    res = client.post("/api/chat", json={"message": "hi"})
    assert res.status_code == 429
    assert res.json()["code"] == "RATE_LIMITED"


def test_preflight(client):
    res = client.options("/api/chat")
    assert res.status_code == 200
    assert res.headers["access-control-allow-methods"] == "POST, OPTIONS"


def test_stream_endpoint_emits_sse(client):
    res = client.post("/api/chat/stream", json={"message": "Best card for dining?"})

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["x-ai-provider"] == "anthropic"
    assert res.headers["cache-control"] == "no-cache"
    assert res.text.endswith("data: [DONE]\n\n")
    assert '"type": "cards"' in res.text


def test_chat_honours_event_stream_accept_header(client):
    res = client.post("/api/chat", json={"message": "hi"}, headers={"Accept": "text/event-stream"})
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.text.endswith("data: [DONE]\n\n")


def test_stream_failure_before_first_frame_is_json_error(client, harness):
    harness.selector = make_selector(FakeAdapter(A, [failure(A, FailureKind.AUTH_FAILURE)]), default=A)
    res = client.post("/api/chat/stream", json={"message": "hi"})
    assert res.status_code == 503
    assert res.headers["content-type"].startswith("application/json")


def test_user_chat_requires_auth(client):
    res = client.post("/api/user/chat", json={"message": "hi"})
    assert res.status_code == 401
    assert res.json()["code"] == "AUTH_REQUIRED"


def test_user_chat_persists_and_lists(client, harness, user):
    harness.user = user

    res = client.post("/api/user/chat", json={"message": "Best card for dining?"})

    assert res.status_code == 200
    conversation_id = res.json()["conversationId"]
    assert conversation_id in harness.store.conversations

    listed = client.get("/api/user/conversations").json()["conversations"]
    assert listed == [{"id": conversation_id, "messageCount": 2}]


def test_providers_endpoint(client, harness):
    harness.selector = make_selector(FakeAdapter(A), FakeAdapter(B, api_key=""), default=A)
    body = client.get("/api/providers").json()
    assert body["currentProvider"] == "anthropic"
    assert body["availableProviders"] == ["anthropic"]


def test_search_endpoint(client):
    res = client.post("/api/search", json={"query": "no annual fee cards", "domains": ["nerdwallet.com"]})
    assert res.status_code == 200
    body = res.json()
    assert body["cached"] is False
    assert body["results"]["provider"] == "anthropic"
    assert body["results"]["query"] == "no annual fee cards"


def test_search_rejects_empty_query(client):
    res = client.post("/api/search", json={"query": ""})
    assert res.status_code == 400
    assert res.json()["details"] == {"field": "query"}


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok", "service": "cardwise"}
