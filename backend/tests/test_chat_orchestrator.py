import json

import pytest

from conftest import CARD_TEXT, FakeAdapter, FakeStore, failure, make_selector, structured_payload, structured_result
from cardwise.errors import FailureKind, ProviderError, ProvidersExhaustedError, ValidationError
from cardwise.schemas.chat import ChatRequest
from cardwise.services.chat_orchestrator import ChatOrchestrator, ChatState, card_event
from cardwise.services.providers.base import InvokeMode, ProviderId, RawProviderResult, ResultShape
from cardwise.services.streaming_bridge import DONE_FRAME

A, B = ProviderId.ANTHROPIC, ProviderId.OPENAI


def overloaded(provider, times=4):
    return [failure(provider, FailureKind.OVERLOADED, "overloaded") for _ in range(times)]


def request(**kwargs):
    kwargs.setdefault("message", "Best card for dining?")
    return ChatRequest(**kwargs)


def decode(frame: str):
    body = frame.removeprefix("data: ").rstrip("\n")
    return body if body == "[DONE]" else json.loads(body)


class Closer:
    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1


def native_stream(provider, chunks, error=None):
    """A vendor stream that yields ``chunks`` and then raises ``error``."""
    closer = Closer()

    async def gen():
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error

    return RawProviderResult(provider=provider, shape=ResultShape.STREAM, chunks=gen(), closer=closer), closer


@pytest.mark.asyncio
async def test_primary_success_has_no_fallback():
    primary = FakeAdapter(A, [structured_result(A, structured_payload({"rank": 1, "cardName": "Savor"}))])
    fallback = FakeAdapter(B)
    orchestrator = ChatOrchestrator(make_selector(primary, fallback, default=A))

    outcome = await orchestrator.handle(request())

    assert outcome.provider is A
    assert not outcome.fallback_used
    assert outcome.response.recommended_cards[0].card_name == "Savor"
    assert outcome.response.response_metadata.fallback_used is False
    assert outcome.conversation_id is None
    assert outcome.states == [ChatState.VALIDATING, ChatState.SELECTING, ChatState.INVOKING_PRIMARY, ChatState.DONE]
    assert primary.calls == [("Best card for dining?", InvokeMode.JSON)]
    assert fallback.calls == []


@pytest.mark.asyncio
async def test_requested_provider_is_used():
    outcome = await ChatOrchestrator(make_selector(default=A)).handle(request(provider="openai"))
    assert outcome.provider is B


@pytest.mark.asyncio
async def test_overloaded_primary_falls_back_after_retries():
    primary = FakeAdapter(A, overloaded(A))
    fallback = FakeAdapter(B, [CARD_TEXT])
    orchestrator = ChatOrchestrator(make_selector(primary, fallback, default=A))

    outcome = await orchestrator.handle(request())

    assert len(primary.calls) == 4
    assert outcome.provider is B
    assert outcome.fallback_used
    assert outcome.original_provider is A
    assert outcome.original_error == "overloaded"
    meta = outcome.response.response_metadata
    assert (meta.provider, meta.fallback_used, meta.original_provider) == ("openai", True, "anthropic")
    assert len(outcome.response.recommended_cards) == 2
    assert ChatState.INVOKING_FALLBACK in outcome.states


@pytest.mark.asyncio
async def test_rate_limited_primary_falls_back_immediately():
    primary = FakeAdapter(A, [failure(A, FailureKind.RATE_LIMITED)])
    orchestrator = ChatOrchestrator(make_selector(primary, default=A))

    outcome = await orchestrator.handle(request())

    assert len(primary.calls) == 1
    assert outcome.provider is B


@pytest.mark.asyncio
async def test_both_overloaded_reports_both_attempts():
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, overloaded(A)), FakeAdapter(B, overloaded(B)), default=A))

    with pytest.raises(ProvidersExhaustedError) as exc:
        await orchestrator.handle(request())

    payload = exc.value.to_payload()
    assert payload["status"] == 503
    assert [a["provider"] for a in payload["details"]["attempts"]] == ["anthropic", "openai"]
    assert all(a["kind"] == "overloaded" and a["message"] for a in payload["details"]["attempts"])


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [FailureKind.AUTH_FAILURE, FailureKind.INVALID_REQUEST, FailureKind.UNKNOWN])
async def test_non_retryable_failure_skips_fallback(kind):
    fallback = FakeAdapter(B)
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, [failure(A, kind)]), fallback, default=A))

    with pytest.raises(ProviderError) as exc:
        await orchestrator.handle(request())

    assert exc.value.kind is kind
    assert fallback.calls == []


@pytest.mark.asyncio
async def test_retryable_failure_without_available_alternate_surfaces():
    primary = FakeAdapter(A, [failure(A, FailureKind.RATE_LIMITED)])
    orchestrator = ChatOrchestrator(make_selector(primary, FakeAdapter(B, api_key=""), default=A))

    with pytest.raises(ProviderError) as exc:
        await orchestrator.handle(request())

    assert exc.value.kind is FailureKind.RATE_LIMITED
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_invalid_preferences_fail_before_any_provider_call():
    primary = FakeAdapter(A)
    orchestrator = ChatOrchestrator(make_selector(primary, default=A))

    with pytest.raises(ValidationError):
        await orchestrator.handle(request(preferences="not an object"))

    assert primary.calls == []


@pytest.mark.asyncio
async def test_signed_in_user_conversation_is_persisted(user):
    store = FakeStore()
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, [CARD_TEXT]), default=A), store=store)

    outcome = await orchestrator.handle(request(), user=user)

    assert outcome.conversation_id in store.conversations
    conversation = store.conversations[outcome.conversation_id]
    assert conversation["metadata"]["title"] == "Best card for dining?"
    user_msg, assistant_msg = conversation["messages"]
    assert (user_msg.role, user_msg.content) == ("user", "Best card for dining?")
    assert assistant_msg.role == "assistant"
    assert assistant_msg.metadata == {"provider": "anthropic", "fallbackUsed": False, "cardCount": 2}
    assert outcome.states[-2:] == [ChatState.PERSISTING, ChatState.DONE]


@pytest.mark.asyncio
async def test_persistence_failure_does_not_change_response(user):
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, [CARD_TEXT]), default=A), store=FakeStore(fail=True))

    outcome = await orchestrator.handle(request(), user=user)

    assert outcome.conversation_id is None
    assert len(outcome.response.recommended_cards) == 2


@pytest.mark.asyncio
async def test_unknown_conversation_id_is_swallowed(user):
    store = FakeStore()
    orchestrator = ChatOrchestrator(make_selector(default=A), store=store)

    outcome = await orchestrator.handle(request(conversation_id="missing"), user=user)

    assert outcome.conversation_id is None
    assert store.conversations == {}


@pytest.mark.asyncio
async def test_stream_round_trip_with_cards_trailer(user):
    store = FakeStore()
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, [CARD_TEXT]), default=A), store=store)

    stream = await orchestrator.open_stream(request(), user=user)
    frames = [frame async for frame in stream.frames]

    assert stream.provider is A
    assert frames[-1] == DONE_FRAME
    events = [decode(f) for f in frames[:-1]]
    content = "".join(e["content"] for e in events if "content" in e)
    assert content == CARD_TEXT
    cards_event = events[-1]
    assert cards_event["type"] == "cards"
    assert [c["cardName"] for c in cards_event["cards"]] == ["Chase Sapphire Preferred Card", "Citi Double Cash Card"]
    assert cards_event["cards"][0]["applyUrl"] == "https://creditcards.chase.com/"

    (conversation,) = store.conversations.values()
    assert conversation["messages"][1].content == CARD_TEXT
    assert stream.states[-1] is ChatState.DONE


@pytest.mark.asyncio
async def test_stream_falls_back_before_first_frame():
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, overloaded(A)), FakeAdapter(B, ["hello"]), default=A))

    stream = await orchestrator.open_stream(request())

    assert stream.provider is B
    assert stream.fallback_used
    assert stream.original_provider is A
    assert [frame async for frame in stream.frames] == ['data: {"content": "hello"}\n\n', DONE_FRAME]


@pytest.mark.asyncio
async def test_stream_exhaustion_raises_before_streaming():
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, overloaded(A)), FakeAdapter(B, overloaded(B)), default=A))
    with pytest.raises(ProvidersExhaustedError):
        await orchestrator.open_stream(request())


@pytest.mark.asyncio
async def test_in_stream_overload_before_content_falls_back():
    raw, closer = native_stream(A, [], failure(A, FailureKind.OVERLOADED, "overloaded_error"))
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, [raw]), FakeAdapter(B, ["hello"]), default=A))

    stream = await orchestrator.open_stream(request())

    assert stream.provider is B
    assert stream.fallback_used
    assert stream.original_provider is A
    assert ChatState.INVOKING_FALLBACK in stream.states
    assert closer.calls == 1
    assert [frame async for frame in stream.frames] == ['data: {"content": "hello"}\n\n', DONE_FRAME]


@pytest.mark.asyncio
async def test_in_stream_overload_on_both_providers_is_exhaustion():
    primary, _ = native_stream(A, [], failure(A, FailureKind.OVERLOADED, "anthropic busy"))
    fallback, _ = native_stream(B, [], failure(B, FailureKind.RATE_LIMITED, "openai busy"))
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, [primary]), FakeAdapter(B, [fallback]), default=A))

    with pytest.raises(ProvidersExhaustedError) as exc:
        await orchestrator.open_stream(request())
    assert [(a.provider, a.reason) for a in exc.value.attempts] == [("anthropic", "anthropic busy"), ("openai", "openai busy")]


@pytest.mark.asyncio
async def test_primed_stream_replays_first_chunk():
    raw, closer = native_stream(A, ["Savor ", "is great"])
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, [raw]), default=A))

    stream = await orchestrator.open_stream(request())
    frames = [decode(frame) async for frame in stream.frames]

    assert stream.provider is A
    assert not stream.fallback_used
    assert frames[:2] == [{"content": "Savor "}, {"content": "is great"}]
    assert frames[-1] == "[DONE]"
    assert closer.calls == 1


@pytest.mark.asyncio
async def test_overload_after_first_content_is_an_error_frame():
    error = failure(A, FailureKind.OVERLOADED, "overloaded mid-stream")
    raw, closer = native_stream(A, ["Savor "], error)
    orchestrator = ChatOrchestrator(make_selector(FakeAdapter(A, [raw]), FakeAdapter(B, ["hello"]), default=A))

    stream = await orchestrator.open_stream(request())
    frames = [decode(frame) async for frame in stream.frames]

    assert stream.provider is A
    assert not stream.fallback_used
    assert frames == [{"content": "Savor "}, {"error": error.message}]
    assert closer.calls == 1


def test_card_event_links():
    event = card_event({"cardName": "Savor Card", "issuer": "Synchrony"})
    assert event["searchUrl"] == "https://www.google.com/search?q=Savor+Card+Synchrony+credit+card"
    assert event["applyUrl"] == "https://www.creditcards.com/"
