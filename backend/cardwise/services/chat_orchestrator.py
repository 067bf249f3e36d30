"""Chat orchestration: validate -> select -> invoke -> fallback -> normalize -> persist.

At most one primary and one fallback attempt per request. Fallback fires only
when the primary failure is retryable (overloaded / rate limited) and the
alternate provider is available. Persistence is best-effort and never changes
the outcome of a request.
"""

import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote_plus

from cardwise.data.issuers import DEFAULT_APPLY_URL, ISSUER_APPLY_URLS
from cardwise.errors import CardWiseError, ProviderError, ProvidersExhaustedError
from cardwise.schemas.chat import ChatRequest
from cardwise.schemas.preferences import UserPreferences
from cardwise.schemas.recommendation import RecommendationResponse
from cardwise.services.conversation_store import ChatMessage, ConversationStore
from cardwise.services.normalization import ResponseNormalizer
from cardwise.services.preference_validator import validate_preferences
from cardwise.services.providers.base import InvokeMode, ProviderId, RawProviderResult
from cardwise.services.providers.selector import ProviderSelector
from cardwise.services.streaming_bridge import DisconnectCheck, StreamingBridge, prime_stream

logger = logging.getLogger(__name__)


class ChatState(str, Enum):
    VALIDATING = "validating"
    SELECTING = "selecting"
    INVOKING_PRIMARY = "invoking_primary"
    INVOKING_FALLBACK = "invoking_fallback"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class InvocationResult:
    raw: RawProviderResult
    provider: ProviderId
    fallback_used: bool = False
    original_provider: ProviderId | None = None
    original_error: str | None = None


@dataclass
class ChatOutcome:
    response: RecommendationResponse
    provider: ProviderId
    elapsed_ms: int
    fallback_used: bool = False
    original_provider: ProviderId | None = None
    original_error: str | None = None
    conversation_id: str | None = None
    states: list[ChatState] = field(default_factory=list)


@dataclass
class ChatStream:
    """Provider metadata known before the first frame, plus the frames."""
    provider: ProviderId
    fallback_used: bool
    original_provider: ProviderId | None
    frames: AsyncIterator[str]
    states: list[ChatState] = field(default_factory=list)


class ChatOrchestrator:
    def __init__(
        self,
        selector: ProviderSelector,
        normalizer: ResponseNormalizer | None = None,
        bridge: StreamingBridge | None = None,
        store: ConversationStore | None = None,
    ):
        self.selector = selector
        self.normalizer = normalizer or ResponseNormalizer()
        self.bridge = bridge or StreamingBridge()
        self.store = store

    async def _call(
        self, provider: ProviderId, message: str, preferences: UserPreferences, mode: InvokeMode
    ) -> RawProviderResult:
        raw = await self.selector.adapter(provider).invoke(message, preferences, mode)
        if mode is InvokeMode.STREAM:
            # An overload reported inside the stream must still reach the fallback
            raw = await prime_stream(raw)
        return raw

    async def _invoke(
        self,
        message: str,
        preferences: UserPreferences,
        mode: InvokeMode,
        requested: ProviderId | None,
        states: list[ChatState],
    ) -> InvocationResult:
        states.append(ChatState.SELECTING)
        primary = self.selector.select(requested)

        states.append(ChatState.INVOKING_PRIMARY)
        try:
            raw = await self._call(primary, message, preferences, mode)
            return InvocationResult(raw=raw, provider=primary)
        except ProviderError as primary_error:
            alternate = self.selector.alternate(primary)
            if not primary_error.retryable or alternate is None or not self.selector.is_available(alternate):
                logger.error(f"{primary.value} failed with no fallback: {primary_error}")
                raise

            logger.warning(f"{primary.value} failed ({primary_error.kind.value}), falling back to {alternate.value}")
            states.append(ChatState.INVOKING_FALLBACK)
            try:
                raw = await self._call(alternate, message, preferences, mode)
            except ProviderError as fallback_error:
                logger.error(f"Fallback {alternate.value} also failed: {fallback_error}")
                raise ProvidersExhaustedError([primary_error, fallback_error]) from fallback_error

            return InvocationResult(
                raw=raw,
                provider=alternate,
                fallback_used=True,
                original_provider=primary,
                original_error=primary_error.reason,
            )

    async def handle(self, request: ChatRequest, user: Any = None) -> ChatOutcome:
        """JSON path: one canonical ``RecommendationResponse``."""
        started = time.monotonic()
        states: list[ChatState] = [ChatState.VALIDATING]
        try:
            preferences = validate_preferences(request.preferences)
            result = await self._invoke(request.message, preferences, InvokeMode.JSON, request.provider, states)
        except CardWiseError:
            states.append(ChatState.FAILED)
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        response = self.normalizer.normalize(result.raw, preferences, processing_time_ms=elapsed_ms)
        response.response_metadata.fallback_used = result.fallback_used
        if result.fallback_used:
            response.response_metadata.original_provider = result.original_provider.value
            response.response_metadata.original_error = result.original_error

        conversation_id = await self._persist(
            user, request, response.summary or result.raw.text, result, states,
            extra={"cardCount": len(response.recommended_cards)},
        )
        states.append(ChatState.DONE)
        logger.info(
            f"Chat handled by {result.provider.value} in {elapsed_ms}ms "
            f"(fallback={result.fallback_used}, cards={len(response.recommended_cards)})"
        )
        return ChatOutcome(
            response=response,
            provider=result.provider,
            elapsed_ms=elapsed_ms,
            fallback_used=result.fallback_used,
            original_provider=result.original_provider,
            original_error=result.original_error,
            conversation_id=conversation_id,
            states=states,
        )

    async def open_stream(
        self,
        request: ChatRequest,
        user: Any = None,
        is_disconnected: DisconnectCheck | None = None,
    ) -> ChatStream:
        """Streaming path. Errors before the first frame raise; later ones become an error frame."""
        states: list[ChatState] = [ChatState.VALIDATING]
        try:
            preferences = validate_preferences(request.preferences)
            result = await self._invoke(request.message, preferences, InvokeMode.STREAM, request.provider, states)
        except CardWiseError:
            states.append(ChatState.FAILED)
            raise

        async def trailer(text: str) -> list[dict]:
            events = []
            cards = self.normalizer.cards_from_text(text, preferences)
            if cards:
                events.append({"type": "cards", "cards": [card_event(c.model_dump(mode="json", by_alias=True)) for c in cards]})
            await self._persist(user, request, text, result, states, extra={"cardCount": len(cards)})
            states.append(ChatState.DONE)
            return events

        return ChatStream(
            provider=result.provider,
            fallback_used=result.fallback_used,
            original_provider=result.original_provider,
            frames=self.bridge.frames(result.raw, is_disconnected=is_disconnected, trailer=trailer),
            states=states,
        )

    async def _persist(
        self,
        user: Any,
        request: ChatRequest,
        reply: str,
        result: InvocationResult,
        states: list[ChatState],
        extra: dict | None = None,
    ) -> str | None:
        if user is None or self.store is None:
            return None

        states.append(ChatState.PERSISTING)
        conversation_id = request.conversation_id
        try:
            if not conversation_id:
                conversation_id = await self.store.create_conversation(
                    user.id, {"title": request.message[:100], "provider": result.provider.value}
                )
            await self.store.add_message(user.id, conversation_id, ChatMessage(role="user", content=request.message))
            await self.store.add_message(
                user.id,
                conversation_id,
                ChatMessage(
                    role="assistant",
                    content=reply,
                    metadata={
                        "provider": result.provider.value,
                        "fallbackUsed": result.fallback_used,
                        **(extra or {}),
                    },
                ),
            )
        except CardWiseError as e:
            logger.error(f"Failed to persist conversation for user {user.id}: {e}")
            return None
        return conversation_id


def card_event(card: dict) -> dict:
    """Card payload for the stream trailer, with search and apply links."""
    query = quote_plus(f"{card['cardName']} {card['issuer']} credit card")
    return {
        **card,
        "searchUrl": f"https://www.google.com/search?q={query}",
        "applyUrl": ISSUER_APPLY_URLS.get(card["issuer"], DEFAULT_APPLY_URL),
    }
