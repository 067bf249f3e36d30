"""Provider adapter contract.

An adapter wraps one LLM vendor and exposes ``invoke`` / ``is_available``.
Vendor exceptions are turned into ``ProviderError`` exactly once, inside the
adapter; nothing upstream looks at vendor error shapes.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from cardwise.errors import FailureKind, ProviderError
from cardwise.schemas.preferences import UserPreferences

logger = logging.getLogger(__name__)


class ProviderId(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class InvokeMode(str, Enum):
    STREAM = "stream"
    JSON = "json"


class ResultShape(str, Enum):
    STREAM = "stream"
    TEXT = "text"
    STRUCTURED = "structured"


class Provenance(str, Enum):
    STRUCTURED = "structured"    # schema-constrained by the vendor
    BEST_EFFORT = "best_effort"  # free text, needs extraction


@dataclass
class RawProviderResult:
    provider: ProviderId
    shape: ResultShape
    provenance: Provenance = Provenance.BEST_EFFORT
    text: str = ""
    data: dict[str, Any] | None = None
    chunks: AsyncIterator[str] | None = None
    model: str | None = None
    closer: Callable[[], Awaitable[None]] | None = None

    @classmethod
    def from_text(cls, provider: ProviderId, text: str, model: str | None = None) -> "RawProviderResult":
        return cls(provider=provider, shape=ResultShape.TEXT, text=text, model=model)

    @property
    def requires_extraction(self) -> bool:
        return self.provenance is Provenance.BEST_EFFORT

    async def aclose(self) -> None:
        """Release the underlying vendor response (streams only)."""
        aclose = getattr(self.chunks, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.closer is not None:
            closer, self.closer = self.closer, None
            await closer()


# HTTP status -> failure kind. Vendor error types below take precedence.
_STATUS_KINDS: dict[int, FailureKind] = {
    400: FailureKind.INVALID_REQUEST,
    401: FailureKind.AUTH_FAILURE,
    403: FailureKind.AUTH_FAILURE,
    404: FailureKind.INVALID_REQUEST,
    413: FailureKind.INVALID_REQUEST,
    422: FailureKind.INVALID_REQUEST,
    429: FailureKind.RATE_LIMITED,
    503: FailureKind.OVERLOADED,
    529: FailureKind.OVERLOADED,
}

_ERROR_TYPE_KINDS: dict[str, FailureKind] = {
    "overloaded_error": FailureKind.OVERLOADED,
    "rate_limit_error": FailureKind.RATE_LIMITED,
    "rate_limit_exceeded": FailureKind.RATE_LIMITED,
    "insufficient_quota": FailureKind.RATE_LIMITED,
    "authentication_error": FailureKind.AUTH_FAILURE,
    "permission_error": FailureKind.AUTH_FAILURE,
    "invalid_api_key": FailureKind.AUTH_FAILURE,
    "invalid_request_error": FailureKind.INVALID_REQUEST,
}


def failure_kind(status: int | None, error_type: str | None = None) -> FailureKind:
    if error_type and error_type in _ERROR_TYPE_KINDS:
        return _ERROR_TYPE_KINDS[error_type]
    if status is None:
        return FailureKind.UNKNOWN
    return _STATUS_KINDS.get(status, FailureKind.UNKNOWN)


def error_type_from_body(body: Any) -> str | None:
    """Pull the vendor error type/code out of an error body, if present."""
    if not isinstance(body, dict):
        return None
    inner = body.get("error", body)
    if not isinstance(inner, dict):
        return None
    # Anthropic puts the class in "type"; OpenAI puts the specific reason in "code".
    for key in ("code", "type"):
        value = inner.get(key)
        if isinstance(value, str) and value in _ERROR_TYPE_KINDS:
            return value
    value = inner.get("type")
    return value if isinstance(value, str) else None


def _is_overloaded(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.kind is FailureKind.OVERLOADED


class ProviderAdapter(ABC):
    """One LLM vendor behind the uniform invoke contract."""

    provider_id: ProviderId

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        web_search_enabled: bool = True,
        max_overload_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 5.0,
    ):
        self._api_key = api_key
        self.model = model
        self.web_search_enabled = web_search_enabled
        self._max_overload_retries = max_overload_retries
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def invoke(self, message: str, preferences: UserPreferences, mode: InvokeMode) -> RawProviderResult:
        """Call the vendor, retrying the same vendor while it reports overload."""
        if not self.is_available():
            raise ProviderError(
                FailureKind.AUTH_FAILURE, self.provider_id.value, "API key is not configured"
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_overloaded),
            stop=stop_after_attempt(self._max_overload_retries + 1),
            wait=wait_exponential(multiplier=self._backoff_base, max=self._backoff_max),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return await retrying(self._invoke_once, message, preferences, mode)

    def _log_retry(self, retry_state) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{self.provider_id.value} overloaded, retrying in {delay:.1f}s "
            f"(attempt {retry_state.attempt_number}/{self._max_overload_retries})"
        )

    @abstractmethod
    async def _invoke_once(self, message: str, preferences: UserPreferences, mode: InvokeMode) -> RawProviderResult:
        """Single vendor call. Must raise ``ProviderError`` on failure."""

    @abstractmethod
    async def web_search(self, query: str, domains: list[str]) -> str:
        """One-shot web search summary for ``query``."""
