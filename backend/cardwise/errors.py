"""Error taxonomy shared by the services and the HTTP layer.

Every error that can reach a client is a ``CardWiseError`` carrying an HTTP
status, a stable code, a human-readable message and a details dict. The
exception handlers in ``cardwise.main`` render these as JSON.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(eq=False)
class CardWiseError(Exception):
    """Consistent service-layer exception with HTTP-friendly metadata."""

    message: str
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.status_code} {self.code}: {self.message}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "status": self.status_code,
            "details": self.details,
        }


class ValidationError(CardWiseError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, 400, "VALIDATION_ERROR", details or {})


class AuthenticationRequiredError(CardWiseError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, 401, "AUTH_REQUIRED", {})


class RateLimitExceededError(CardWiseError):
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, 429, "RATE_LIMITED", {})


class NoProviderAvailableError(CardWiseError):
    def __init__(self, message: str = "No AI providers are available. Please check your API keys."):
        super().__init__(message, 503, "NO_PROVIDER_AVAILABLE", {})


class FailureKind(str, Enum):
    """Closed set of provider failure classes."""

    OVERLOADED = "overloaded"
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    AUTH_FAILURE = "auth_failure"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (FailureKind.OVERLOADED, FailureKind.RATE_LIMITED)


# Status and client-facing message used when a provider failure is terminal.
_KIND_STATUS: dict[FailureKind, tuple[int, str]] = {
    FailureKind.OVERLOADED: (503, "The AI service is experiencing high demand. Please try again in a moment."),
    FailureKind.RATE_LIMITED: (503, "The AI service is rate limited. Please wait before sending another message."),
    FailureKind.AUTH_FAILURE: (503, "The AI service is not configured correctly."),
    FailureKind.INVALID_REQUEST: (400, "The AI service rejected the request."),
    FailureKind.UNKNOWN: (500, "An unexpected error occurred. Please try again."),
}


class ProviderError(CardWiseError):
    """A provider call failed; ``kind`` is the only thing callers switch on."""

    def __init__(self, kind: FailureKind, provider: str, message: str, status: int | None = None):
        http_status, public_message = _KIND_STATUS[kind]
        super().__init__(
            public_message,
            http_status,
            f"PROVIDER_{kind.value.upper()}",
            {"provider": provider, "kind": kind.value},
        )
        self.kind = kind
        self.provider = provider
        self.reason = message
        self.upstream_status = status

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __str__(self) -> str:
        return f"{self.provider} {self.kind.value}: {self.reason}"


class ProvidersExhaustedError(CardWiseError):
    """Primary and fallback providers both failed."""

    def __init__(self, attempts: list[ProviderError]):
        super().__init__(
            "Both AI services are currently unavailable. Please try again later.",
            503,
            "PROVIDERS_EXHAUSTED",
            {
                "attempts": [
                    {"provider": a.provider, "kind": a.kind.value, "message": a.reason}
                    for a in attempts
                ]
            },
        )
        self.attempts = attempts


class PersistenceError(CardWiseError):
    def __init__(self, message: str):
        super().__init__(message, 500, "PERSISTENCE_ERROR", {})


class ConversationNotFoundError(PersistenceError):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found or access denied")
        self.status_code = 404
        self.code = "CONVERSATION_NOT_FOUND"
