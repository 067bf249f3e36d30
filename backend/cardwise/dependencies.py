"""FastAPI dependencies: auth gateway, service wiring, client identity."""

import logging
import uuid
from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from cardwise.config import settings
from cardwise.database import async_session_factory, get_db
from cardwise.errors import AuthenticationRequiredError
from cardwise.models.user import User
from cardwise.services.cache_service import cache_service
from cardwise.services.chat_orchestrator import ChatOrchestrator
from cardwise.services.conversation_store import ConversationStore
from cardwise.services.normalization import ResponseNormalizer
from cardwise.services.providers.anthropic_adapter import AnthropicAdapter
from cardwise.services.providers.base import ProviderId
from cardwise.services.providers.openai_adapter import OpenAIAdapter
from cardwise.services.providers.selector import ProviderSelector
from cardwise.services.rate_limiter import RateLimiter, chat_rate_limiter, search_rate_limiter
from cardwise.services.search_service import SearchService
from cardwise.services.streaming_bridge import StreamingBridge

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# Auth gateway

async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Resolve the bearer token to an active user; anonymous on any failure."""
    if credentials is None:
        return None
    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[settings.algorithm])
        user_id = uuid.UUID(str(payload.get("sub")))
    except (JWTError, ValueError) as e:
        logger.info(f"Rejected bearer token: {e}")
        return None

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthenticationRequiredError()
    return user


# Service wiring

@lru_cache
def get_selector() -> ProviderSelector:
    retry = {
        "web_search_enabled": settings.web_search_enabled,
        "max_overload_retries": settings.overload_max_retries,
        "backoff_base": settings.overload_backoff_base_seconds,
        "backoff_max": settings.overload_backoff_max_seconds,
    }
    adapters = {
        ProviderId.ANTHROPIC: AnthropicAdapter(
            settings.anthropic_api_key,
            model=settings.anthropic_model,
            max_tokens=settings.anthropic_max_tokens,
            web_search_max_uses=settings.anthropic_web_search_max_uses,
            **retry,
        ),
        ProviderId.OPENAI: OpenAIAdapter(settings.openai_api_key, model=settings.openai_model, **retry),
    }
    return ProviderSelector(adapters, default=settings.ai_provider)


@lru_cache
def get_orchestrator() -> ChatOrchestrator:
    return ChatOrchestrator(
        get_selector(),
        normalizer=ResponseNormalizer(),
        bridge=StreamingBridge(settings.stream_chunk_size, settings.stream_chunk_delay_seconds),
        store=ConversationStore(async_session_factory),
    )


@lru_cache
def get_search_service() -> SearchService:
    return SearchService(get_selector(), cache_service, ttl=settings.search_cache_ttl)


def get_chat_rate_limiter() -> RateLimiter:
    return chat_rate_limiter


def get_search_rate_limiter() -> RateLimiter:
    return search_rate_limiter


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"
