"""Chat router: recommendation chat (JSON and SSE) and conversation history."""

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from cardwise.dependencies import (
    client_ip,
    get_chat_rate_limiter,
    get_current_user,
    get_optional_user,
    get_orchestrator,
)
from cardwise.errors import RateLimitExceededError
from cardwise.models.user import User
from cardwise.schemas.chat import ChatRequest
from cardwise.services.chat_orchestrator import ChatOrchestrator, ChatOutcome
from cardwise.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter()

CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def enforce_chat_rate_limit(request: Request, limiter: RateLimiter = Depends(get_chat_rate_limiter)):
    if not await limiter.is_allowed(client_ip(request)):
        logger.info(f"Chat rate limit hit for {client_ip(request)}")
        raise RateLimitExceededError()


def _provider_headers(provider: str, fallback_used: bool, original_provider: str | None) -> dict[str, str]:
    headers = {"X-AI-Provider": provider}
    if fallback_used:
        headers["X-Fallback-Used"] = "true"
        if original_provider:
            headers["X-Original-Provider"] = original_provider
    return headers


def _json_response(outcome: ChatOutcome) -> JSONResponse:
    body = outcome.response.to_payload()
    if outcome.conversation_id:
        body["conversationId"] = outcome.conversation_id
    headers = _provider_headers(
        outcome.provider.value,
        outcome.fallback_used,
        outcome.original_provider.value if outcome.original_provider else None,
    )
    headers["X-Response-Time"] = f"{outcome.elapsed_ms}ms"
    return JSONResponse(content=body, headers=headers)


async def _stream_response(
    request: Request, body: ChatRequest, user: User | None, orchestrator: ChatOrchestrator
) -> StreamingResponse:
    stream = await orchestrator.open_stream(body, user, is_disconnected=request.is_disconnected)
    headers = {
        **SSE_HEADERS,
        **_provider_headers(
            stream.provider.value,
            stream.fallback_used,
            stream.original_provider.value if stream.original_provider else None,
        ),
    }
    return StreamingResponse(stream.frames, media_type="text/event-stream", headers=headers)


def _wants_stream(request: Request) -> bool:
    return "text/event-stream" in request.headers.get("accept", "")


@router.post("/chat", dependencies=[Depends(enforce_chat_rate_limit)])
async def chat(
    body: ChatRequest,
    request: Request,
    user: User | None = Depends(get_optional_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """Card recommendations for a chat message. Persists the exchange when authenticated."""
    if _wants_stream(request):
        return await _stream_response(request, body, user, orchestrator)
    return _json_response(await orchestrator.handle(body, user))


@router.options("/chat")
async def chat_options():
    return Response(status_code=200, headers=CORS_PREFLIGHT_HEADERS)


@router.post("/chat/stream", dependencies=[Depends(enforce_chat_rate_limit)])
async def chat_stream(
    body: ChatRequest,
    request: Request,
    user: User | None = Depends(get_optional_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    return await _stream_response(request, body, user, orchestrator)


@router.post("/user/chat", dependencies=[Depends(enforce_chat_rate_limit)])
async def user_chat(
    body: ChatRequest,
    request: Request,
    user: User = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    if _wants_stream(request):
        return await _stream_response(request, body, user, orchestrator)
    return _json_response(await orchestrator.handle(body, user))


@router.get("/user/conversations")
async def list_conversations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    if orchestrator.store is None:
        return {"conversations": []}
    conversations = await orchestrator.store.list_conversations(user.id, limit=limit, offset=offset)
    return {"conversations": conversations}
