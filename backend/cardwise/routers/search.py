"""Search router: cached web search summaries."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from cardwise.dependencies import client_ip, get_search_rate_limiter, get_search_service
from cardwise.errors import RateLimitExceededError
from cardwise.routers.chat import CORS_PREFLIGHT_HEADERS
from cardwise.schemas.search import SearchRequest, SearchResponse
from cardwise.services.rate_limiter import RateLimiter
from cardwise.services.search_service import SearchService

logger = logging.getLogger(__name__)

router = APIRouter()


async def enforce_search_rate_limit(request: Request, limiter: RateLimiter = Depends(get_search_rate_limiter)):
    if not await limiter.is_allowed(client_ip(request)):
        raise RateLimitExceededError()


@router.post("", response_model=SearchResponse, dependencies=[Depends(enforce_search_rate_limit)])
async def search(body: SearchRequest, service: SearchService = Depends(get_search_service)):
    return await service.search(body)


@router.options("")
async def search_options():
    return Response(status_code=200, headers=CORS_PREFLIGHT_HEADERS)
