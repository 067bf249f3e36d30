"""Web search endpoint service: cached one-shot search summaries."""

import logging
from datetime import datetime, timezone

from cardwise.config import settings
from cardwise.schemas.search import SearchRequest, SearchResponse, SearchResults
from cardwise.services.cache_service import CacheService
from cardwise.services.providers.selector import ProviderSelector

logger = logging.getLogger(__name__)


class SearchService:
    def __init__(self, selector: ProviderSelector, cache: CacheService, ttl: int = settings.search_cache_ttl):
        self.selector = selector
        self.cache = cache
        self.ttl = ttl

    async def search(self, request: SearchRequest) -> SearchResponse:
        cached = await self.cache.get_search(request.query, request.domains)
        if cached is not None:
            logger.info(f"Search cache hit: {request.query[:50]!r}")
            return SearchResponse(results=SearchResults(**cached), cached=True)

        provider = self.selector.select()
        summary = await self.selector.adapter(provider).web_search(request.query, request.domains)

        results = SearchResults(
            summary=summary,
            query=request.query,
            timestamp=datetime.now(timezone.utc).isoformat(),
            provider=provider.value,
        )
        await self.cache.set_search(request.query, request.domains, results.model_dump(), self.ttl)
        return SearchResponse(results=results, cached=False)
