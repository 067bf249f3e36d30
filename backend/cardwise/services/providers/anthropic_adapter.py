"""Anthropic Messages API adapter (web search tool, native streaming)."""

import logging

import anthropic

from cardwise.data.issuers import FINANCIAL_SITES
from cardwise.errors import FailureKind, ProviderError
from cardwise.schemas.preferences import UserPreferences
from cardwise.services.providers.base import (
    InvokeMode,
    Provenance,
    ProviderAdapter,
    ProviderId,
    RawProviderResult,
    ResultShape,
    error_type_from_body,
    failure_kind,
)
from cardwise.services.providers.prompts import build_search_prompt, build_system_prompt

logger = logging.getLogger(__name__)

SEARCH_MAX_TOKENS = 2000


class AnthropicAdapter(ProviderAdapter):
    provider_id = ProviderId.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        max_tokens: int = 4000,
        web_search_max_uses: int = 10,
        client: anthropic.AsyncAnthropic | None = None,
        **kwargs,
    ):
        super().__init__(api_key, model=model, **kwargs)
        self.max_tokens = max_tokens
        self.web_search_max_uses = web_search_max_uses
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            # Retries happen in ProviderAdapter.invoke, not in the SDK.
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, max_retries=0)
        return self._client

    def _tools(self, domains: list[str] | None = None) -> list[dict]:
        if not self.web_search_enabled:
            return []
        return [{
            "type": "web_search_20250305",
            "name": "web_search",
            "max_uses": self.web_search_max_uses,
            "allowed_domains": domains or FINANCIAL_SITES,
        }]

    def classify(self, exc: Exception) -> ProviderError:
        if isinstance(exc, anthropic.APIStatusError):
            kind = failure_kind(exc.status_code, error_type_from_body(exc.body))
            return ProviderError(kind, self.provider_id.value, exc.message, exc.status_code)
        # Connection errors and timeouts
        return ProviderError(FailureKind.UNKNOWN, self.provider_id.value, str(exc) or type(exc).__name__)

    async def _invoke_once(self, message: str, preferences: UserPreferences, mode: InvokeMode) -> RawProviderResult:
        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": build_system_prompt(preferences, json_output=mode is InvokeMode.JSON),
            "messages": [{"role": "user", "content": message}],
        }
        tools = self._tools()
        if tools:
            kwargs["tools"] = tools

        logger.info(f"Anthropic request: model={self.model}, mode={mode.value}, message_len={len(message)}")

        if mode is InvokeMode.STREAM:
            try:
                stream = await self.client.messages.create(stream=True, **kwargs)
            except anthropic.APIError as e:
                raise self.classify(e) from e
            return RawProviderResult(
                provider=self.provider_id,
                shape=ResultShape.STREAM,
                provenance=Provenance.BEST_EFFORT,
                chunks=self._deltas(stream),
                model=self.model,
                closer=stream.close,
            )

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise self.classify(e) from e

        text = _response_text(response)
        logger.info(f"Anthropic response: {len(text)} chars, usage={getattr(response, 'usage', None)}")
        return RawProviderResult.from_text(self.provider_id, text, model=getattr(response, "model", None) or self.model)

    async def _deltas(self, stream):
        """Yield text deltas; errors raised mid-stream are classified here too."""
        chunks = 0
        try:
            async for event in stream:
                if getattr(event, "type", None) != "content_block_delta":
                    continue
                delta = getattr(event, "delta", None)
                if getattr(delta, "type", None) == "text_delta" and delta.text:
                    chunks += 1
                    yield delta.text
        except anthropic.APIError as e:
            logger.error(f"Anthropic stream failed after {chunks} chunks: {e}")
            raise self.classify(e) from e

    async def web_search(self, query: str, domains: list[str]) -> str:
        kwargs = {
            "model": self.model,
            "max_tokens": SEARCH_MAX_TOKENS,
            "messages": [{"role": "user", "content": build_search_prompt(query)}],
        }
        tools = self._tools(domains)
        if tools:
            kwargs["tools"] = tools
        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise self.classify(e) from e
        return _response_text(response)


def _response_text(response) -> str:
    """Concatenate the text blocks; tool-use and search-result blocks are skipped."""
    parts = [
        block.text
        for block in getattr(response, "content", None) or []
        if getattr(block, "type", None) == "text" and getattr(block, "text", None)
    ]
    return "".join(parts).strip()
