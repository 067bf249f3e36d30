"""OpenAI Responses API adapter (web search tool, strict JSON schema output)."""

import json
import logging
from typing import Any

import openai

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
from cardwise.services.providers.schema import RESPONSE_FORMAT

logger = logging.getLogger(__name__)


class OpenAIAdapter(ProviderAdapter):
    provider_id = ProviderId.OPENAI

    def __init__(self, api_key: str, *, model: str, client: openai.AsyncOpenAI | None = None, **kwargs):
        super().__init__(api_key, model=model, **kwargs)
        self._client = client

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self._api_key, max_retries=0)
        return self._client

    def _tools(self) -> list[dict]:
        if not self.web_search_enabled:
            return []
        return [{"type": "web_search_preview", "search_context_size": "medium"}]

    def classify(self, exc: Exception) -> ProviderError:
        if isinstance(exc, openai.APIStatusError):
            error_type = error_type_from_body(exc.body) or getattr(exc, "code", None)
            kind = failure_kind(exc.status_code, error_type)
            return ProviderError(kind, self.provider_id.value, exc.message, exc.status_code)
        return ProviderError(FailureKind.UNKNOWN, self.provider_id.value, str(exc) or type(exc).__name__)

    async def _create(self, **kwargs):
        try:
            return await self.client.responses.create(**kwargs)
        except openai.APIError as e:
            raise self.classify(e) from e

    async def _invoke_once(self, message: str, preferences: UserPreferences, mode: InvokeMode) -> RawProviderResult:
        json_output = mode is InvokeMode.JSON
        kwargs: dict[str, Any] = {
            "model": self.model,
            "instructions": build_system_prompt(preferences, json_output=json_output),
            "input": message,
        }
        tools = self._tools()
        if tools:
            kwargs["tools"] = tools
        if json_output:
            kwargs["text"] = RESPONSE_FORMAT

        logger.info(f"OpenAI request: model={self.model}, mode={mode.value}, message_len={len(message)}")
        response = await self._create(**kwargs)
        text = extract_output_text(response)
        model = getattr(response, "model", None) or self.model
        logger.info(f"OpenAI response: {len(text)} chars")

        if json_output:
            try:
                data = json.loads(text)
            except ValueError:
                data = None
            if isinstance(data, dict):
                return RawProviderResult(
                    provider=self.provider_id,
                    shape=ResultShape.STRUCTURED,
                    provenance=Provenance.STRUCTURED,
                    text=text,
                    data=data,
                    model=model,
                )
            logger.warning("OpenAI structured output was not a JSON object, treating as text")

        # Stream mode has no native stream here; the bridge chunks the text.
        return RawProviderResult.from_text(self.provider_id, text, model=model)

    async def web_search(self, query: str, domains: list[str]) -> str:
        prompt = build_search_prompt(query)
        if domains:
            # The preview tool has no domain filter; narrow through the prompt.
            prompt += f" Only use these sites: {', '.join(domains)}."
        kwargs: dict[str, Any] = {"model": self.model, "input": prompt}
        tools = self._tools()
        if tools:
            kwargs["tools"] = tools
        response = await self._create(**kwargs)
        return extract_output_text(response)


def extract_output_text(response) -> str:
    """Text of a Responses API result.

    Uses the SDK's ``output_text`` convenience when present, otherwise walks the
    ``output`` items for ``output_text`` content parts.
    """
    direct = getattr(response, "output_text", None)
    if isinstance(direct, str) and direct.strip():
        return direct.strip()

    parts: list[str] = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for content in getattr(item, "content", None) or []:
            if getattr(content, "type", None) in ("output_text", "text"):
                text = getattr(content, "text", None)
                if isinstance(text, str):
                    parts.append(text)
    return "".join(parts).strip()
