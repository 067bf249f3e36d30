"""Provider selection and availability introspection."""

import logging

from cardwise.errors import NoProviderAvailableError
from cardwise.services.providers.base import ProviderAdapter, ProviderId

logger = logging.getLogger(__name__)

# Order used when neither the requested nor the default provider is available
FALLBACK_ORDER: tuple[ProviderId, ...] = (ProviderId.OPENAI, ProviderId.ANTHROPIC)


class ProviderSelector:
    def __init__(self, adapters: dict[ProviderId, ProviderAdapter], default: ProviderId | str | None = None):
        self._adapters = adapters
        self.default = _parse_provider(default)

    def adapter(self, provider: ProviderId) -> ProviderAdapter:
        return self._adapters[provider]

    def is_available(self, provider: ProviderId) -> bool:
        # Recomputed on every call; keys can be rotated at runtime.
        adapter = self._adapters.get(provider)
        return adapter is not None and adapter.is_available()

    def list_available(self) -> list[ProviderId]:
        return [p for p in FALLBACK_ORDER if self.is_available(p)]

    def select(self, requested: ProviderId | None = None) -> ProviderId:
        """Requested-and-available, else the configured default, else first available."""
        if requested is not None and self.is_available(requested):
            return requested
        if requested is not None:
            logger.info(f"Requested provider {requested.value} unavailable, selecting another")
        if self.default is not None and self.is_available(self.default):
            return self.default
        for provider in FALLBACK_ORDER:
            if self.is_available(provider):
                return provider
        raise NoProviderAvailableError()

    def alternate(self, provider: ProviderId) -> ProviderId | None:
        """The other provider, whether or not it is available."""
        for other in FALLBACK_ORDER:
            if other is not provider and other in self._adapters:
                return other
        return None

    def describe(self) -> dict:
        available = self.list_available()
        return {
            "currentProvider": self.default.value if self.default else None,
            "availableProviders": [p.value for p in available],
            "providers": [
                {
                    "id": p.value,
                    "available": p in available,
                    "model": self._adapters[p].model if p in self._adapters else None,
                }
                for p in FALLBACK_ORDER
            ],
        }


def _parse_provider(value: ProviderId | str | None) -> ProviderId | None:
    if value is None or isinstance(value, ProviderId):
        return value
    try:
        return ProviderId(value.strip().lower())
    except ValueError:
        logger.warning(f"Unknown default provider {value!r}, ignoring")
        return None
