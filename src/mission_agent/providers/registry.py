"""Provider lookup by variant tag, with cached invocation."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from mission_agent.config import ProviderSettings
from mission_agent.providers.base import (
    PROVIDER_PRIORITY,
    CapabilityProvider,
    GenerativeCapability,
    InvokeOptions,
    ProviderError,
    ProviderName,
)
from mission_agent.providers.cache import ResponseCache
from mission_agent.providers.gemini import GeminiClient
from mission_agent.providers.http_client import build_http_client
from mission_agent.providers.serper import SerperProvider
from mission_agent.providers.tavily import TavilyProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Resolve `ProviderName` tags to provider instances."""

    def __init__(
        self,
        providers: Iterable[CapabilityProvider],
        *,
        cache: ResponseCache | None = None,
        generator: GenerativeCapability | None = None,
    ) -> None:
        self._providers: dict[ProviderName, CapabilityProvider] = {}
        for provider in providers:
            if provider.name in self._providers:
                raise ValueError(f"Duplicate capability provider: {provider.name.value}")
            self._providers[provider.name] = provider
        self.cache = cache
        self.generator = generator

    def available(self) -> tuple[ProviderName, ...]:
        """Registered providers in fixed priority order."""

        return tuple(name for name in PROVIDER_PRIORITY if name in self._providers)

    def get(self, name: ProviderName) -> CapabilityProvider | None:
        return self._providers.get(name)

    def invoke(
        self,
        name: ProviderName,
        query: str,
        options: InvokeOptions | None = None,
        *,
        refresh: bool = False,
    ) -> str | dict[str, Any]:
        """Invoke provider through the response cache; `refresh` bypasses a cached entry."""

        provider = self._providers.get(name)
        if provider is None:
            raise ProviderError(
                f"No capability provider is registered for {name.value!r}.",
                transient=False,
                provider=name,
            )
        if self.cache is None:
            return provider.invoke(query, options)
        key = (name.value, query.strip(), options.cache_key() if options else None)
        return self.cache.get_or_call(
            key,
            lambda: provider.invoke(query, options),
            refresh=refresh,
        )

    def close(self) -> None:
        closed: set[int] = set()
        for candidate in (*self._providers.values(), self.generator):
            close = getattr(candidate, "close", None)
            if close is None or id(candidate) in closed:
                continue
            closed.add(id(candidate))
            close()


def build_provider_registry(settings: ProviderSettings) -> ProviderRegistry:
    """Register every provider that has credentials configured."""

    def _client():  # noqa: ANN202
        return build_http_client(
            timeout_seconds=settings.request_timeout_seconds,
            max_retries=settings.http_max_retries,
        )

    providers: list[CapabilityProvider] = []
    if settings.tavily_api_key:
        providers.append(
            TavilyProvider(
                api_key=settings.tavily_api_key,
                max_results=settings.search_max_results,
                client=_client(),
            ),
        )
    if settings.serper_api_key:
        providers.append(
            SerperProvider(
                api_key=settings.serper_api_key,
                max_results=settings.search_max_results,
                client=_client(),
            ),
        )

    generator: GeminiClient | None = None
    if settings.gemini_api_key:
        generator = GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            temperature=settings.gemini_temperature,
            max_output_tokens=settings.gemini_max_output_tokens,
            client=_client(),
        )
        providers.append(generator)

    cache = (
        ResponseCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )
        if settings.cache_enabled
        else None
    )
    registry = ProviderRegistry(providers, cache=cache, generator=generator)
    logger.info(
        "Capability providers available: %s",
        ", ".join(name.value for name in registry.available()) or "none",
    )
    return registry
