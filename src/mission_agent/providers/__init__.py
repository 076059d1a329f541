"""Capability provider implementations."""

from mission_agent.providers.base import (
    CapabilityProvider,
    GenerationOptions,
    GenerativeCapability,
    InvokeOptions,
    ProviderCategory,
    ProviderError,
    ProviderName,
)
from mission_agent.providers.cache import ResponseCache
from mission_agent.providers.gemini import GeminiClient
from mission_agent.providers.registry import ProviderRegistry, build_provider_registry
from mission_agent.providers.serper import SerperProvider
from mission_agent.providers.tavily import TavilyProvider

__all__ = [
    "CapabilityProvider",
    "GeminiClient",
    "GenerationOptions",
    "GenerativeCapability",
    "InvokeOptions",
    "ProviderCategory",
    "ProviderError",
    "ProviderName",
    "ProviderRegistry",
    "ResponseCache",
    "SerperProvider",
    "TavilyProvider",
    "build_provider_registry",
]
