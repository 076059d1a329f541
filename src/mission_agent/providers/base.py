"""Capability provider contracts shared by search and generation backends."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class ProviderName(str, Enum):
    """Closed set of capability providers known to the decision engine."""

    TAVILY = "tavily"
    SERPER = "serper"
    GEMINI = "gemini"


class ProviderCategory(str, Enum):
    """Kind of work a provider is good at."""

    WEB_SEARCH = "web_search"
    KNOWLEDGE = "knowledge"
    SUMMARIZATION = "summarization"


PROVIDER_PRIORITY: tuple[ProviderName, ...] = (
    ProviderName.TAVILY,
    ProviderName.SERPER,
    ProviderName.GEMINI,
)

PROVIDER_CATEGORIES: dict[ProviderName, frozenset[ProviderCategory]] = {
    ProviderName.TAVILY: frozenset({ProviderCategory.WEB_SEARCH}),
    ProviderName.SERPER: frozenset({ProviderCategory.WEB_SEARCH}),
    ProviderName.GEMINI: frozenset({ProviderCategory.KNOWLEDGE, ProviderCategory.SUMMARIZATION}),
}


class ProviderError(RuntimeError):
    """Provider invocation error with retryability hint."""

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        provider: ProviderName | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.provider = provider
        self.status_code = status_code


@dataclass(slots=True, frozen=True)
class InvokeOptions:
    """Per-call options for capability providers."""

    max_results: int | None = None

    def cache_key(self) -> tuple[Any, ...]:
        return (self.max_results,)


@dataclass(slots=True, frozen=True)
class GenerationOptions:
    """Sampling options for generative calls."""

    temperature: float | None = None
    max_output_tokens: int | None = None
    model: str | None = None


class CapabilityProvider(Protocol):
    """Interface for task-resolving backends."""

    name: ProviderName

    def invoke(self, query: str, options: InvokeOptions | None = None) -> str | dict[str, Any]:
        """Resolve query, raising `ProviderError` on failure."""
        raise NotImplementedError


class GenerativeCapability(Protocol):
    """Interface for text generation used by decomposition and advanced routing."""

    def generate(self, prompt: str, options: GenerationOptions | None = None) -> str:
        """Return generated text; failures raise `ProviderError`, empty output does not."""
        raise NotImplementedError
