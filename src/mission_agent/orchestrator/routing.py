"""Decision engine: provider selection and failure remediation for tasks."""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Protocol, TypeVar

from mission_agent.orchestrator.events import EventSink, LogEntry, LoggingEventSink
from mission_agent.orchestrator.failure_classifier import FailureClass, classify_provider_failure
from mission_agent.orchestrator.llm_output import LlmOutputError, parse_json_object
from mission_agent.orchestrator.models import (
    FailureAction,
    FailureReason,
    SuggestedAction,
    ValidationOutput,
)
from mission_agent.providers.base import (
    PROVIDER_CATEGORIES,
    PROVIDER_PRIORITY,
    GenerationOptions,
    GenerativeCapability,
    ProviderCategory,
    ProviderName,
)

if TYPE_CHECKING:
    from mission_agent.orchestrator.models import Task

MAX_TASK_RETRIES = 3

D = TypeVar("D")


class RoutingMode(str, Enum):
    """Configured decision strategy."""

    AUTO = "auto"
    RULES = "rules"
    GENERATIVE = "generative"


class DecisionSource(str, Enum):
    """Strategy that actually produced a decision."""

    RULES = "rules"
    GENERATIVE = "generative"


@dataclass(slots=True, frozen=True)
class KeywordRule:
    keyword: str
    category: ProviderCategory
    provider: ProviderName | None = None


KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("google search for", ProviderCategory.WEB_SEARCH, ProviderName.SERPER),
    KeywordRule("serper search for", ProviderCategory.WEB_SEARCH, ProviderName.SERPER),
    KeywordRule("google", ProviderCategory.WEB_SEARCH, ProviderName.SERPER),
    KeywordRule("tavily search for", ProviderCategory.WEB_SEARCH, ProviderName.TAVILY),
    KeywordRule("find information about", ProviderCategory.WEB_SEARCH),
    KeywordRule("find information on", ProviderCategory.WEB_SEARCH),
    KeywordRule("search for", ProviderCategory.WEB_SEARCH),
    KeywordRule("research", ProviderCategory.WEB_SEARCH),
    KeywordRule("investigate", ProviderCategory.WEB_SEARCH),
    KeywordRule("look up", ProviderCategory.WEB_SEARCH),
    KeywordRule("latest", ProviderCategory.WEB_SEARCH),
    KeywordRule("news", ProviderCategory.WEB_SEARCH),
    KeywordRule("summarize", ProviderCategory.SUMMARIZATION),
    KeywordRule("summarise", ProviderCategory.SUMMARIZATION),
    KeywordRule("summary", ProviderCategory.SUMMARIZATION),
    KeywordRule("explain", ProviderCategory.KNOWLEDGE),
    KeywordRule("define", ProviderCategory.KNOWLEDGE),
    KeywordRule("describe", ProviderCategory.KNOWLEDGE),
    KeywordRule("compare", ProviderCategory.KNOWLEDGE),
    KeywordRule("what is", ProviderCategory.KNOWLEDGE),
)


@dataclass(slots=True, frozen=True)
class FailureContext:
    """What went wrong in the latest attempt."""

    reason: FailureReason
    message: str
    provider: ProviderName | None
    transient: bool | None = None
    validation: ValidationOutput | None = None


@dataclass(slots=True, frozen=True)
class ProviderDecision:
    provider: ProviderName | None
    source: DecisionSource
    reason: str
    matched_keyword: str | None = None
    fallback_reason: str | None = None

    def to_log_details(self) -> dict[str, object]:
        return {
            "mode": self.source.value,
            "provider": self.provider.value if self.provider else None,
            "reason": self.reason,
            "matched_keyword": self.matched_keyword,
            "fallback_reason": self.fallback_reason,
        }


@dataclass(slots=True, frozen=True)
class FailureDecision:
    action: FailureAction
    next_provider: ProviderName | None
    source: DecisionSource
    reason: str
    delay_seconds: float = 0.0
    failure_class: str | None = None
    fallback_reason: str | None = None

    def to_log_details(self) -> dict[str, object]:
        return {
            "mode": self.source.value,
            "action": self.action.value,
            "next_provider": self.next_provider.value if self.next_provider else None,
            "reason": self.reason,
            "delay_seconds": self.delay_seconds,
            "failure_class": self.failure_class,
            "fallback_reason": self.fallback_reason,
        }


class DecisionStrategy(Protocol):
    def select_provider(
        self,
        task: Task,
        available: Sequence[ProviderName],
    ) -> ProviderDecision:
        raise NotImplementedError

    def handle_failure(
        self,
        task: Task,
        failure: FailureContext,
        available: Sequence[ProviderName],
    ) -> FailureDecision:
        raise NotImplementedError


class RuleBasedStrategy:
    """Keyword heuristics; always available and never raises."""

    def __init__(self, *, default_provider: ProviderName = ProviderName.TAVILY) -> None:
        self.default_provider = default_provider

    def select_provider(
        self,
        task: Task,
        available: Sequence[ProviderName],
    ) -> ProviderDecision:
        text = task.description.lower()
        matches: list[tuple[KeywordRule, ProviderName]] = []
        for rule in KEYWORD_RULES:
            if not _keyword_matches(text, rule.keyword):
                continue
            candidates = _rule_candidates(rule, available)
            if candidates:
                matches.append((rule, candidates[0]))

        if matches:
            rule, provider = min(
                matches,
                key=lambda match: (-len(match[0].keyword), PROVIDER_PRIORITY.index(match[1])),
            )
            return ProviderDecision(
                provider=provider,
                source=DecisionSource.RULES,
                reason=f"Matched keyword {rule.keyword!r} ({rule.category.value}).",
                matched_keyword=rule.keyword,
            )

        if self.default_provider in available:
            return ProviderDecision(
                provider=self.default_provider,
                source=DecisionSource.RULES,
                reason="No keyword rule matched; using default provider.",
            )
        fallback = _first_available(available)
        return ProviderDecision(
            provider=fallback,
            source=DecisionSource.RULES,
            reason=(
                "No keyword rule matched; default provider unavailable, "
                "using highest-priority available provider."
                if fallback is not None
                else "No capability provider is available."
            ),
        )

    def handle_failure(
        self,
        task: Task,  # noqa: ARG002
        failure: FailureContext,
        available: Sequence[ProviderName],
    ) -> FailureDecision:
        if failure.reason is FailureReason.VALIDATION_REJECTED:
            suggested = failure.validation.suggested_action if failure.validation else None
            if suggested is SuggestedAction.ALTERNATIVE_SOURCE:
                alternative = _next_alternative(failure.provider, available)
                if alternative is not None:
                    return FailureDecision(
                        action=FailureAction.ALTERNATIVE_SOURCE,
                        next_provider=alternative,
                        source=DecisionSource.RULES,
                        reason="Validator suggested an alternative source.",
                    )
            return FailureDecision(
                action=FailureAction.RETRY,
                next_provider=failure.provider,
                source=DecisionSource.RULES,
                reason=(
                    "Result rejected by validation "
                    f"({suggested.value if suggested else 'unknown'}); retrying."
                ),
            )

        classification = classify_provider_failure(
            failure.message,
            transient_hint=failure.transient,
        )
        failure_class = classification.failure_class.value
        if classification.failure_class in {FailureClass.TRANSIENT, FailureClass.UNKNOWN}:
            return FailureDecision(
                action=FailureAction.RETRY,
                next_provider=failure.provider,
                source=DecisionSource.RULES,
                reason=f"Provider error classified as {failure_class}; retrying.",
                failure_class=failure_class,
            )

        alternative = _next_alternative(failure.provider, available)
        if alternative is None:
            return FailureDecision(
                action=FailureAction.ESCALATE,
                next_provider=None,
                source=DecisionSource.RULES,
                reason=f"Provider error classified as {failure_class}; no alternative source.",
                failure_class=failure_class,
            )
        return FailureDecision(
            action=FailureAction.ALTERNATIVE_SOURCE,
            next_provider=alternative,
            source=DecisionSource.RULES,
            reason=f"Provider error classified as {failure_class}; switching provider.",
            failure_class=failure_class,
        )


_SELECTION_PROMPT = """You route research tasks to capability providers.
Available providers (in priority order): {providers}
- tavily: research-grade web search with a synthesized answer.
- serper: Google search results.
- gemini: generative model for explanations, definitions and summaries.

Task: {description}

Respond ONLY with a JSON object: {{"provider": "<one of the available providers>", \
"reason": "<short justification>"}}"""

_FAILURE_PROMPT = """A task attempt failed and you must choose how to proceed.
Task: {description}
Failed provider: {provider}
Failure kind: {reason}
Failure message: {message}
Retries so far: {retries} of {max_retries}
Available providers: {providers}

Choose one action:
- "retry": try the same provider again (transient problems).
- "alternative_source": switch to a different available provider.
- "escalate": stop; the problem needs human attention.

Respond ONLY with a JSON object: {{"action": "<action>", \
"provider": "<provider for the next attempt or null>", "reason": "<short justification>"}}"""


class GenerativeStrategy:
    """Delegate routing to a generative call; raises on any unusable answer."""

    def __init__(
        self,
        generator: GenerativeCapability,
        *,
        model: str | None = None,
        temperature: float = 0.2,
        max_output_tokens: int = 256,
    ) -> None:
        self._generator = generator
        self._options = GenerationOptions(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            model=model,
        )

    def select_provider(
        self,
        task: Task,
        available: Sequence[ProviderName],
    ) -> ProviderDecision:
        if not available:
            raise LlmOutputError("No capability provider is available to choose from.")
        payload = parse_json_object(
            self._generator.generate(
                _SELECTION_PROMPT.format(
                    providers=", ".join(name.value for name in available),
                    description=task.description,
                ),
                self._options,
            ),
        )
        provider = _parse_provider(payload.get("provider"), available)
        if provider is None:
            raise LlmOutputError("Generative routing did not name a provider.")
        return ProviderDecision(
            provider=provider,
            source=DecisionSource.GENERATIVE,
            reason=str(payload.get("reason") or "Selected by generative routing."),
        )

    def handle_failure(
        self,
        task: Task,
        failure: FailureContext,
        available: Sequence[ProviderName],
    ) -> FailureDecision:
        payload = parse_json_object(
            self._generator.generate(
                _FAILURE_PROMPT.format(
                    description=task.description,
                    provider=failure.provider.value if failure.provider else "none",
                    reason=failure.reason.value,
                    message=failure.message,
                    retries=task.retries,
                    max_retries=MAX_TASK_RETRIES,
                    providers=json.dumps([name.value for name in available]),
                ),
                self._options,
            ),
        )
        try:
            action = FailureAction(str(payload.get("action", "")).strip().lower())
        except ValueError as error:
            raise LlmOutputError(f"Unknown failure action: {payload.get('action')!r}") from error

        reason = str(payload.get("reason") or "Chosen by generative routing.")
        if action is FailureAction.ESCALATE:
            return FailureDecision(
                action=action,
                next_provider=None,
                source=DecisionSource.GENERATIVE,
                reason=reason,
            )
        provider = _parse_provider(payload.get("provider"), available)
        if action is FailureAction.RETRY:
            return FailureDecision(
                action=action,
                next_provider=provider or failure.provider,
                source=DecisionSource.GENERATIVE,
                reason=reason,
            )
        if provider is None or provider == failure.provider:
            provider = _next_alternative(failure.provider, available)
        if provider is None:
            raise LlmOutputError("Alternative source suggested but none is available.")
        return FailureDecision(
            action=action,
            next_provider=provider,
            source=DecisionSource.GENERATIVE,
            reason=reason,
        )


class DecisionEngine:
    """Select providers and remediate failures, logging every decision.

    The generative strategy is optional; any error it raises falls back to the
    rule-based strategy, so a decision is always produced.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        generator: GenerativeCapability | None = None,
        mode: RoutingMode = RoutingMode.AUTO,
        default_provider: ProviderName = ProviderName.TAVILY,
        backoff_base_seconds: float = 0.0,
        generative_model: str | None = None,
        events: EventSink | None = None,
    ) -> None:
        if mode is RoutingMode.GENERATIVE and generator is None:
            raise ValueError("Generative routing mode requires a generative capability.")
        self.mode = mode
        self.backoff_base_seconds = backoff_base_seconds
        self.rules = RuleBasedStrategy(default_provider=default_provider)
        self.advanced: DecisionStrategy | None = (
            GenerativeStrategy(generator, model=generative_model)
            if generator is not None and mode is not RoutingMode.RULES
            else None
        )
        self.events = events or LoggingEventSink()

    def decide(
        self,
        task: Task,
        *,
        available: Sequence[ProviderName],
        failure: FailureContext | None = None,
    ) -> ProviderDecision | FailureDecision:
        """Select a provider for a fresh task, or remediate the given failure."""

        if failure is None:
            return self.select_provider(task, available=available)
        return self.handle_failure(task, failure, available=available)

    def select_provider(
        self,
        task: Task,
        *,
        available: Sequence[ProviderName],
    ) -> ProviderDecision:
        decision = self._decide_with_fallback(
            task,
            operation="provider_selection",
            advanced=lambda strategy: strategy.select_provider(task, available),
            rules=lambda: self.rules.select_provider(task, available),
        )
        if decision.provider is None:
            self.events.emit(
                LogEntry.warn(
                    "No capability provider available",
                    task_id=task.task_id,
                    **decision.to_log_details(),
                ),
            )
        else:
            self.events.emit(
                LogEntry.info(
                    "Provider selected",
                    task_id=task.task_id,
                    **decision.to_log_details(),
                ),
            )
        return decision

    def handle_failure(
        self,
        task: Task,
        failure: FailureContext,
        *,
        available: Sequence[ProviderName],
    ) -> FailureDecision:
        decision = self._decide_with_fallback(
            task,
            operation="failure_remediation",
            advanced=lambda strategy: strategy.handle_failure(task, failure, available),
            rules=lambda: self.rules.handle_failure(task, failure, available),
        )
        if decision.action is FailureAction.RETRY and task.retries >= MAX_TASK_RETRIES:
            decision = replace(
                decision,
                action=FailureAction.ESCALATE,
                next_provider=None,
                reason=f"Retry ceiling reached ({MAX_TASK_RETRIES}); escalating.",
            )
        if decision.action is FailureAction.RETRY and self.backoff_base_seconds > 0:
            decision = replace(
                decision,
                delay_seconds=self.backoff_base_seconds * (2**task.retries),
            )
        self.events.emit(
            LogEntry.info(
                "Failure remediation decided",
                task_id=task.task_id,
                failure_reason=failure.reason.value,
                failed_provider=failure.provider.value if failure.provider else None,
                **decision.to_log_details(),
            ),
        )
        return decision

    def _decide_with_fallback(
        self,
        task: Task,
        *,
        operation: str,
        advanced: Callable[[DecisionStrategy], D],
        rules: Callable[[], D],
    ) -> D:
        if self.advanced is None:
            return rules()
        try:
            return advanced(self.advanced)
        except Exception as error:  # noqa: BLE001
            self.events.emit(
                LogEntry.warn(
                    "Generative routing failed; falling back to rules",
                    task_id=task.task_id,
                    operation=operation,
                    error=str(error),
                ),
            )
            decision = rules()
            return replace(decision, fallback_reason=str(error))  # type: ignore[type-var]


def _keyword_matches(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


def _rule_candidates(rule: KeywordRule, available: Sequence[ProviderName]) -> list[ProviderName]:
    if rule.provider is not None:
        return [rule.provider] if rule.provider in available else []
    return [
        name
        for name in PROVIDER_PRIORITY
        if name in available and rule.category in PROVIDER_CATEGORIES[name]
    ]


def _first_available(available: Sequence[ProviderName]) -> ProviderName | None:
    for name in PROVIDER_PRIORITY:
        if name in available:
            return name
    return None


def _next_alternative(
    failed: ProviderName | None,
    available: Sequence[ProviderName],
) -> ProviderName | None:
    for name in PROVIDER_PRIORITY:
        if name in available and name != failed:
            return name
    return None


def _parse_provider(value: object, available: Sequence[ProviderName]) -> ProviderName | None:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if normalized in {"", "null", "none"}:
        return None
    try:
        provider = ProviderName(normalized)
    except ValueError as error:
        raise LlmOutputError(f"Unknown provider suggested: {value!r}") from error
    if provider not in available:
        raise LlmOutputError(f"Suggested provider is not available: {provider.value}")
    return provider
