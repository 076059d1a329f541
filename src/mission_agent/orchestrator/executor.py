"""Per-task control loop: decide, invoke, validate, retry."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from mission_agent.orchestrator.events import EventSink, LogEntry, LoggingEventSink
from mission_agent.orchestrator.models import (
    FailureAction,
    FailureDetails,
    FailureReason,
    Task,
    TaskStatus,
    ValidationOutput,
)
from mission_agent.orchestrator.routing import (
    MAX_TASK_RETRIES,
    DecisionEngine,
    FailureContext,
    FailureDecision,
)
from mission_agent.orchestrator.validator import DEFAULT_MIN_RESULT_CHARS, validate_result
from mission_agent.providers.base import ProviderError, ProviderName
from mission_agent.providers.registry import ProviderRegistry
from mission_agent.storage.common import utc_now

logger = logging.getLogger(__name__)

SEARCH_KEYWORDS: tuple[str, ...] = (
    "google search for",
    "serper search for",
    "tavily search for",
    "find information about",
    "find information on",
    "search for",
    "research",
    "look up",
    "investigate",
)
_LEADING_KEYWORD = re.compile(
    r"^\s*(?:" + "|".join(re.escape(keyword) for keyword in SEARCH_KEYWORDS) + r")\b[\s:,-]*",
    re.IGNORECASE,
)


class TaskStore(Protocol):
    """Narrow persistence contract used by the executor."""

    def get_task(self, task_id: str) -> Task | None:
        raise NotImplementedError

    def update_active_task(self, task_id: str, **changes: Any) -> Task | None:
        raise NotImplementedError


@dataclass(slots=True)
class AttemptOutcome:
    provider: ProviderName | None
    output: Any = None
    validation: ValidationOutput | None = None
    error: str | None = None
    transient: bool | None = None

    @property
    def accepted(self) -> bool:
        return self.validation is not None and self.validation.is_valid


class TaskExecutor:
    """Drive one task to a terminal status; never raises for attempt failures."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: TaskStore,
        decision_engine: DecisionEngine,
        providers: ProviderRegistry,
        events: EventSink | None = None,
        min_result_chars: int = DEFAULT_MIN_RESULT_CHARS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.decision_engine = decision_engine
        self.providers = providers
        self.events = events or LoggingEventSink()
        self.min_result_chars = min_result_chars
        self._sleep = sleep

    def execute(self, task: Task) -> Task:
        """Run attempts until the task is completed, failed or finalized externally."""

        current = self._refresh(task)
        if current is None:
            return task
        if current.status.is_terminal:
            self._emit_skip(current)
            return current

        available = self.providers.available()
        provider = self.decision_engine.select_provider(current, available=available).provider
        query = extract_search_query(current.description)
        attempt_no = 0

        while True:
            refreshed = self._refresh(current)
            if refreshed is None:
                return current
            current = refreshed
            if current.status.is_terminal:
                self._emit_skip(current)
                return current
            if current.status is TaskStatus.PENDING:
                started = self.store.update_active_task(
                    current.task_id,
                    status=TaskStatus.IN_PROGRESS,
                )
                if started is None:
                    return self._finalized_elsewhere(current)
                current = started

            attempt_no += 1
            outcome = self._attempt(
                current,
                provider=provider,
                query=query,
                refresh=attempt_no > 1,
            )
            self._emit_attempt(current, attempt_no=attempt_no, outcome=outcome)

            latest = self._refresh(current)
            if latest is None:
                return current
            if latest.status.is_terminal:
                self._emit_skip(latest)
                return latest
            current = latest

            if outcome.accepted:
                completed = self.store.update_active_task(
                    current.task_id,
                    status=TaskStatus.COMPLETED,
                    result=outcome.output,
                    validation_outcome=outcome.validation,
                )
                if completed is None:
                    return self._finalized_elsewhere(current)
                current = completed
                self.events.emit(
                    LogEntry.info(
                        "Task completed",
                        task_id=current.task_id,
                        provider=_provider_value(provider),
                        retries=current.retries,
                        quality_score=outcome.validation.quality_score
                        if outcome.validation
                        else None,
                    ),
                )
                return current

            failure = _failure_context(outcome)
            decision: FailureDecision | None = None
            if current.retries < MAX_TASK_RETRIES:
                decision = self.decision_engine.handle_failure(
                    current,
                    failure,
                    available=self.providers.available(),
                )
            details = FailureDetails(
                reason=failure.reason,
                original_error=failure.message,
                attempted_provider=_provider_value(provider),
                timestamp=utc_now(),
                suggested_action=(
                    decision.action.value
                    if decision is not None
                    else (
                        outcome.validation.suggested_action.value if outcome.validation else None
                    )
                ),
                decision_reason=decision.reason if decision is not None else None,
            )
            changes: dict[str, Any] = {"failure_details": details}
            if outcome.validation is not None:
                changes["result"] = outcome.output
                changes["validation_outcome"] = outcome.validation

            if decision is None or decision.action is FailureAction.ESCALATE:
                if decision is not None:
                    changes["retries"] = current.retries + 1
                failed = self.store.update_active_task(
                    current.task_id,
                    status=TaskStatus.FAILED,
                    **changes,
                )
                if failed is None:
                    return self._finalized_elsewhere(current)
                current = failed
                self.events.emit(
                    LogEntry.error(
                        "Task failed",
                        task_id=current.task_id,
                        provider=_provider_value(provider),
                        retries=current.retries,
                        reason=failure.reason.value,
                        error=failure.message,
                        escalated=decision is not None,
                    ),
                )
                return current

            retried = self.store.update_active_task(
                current.task_id,
                retries=current.retries + 1,
                **changes,
            )
            if retried is None:
                return self._finalized_elsewhere(current)
            current = retried
            if decision.next_provider is not None:
                provider = decision.next_provider
            self.events.emit(
                LogEntry.warn(
                    "Retrying task",
                    task_id=current.task_id,
                    retries=current.retries,
                    action=decision.action.value,
                    next_provider=_provider_value(provider),
                    delay_seconds=decision.delay_seconds,
                ),
            )
            if decision.delay_seconds > 0:
                self._sleep(decision.delay_seconds)

    def _attempt(
        self,
        task: Task,
        *,
        provider: ProviderName | None,
        query: str,
        refresh: bool,
    ) -> AttemptOutcome:
        if provider is None:
            return AttemptOutcome(
                provider=None,
                error="No capability provider is available for this task.",
                transient=False,
            )
        try:
            output = self.providers.invoke(provider, query, refresh=refresh)
        except ProviderError as error:
            return AttemptOutcome(provider=provider, error=str(error), transient=error.transient)
        except Exception as error:  # noqa: BLE001
            logger.warning("Provider %s raised unexpected error: %s", provider.value, error)
            return AttemptOutcome(provider=provider, error=str(error) or type(error).__name__)
        validation = validate_result(task, output, min_length=self.min_result_chars)
        return AttemptOutcome(provider=provider, output=output, validation=validation)

    def _refresh(self, task: Task) -> Task | None:
        stored = self.store.get_task(task.task_id)
        if stored is None:
            self.events.emit(
                LogEntry.warn("Task no longer exists; execution aborted", task_id=task.task_id),
            )
        return stored

    def _finalized_elsewhere(self, task: Task) -> Task:
        stored = self._refresh(task)
        if stored is None:
            return task
        self._emit_skip(stored)
        return stored

    def _emit_skip(self, task: Task) -> None:
        self.events.emit(
            LogEntry.info(
                "Task already finalized; no further attempts",
                task_id=task.task_id,
                status=task.status.value,
            ),
        )

    def _emit_attempt(self, task: Task, *, attempt_no: int, outcome: AttemptOutcome) -> None:
        details: dict[str, Any] = {
            "attempt": attempt_no,
            "provider": _provider_value(outcome.provider),
        }
        if outcome.error is not None:
            self.events.emit(
                LogEntry.warn(
                    "Task attempt failed",
                    task_id=task.task_id,
                    outcome="provider_error",
                    error=outcome.error,
                    **details,
                ),
            )
            return
        validation = outcome.validation
        self.events.emit(
            LogEntry.info(
                "Task attempt finished",
                task_id=task.task_id,
                outcome="accepted" if outcome.accepted else "rejected",
                quality_score=validation.quality_score if validation else None,
                critique=validation.critique if validation else None,
                **details,
            ),
        )


def extract_search_query(description: str) -> str:
    """Strip one leading search keyword; fall back to the full description."""

    stripped = _LEADING_KEYWORD.sub("", description, count=1).strip()
    return stripped or description.strip()


def _failure_context(outcome: AttemptOutcome) -> FailureContext:
    if outcome.error is not None:
        return FailureContext(
            reason=FailureReason.PROVIDER_ERROR,
            message=outcome.error,
            provider=outcome.provider,
            transient=outcome.transient,
        )
    validation = outcome.validation
    return FailureContext(
        reason=FailureReason.VALIDATION_REJECTED,
        message=validation.critique if validation else "Result rejected.",
        provider=outcome.provider,
        validation=validation,
    )


def _provider_value(provider: ProviderName | None) -> str | None:
    return provider.value if provider is not None else None
