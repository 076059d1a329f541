from __future__ import annotations

import allure
import pytest
from conftest import GOOD_RESULT, FakeGenerator, FakeProvider

from mission_agent.orchestrator.decomposer import TaskDecomposer
from mission_agent.orchestrator.events import RecordingEventSink
from mission_agent.orchestrator.executor import TaskExecutor, extract_search_query
from mission_agent.orchestrator.models import FailureReason, SuggestedAction, TaskStatus
from mission_agent.orchestrator.routing import MAX_TASK_RETRIES, DecisionEngine, RoutingMode
from mission_agent.orchestrator.services import MissionService
from mission_agent.providers.base import ProviderError, ProviderName
from mission_agent.providers.cache import ResponseCache
from mission_agent.providers.registry import ProviderRegistry

pytestmark = [
    allure.epic("Task Execution"),
    allure.feature("Retry Loop"),
]


def _seed_task(repository, description: str = "Research recent solar energy trends"):
    mission = repository.create_mission(goal="Understand solar energy", descriptions=[description])
    return mission.tasks[0]


def _executor(repository, *providers, cache=None, backoff=0.0, sleeps=None, events=None):
    events = events or RecordingEventSink()
    return TaskExecutor(
        store=repository,
        decision_engine=DecisionEngine(
            mode=RoutingMode.RULES,
            backoff_base_seconds=backoff,
            events=events,
        ),
        providers=ProviderRegistry(providers, cache=cache),
        events=events,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


def test_first_attempt_success_completes_task(repository) -> None:
    task = _seed_task(repository)
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])
    events = RecordingEventSink()

    done = _executor(repository, tavily, events=events).execute(task)

    assert done.status is TaskStatus.COMPLETED
    assert done.retries == 0
    assert done.result == GOOD_RESULT
    assert done.validation_outcome.is_valid is True
    assert done.failure_details is None
    assert tavily.queries == ["recent solar energy trends"]
    assert repository.get_task(task.task_id) == done
    assert events.messages(task_id=task.task_id) == [
        "Provider selected",
        "Task attempt finished",
        "Task completed",
    ]


def test_transient_error_then_success_counts_one_retry(repository) -> None:
    task = _seed_task(repository)
    tavily = FakeProvider(
        ProviderName.TAVILY,
        [ProviderError("Tavily API request timeout", transient=True), GOOD_RESULT],
    )
    sleeps: list[float] = []

    done = _executor(repository, tavily, backoff=1.0, sleeps=sleeps).execute(task)

    assert done.status is TaskStatus.COMPLETED
    assert done.retries == 1
    assert tavily.calls == 2
    assert sleeps == [1.0]
    assert done.failure_details.reason is FailureReason.PROVIDER_ERROR
    assert done.failure_details.attempted_provider == "tavily"
    assert "timeout" in done.failure_details.original_error


def test_persistently_poor_results_exhaust_retries(repository) -> None:
    task = _seed_task(repository)
    tavily = FakeProvider(ProviderName.TAVILY, ["Paris."])

    done = _executor(repository, tavily).execute(task)

    assert done.status is TaskStatus.FAILED
    assert done.retries == 3
    assert tavily.calls == 4
    assert done.result == "Paris."
    assert done.validation_outcome.quality_score == 0.3
    assert done.validation_outcome.suggested_action is SuggestedAction.ALTERNATIVE_SOURCE
    assert done.failure_details.reason is FailureReason.VALIDATION_REJECTED
    assert done.failure_details.suggested_action == "alternative_source"


def test_configuration_error_switches_to_alternative_provider(repository) -> None:
    task = _seed_task(repository)
    tavily = FakeProvider(
        ProviderName.TAVILY,
        [ProviderError("Tavily API request failed with status 401: bad key", transient=False)],
    )
    serper = FakeProvider(ProviderName.SERPER, [GOOD_RESULT])

    done = _executor(repository, tavily, serper).execute(task)

    assert done.status is TaskStatus.COMPLETED
    assert done.retries == 1
    assert tavily.calls == 1
    assert serper.calls == 1
    assert done.failure_details.attempted_provider == "tavily"


def test_unrecoverable_error_escalates_immediately(repository) -> None:
    task = _seed_task(repository)
    tavily = FakeProvider(
        ProviderName.TAVILY,
        [ProviderError("Tavily API key not configured.", transient=False)],
    )
    events = RecordingEventSink()

    done = _executor(repository, tavily, events=events).execute(task)

    assert done.status is TaskStatus.FAILED
    assert done.retries == 1
    assert tavily.calls == 1
    assert done.failure_details.suggested_action == "escalate"
    assert done.result is None
    assert events.messages(task_id=task.task_id)[-1] == "Task failed"


def test_no_registered_provider_fails_task(repository) -> None:
    task = _seed_task(repository)

    done = _executor(repository).execute(task)

    assert done.status is TaskStatus.FAILED
    assert done.failure_details.attempted_provider is None
    assert "No capability provider" in done.failure_details.original_error


def test_unexpected_provider_exception_is_treated_as_failed_attempt(repository) -> None:
    task = _seed_task(repository)
    tavily = FakeProvider(ProviderName.TAVILY, [KeyError("answer"), GOOD_RESULT])

    done = _executor(repository, tavily).execute(task)

    assert done.status is TaskStatus.COMPLETED
    assert done.retries == 1


def test_retries_bypass_cached_response(repository) -> None:
    task = _seed_task(repository)
    tavily = FakeProvider(ProviderName.TAVILY, ["Paris.", GOOD_RESULT])
    cache = ResponseCache(ttl_seconds=300, max_entries=8)

    done = _executor(repository, tavily, cache=cache).execute(task)

    assert done.status is TaskStatus.COMPLETED
    assert tavily.calls == 2
    assert len(cache) == 1


@pytest.mark.parametrize("status", [TaskStatus.COMPLETED, TaskStatus.FAILED])
def test_terminal_tasks_are_never_reexecuted(repository, status) -> None:
    task = _seed_task(repository)
    repository.update_task(task.task_id, status=status, result="final")
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])

    done = _executor(repository, tavily).execute(task)

    assert done.status is status
    assert done.result == "final"
    assert tavily.calls == 0


def test_cancellation_during_attempt_is_respected(repository) -> None:
    task = _seed_task(repository)

    class CancellingProvider(FakeProvider):
        def invoke(self, query, options=None):
            repository.update_task(task.task_id, status=TaskStatus.FAILED, result="cancelled")
            return super().invoke(query, options)

    provider = CancellingProvider(ProviderName.TAVILY, ["Paris."])

    done = _executor(repository, provider).execute(task)

    assert provider.calls == 1
    assert done.status is TaskStatus.FAILED
    assert done.result == "cancelled"
    assert done.retries == 0


def test_deleted_task_aborts_quietly(repository) -> None:
    task = _seed_task(repository)
    repository.delete_mission(task.mission_id)
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])

    done = _executor(repository, tavily).execute(task)

    assert done == task
    assert tavily.calls == 0


@pytest.mark.parametrize(
    ("description", "query"),
    [
        ("Research recent solar energy trends", "recent solar energy trends"),
        ("Google search for: cheap flights", "cheap flights"),
        ("find information about heat pumps", "heat pumps"),
        ("Explain how inverters work", "Explain how inverters work"),
        ("Research", "Research"),
    ],
)
def test_extract_search_query(description, query) -> None:
    assert extract_search_query(description) == query


def test_decomposed_goal_runs_to_completion_on_web_search(repository) -> None:
    service = MissionService(
        repository=repository,
        decomposer=TaskDecomposer(
            generator=FakeGenerator(['[{"description": "Research AI impact on healthcare"}]']),
        ),
    )
    mission = service.create_mission("Understand AI impact on healthcare").mission
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])
    gemini = FakeProvider(ProviderName.GEMINI, [GOOD_RESULT])

    done = _executor(repository, tavily, gemini).execute(mission.tasks[0])

    assert len(mission.tasks) == 1
    assert done.status is TaskStatus.COMPLETED
    assert done.retries == 0
    assert tavily.calls == 1
    assert gemini.calls == 0


def test_network_error_message_is_kept_after_recovery(repository) -> None:
    task = _seed_task(repository)
    error = ProviderError("Tavily API network error: connection reset by peer", transient=True)
    tavily = FakeProvider(ProviderName.TAVILY, [error, GOOD_RESULT])

    done = _executor(repository, tavily).execute(task)

    assert done.status is TaskStatus.COMPLETED
    assert done.retries == 1
    assert done.failure_details.original_error == str(error)


def test_no_results_every_attempt_fails_at_ceiling(repository) -> None:
    task = _seed_task(repository)
    tavily = FakeProvider(ProviderName.TAVILY, ["No results found."])

    done = _executor(repository, tavily).execute(task)

    assert done.status is TaskStatus.FAILED
    assert done.retries == MAX_TASK_RETRIES
    assert tavily.calls == MAX_TASK_RETRIES + 1
    assert done.validation_outcome.quality_score == 0.1
    assert done.validation_outcome.suggested_action is SuggestedAction.ALTERNATIVE_SOURCE


class _InterleavingStore:
    """Run `action` right after the n-th read, as another writer would."""

    def __init__(self, repository, *, after_reads: int, action) -> None:
        self._repository = repository
        self._after_reads = after_reads
        self._action = action
        self.reads = 0

    def get_task(self, task_id):
        task = self._repository.get_task(task_id)
        self.reads += 1
        if self.reads == self._after_reads:
            self._action()
        return task

    def update_active_task(self, task_id, **changes):
        return self._repository.update_active_task(task_id, **changes)


def test_cancel_between_last_read_and_write_is_kept(repository) -> None:
    task = _seed_task(repository)
    service = MissionService(repository=repository)
    store = _InterleavingStore(
        repository,
        after_reads=3,
        action=lambda: service.cancel_task(task.task_id),
    )
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])

    done = _executor(store, tavily).execute(task)

    stored = repository.get_task(task.task_id)
    assert stored.status is TaskStatus.FAILED
    assert stored.result == "Task cancelled by operator."
    assert done == stored


def test_delete_between_last_read_and_write_returns_quietly(repository) -> None:
    task = _seed_task(repository)
    store = _InterleavingStore(
        repository,
        after_reads=3,
        action=lambda: repository.delete_mission(task.mission_id),
    )
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])

    done = _executor(store, tavily).execute(task)

    assert done.task_id == task.task_id
    assert done.status is TaskStatus.IN_PROGRESS
    assert repository.get_task(task.task_id) is None
