from __future__ import annotations

import allure
import pytest
from conftest import GOOD_RESULT, FakeProvider

from mission_agent.orchestrator.events import RecordingEventSink
from mission_agent.orchestrator.executor import TaskExecutor
from mission_agent.orchestrator.models import MissionStatus, TaskStatus
from mission_agent.orchestrator.routing import DecisionEngine, RoutingMode
from mission_agent.orchestrator.worker import (
    MISSION_STARTED_MESSAGE,
    NO_TASKS_MESSAGE,
    MissionWorker,
    aggregate_mission_status,
)
from mission_agent.providers.base import ProviderError, ProviderName
from mission_agent.providers.registry import ProviderRegistry

pytestmark = [
    allure.epic("Task Execution"),
    allure.feature("Mission Worker"),
]


def _worker(repository, *providers, max_parallel_tasks=1) -> MissionWorker:
    events = RecordingEventSink()
    executor = TaskExecutor(
        store=repository,
        decision_engine=DecisionEngine(mode=RoutingMode.RULES, events=events),
        providers=ProviderRegistry(providers),
        events=events,
        sleep=lambda _: None,
    )
    return MissionWorker(
        repository=repository,
        executor=executor,
        max_parallel_tasks=max_parallel_tasks,
        poll_interval_seconds=0,
        events=events,
    )


def test_aggregate_status_rules(repository) -> None:
    tasks = repository.create_mission(goal="Goal", descriptions=["A", "B"]).tasks
    done = [repository.update_task(task.task_id, status=TaskStatus.COMPLETED) for task in tasks]
    mixed = [done[0], repository.update_task(tasks[1].task_id, status=TaskStatus.FAILED)]

    assert aggregate_mission_status([]) == (MissionStatus.COMPLETED, NO_TASKS_MESSAGE)
    assert aggregate_mission_status(tasks) == (MissionStatus.IN_PROGRESS, None)
    assert aggregate_mission_status(done) == (
        MissionStatus.COMPLETED,
        "Mission completed successfully. Tasks: 2 completed.",
    )
    assert aggregate_mission_status(mixed) == (
        MissionStatus.FAILED,
        "Mission failed. Tasks: 1 completed, 1 failed, 0 pending/active.",
    )


@pytest.mark.parametrize("max_parallel_tasks", [1, 3])
def test_run_once_completes_mission(repository, max_parallel_tasks) -> None:
    mission = repository.create_mission(
        goal="Understand solar energy",
        descriptions=["Research solar trends", "Look up panel prices", "Research subsidies"],
    )
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])

    summary = _worker(repository, tavily, max_parallel_tasks=max_parallel_tasks).run_once()

    stored = repository.get_mission(mission.mission_id)
    assert stored.status is MissionStatus.COMPLETED
    assert stored.result == "Mission completed successfully. Tasks: 3 completed."
    assert all(task.status is TaskStatus.COMPLETED for task in stored.tasks)
    assert summary.missions_processed == 1
    assert summary.missions_completed == 1
    assert summary.tasks_completed == 3


def test_one_failed_task_fails_mission(repository) -> None:
    mission = repository.create_mission(
        goal="Goal",
        descriptions=["Research solar trends", "Research outages"],
    )
    tavily = FakeProvider(
        ProviderName.TAVILY,
        [GOOD_RESULT, ProviderError("Tavily API key not configured.", transient=False)],
    )

    summary = _worker(repository, tavily).run_once()

    stored = repository.get_mission(mission.mission_id)
    assert [task.status for task in stored.tasks] == [TaskStatus.COMPLETED, TaskStatus.FAILED]
    assert stored.status is MissionStatus.FAILED
    assert stored.result == "Mission failed. Tasks: 1 completed, 1 failed, 0 pending/active."
    assert summary.missions_failed == 1
    assert summary.tasks_failed == 1


def test_terminal_missions_are_skipped_and_idle_is_counted(repository) -> None:
    mission = repository.create_mission(goal="Goal", descriptions=["Research"])
    repository.update_mission(mission.mission_id, status=MissionStatus.FAILED, result="stopped")
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])

    summary = _worker(repository, tavily).run_once()

    assert summary.idle_polls == 1
    assert summary.missions_processed == 0
    assert tavily.calls == 0
    assert repository.get_mission(mission.mission_id).result == "stopped"


def test_in_progress_mission_without_tasks_completes(repository) -> None:
    mission = repository.create_mission(goal="Goal", status=MissionStatus.IN_PROGRESS)

    _worker(repository).run_once()

    stored = repository.get_mission(mission.mission_id)
    assert stored.status is MissionStatus.COMPLETED
    assert stored.result == NO_TASKS_MESSAGE


def test_pending_mission_is_marked_started_before_tasks_run(repository) -> None:
    mission = repository.create_mission(goal="Goal", descriptions=["Research"])
    seen: list[tuple[MissionStatus, str | None]] = []

    class ObservingProvider(FakeProvider):
        def invoke(self, query, options=None):
            current = repository.get_mission(mission.mission_id)
            seen.append((current.status, current.result))
            return super().invoke(query, options)

    _worker(repository, ObservingProvider(ProviderName.TAVILY, [GOOD_RESULT])).run_once()

    assert seen == [(MissionStatus.IN_PROGRESS, MISSION_STARTED_MESSAGE)]


def test_executor_crash_fails_mission(repository, monkeypatch) -> None:
    mission = repository.create_mission(goal="Goal", descriptions=["Research"])
    worker = _worker(repository, FakeProvider(ProviderName.TAVILY, [GOOD_RESULT]))

    def _boom(task):
        raise RuntimeError("database went away")

    monkeypatch.setattr(worker.executor, "execute", _boom)

    summary = worker.run_once()

    stored = repository.get_mission(mission.mission_id)
    assert stored.status is MissionStatus.FAILED
    assert "database went away" in stored.result
    assert stored.tasks[0].status is TaskStatus.FAILED
    assert summary.missions_failed == 1


def test_run_loop_stops_on_idle_budget(repository) -> None:
    summary = _worker(repository).run_loop(max_idle_polls=2)

    assert summary.idle_polls == 2


def test_run_loop_stops_on_cycle_budget(repository) -> None:
    repository.create_mission(goal="Goal", descriptions=["Research"])
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])

    summary = _worker(repository, tavily).run_loop(max_cycles=3)

    assert summary.missions_completed == 1
    assert summary.idle_polls == 2


def test_max_parallel_tasks_must_be_positive(repository) -> None:
    with pytest.raises(ValueError, match="max_parallel_tasks"):
        _worker(repository, max_parallel_tasks=0)


def test_mission_deleted_mid_run_does_not_stop_siblings(repository) -> None:
    doomed = repository.create_mission(goal="Doomed", descriptions=["Research outages"])
    sibling = repository.create_mission(goal="Sibling", descriptions=["Research subsidies"])

    class DeletingProvider(FakeProvider):
        def invoke(self, query, options=None):
            if self.calls == 0:
                repository.delete_mission(doomed.mission_id)
            return super().invoke(query, options)

    provider = DeletingProvider(ProviderName.TAVILY, [GOOD_RESULT])

    summary = _worker(repository, provider).run_once()

    assert repository.get_mission(doomed.mission_id) is None
    assert repository.get_mission(sibling.mission_id).status is MissionStatus.COMPLETED
    assert provider.calls == 2
    assert summary.missions_processed == 2
    assert summary.missions_completed == 1
    assert summary.missions_failed == 0


def test_mission_deleted_before_start_is_skipped(repository, monkeypatch) -> None:
    doomed = repository.create_mission(goal="Doomed", descriptions=["Research outages"])
    sibling = repository.create_mission(goal="Sibling", descriptions=["Research subsidies"])
    list_missions = repository.list_missions

    def _list_then_delete(**kwargs):
        missions = list_missions(**kwargs)
        repository.delete_mission(doomed.mission_id)
        return missions

    monkeypatch.setattr(repository, "list_missions", _list_then_delete)
    tavily = FakeProvider(ProviderName.TAVILY, [GOOD_RESULT])

    summary = _worker(repository, tavily).run_once()

    assert tavily.queries == ["subsidies"]
    assert repository.get_mission(sibling.mission_id).status is MissionStatus.COMPLETED
    assert summary.missions_completed == 1
