from __future__ import annotations

import allure
import pytest
from conftest import FakeGenerator

from mission_agent.orchestrator.decomposer import TaskDecomposer
from mission_agent.orchestrator.models import MissionStatus, TaskStatus
from mission_agent.orchestrator.services import CANCELLED_TASK_MESSAGE, MissionService
from mission_agent.orchestrator.worker import NO_TASKS_MESSAGE
from mission_agent.providers.base import ProviderError

pytestmark = [
    allure.epic("Mission Planning"),
    allure.feature("Mission Service"),
]


def _service(repository, *responses) -> MissionService:
    return MissionService(
        repository=repository,
        decomposer=TaskDecomposer(generator=FakeGenerator(list(responses))),
    )


def test_create_mission_persists_decomposed_tasks(repository) -> None:
    service = _service(
        repository,
        '[{"description": "Research solar trends"}, {"description": "Summarize findings"}]',
    )

    creation = service.create_mission("  Understand solar energy  ")

    assert creation.ok
    mission = service.get_mission(creation.mission.mission_id)
    assert mission.goal == "Understand solar energy"
    assert mission.status is MissionStatus.PENDING
    assert [task.description for task in mission.tasks] == [
        "Research solar trends",
        "Summarize findings",
    ]


def test_empty_decomposition_completes_mission_immediately(repository) -> None:
    creation = _service(repository, "[]").create_mission("Do nothing")

    assert creation.ok
    assert creation.mission.status is MissionStatus.COMPLETED
    assert creation.mission.result == NO_TASKS_MESSAGE
    assert creation.mission.tasks == ()


def test_decomposition_failure_persists_failed_mission(repository) -> None:
    creation = _service(repository, "I cannot help with that.").create_mission("Goal")

    assert not creation.ok
    assert creation.mission.status is MissionStatus.FAILED
    assert creation.mission.result.startswith("Task decomposition failed")
    assert repository.get_mission(creation.mission.mission_id) == creation.mission


def test_generator_error_persists_failed_mission(repository) -> None:
    service = _service(repository, ProviderError("Gemini API request timeout", transient=True))

    creation = service.create_mission("Goal")

    assert creation.mission.status is MissionStatus.FAILED
    assert "Gemini API request timeout" in creation.error


def test_create_mission_validates_input(repository) -> None:
    with pytest.raises(ValueError, match="non-empty"):
        _service(repository, "[]").create_mission("   ")
    with pytest.raises(ValueError, match="GEMINI_API_KEY"):
        MissionService(repository=repository).create_mission("Goal")


def test_lookups_raise_for_unknown_ids(repository) -> None:
    service = MissionService(repository=repository)

    with pytest.raises(ValueError, match="Mission not found"):
        service.get_mission("missing")
    with pytest.raises(ValueError, match="Task not found"):
        service.get_task("missing")
    with pytest.raises(ValueError, match="Mission not found"):
        service.delete_mission("missing")


def test_status_updates_only_move_forward(repository) -> None:
    service = MissionService(repository=repository)
    mission = repository.create_mission(goal="Goal", descriptions=["Research"])
    task_id = mission.tasks[0].task_id

    updated = service.update_mission(mission.mission_id, status=MissionStatus.COMPLETED)
    assert updated.status is MissionStatus.COMPLETED
    with pytest.raises(ValueError, match="completed -> pending"):
        service.update_mission(mission.mission_id, status=MissionStatus.PENDING)

    service.update_task(task_id, status="completed", result="done")
    with pytest.raises(ValueError, match="Invalid task status transition"):
        service.update_task(task_id, status=TaskStatus.IN_PROGRESS)

    assert service.update_mission(mission.mission_id, result="note").result == "note"


def test_cancel_task_finalizes_it(repository) -> None:
    service = MissionService(repository=repository)
    task = repository.create_mission(goal="Goal", descriptions=["Research"]).tasks[0]

    cancelled = service.cancel_task(task.task_id)

    assert cancelled.status is TaskStatus.FAILED
    assert cancelled.result == CANCELLED_TASK_MESSAGE
    with pytest.raises(ValueError, match="Invalid task status transition"):
        service.update_task(task.task_id, status=TaskStatus.COMPLETED)


def test_mission_status_and_engine_status(repository) -> None:
    service = MissionService(repository=repository)
    assert service.engine_status().is_active is False

    active = repository.create_mission(goal="Active", descriptions=["A", "B"])
    repository.update_task(active.tasks[0].task_id, status=TaskStatus.COMPLETED)
    done = repository.create_mission(goal="Done", status=MissionStatus.COMPLETED)

    report = service.mission_status(active.mission_id)
    engine = service.engine_status()

    assert (report.total_tasks, report.completed, report.pending) == (2, 1, 1)
    assert engine.is_active is True
    assert engine.active_mission_ids == (active.mission_id,)
    assert engine.active_missions_count == 1
    assert done.mission_id not in [m.mission_id for m in service.list_active_missions()]


def test_delete_mission_removes_tasks(repository) -> None:
    service = MissionService(repository=repository)
    mission = repository.create_mission(goal="Goal", descriptions=["Research"])

    service.delete_mission(mission.mission_id)

    with pytest.raises(ValueError, match="Task not found"):
        service.get_task(mission.tasks[0].task_id)
