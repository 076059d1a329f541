"""Controllers for mission CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mission_agent.config import Settings
from mission_agent.orchestrator.decomposer import TaskDecomposer
from mission_agent.orchestrator.events import RepositoryEventSink
from mission_agent.orchestrator.executor import TaskExecutor
from mission_agent.orchestrator.models import Mission, MissionStatus, Task
from mission_agent.orchestrator.repository import MissionRepository
from mission_agent.orchestrator.routing import DecisionEngine, RoutingMode
from mission_agent.orchestrator.services import MissionService
from mission_agent.orchestrator.worker import MissionWorker, WorkerRunSummary
from mission_agent.providers.base import ProviderName
from mission_agent.providers.registry import ProviderRegistry, build_provider_registry


@dataclass(slots=True)
class MissionCreateCommand:
    """CLI input for mission creation."""

    db_path: Path | None
    goal: str
    run: bool = False


@dataclass(slots=True)
class MissionShowCommand:
    """CLI input for mission inspection."""

    db_path: Path | None
    mission_id: str
    output_format: str = "text"


@dataclass(slots=True)
class MissionRefCommand:
    """CLI input for commands addressing one mission."""

    db_path: Path | None
    mission_id: str


@dataclass(slots=True)
class MissionListCommand:
    db_path: Path | None
    status: str | None
    active_only: bool
    limit: int


@dataclass(slots=True)
class MissionUpdateCommand:
    db_path: Path | None
    mission_id: str
    status: str | None
    result: str | None


@dataclass(slots=True)
class TaskShowCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str
    show_events: bool = False


@dataclass(slots=True)
class TaskCancelCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class EngineRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_cycles: int | None = None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class EngineStatusCommand:
    db_path: Path | None


@dataclass(slots=True)
class MissionRuntime:
    """Wired collaborators for one CLI invocation."""

    service: MissionService
    worker: MissionWorker
    providers: ProviderRegistry


class MissionCliController:
    """Command handlers returning output lines for the CLI layer."""

    def create_mission(self, command: MissionCreateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository, _runtime(settings, repository) as runtime:
            creation = runtime.service.create_mission(command.goal)
            lines = [
                f"Mission created: {creation.mission.mission_id}",
                f"Status: {creation.mission.status.value}",
                f"Tasks: {len(creation.mission.tasks)}",
            ]
            lines.extend(_task_line(task) for task in creation.mission.tasks)
            if creation.error is not None:
                lines.append(f"Decomposition failed: {creation.error}")
                return lines
            if command.run and creation.mission.tasks:
                lines.append(_summary_line(runtime.worker.run_once()))
                mission = runtime.service.get_mission(creation.mission.mission_id)
                lines.append(f"Mission status: {mission.status.value}")
                lines.append(f"Result: {mission.result or '-'}")
            return lines

    def show_mission(self, command: MissionShowCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            mission = MissionService(repository=repository).get_mission(command.mission_id)
        if command.output_format == "json":
            return [json.dumps(_mission_to_dict(mission), ensure_ascii=False, indent=2)]

        lines = [
            f"Mission: {mission.mission_id}",
            f"Goal: {mission.goal}",
            f"Status: {mission.status.value}",
            f"Result: {mission.result or '-'}",
            f"Created: {mission.created_at.isoformat()}",
            f"Tasks: {len(mission.tasks)}",
        ]
        lines.extend(_task_line(task) for task in mission.tasks)
        return lines

    def mission_status(self, command: MissionRefCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            report = MissionService(repository=repository).mission_status(command.mission_id)
        return [
            f"Mission: {report.mission_id}",
            f"Status: {report.status.value}",
            f"Result: {report.result or '-'}",
            f"Tasks: total={report.total_tasks} pending={report.pending} "
            f"in_progress={report.in_progress} completed={report.completed} "
            f"failed={report.failed}",
        ]

    def list_missions(self, command: MissionListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            service = MissionService(repository=repository)
            if command.active_only:
                missions = service.list_active_missions()[: command.limit]
            else:
                statuses = (_parse_mission_status(command.status),) if command.status else ()
                missions = repository.list_missions(statuses=statuses, limit=command.limit)
        if not missions:
            return ["No missions found."]
        return [
            f"{mission.mission_id} status={mission.status.value} tasks={len(mission.tasks)} "
            f"goal={mission.goal}"
            for mission in missions
        ]

    def update_mission(self, command: MissionUpdateCommand) -> list[str]:
        settings = _settings(command.db_path)
        status = _parse_mission_status(command.status) if command.status else None
        with _repository(settings) as repository:
            mission = MissionService(repository=repository).update_mission(
                command.mission_id,
                status=status,
                result=command.result,
            )
        return [f"Mission updated: {mission.mission_id} status={mission.status.value}"]

    def delete_mission(self, command: MissionRefCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            MissionService(repository=repository).delete_mission(command.mission_id)
        return [f"Mission deleted: {command.mission_id}"]

    def show_task(self, command: TaskShowCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            task = MissionService(repository=repository).get_task(command.task_id)
            events = repository.list_task_events(command.task_id) if command.show_events else []

        validation = task.validation_outcome
        failure = task.failure_details
        lines = [
            f"Task: {task.task_id}",
            f"Mission: {task.mission_id}",
            f"Description: {task.description}",
            f"Status: {task.status.value}",
            f"Retries: {task.retries}",
            f"Result: {_preview(task.result)}",
            "Validation: "
            + (
                f"valid={validation.is_valid} score={validation.quality_score} "
                f"action={validation.suggested_action.value} critique={validation.critique}"
                if validation
                else "-"
            ),
            "Failure: "
            + (
                f"reason={failure.reason.value} provider={failure.attempted_provider or '-'} "
                f"error={failure.original_error}"
                if failure
                else "-"
            ),
        ]
        if command.show_events:
            lines.append(f"Events: {len(events)}")
            lines.extend(
                f"  {event.created_at.isoformat()} {event.level} {event.message}"
                for event in events
            )
        return lines

    def cancel_task(self, command: TaskCancelCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            task = MissionService(repository=repository).cancel_task(command.task_id)
        return [f"Task cancelled: {task.task_id}"]

    def run_engine(self, command: EngineRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository, _runtime(settings, repository) as runtime:
            summary = (
                runtime.worker.run_once()
                if command.once
                else runtime.worker.run_loop(
                    max_cycles=command.max_cycles,
                    max_idle_polls=command.max_idle_polls,
                )
            )
        return [_summary_line(summary)]

    def engine_status(self, command: EngineStatusCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            status = MissionService(repository=repository).engine_status()
        lines = [
            f"Active: {'yes' if status.is_active else 'no'}",
            f"Active missions: {status.active_missions_count}",
        ]
        lines.extend(f"  {mission_id}" for mission_id in status.active_mission_ids)
        return lines


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[MissionRepository]:
    repository = MissionRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _runtime(settings: Settings, repository: MissionRepository) -> Iterator[MissionRuntime]:
    providers = build_provider_registry(settings.providers)
    events = RepositoryEventSink(repository)
    decision_engine = DecisionEngine(
        generator=providers.generator,
        mode=RoutingMode(settings.routing.mode),
        default_provider=ProviderName(settings.routing.default_provider),
        backoff_base_seconds=settings.executor.retry_backoff_seconds,
        generative_model=settings.routing.generative_model,
        events=events,
    )
    executor = TaskExecutor(
        store=repository,
        decision_engine=decision_engine,
        providers=providers,
        events=events,
        min_result_chars=settings.executor.min_result_chars,
    )
    decomposer = (
        TaskDecomposer(
            generator=providers.generator,
            temperature=settings.decomposer.temperature,
            max_output_tokens=settings.decomposer.max_output_tokens,
            model=settings.decomposer.model,
            events=events,
        )
        if providers.generator is not None
        else None
    )
    try:
        yield MissionRuntime(
            service=MissionService(repository=repository, decomposer=decomposer),
            worker=MissionWorker(
                repository=repository,
                executor=executor,
                max_parallel_tasks=settings.worker.max_parallel_tasks,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                events=events,
            ),
            providers=providers,
        )
    finally:
        providers.close()


def _parse_mission_status(value: str) -> MissionStatus:
    try:
        return MissionStatus(value.strip().lower())
    except ValueError as error:
        raise ValueError(f"Unsupported mission status: {value!r}") from error


def _summary_line(summary: WorkerRunSummary) -> str:
    return (
        "Worker summary: "
        f"missions={summary.missions_processed} completed={summary.missions_completed} "
        f"failed={summary.missions_failed} tasks={summary.tasks_executed} "
        f"tasks_completed={summary.tasks_completed} tasks_failed={summary.tasks_failed} "
        f"idle_polls={summary.idle_polls}"
    )


def _task_line(task: Task) -> str:
    return f"  [{task.status.value}] {task.task_id} retries={task.retries} {task.description}"


def _preview(value: Any, limit: int = 200) -> str:
    if value is None:
        return "-"
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    text = " ".join(text.split())
    return text if len(text) <= limit else f"{text[:limit]}..."


def _mission_to_dict(mission: Mission) -> dict[str, Any]:
    return {
        "id": mission.mission_id,
        "goal": mission.goal,
        "status": mission.status.value,
        "result": mission.result,
        "created_at": mission.created_at.isoformat(),
        "updated_at": mission.updated_at.isoformat(),
        "tasks": [
            {
                "id": task.task_id,
                "mission_id": task.mission_id,
                "description": task.description,
                "status": task.status.value,
                "retries": task.retries,
                "result": task.result,
                "failure_details": (
                    task.failure_details.to_dict() if task.failure_details else None
                ),
                "validation_outcome": (
                    task.validation_outcome.to_dict() if task.validation_outcome else None
                ),
            }
            for task in mission.tasks
        ],
    }
