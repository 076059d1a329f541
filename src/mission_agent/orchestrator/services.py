"""Mission boundary API: create, inspect, mutate and report on missions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from mission_agent.orchestrator.decomposer import DecompositionError, TaskDecomposer
from mission_agent.orchestrator.models import (
    Mission,
    MissionStatus,
    Task,
    TaskStatus,
    can_transition_mission,
    can_transition_task,
)
from mission_agent.orchestrator.repository import MissionRepository
from mission_agent.orchestrator.worker import NO_TASKS_MESSAGE
from mission_agent.storage.common import utc_now

logger = logging.getLogger(__name__)

CANCELLED_TASK_MESSAGE = "Task cancelled by operator."


@dataclass(slots=True, frozen=True)
class MissionCreation:
    """Created mission plus the decomposition error, if any."""

    mission: Mission
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True, frozen=True)
class MissionStatusReport:
    mission_id: str
    status: MissionStatus
    result: str | None
    total_tasks: int
    pending: int
    in_progress: int
    completed: int
    failed: int


@dataclass(slots=True, frozen=True)
class EngineStatus:
    is_active: bool
    active_mission_ids: tuple[str, ...]

    @property
    def active_missions_count(self) -> int:
        return len(self.active_mission_ids)


class MissionService:
    """Application service behind the CLI (and any other transport)."""

    def __init__(
        self,
        *,
        repository: MissionRepository,
        decomposer: TaskDecomposer | None = None,
    ) -> None:
        self.repository = repository
        self.decomposer = decomposer

    def create_mission(self, goal: str) -> MissionCreation:
        """Decompose goal and persist the mission with its ordered tasks.

        A decomposition failure still persists the mission, as `failed` with the
        error message in `result`, and reports it through `MissionCreation.error`.
        """

        goal = goal.strip() if isinstance(goal, str) else ""
        if not goal:
            raise ValueError("Mission goal must be a non-empty string.")
        if self.decomposer is None:
            raise ValueError("Mission creation requires a generative capability (GEMINI_API_KEY).")

        now = utc_now()
        draft = Mission(
            mission_id=uuid4().hex,
            goal=goal,
            status=MissionStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        try:
            descriptions = self.decomposer.decompose(draft)
        except DecompositionError as error:
            logger.warning("Mission %s decomposition failed: %s", draft.mission_id, error)
            mission = self.repository.create_mission(
                mission_id=draft.mission_id,
                goal=goal,
                status=MissionStatus.FAILED,
                result=str(error),
            )
            return MissionCreation(mission=mission, error=str(error))

        if not descriptions:
            mission = self.repository.create_mission(
                mission_id=draft.mission_id,
                goal=goal,
                status=MissionStatus.COMPLETED,
                result=NO_TASKS_MESSAGE,
            )
            return MissionCreation(mission=mission)

        mission = self.repository.create_mission(
            mission_id=draft.mission_id,
            goal=goal,
            descriptions=descriptions,
        )
        logger.info("Mission %s created with %d task(s)", mission.mission_id, len(mission.tasks))
        return MissionCreation(mission=mission)

    def get_mission(self, mission_id: str) -> Mission:
        mission = self.repository.get_mission(mission_id)
        if mission is None:
            raise ValueError(f"Mission not found: {mission_id}")
        return mission

    def update_mission(
        self,
        mission_id: str,
        *,
        status: MissionStatus | None = None,
        result: str | None = None,
    ) -> Mission:
        """Partial update; status may only move forward."""

        mission = self.get_mission(mission_id)
        changes: dict[str, Any] = {}
        if status is not None:
            if not can_transition_mission(mission.status, status):
                raise ValueError(
                    "Invalid mission status transition: "
                    f"{mission.status.value} -> {status.value}",
                )
            changes["status"] = status
        if result is not None:
            changes["result"] = result
        if not changes:
            return mission
        return self.repository.update_mission(mission_id, **changes)

    def delete_mission(self, mission_id: str) -> None:
        if not self.repository.delete_mission(mission_id):
            raise ValueError(f"Mission not found: {mission_id}")

    def get_task(self, task_id: str) -> Task:
        task = self.repository.get_task(task_id)
        if task is None:
            raise ValueError(f"Task not found: {task_id}")
        return task

    def update_task(self, task_id: str, **changes: Any) -> Task:
        """Partial update of task fields; status may only move forward."""

        task = self.get_task(task_id)
        if "status" in changes:
            target = TaskStatus(changes["status"])
            if not can_transition_task(task.status, target):
                raise ValueError(
                    f"Invalid task status transition: {task.status.value} -> {target.value}",
                )
            changes["status"] = target
        return self.repository.update_task(task_id, **changes)

    def cancel_task(self, task_id: str) -> Task:
        """Externally finalize a task; a running executor keeps this status."""

        return self.update_task(task_id, status=TaskStatus.FAILED, result=CANCELLED_TASK_MESSAGE)

    def mission_status(self, mission_id: str) -> MissionStatusReport:
        mission = self.get_mission(mission_id)
        counts = {status: 0 for status in TaskStatus}
        for task in mission.tasks:
            counts[task.status] += 1
        return MissionStatusReport(
            mission_id=mission.mission_id,
            status=mission.status,
            result=mission.result,
            total_tasks=len(mission.tasks),
            pending=counts[TaskStatus.PENDING],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            completed=counts[TaskStatus.COMPLETED],
            failed=counts[TaskStatus.FAILED],
        )

    def list_active_missions(self) -> list[Mission]:
        return self.repository.list_missions(
            statuses=(MissionStatus.PENDING, MissionStatus.IN_PROGRESS),
        )

    def engine_status(self) -> EngineStatus:
        active = self.list_active_missions()
        return EngineStatus(
            is_active=bool(active),
            active_mission_ids=tuple(mission.mission_id for mission in active),
        )
