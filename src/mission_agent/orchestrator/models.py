"""Domain models for missions, tasks and execution verdicts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MissionStatus(str, Enum):
    """Mission lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {MissionStatus.COMPLETED, MissionStatus.FAILED}


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


class SuggestedAction(str, Enum):
    """Remedial action proposed by the result validator."""

    ACCEPT = "accept"
    RETRY_TASK_NEW_PARAMS = "retry_task_new_params"
    REFINE_QUERY = "refine_query"
    ALTERNATIVE_SOURCE = "alternative_source"


class FailureAction(str, Enum):
    """Decision engine reaction to a failed attempt."""

    RETRY = "retry"
    ALTERNATIVE_SOURCE = "alternative_source"
    ESCALATE = "escalate"


class FailureReason(str, Enum):
    """Why a task attempt did not produce an accepted result."""

    PROVIDER_ERROR = "provider_error"
    VALIDATION_REJECTED = "validation_rejected"


_MISSION_TRANSITIONS: dict[MissionStatus, frozenset[MissionStatus]] = {
    MissionStatus.PENDING: frozenset(
        {MissionStatus.IN_PROGRESS, MissionStatus.COMPLETED, MissionStatus.FAILED},
    ),
    MissionStatus.IN_PROGRESS: frozenset({MissionStatus.COMPLETED, MissionStatus.FAILED}),
    MissionStatus.COMPLETED: frozenset(),
    MissionStatus.FAILED: frozenset(),
}
_TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def can_transition_mission(current: MissionStatus, target: MissionStatus) -> bool:
    """Missions only move forward; staying in place is allowed."""

    return current == target or target in _MISSION_TRANSITIONS[current]


def can_transition_task(current: TaskStatus, target: TaskStatus) -> bool:
    """Tasks only move forward; staying in place is allowed."""

    return current == target or target in _TASK_TRANSITIONS[current]


@dataclass(slots=True, frozen=True)
class ValidationOutput:
    """Verdict produced by the result validator."""

    is_valid: bool
    quality_score: float
    critique: str
    suggested_action: SuggestedAction

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "quality_score": self.quality_score,
            "critique": self.critique,
            "suggested_action": self.suggested_action.value,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ValidationOutput:
        return cls(
            is_valid=bool(payload["is_valid"]),
            quality_score=float(payload["quality_score"]),
            critique=str(payload["critique"]),
            suggested_action=SuggestedAction(payload["suggested_action"]),
        )


@dataclass(slots=True, frozen=True)
class FailureDetails:
    """Latest failed attempt of a task; overwritten by every new failure."""

    reason: FailureReason
    original_error: str
    attempted_provider: str | None
    timestamp: datetime
    suggested_action: str | None = None
    decision_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason.value,
            "original_error": self.original_error,
            "attempted_provider": self.attempted_provider,
            "timestamp": self.timestamp.isoformat(),
            "suggested_action": self.suggested_action,
            "decision_reason": self.decision_reason,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> FailureDetails:
        return cls(
            reason=FailureReason(payload["reason"]),
            original_error=str(payload["original_error"]),
            attempted_provider=payload.get("attempted_provider"),
            timestamp=datetime.fromisoformat(payload["timestamp"]),
            suggested_action=payload.get("suggested_action"),
            decision_reason=payload.get("decision_reason"),
        )


@dataclass(slots=True, frozen=True)
class Task:
    """One atomic unit of work derived from a mission goal."""

    task_id: str
    mission_id: str
    position: int
    description: str
    status: TaskStatus
    retries: int
    created_at: datetime
    updated_at: datetime
    result: Any = None
    failure_details: FailureDetails | None = None
    validation_outcome: ValidationOutput | None = None


@dataclass(slots=True, frozen=True)
class Mission:
    """User goal plus its decomposed tasks and aggregate status."""

    mission_id: str
    goal: str
    status: MissionStatus
    created_at: datetime
    updated_at: datetime
    result: str | None = None
    tasks: tuple[Task, ...] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class TaskEventView:
    """Persisted structured log entry scoped to one task."""

    event_id: int
    task_id: str
    level: str
    message: str
    details: dict[str, Any]
    created_at: datetime


def build_task_id(mission_id: str, position: int) -> str:
    """Stable task id derived from the mission id and 1-based position."""

    return f"{mission_id}-task-{position:03d}"
