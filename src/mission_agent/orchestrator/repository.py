"""Mission/task persistence backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from mission_agent.orchestrator.models import (
    FailureDetails,
    Mission,
    MissionStatus,
    Task,
    TaskEventView,
    TaskStatus,
    ValidationOutput,
    build_task_id,
)
from mission_agent.storage.alembic_runner import upgrade_head
from mission_agent.storage.common import build_sqlite_engine, to_utc_aware, utc_now
from mission_agent.storage.sqlmodel_models import MissionRow, TaskEventRow, TaskRow

MISSION_MUTABLE_FIELDS = frozenset({"status", "result"})
TERMINAL_TASK_STATUSES = (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value)
TASK_MUTABLE_FIELDS = frozenset(
    {"status", "retries", "result", "failure_details", "validation_outcome"},
)


class MissionRepository:
    """CRUD facade for missions, tasks and task events.

    JSON-shaped task fields (`result`, `failure_details`, `validation_outcome`)
    are stored as text and decoded on read.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_mission(
        self,
        *,
        goal: str,
        descriptions: Sequence[str] = (),
        status: MissionStatus = MissionStatus.PENDING,
        result: str | None = None,
        mission_id: str | None = None,
    ) -> Mission:
        """Persist a mission with its decomposed tasks in one transaction."""

        now = utc_now()
        mission_id = mission_id or uuid4().hex
        with Session(self.engine) as session:
            session.add(
                MissionRow(
                    mission_id=mission_id,
                    goal=goal,
                    status=status.value,
                    result=result,
                    created_at=now,
                    updated_at=now,
                ),
            )
            session.flush()
            for position, description in enumerate(descriptions, start=1):
                session.add(
                    TaskRow(
                        task_id=build_task_id(mission_id, position),
                        mission_id=mission_id,
                        position=position,
                        description=description,
                        status=TaskStatus.PENDING.value,
                        retries=0,
                        created_at=now,
                        updated_at=now,
                    ),
                )
            session.commit()
        mission = self.get_mission(mission_id)
        if mission is None:  # pragma: no cover - committed above
            raise RuntimeError(f"Mission not found: {mission_id}")
        return mission

    def get_mission(self, mission_id: str) -> Mission | None:
        with Session(self.engine) as session:
            row = session.get(MissionRow, mission_id)
            if row is None:
                return None
            return _to_mission(row, self._task_rows(session, mission_id))

    def list_missions(
        self,
        *,
        statuses: Sequence[MissionStatus] = (),
        limit: int | None = None,
    ) -> list[Mission]:
        """Missions oldest first, optionally filtered by status."""

        with Session(self.engine) as session:
            query = select(MissionRow).order_by(
                col(MissionRow.created_at).asc(),
                col(MissionRow.mission_id).asc(),
            )
            if statuses:
                query = query.where(
                    col(MissionRow.status).in_([status.value for status in statuses]),
                )
            if limit is not None:
                query = query.limit(limit)
            rows = session.exec(query).all()
            return [_to_mission(row, self._task_rows(session, row.mission_id)) for row in rows]

    def update_mission(self, mission_id: str, **changes: Any) -> Mission:
        """Apply a partial update (`status`, `result`)."""

        _check_fields(changes, MISSION_MUTABLE_FIELDS, kind="mission")
        with Session(self.engine) as session:
            row = session.get(MissionRow, mission_id)
            if row is None:
                raise RuntimeError(f"Mission not found: {mission_id}")
            if "status" in changes:
                row.status = MissionStatus(changes["status"]).value
            if "result" in changes:
                row.result = changes["result"]
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_mission(row, self._task_rows(session, mission_id))

    def delete_mission(self, mission_id: str) -> bool:
        """Delete a mission; tasks and their events cascade."""

        with Session(self.engine) as session:
            row = session.get(MissionRow, mission_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def get_task(self, task_id: str) -> Task | None:
        with Session(self.engine) as session:
            row = session.get(TaskRow, task_id)
            return _to_task(row) if row is not None else None

    def list_tasks(self, mission_id: str) -> list[Task]:
        with Session(self.engine) as session:
            return [_to_task(row) for row in self._task_rows(session, mission_id)]

    def update_task(self, task_id: str, **changes: Any) -> Task:
        """Apply a partial update of execution fields."""

        _check_fields(changes, TASK_MUTABLE_FIELDS, kind="task")
        values = _task_values(changes)
        with Session(self.engine) as session:
            row = session.get(TaskRow, task_id)
            if row is None:
                raise RuntimeError(f"Task not found: {task_id}")
            for name, value in values.items():
                setattr(row, name, value)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task(row)

    def update_active_task(self, task_id: str, **changes: Any) -> Task | None:
        """Apply the update only while the task is pending or in progress.

        Returns `None` when the task is gone or another writer already finalized it.
        """

        _check_fields(changes, TASK_MUTABLE_FIELDS, kind="task")
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status).not_in(TERMINAL_TASK_STATUSES),
                )
                .values(**_task_values(changes)),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            row = session.get(TaskRow, task_id)
            return _to_task(row) if row is not None else None

    def add_task_event(
        self,
        *,
        task_id: str,
        level: str,
        message: str,
        details: dict[str, Any],
    ) -> None:
        with Session(self.engine) as session:
            session.add(
                TaskEventRow(
                    task_id=task_id,
                    level=level,
                    message=message,
                    details_json=_dump_json(details) if details else None,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def list_task_events(self, task_id: str) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskEventRow)
                .where(TaskEventRow.task_id == task_id)
                .order_by(col(TaskEventRow.id).asc()),
            ).all()
            return [
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    level=row.level,
                    message=row.message,
                    details=json.loads(row.details_json) if row.details_json else {},
                    created_at=to_utc_aware(row.created_at),
                )
                for row in rows
            ]

    def _task_rows(self, session: Session, mission_id: str) -> list[TaskRow]:
        return list(
            session.exec(
                select(TaskRow)
                .where(TaskRow.mission_id == mission_id)
                .order_by(col(TaskRow.position).asc()),
            ).all(),
        )


def _check_fields(changes: dict[str, Any], allowed: frozenset[str], *, kind: str) -> None:
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValueError(f"Unsupported {kind} field(s) for update: {', '.join(unknown)}")


def _task_values(changes: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {"updated_at": utc_now()}
    if "status" in changes:
        values["status"] = TaskStatus(changes["status"]).value
    if "retries" in changes:
        values["retries"] = int(changes["retries"])
    if "result" in changes:
        values["result_json"] = _dump_json(changes["result"])
    if "failure_details" in changes:
        details: FailureDetails | None = changes["failure_details"]
        values["failure_details_json"] = _dump_json(details.to_dict() if details else None)
    if "validation_outcome" in changes:
        outcome: ValidationOutput | None = changes["validation_outcome"]
        values["validation_outcome_json"] = _dump_json(outcome.to_dict() if outcome else None)
    return values


def _json_default(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=_json_default)


def _load_json(value: str | None) -> Any:
    if value is None:
        return None
    return json.loads(value)


def _to_task(row: TaskRow) -> Task:
    failure_payload = _load_json(row.failure_details_json)
    validation_payload = _load_json(row.validation_outcome_json)
    return Task(
        task_id=row.task_id,
        mission_id=row.mission_id,
        position=row.position,
        description=row.description,
        status=TaskStatus(row.status),
        retries=row.retries,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
        result=_load_json(row.result_json),
        failure_details=(
            FailureDetails.from_dict(failure_payload) if failure_payload is not None else None
        ),
        validation_outcome=(
            ValidationOutput.from_dict(validation_payload)
            if validation_payload is not None
            else None
        ),
    )


def _to_mission(row: MissionRow, task_rows: list[TaskRow]) -> Mission:
    return Mission(
        mission_id=row.mission_id,
        goal=row.goal,
        status=MissionStatus(row.status),
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
        result=row.result,
        tasks=tuple(_to_task(task_row) for task_row in task_rows),
    )
