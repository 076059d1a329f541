"""SQLModel table definitions for missions, tasks and task events."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class MissionRow(SQLModel, table=True):
    __tablename__ = "missions"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_missions_status_created", "status", "created_at"),)

    mission_id: str = Field(primary_key=True)
    goal: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    result: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_mission_position", "mission_id", "position"),)

    task_id: str = Field(primary_key=True)
    mission_id: str = Field(
        sa_column=Column(
            ForeignKey("missions.mission_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    position: int
    description: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    retries: int = Field(default=0)
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    failure_details_json: str | None = Field(default=None, sa_column=Column(Text))
    validation_outcome_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEventRow(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    level: str = Field(index=True)
    message: str = Field(sa_column=Column(Text, nullable=False))
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
