"""CLI entrypoint for mission-agent."""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from mission_agent import __version__
from mission_agent.orchestrator.controllers import (
    EngineRunCommand,
    EngineStatusCommand,
    MissionCliController,
    MissionCreateCommand,
    MissionListCommand,
    MissionRefCommand,
    MissionShowCommand,
    MissionUpdateCommand,
    TaskCancelCommand,
    TaskShowCommand,
)

click.rich_click.USE_MARKDOWN = True
MISSION_CONTROLLER = MissionCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

C = TypeVar("C")


@click.group()
@click.version_option(version=__version__, prog_name="mission-agent")
def mission_agent() -> None:
    """Mission agent CLI: decompose goals into tasks and run them through providers."""

    level = os.getenv("MISSION_AGENT_LOG_LEVEL", "WARNING").strip().upper()
    logging.basicConfig(
        level=level if isinstance(logging.getLevelName(level), int) else logging.WARNING,
        format=LOG_FORMAT,
    )


@mission_agent.group()
def mission() -> None:
    """Mission commands."""


@mission.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--goal", required=True, help="High-level mission goal.")
@click.option(
    "--run/--no-run",
    default=False,
    show_default=True,
    help="Execute the mission tasks right after creation.",
)
def mission_create(db_path: Path | None, goal: str, run: bool) -> None:
    """Decompose a goal into ordered tasks and persist the mission."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.create_mission,
            MissionCreateCommand(db_path=db_path, goal=goal, run=run),
        ),
    )


@mission.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--mission-id", required=True, help="Mission id.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    show_default=True,
    help="Output format.",
)
def mission_show(db_path: Path | None, mission_id: str, output_format: str) -> None:
    """Show mission details with its tasks."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.show_mission,
            MissionShowCommand(
                db_path=db_path,
                mission_id=mission_id,
                output_format=output_format.lower(),
            ),
        ),
    )


@mission.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--mission-id", required=True, help="Mission id.")
def mission_status(db_path: Path | None, mission_id: str) -> None:
    """Show mission status with task counters."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.mission_status,
            MissionRefCommand(db_path=db_path, mission_id=mission_id),
        ),
    )


@mission.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["pending", "in_progress", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--active",
    "active_only",
    is_flag=True,
    default=False,
    help="Only pending and in-progress missions.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum missions to list.",
)
def mission_list(
    db_path: Path | None,
    status: str | None,
    active_only: bool,
    limit: int,
) -> None:
    """List missions, oldest first."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.list_missions,
            MissionListCommand(
                db_path=db_path,
                status=status,
                active_only=active_only,
                limit=limit,
            ),
        ),
    )


@mission.command("update")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--mission-id", required=True, help="Mission id.")
@click.option(
    "--status",
    type=click.Choice(["pending", "in_progress", "completed", "failed"], case_sensitive=False),
    default=None,
    help="New mission status (forward transitions only).",
)
@click.option("--result", default=None, help="New mission result text.")
def mission_update(
    db_path: Path | None,
    mission_id: str,
    status: str | None,
    result: str | None,
) -> None:
    """Partially update a mission."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.update_mission,
            MissionUpdateCommand(
                db_path=db_path,
                mission_id=mission_id,
                status=status,
                result=result,
            ),
        ),
    )


@mission.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--mission-id", required=True, help="Mission id.")
def mission_delete(db_path: Path | None, mission_id: str) -> None:
    """Delete a mission and all of its tasks."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.delete_mission,
            MissionRefCommand(db_path=db_path, mission_id=mission_id),
        ),
    )


@mission_agent.group()
def task() -> None:
    """Task commands."""


@task.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option(
    "--events/--no-events",
    "show_events",
    default=False,
    show_default=True,
    help="Include the task event log.",
)
def task_show(db_path: Path | None, task_id: str, show_events: bool) -> None:
    """Show task details, validation and failure info."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.show_task,
            TaskShowCommand(db_path=db_path, task_id=task_id, show_events=show_events),
        ),
    )


@task.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def task_cancel(db_path: Path | None, task_id: str) -> None:
    """Mark a non-terminal task as failed."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.cancel_task,
            TaskCancelCommand(db_path=db_path, task_id=task_id),
        ),
    )


@mission_agent.group()
def engine() -> None:
    """Execution engine commands."""


@engine.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--once", is_flag=True, default=False, help="Process active missions once and exit.")
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Stop the loop after this many polling cycles.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop the loop after this many consecutive idle polls.",
)
def engine_run(
    db_path: Path | None,
    once: bool,
    max_cycles: int | None,
    max_idle_polls: int | None,
) -> None:
    """Run the mission worker."""

    _emit_lines(
        _call(
            MISSION_CONTROLLER.run_engine,
            EngineRunCommand(
                db_path=db_path,
                once=once,
                max_cycles=max_cycles,
                max_idle_polls=max_idle_polls,
            ),
        ),
    )


@engine.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def engine_status(db_path: Path | None) -> None:
    """Show whether any mission is pending or in progress."""

    _emit_lines(_call(MISSION_CONTROLLER.engine_status, EngineStatusCommand(db_path=db_path)))


def _call(handler: Callable[[C], list[str]], command: C) -> list[str]:
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    mission_agent()
