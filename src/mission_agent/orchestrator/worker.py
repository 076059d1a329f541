"""Mission worker: run pending tasks of active missions and aggregate status."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass

from mission_agent.orchestrator.events import EventSink, LogEntry, LoggingEventSink
from mission_agent.orchestrator.executor import TaskExecutor
from mission_agent.orchestrator.models import Mission, MissionStatus, Task, TaskStatus
from mission_agent.orchestrator.repository import MissionRepository

logger = logging.getLogger(__name__)

MISSION_STARTED_MESSAGE = "Mission processing started."
NO_TASKS_MESSAGE = "Mission completed: No tasks to execute."


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    missions_processed: int = 0
    missions_completed: int = 0
    missions_failed: int = 0
    tasks_executed: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    idle_polls: int = 0

    def merge(self, other: WorkerRunSummary) -> None:
        self.missions_processed += other.missions_processed
        self.missions_completed += other.missions_completed
        self.missions_failed += other.missions_failed
        self.tasks_executed += other.tasks_executed
        self.tasks_completed += other.tasks_completed
        self.tasks_failed += other.tasks_failed
        self.idle_polls += other.idle_polls


def aggregate_mission_status(tasks: Sequence[Task]) -> tuple[MissionStatus, str | None]:
    """Derive mission status and summary text from its tasks."""

    if not tasks:
        return MissionStatus.COMPLETED, NO_TASKS_MESSAGE

    completed = sum(1 for task in tasks if task.status is TaskStatus.COMPLETED)
    failed = sum(1 for task in tasks if task.status is TaskStatus.FAILED)
    active = len(tasks) - completed - failed
    if active:
        return MissionStatus.IN_PROGRESS, None
    if failed:
        return (
            MissionStatus.FAILED,
            f"Mission failed. Tasks: {completed} completed, {failed} failed, "
            f"{active} pending/active.",
        )
    return (
        MissionStatus.COMPLETED,
        f"Mission completed successfully. Tasks: {completed} completed.",
    )


class MissionWorker:
    """Poll non-terminal missions and drive their tasks through the executor."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: MissionRepository,
        executor: TaskExecutor,
        max_parallel_tasks: int = 1,
        poll_interval_seconds: float = 5.0,
        events: EventSink | None = None,
    ) -> None:
        if max_parallel_tasks <= 0:
            raise ValueError("max_parallel_tasks must be > 0")
        self.repository = repository
        self.executor = executor
        self.max_parallel_tasks = max_parallel_tasks
        self.poll_interval_seconds = poll_interval_seconds
        self.events = events or LoggingEventSink()
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    def run_once(self) -> WorkerRunSummary:
        """Process every pending or in-progress mission once."""

        summary = WorkerRunSummary()
        missions = self.repository.list_missions(
            statuses=(MissionStatus.PENDING, MissionStatus.IN_PROGRESS),
        )
        if not missions:
            summary.idle_polls += 1
            return summary

        for mission in missions:
            if self._stop_requested:
                break
            self._process_mission(mission, summary)
        return summary

    def run_loop(
        self,
        *,
        max_cycles: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run `run_once` until stopped by signal, cycle budget or idle budget."""

        aggregate = WorkerRunSummary()
        cycles = 0
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                summary = self.run_once()
                aggregate.merge(summary)
                cycles += 1
                consecutive_idle = consecutive_idle + 1 if summary.idle_polls else 0
                if max_cycles is not None and cycles >= max_cycles:
                    break
                if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                    break
                self._sleep_with_stop(self.poll_interval_seconds)
        if self._stop_signal_name is not None:
            logger.info("Worker stopped by %s", self._stop_signal_name)
        return aggregate

    def _process_mission(self, mission: Mission, summary: WorkerRunSummary) -> None:
        summary.missions_processed += 1
        try:
            status = self._run_mission(mission, summary)
        except Exception as error:  # noqa: BLE001
            logger.exception("Task execution crashed for mission %s", mission.mission_id)
            status = self._fail_after_crash(mission, error)
        if status is MissionStatus.COMPLETED:
            summary.missions_completed += 1
        elif status is MissionStatus.FAILED:
            summary.missions_failed += 1

    def _run_mission(self, mission: Mission, summary: WorkerRunSummary) -> MissionStatus | None:
        if mission.status is MissionStatus.PENDING:
            started = self._update_mission(
                mission.mission_id,
                status=MissionStatus.IN_PROGRESS,
                result=MISSION_STARTED_MESSAGE,
            )
            if started is None:
                return None
            mission = started
            logger.info("Mission %s started with %d task(s)", mission.mission_id, len(mission.tasks))

        runnable = [task for task in mission.tasks if not task.status.is_terminal]
        self._execute_tasks(runnable, summary)

        tasks = self.repository.list_tasks(mission.mission_id)
        status, message = aggregate_mission_status(tasks)
        if status is MissionStatus.IN_PROGRESS:
            return None
        if self._update_mission(mission.mission_id, status=status, result=message) is None:
            return None
        logger.info("Mission %s finished: %s", mission.mission_id, message)
        return status

    def _update_mission(self, mission_id: str, **changes: object) -> Mission | None:
        if self.repository.get_mission(mission_id) is None:
            logger.info("Mission %s no longer exists; skipped", mission_id)
            return None
        return self.repository.update_mission(mission_id, **changes)

    def _execute_tasks(self, tasks: list[Task], summary: WorkerRunSummary) -> None:
        if self.max_parallel_tasks == 1 or len(tasks) <= 1:
            results = [self.executor.execute(task) for task in tasks]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self.max_parallel_tasks, len(tasks)),
                thread_name_prefix="mission-task",
            ) as pool:
                results = list(pool.map(self.executor.execute, tasks))

        for task in results:
            summary.tasks_executed += 1
            if task.status is TaskStatus.COMPLETED:
                summary.tasks_completed += 1
            elif task.status is TaskStatus.FAILED:
                summary.tasks_failed += 1

    def _fail_after_crash(self, mission: Mission, error: Exception) -> MissionStatus | None:
        message = f"Task execution crashed: {error}"
        for task in self.repository.list_tasks(mission.mission_id):
            if task.status.is_terminal:
                continue
            failed = self.repository.update_active_task(
                task.task_id,
                status=TaskStatus.FAILED,
                result=message,
            )
            if failed is not None:
                self.events.emit(LogEntry.error("Task failed", task_id=task.task_id, error=message))
        updated = self._update_mission(
            mission.mission_id,
            status=MissionStatus.FAILED,
            result=f"Mission failed: {message}",
        )
        return MissionStatus.FAILED if updated is not None else None

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            logger.debug("Signal handlers not installed outside main thread")
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

    def request_stop(self, *, signal_name: str = "manual") -> None:
        """Finish the current mission, then stop the loop."""

        self._stop_requested = True
        self._stop_signal_name = signal_name
