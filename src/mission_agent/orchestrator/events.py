"""Structured event sinks injected into orchestrator components."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("mission_agent.events")


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_STDLIB_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(slots=True, frozen=True)
class LogEntry:
    """One significant transition: decomposition, selection, attempt, retry, terminal state."""

    level: LogLevel
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None

    @classmethod
    def info(cls, message: str, *, task_id: str | None = None, **details: Any) -> LogEntry:
        return cls(level=LogLevel.INFO, message=message, details=details, task_id=task_id)

    @classmethod
    def warn(cls, message: str, *, task_id: str | None = None, **details: Any) -> LogEntry:
        return cls(level=LogLevel.WARN, message=message, details=details, task_id=task_id)

    @classmethod
    def error(cls, message: str, *, task_id: str | None = None, **details: Any) -> LogEntry:
        return cls(level=LogLevel.ERROR, message=message, details=details, task_id=task_id)


class EventSink(Protocol):
    def emit(self, entry: LogEntry) -> None:
        """Accept one structured entry; must not raise."""
        raise NotImplementedError


class TaskEventWriter(Protocol):
    def add_task_event(
        self,
        *,
        task_id: str,
        level: str,
        message: str,
        details: dict[str, Any],
    ) -> None:
        raise NotImplementedError


class LoggingEventSink:
    """Forward entries to stdlib logging."""

    def emit(self, entry: LogEntry) -> None:
        logger.log(
            _STDLIB_LEVELS[entry.level],
            "%s task_id=%s details=%s",
            entry.message,
            entry.task_id or "-",
            entry.details,
        )


class RecordingEventSink:
    """Keep entries in memory, for audits and tests."""

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []
        self._lock = threading.Lock()

    @property
    def entries(self) -> list[LogEntry]:
        with self._lock:
            return list(self._entries)

    def emit(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def messages(self, *, task_id: str | None = None) -> list[str]:
        return [
            entry.message
            for entry in self.entries
            if task_id is None or entry.task_id == task_id
        ]


class RepositoryEventSink:
    """Persist task-scoped entries as task events and log everything."""

    def __init__(self, writer: TaskEventWriter, *, forward: EventSink | None = None) -> None:
        self._writer = writer
        self._forward = forward or LoggingEventSink()

    def emit(self, entry: LogEntry) -> None:
        self._forward.emit(entry)
        if entry.task_id is None:
            return
        try:
            self._writer.add_task_event(
                task_id=entry.task_id,
                level=entry.level.value,
                message=entry.message,
                details=entry.details,
            )
        except (RuntimeError, ValueError, SQLAlchemyError) as error:
            logger.warning("Failed to persist task event for %s: %s", entry.task_id, error)

