"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from mission_agent.orchestrator.models import Task, TaskStatus
from mission_agent.orchestrator.repository import MissionRepository
from mission_agent.providers.base import (
    GenerationOptions,
    InvokeOptions,
    ProviderError,
    ProviderName,
)

GOOD_RESULT = (
    "Tavily Answer: Solar capacity grew by roughly a third last year, led by utility-scale "
    "installations in China, the United States and India."
)


class FakeProvider:
    """Scripted capability provider; exceptions in the script are raised."""

    def __init__(self, name: ProviderName, outputs: Iterable[Any]) -> None:
        self.name = name
        self._outputs = list(outputs)
        self.queries: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.queries)

    def invoke(self, query: str, options: InvokeOptions | None = None) -> Any:  # noqa: ARG002
        self.queries.append(query)
        if not self._outputs:
            raise AssertionError(f"Unexpected call to {self.name.value}")
        output = self._outputs.pop(0) if len(self._outputs) > 1 else self._outputs[0]
        if isinstance(output, Exception):
            raise output
        return output


class FakeGenerator:
    """Scripted generative capability recording prompts."""

    def __init__(self, responses: Iterable[str | Exception]) -> None:
        self._responses = list(responses)
        self.prompts: list[str] = []
        self.options: list[GenerationOptions | None] = []

    def generate(self, prompt: str, options: GenerationOptions | None = None) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        if not self._responses:
            raise ProviderError("No scripted response left.", transient=False)
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def make_task(
    description: str = "Research recent solar energy trends",
    *,
    retries: int = 0,
    status: TaskStatus = TaskStatus.PENDING,
) -> Task:
    now = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
    return Task(
        task_id="mission-1-task-001",
        mission_id="mission-1",
        position=1,
        description=description,
        status=status,
        retries=retries,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture()
def repository(tmp_path: Path):
    repo = MissionRepository(tmp_path / "missions.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def clean_env(monkeypatch):
    """Drop credentials and MISSION_AGENT_* overrides inherited from the host."""

    for name in list(os.environ):
        if name.startswith("MISSION_AGENT_") or name in {
            "GEMINI_API_KEY",
            "TAVILY_API_KEY",
            "SERPER_API_KEY",
        }:
            monkeypatch.delenv(name, raising=False)
