"""Split a mission goal into ordered task descriptions with one generative call."""

from __future__ import annotations

from mission_agent.orchestrator.events import EventSink, LogEntry, LoggingEventSink
from mission_agent.orchestrator.llm_output import LlmOutputError, parse_json_array
from mission_agent.orchestrator.models import Mission
from mission_agent.providers.base import GenerationOptions, GenerativeCapability, ProviderError

DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_OUTPUT_TOKENS = 1024

DECOMPOSITION_PROMPT = """You are an expert task-decomposition AI. Break the user's \
high-level goal into a short, ordered list of concrete, actionable sub-tasks.

Each sub-task must be:
- atomic: one clear action, such as a search, a lookup or a summary;
- self-contained: understandable without the other sub-tasks;
- ordered by execution priority.

Respond ONLY with a JSON array of objects, each with a single "description" field.
Do not add commentary before or after the JSON.

Example goal: "Plan a weekend trip to Lisbon"
Example output:
[
  {{"description": "Research the top attractions in Lisbon"}},
  {{"description": "Search for affordable hotels in central Lisbon"}},
  {{"description": "Summarize public transport options in Lisbon"}}
]

Goal: "{goal}"
Output:"""


class DecompositionError(RuntimeError):
    """Generation failed or returned output that is not a list of task descriptions."""


class TaskDecomposer:
    """Turn a mission goal into an ordered list of task descriptions."""

    def __init__(
        self,
        *,
        generator: GenerativeCapability,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        model: str | None = None,
        events: EventSink | None = None,
    ) -> None:
        self._generator = generator
        self._options = GenerationOptions(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            model=model,
        )
        self.events = events or LoggingEventSink()

    def decompose(self, mission: Mission) -> list[str]:
        """Return task descriptions in execution order; may be empty.

        Raises `DecompositionError` when generation fails or the output is not a
        JSON array of `{"description": str}` objects. There are no internal retries.
        """

        goal = mission.goal.strip()
        if not goal:
            raise ValueError("Mission goal must be a non-empty string.")

        try:
            raw = self._generator.generate(
                DECOMPOSITION_PROMPT.format(goal=goal.replace('"', "'")),
                self._options,
            )
        except ProviderError as error:
            self._emit_failure(mission, f"Generative call failed: {error}")
            raise DecompositionError(f"Task decomposition failed: {error}") from error

        try:
            descriptions, dropped = _parse_descriptions(raw)
        except LlmOutputError as error:
            self._emit_failure(mission, str(error), raw_preview=raw[:200])
            raise DecompositionError(f"Task decomposition failed: {error}") from error

        if dropped:
            self.events.emit(
                LogEntry.warn(
                    "Dropped blank task descriptions",
                    mission_id=mission.mission_id,
                    dropped=dropped,
                ),
            )
        self.events.emit(
            LogEntry.info(
                "Mission decomposed",
                mission_id=mission.mission_id,
                task_count=len(descriptions),
            ),
        )
        return descriptions

    def _emit_failure(self, mission: Mission, error: str, *, raw_preview: str | None = None) -> None:
        self.events.emit(
            LogEntry.error(
                "Mission decomposition failed",
                mission_id=mission.mission_id,
                error=error,
                raw_preview=raw_preview,
            ),
        )


def _parse_descriptions(raw: str) -> tuple[list[str], int]:
    items = parse_json_array(raw)
    descriptions: list[str] = []
    dropped = 0
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("description"), str):
            raise LlmOutputError(
                f"Item {index} is not an object with a string 'description' field.",
            )
        description = item["description"].strip()
        if description:
            descriptions.append(description)
        else:
            dropped += 1
    return descriptions, dropped
