"""Heuristic quality gate for raw task results."""

from __future__ import annotations

import json
from typing import Any

from mission_agent.orchestrator.models import SuggestedAction, Task, ValidationOutput
from mission_agent.orchestrator.routing import MAX_TASK_RETRIES

DEFAULT_MIN_RESULT_CHARS = 50

EMPTY_SCORE = 0.0
ERROR_SCORE = 0.1
PLACEHOLDER_SCORE = 0.05
SHORT_SCORE = 0.3
ACCEPT_SCORE = 0.7

ERROR_SIGNATURES: tuple[str, ...] = (
    "api key invalid",
    "api key not configured",
    "authentication failed",
    "error occurred",
    "failed to fetch",
    "cannot connect",
    "service unavailable",
    "no results found",
    "search returned no results",
    "query format incorrect",
    "parameter invalid",
    "bad request",
    "page not found",
    "400 bad request",
    "401 unauthorized",
    "403 forbidden",
    "404 not found",
    "500 internal server error",
    "503 service unavailable",
    "configuration error:",
    "execution error:",
    "task execution failed",
    "search failed or no provider was executed",
    "no search provider action taken",
)
PLACEHOLDER_MARKERS: tuple[str, ...] = (
    "simulated success for:",
    "gemini search chosen - execution path not fully implemented",
    "gemini search chosen - execution path is a placeholder",
    "search did not produce results",
)


def validate_result(
    task: Task,
    raw_result: Any,
    *,
    min_length: int = DEFAULT_MIN_RESULT_CHARS,
) -> ValidationOutput:
    """Grade raw output; first matching check wins and the task is never mutated."""

    text = stringify_result(raw_result)
    if text is None or not text.strip():
        return _invalid(
            task,
            score=EMPTY_SCORE,
            critique="Result is empty or missing.",
            retry_action=SuggestedAction.RETRY_TASK_NEW_PARAMS,
        )

    lowered = text.lower()
    signature = _first_match(lowered, ERROR_SIGNATURES)
    if signature is not None:
        return _invalid(
            task,
            score=ERROR_SCORE,
            critique=(
                "Result contains a common error message or indicates no results: "
                f'"{signature}".'
            ),
            retry_action=SuggestedAction.RETRY_TASK_NEW_PARAMS,
        )

    marker = _first_match(lowered, PLACEHOLDER_MARKERS)
    if marker is not None:
        return _invalid(
            task,
            score=PLACEHOLDER_SCORE,
            critique=f'Result appears to be a placeholder or simulated content: "{marker}".',
            retry_action=SuggestedAction.RETRY_TASK_NEW_PARAMS,
        )

    if len(text) < min_length:
        return _invalid(
            task,
            score=SHORT_SCORE,
            critique=(
                f"Result is very short (length: {len(text)} chars). May not be sufficient "
                "unless a specific, concise answer was expected."
            ),
            retry_action=SuggestedAction.REFINE_QUERY,
        )

    return ValidationOutput(
        is_valid=True,
        quality_score=ACCEPT_SCORE,
        critique=(
            "Result passed basic heuristic checks "
            "(not empty, no obvious errors, sufficient length)."
        ),
        suggested_action=SuggestedAction.ACCEPT,
    )


def stringify_result(raw_result: Any) -> str | None:
    if raw_result is None:
        return None
    if isinstance(raw_result, str):
        return raw_result
    if isinstance(raw_result, dict | list):
        return json.dumps(raw_result, ensure_ascii=False, sort_keys=True)
    return str(raw_result)


def _invalid(
    task: Task,
    *,
    score: float,
    critique: str,
    retry_action: SuggestedAction,
) -> ValidationOutput:
    action = (
        SuggestedAction.ALTERNATIVE_SOURCE if task.retries >= MAX_TASK_RETRIES else retry_action
    )
    return ValidationOutput(
        is_valid=False,
        quality_score=score,
        critique=critique,
        suggested_action=action,
    )


def _first_match(text: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in text:
            return pattern
    return None
