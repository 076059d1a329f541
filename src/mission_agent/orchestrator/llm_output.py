"""Best-effort JSON recovery from generative model output."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


class LlmOutputError(ValueError):
    """Generated text is not the JSON shape the caller asked for."""


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the stripped text when unfenced."""

    stripped = text.strip()
    fenced = _FENCED_BLOCK.search(stripped)
    if fenced is not None:
        return fenced.group(1).strip()
    return stripped


def parse_json_array(text: str) -> list[Any]:
    payload = _load(text)
    if not isinstance(payload, list):
        raise LlmOutputError(f"Expected a JSON array, got {type(payload).__name__}.")
    return payload


def parse_json_object(text: str) -> dict[str, Any]:
    payload = _load(text)
    if not isinstance(payload, dict):
        raise LlmOutputError(f"Expected a JSON object, got {type(payload).__name__}.")
    return payload


def _load(text: str) -> Any:
    body = strip_code_fences(text)
    if not body:
        raise LlmOutputError("Generated output is empty.")
    try:
        return json.loads(body)
    except json.JSONDecodeError as error:
        raise LlmOutputError(f"Generated output is not valid JSON: {error.msg}") from error
