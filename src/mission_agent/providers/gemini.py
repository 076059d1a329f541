"""Gemini generative client used for decomposition, routing and direct answers."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mission_agent.providers.base import (
    GenerationOptions,
    InvokeOptions,
    ProviderError,
    ProviderName,
)
from mission_agent.providers.http_client import build_http_client, post_json, require_api_key

logger = logging.getLogger(__name__)

GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-pro"
DEFAULT_TEMPERATURE = 0.9
DEFAULT_MAX_OUTPUT_TOKENS = 2048

_ANSWER_PROMPT = (
    "You are a research assistant. Provide a concise, factual and well-structured answer "
    "to the following request. If the request asks for a summary, summarize the key points.\n\n"
    "Request: {query}"
)


class GeminiClient:
    """Text generation through the Gemini `generateContent` endpoint."""

    name = ProviderName.GEMINI

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        base_url: str = GEMINI_API_BASE_URL,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._base_url = base_url.rstrip("/")
        self._client = client or build_http_client()

    def generate(self, prompt: str, options: GenerationOptions | None = None) -> str:
        """Generate text for prompt; an empty string is a valid successful output."""

        api_key = require_api_key(self.name, self._api_key)
        options = options or GenerationOptions()
        model = options.model or self.model
        data = post_json(
            self._client,
            provider=self.name,
            url=f"{self._base_url}/models/{model}:generateContent",
            params={"key": api_key},
            payload={
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": (
                        options.temperature
                        if options.temperature is not None
                        else self.temperature
                    ),
                    "maxOutputTokens": options.max_output_tokens or self.max_output_tokens,
                },
            },
        )
        text = extract_generated_text(data)
        logger.debug("Gemini model=%s produced %d chars", model, len(text))
        return text

    def invoke(self, query: str, options: InvokeOptions | None = None) -> str:  # noqa: ARG002
        return self.generate(_ANSWER_PROMPT.format(query=query))

    def close(self) -> None:
        self._client.close()


def extract_generated_text(data: dict[str, Any]) -> str:
    """Join candidate text parts, raising on blocked prompts or missing candidates."""

    feedback = data.get("promptFeedback")
    if isinstance(feedback, dict) and feedback.get("blockReason"):
        raise ProviderError(
            f"Prompt blocked due to safety settings: {feedback['blockReason']}",
            transient=False,
            provider=ProviderName.GEMINI,
        )

    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise ProviderError(
            "Gemini response contained no candidates.",
            transient=False,
            provider=ProviderName.GEMINI,
        )

    candidate = candidates[0] if isinstance(candidates[0], dict) else {}
    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    texts = [
        str(part["text"]) for part in parts or [] if isinstance(part, dict) and "text" in part
    ]
    if not texts and candidate.get("finishReason") == "SAFETY":
        raise ProviderError(
            "Response blocked due to safety settings.",
            transient=False,
            provider=ProviderName.GEMINI,
        )
    return "".join(texts)
