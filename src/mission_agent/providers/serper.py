"""Serper (Google Search) provider."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mission_agent.providers.base import InvokeOptions, ProviderName
from mission_agent.providers.http_client import build_http_client, post_json, require_api_key
from mission_agent.providers.tavily import SNIPPET_MAX_CHARS

logger = logging.getLogger(__name__)

SERPER_SEARCH_URL = "https://google.serper.dev/search"


class SerperProvider:
    """Google results through the Serper API."""

    name = ProviderName.SERPER

    def __init__(
        self,
        *,
        api_key: str | None,
        max_results: int = 3,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._max_results = max_results
        self._client = client or build_http_client()

    def invoke(self, query: str, options: InvokeOptions | None = None) -> str:
        api_key = require_api_key(self.name, self._api_key)
        max_results = (options.max_results if options else None) or self._max_results
        logger.info("Serper search: %s", query)
        data = post_json(
            self._client,
            provider=self.name,
            url=SERPER_SEARCH_URL,
            payload={"q": query, "num": max_results},
            headers={"X-API-KEY": api_key},
        )
        return format_serper_response(data, max_results=max_results)

    def close(self) -> None:
        self._client.close()


def format_serper_response(data: dict[str, Any], *, max_results: int) -> str:
    sections: list[str] = []
    answer_box = data.get("answerBox")
    if isinstance(answer_box, dict):
        answer = str(answer_box.get("answer") or answer_box.get("snippet") or "").strip()
        if answer:
            sections.append(f"Serper Answer: {answer}")

    organic = [item for item in data.get("organic") or [] if isinstance(item, dict)]
    if organic:
        lines = ["Search Results:"]
        for index, item in enumerate(organic[:max_results], start=1):
            lines.append(f"{index}. {item.get('title') or 'Untitled'}")
            lines.append(f"   Link: {item.get('link') or '-'}")
            snippet = str(item.get("snippet") or "").strip()
            if snippet:
                lines.append(f"   Snippet: {snippet[:SNIPPET_MAX_CHARS]}")
        sections.append("\n".join(lines))

    if not sections:
        return "No results found."
    return "\n\n".join(sections)
