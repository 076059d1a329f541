"""Tavily web research provider."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mission_agent.providers.base import InvokeOptions, ProviderName
from mission_agent.providers.http_client import build_http_client, post_json, require_api_key

logger = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
SNIPPET_MAX_CHARS = 200


class TavilyProvider:
    """Research-grade web search with a synthesized answer."""

    name = ProviderName.TAVILY

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
        logger.info("Tavily search: %s", query)
        data = post_json(
            self._client,
            provider=self.name,
            url=TAVILY_SEARCH_URL,
            payload={
                "api_key": api_key,
                "query": query,
                "search_depth": "basic",
                "max_results": max_results,
                "include_answer": True,
            },
        )
        return format_tavily_response(data)

    def close(self) -> None:
        self._client.close()


def format_tavily_response(data: dict[str, Any]) -> str:
    """Render answer and ranked results as plain text for validation and storage."""

    sections: list[str] = []
    answer = str(data.get("answer") or "").strip()
    if answer:
        sections.append(f"Tavily Answer: {answer}")

    results = [item for item in data.get("results") or [] if isinstance(item, dict)]
    if results:
        lines = ["Search Results:"]
        for index, item in enumerate(results, start=1):
            lines.append(f"{index}. {item.get('title') or 'Untitled'}")
            lines.append(f"   URL: {item.get('url') or '-'}")
            snippet = str(item.get("content") or "").strip()
            if snippet:
                lines.append(f"   Snippet: {_truncate(snippet)}")
        sections.append("\n".join(lines))

    if not sections:
        return "No results found."
    return "\n\n".join(sections)


def _truncate(text: str) -> str:
    if len(text) <= SNIPPET_MAX_CHARS:
        return text
    return f"{text[:SNIPPET_MAX_CHARS]}..."
