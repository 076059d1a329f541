"""Shared httpx client policy and error mapping for provider calls."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mission_agent import __version__
from mission_agent.providers.base import ProviderError, ProviderName

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = f"mission-agent/{__version__}"
_ERROR_PREVIEW_CHARS = 300
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500


def build_http_client(
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    headers: dict[str, str] | None = None,
) -> httpx.Client:
    """HTTP client with connect retries, timeout and user-agent configuration."""

    base_headers = {"User-Agent": DEFAULT_USER_AGENT}
    if headers:
        base_headers.update(headers)
    return httpx.Client(
        timeout=httpx.Timeout(timeout_seconds, connect=10.0),
        headers=base_headers,
        transport=httpx.HTTPTransport(retries=max_retries),
    )


def post_json(
    client: httpx.Client,
    *,
    provider: ProviderName,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
) -> dict[str, Any]:
    """POST JSON and return the decoded object, mapping failures to `ProviderError`."""

    label = provider.value.capitalize()
    try:
        response = client.post(url, json=payload, headers=headers, params=params)
    except httpx.TimeoutException as error:
        logger.warning("Timeout calling %s API", label)
        raise ProviderError(
            f"{label} API request timeout: {error}",
            transient=True,
            provider=provider,
        ) from error
    except httpx.HTTPError as error:
        logger.warning("HTTP error calling %s API: %s", label, error)
        raise ProviderError(
            f"{label} API network error: {error}",
            transient=True,
            provider=provider,
        ) from error

    if not response.is_success:
        status = response.status_code
        raise ProviderError(
            f"{label} API request failed with status {status}: "
            f"{response.text[:_ERROR_PREVIEW_CHARS]}",
            transient=status == _HTTP_TOO_MANY_REQUESTS or status >= _HTTP_SERVER_ERROR,
            provider=provider,
            status_code=status,
        )

    try:
        data = response.json()
    except ValueError as error:
        raise ProviderError(
            f"{label} API returned non-JSON response.",
            transient=False,
            provider=provider,
            status_code=response.status_code,
        ) from error
    if not isinstance(data, dict):
        raise ProviderError(
            f"{label} API returned unexpected payload type: {type(data).__name__}",
            transient=False,
            provider=provider,
            status_code=response.status_code,
        )
    return data


def require_api_key(provider: ProviderName, api_key: str | None) -> str:
    """Return configured key or raise the non-transient configuration error."""

    if not api_key:
        raise ProviderError(
            f"{provider.value.capitalize()} API key not configured.",
            transient=False,
            provider=provider,
        )
    return api_key
