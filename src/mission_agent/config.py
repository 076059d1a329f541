"""Runtime configuration for mission decomposition and task execution."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_ROUTING_MODES: tuple[str, ...] = ("auto", "rules", "generative")
SUPPORTED_PROVIDERS: tuple[str, ...] = ("tavily", "serper", "gemini")


@dataclass(slots=True)
class ProviderSettings:
    """Capability provider credentials and client policy."""

    gemini_api_key: str | None = None
    tavily_api_key: str | None = None
    serper_api_key: str | None = None
    gemini_model: str = "gemini-pro"
    gemini_temperature: float = 0.9
    gemini_max_output_tokens: int = 2048
    search_max_results: int = 3
    request_timeout_seconds: float = 30.0
    http_max_retries: int = 2
    cache_enabled: bool = True
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 256


@dataclass(slots=True)
class RoutingSettings:
    """Decision engine settings."""

    mode: str = "auto"
    default_provider: str = "tavily"
    generative_model: str | None = None


@dataclass(slots=True)
class ExecutorSettings:
    """Task executor retry policy settings."""

    retry_backoff_seconds: float = 0.0
    min_result_chars: int = 50


@dataclass(slots=True)
class DecomposerSettings:
    """Generative task decomposition settings."""

    model: str | None = None
    temperature: float = 0.3
    max_output_tokens: int = 1024


@dataclass(slots=True)
class WorkerSettings:
    """Mission worker loop settings."""

    poll_interval_seconds: float = 5.0
    max_parallel_tasks: int = 1


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".mission_agent.db")
    log_level: str = "WARNING"
    sqlite_busy_timeout_ms: int = 5_000
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    routing: RoutingSettings = field(default_factory=RoutingSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    decomposer: DecomposerSettings = field(default_factory=DecomposerSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("MISSION_AGENT_DB_PATH", ".mission_agent.db")),
            log_level=os.getenv("MISSION_AGENT_LOG_LEVEL", "WARNING").strip().upper(),
            sqlite_busy_timeout_ms=int(os.getenv("MISSION_AGENT_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            providers=ProviderSettings(
                gemini_api_key=_env_secret("GEMINI_API_KEY"),
                tavily_api_key=_env_secret("TAVILY_API_KEY"),
                serper_api_key=_env_secret("SERPER_API_KEY"),
                gemini_model=os.getenv("MISSION_AGENT_GEMINI_MODEL", "gemini-pro"),
                gemini_temperature=float(os.getenv("MISSION_AGENT_GEMINI_TEMPERATURE", "0.9")),
                gemini_max_output_tokens=int(
                    os.getenv("MISSION_AGENT_GEMINI_MAX_OUTPUT_TOKENS", "2048"),
                ),
                search_max_results=int(os.getenv("MISSION_AGENT_SEARCH_MAX_RESULTS", "3")),
                request_timeout_seconds=float(
                    os.getenv("MISSION_AGENT_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                http_max_retries=int(os.getenv("MISSION_AGENT_HTTP_MAX_RETRIES", "2")),
                cache_enabled=_env_bool("MISSION_AGENT_CACHE_ENABLED", default=True),
                cache_ttl_seconds=float(os.getenv("MISSION_AGENT_CACHE_TTL_SECONDS", "300")),
                cache_max_entries=int(os.getenv("MISSION_AGENT_CACHE_MAX_ENTRIES", "256")),
            ),
            routing=RoutingSettings(
                mode=os.getenv("MISSION_AGENT_ROUTING_MODE", "auto").strip().lower(),
                default_provider=os.getenv("MISSION_AGENT_DEFAULT_PROVIDER", "tavily")
                .strip()
                .lower(),
                generative_model=os.getenv("MISSION_AGENT_ROUTING_MODEL") or None,
            ),
            executor=ExecutorSettings(
                retry_backoff_seconds=float(
                    os.getenv("MISSION_AGENT_RETRY_BACKOFF_SECONDS", "0"),
                ),
                min_result_chars=int(os.getenv("MISSION_AGENT_MIN_RESULT_CHARS", "50")),
            ),
            decomposer=DecomposerSettings(
                model=os.getenv("MISSION_AGENT_DECOMPOSER_MODEL") or None,
                temperature=float(os.getenv("MISSION_AGENT_DECOMPOSER_TEMPERATURE", "0.3")),
                max_output_tokens=int(
                    os.getenv("MISSION_AGENT_DECOMPOSER_MAX_OUTPUT_TOKENS", "1024"),
                ),
            ),
            worker=WorkerSettings(
                poll_interval_seconds=float(
                    os.getenv("MISSION_AGENT_POLL_INTERVAL_SECONDS", "5.0"),
                ),
                max_parallel_tasks=int(os.getenv("MISSION_AGENT_MAX_PARALLEL_TASKS", "1")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range or unsupported values."""

        if self.routing.mode not in SUPPORTED_ROUTING_MODES:
            raise ValueError(
                "MISSION_AGENT_ROUTING_MODE must be one of "
                f"{', '.join(SUPPORTED_ROUTING_MODES)}: {self.routing.mode!r}",
            )
        if self.routing.default_provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                "MISSION_AGENT_DEFAULT_PROVIDER must be one of "
                f"{', '.join(SUPPORTED_PROVIDERS)}: {self.routing.default_provider!r}",
            )
        if self.routing.mode == "generative" and not self.providers.gemini_api_key:
            raise ValueError("MISSION_AGENT_ROUTING_MODE=generative requires GEMINI_API_KEY.")
        if logging.getLevelName(self.log_level) == f"Level {self.log_level}":
            raise ValueError(f"Invalid MISSION_AGENT_LOG_LEVEL: {self.log_level!r}")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("MISSION_AGENT_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.executor.retry_backoff_seconds < 0:
            raise ValueError("MISSION_AGENT_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.executor.min_result_chars <= 0:
            raise ValueError("MISSION_AGENT_MIN_RESULT_CHARS must be > 0.")
        if not 0.0 <= self.decomposer.temperature <= 2.0:  # noqa: PLR2004
            raise ValueError("MISSION_AGENT_DECOMPOSER_TEMPERATURE must be within [0, 2].")
        if self.decomposer.max_output_tokens <= 0:
            raise ValueError("MISSION_AGENT_DECOMPOSER_MAX_OUTPUT_TOKENS must be > 0.")
        if self.providers.request_timeout_seconds <= 0:
            raise ValueError("MISSION_AGENT_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.providers.http_max_retries < 0:
            raise ValueError("MISSION_AGENT_HTTP_MAX_RETRIES must be >= 0.")
        if self.providers.search_max_results <= 0:
            raise ValueError("MISSION_AGENT_SEARCH_MAX_RESULTS must be > 0.")
        if self.providers.cache_ttl_seconds < 0:
            raise ValueError("MISSION_AGENT_CACHE_TTL_SECONDS must be >= 0.")
        if self.providers.cache_max_entries <= 0:
            raise ValueError("MISSION_AGENT_CACHE_MAX_ENTRIES must be > 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("MISSION_AGENT_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.max_parallel_tasks <= 0:
            raise ValueError("MISSION_AGENT_MAX_PARALLEL_TASKS must be > 0.")


def _env_secret(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
