from __future__ import annotations

from pathlib import Path

import allure
import pytest

from mission_agent.config import RoutingSettings, Settings

pytestmark = [
    allure.epic("Mission Planning"),
    allure.feature("Configuration"),
]


def test_defaults_without_environment(clean_env) -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".mission_agent.db")
    assert settings.routing.mode == "auto"
    assert settings.routing.default_provider == "tavily"
    assert settings.providers.gemini_api_key is None
    assert settings.providers.cache_enabled is True
    assert settings.worker.max_parallel_tasks == 1
    settings.validate()


def test_environment_overrides(clean_env, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MISSION_AGENT_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("GEMINI_API_KEY", "  gm-key  ")
    monkeypatch.setenv("TAVILY_API_KEY", "")
    monkeypatch.setenv("MISSION_AGENT_ROUTING_MODE", " Generative ")
    monkeypatch.setenv("MISSION_AGENT_CACHE_ENABLED", "off")
    monkeypatch.setenv("MISSION_AGENT_RETRY_BACKOFF_SECONDS", "0.25")
    monkeypatch.setenv("MISSION_AGENT_MAX_PARALLEL_TASKS", "4")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.providers.gemini_api_key == "gm-key"
    assert settings.providers.tavily_api_key is None
    assert settings.routing.mode == "generative"
    assert settings.providers.cache_enabled is False
    assert settings.executor.retry_backoff_seconds == 0.25
    assert settings.worker.max_parallel_tasks == 4
    settings.validate()


def test_explicit_db_path_wins_over_environment(clean_env, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MISSION_AGENT_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("MISSION_AGENT_CACHE_ENABLED", "maybe")

    with pytest.raises(ValueError, match="MISSION_AGENT_CACHE_ENABLED"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(routing=RoutingSettings(mode="psychic")), "MISSION_AGENT_ROUTING_MODE"),
        (Settings(routing=RoutingSettings(default_provider="bing")), "DEFAULT_PROVIDER"),
        (Settings(routing=RoutingSettings(mode="generative")), "requires GEMINI_API_KEY"),
        (Settings(log_level="CHATTY"), "MISSION_AGENT_LOG_LEVEL"),
    ],
)
def test_validate_rejects_bad_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_validate_rejects_out_of_range_numbers(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("MISSION_AGENT_MAX_PARALLEL_TASKS", "0")

    with pytest.raises(ValueError, match="MISSION_AGENT_MAX_PARALLEL_TASKS must be > 0"):
        Settings.from_env().validate()
