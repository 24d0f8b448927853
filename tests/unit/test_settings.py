"""Settings load defaults and honour environment overrides."""

import pytest

from coachloop.config.settings import Settings, get_settings


def test_defaults() -> None:
    cfg = Settings(_env_file=None)

    assert cfg.monitor_min_time_seconds == 10.0
    assert cfg.monitor_max_time_seconds == 60.0
    assert cfg.engine_max_decisions_per_analysis == 3
    assert cfg.orchestrator_max_concurrent_decisions == 3
    assert cfg.orchestrator_max_interventions_per_round == 2
    assert cfg.remote_tools_base_url is None


@pytest.mark.parametrize(
    ("env", "value"),
    [("ORCHESTRATOR_MAX_CONCURRENT_DECISIONS", "5"), ("MAX_CONCURRENT_DECISIONS", "7")],
)
def test_env_aliases(monkeypatch: pytest.MonkeyPatch, env: str, value: str) -> None:
    monkeypatch.setenv(env, value)

    assert Settings(_env_file=None).orchestrator_max_concurrent_decisions == int(value)


def test_env_override_and_singleton(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENGINE_MIN_CONFIDENCE", "0.8")
    monkeypatch.setenv("REMOTE_TOOLS_BASE_URL", "http://tools.local")

    cfg = Settings(_env_file=None)

    assert cfg.engine_min_confidence == 0.8
    assert cfg.remote_tools_base_url == "http://tools.local"
    assert get_settings() is get_settings()
