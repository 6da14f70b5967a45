"""Tests for settings loading and model-name parsing."""

import pytest

from pagepilot.config import PilotSettings, load_settings
from pagepilot.model_props import estimate_token_weight, is_openai_model, parse_model_name


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "PAGEPILOT_RESERVOIR_TOKENS",
        "PAGEPILOT_MAX_CONCURRENT_CALLS",
        "PAGEPILOT_CALL_TIMEOUT_SECONDS",
        "PAGEPILOT_ACTION_MODEL",
        "PAGEPILOT_CONFIG_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_match_scheduler_limits():
    settings = PilotSettings()
    assert settings.reservoir_tokens == 200_000
    assert settings.refill_interval_seconds == 60.0
    assert settings.max_concurrent_calls == 2
    assert settings.min_call_spacing_seconds == 0.2
    assert settings.chars_per_token == 4


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("PAGEPILOT_RESERVOIR_TOKENS", "5000")
    monkeypatch.setenv("PAGEPILOT_CALL_TIMEOUT_SECONDS", "none")
    monkeypatch.setenv("PAGEPILOT_ACTION_MODEL", "gpt-5-mini_fast")

    settings = load_settings()

    assert settings.reservoir_tokens == 5000
    assert settings.call_timeout_seconds is None
    assert settings.action_model == "gpt-5-mini_fast"


def test_invalid_env_value(monkeypatch):
    monkeypatch.setenv("PAGEPILOT_MAX_CONCURRENT_CALLS", "two")
    with pytest.raises(ValueError, match="PAGEPILOT_MAX_CONCURRENT_CALLS"):
        load_settings()


def test_config_file_with_comments(tmp_path):
    path = tmp_path / "pagepilot.json"
    path.write_text(
        """
        {
            // tighter limits for staging
            "SCHEDULER": {"reservoir": 1000, "max_concurrent": 1},
            "MODELS": {"research": "gemini-2.5-flash"}
        }
        """,
        encoding="utf-8",
    )

    settings = load_settings(str(path))

    assert settings.reservoir_tokens == 1000
    assert settings.max_concurrent_calls == 1
    assert settings.research_model == "gemini-2.5-flash"


def test_config_file_unknown_key(tmp_path):
    path = tmp_path / "pagepilot.json"
    path.write_text('{"SCHEDULER": {"bogus": 1}, "MODELS": {}}', encoding="utf-8")
    with pytest.raises(ValueError, match="bogus"):
        load_settings(str(path))


def test_config_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "absent.json"))


def test_invalid_limits_rejected(monkeypatch):
    monkeypatch.setenv("PAGEPILOT_RESERVOIR_TOKENS", "0")
    with pytest.raises(ValueError):
        load_settings()


def test_provider_detection():
    assert is_openai_model("gpt-5-mini")
    assert is_openai_model("o4-mini")
    assert not is_openai_model("gemini-2.5-flash")


def test_parse_model_name_suffixes():
    assert parse_model_name("gpt-5-mini") == ("gpt-5-mini", {})
    base, params = parse_model_name("gpt-5-nano_low_minimal")
    assert base == "gpt-5-nano"
    assert params == {"text": {"verbosity": "low"}, "reasoning": {"effort": "minimal"}, "service_tier": "default"}

    _, flex = parse_model_name("gpt-5-mini_standard-flex")
    assert flex["service_tier"] == "flex"

    with pytest.raises(ValueError):
        parse_model_name("gpt-5-mini_turbo")


def test_token_weight_estimate():
    assert estimate_token_weight(["abcd", "efgh"]) == 2
    assert estimate_token_weight(["abcde"], max_output_tokens=10) == 12
    assert estimate_token_weight([None, ""]) == 0
