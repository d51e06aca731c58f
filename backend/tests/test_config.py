"""Tests for configuration loading and logging setup."""

import json
import logging

import pytest

from conftest import make_config
from utils.logger import JSONFormatter, TextFormatter


class TestConfig:
    """Tests for Config validation and LEAGUES parsing."""

    def test_defaults_are_valid(self):
        config = make_config()
        assert config.validate() is True
        assert config.max_daily_requests == 500
        assert config.min_polling_interval == 90
        assert config.circuit_breaker_threshold == 3

    @pytest.mark.parametrize("overrides", [
        {"rapidapi_key": ""},
        {"storage_backend": "redis"},
        {"storage_backend": "supabase", "supabase_url": "", "supabase_key": ""},
        {"daily_quota_warning_ratio": 0.9, "daily_quota_hard_ratio": 0.85},
        {"max_requests_per_minute": 0},
        {"max_stored_events": 0},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError, match="Configuration errors"):
            make_config(**overrides)

    def test_errors_reported_together(self):
        with pytest.raises(ValueError) as excinfo:
            make_config(rapidapi_key="", storage_backend="redis")
        message = str(excinfo.value)
        assert message.startswith("Configuration errors")
        assert "RAPIDAPI_KEY is required" in message
        assert "STORAGE_BACKEND" in message

    def test_leagues_from_environment(self, monkeypatch):
        monkeypatch.setenv("LEAGUES", json.dumps([
            {"league_id": "111", "platform": "sleeper"},
            "not-an-object",
        ]))
        config = make_config(leagues=[])
        assert config.leagues == [{"league_id": "111", "platform": "sleeper"}]

    def test_leagues_must_be_json_list(self, monkeypatch):
        monkeypatch.setenv("LEAGUES", "{oops")
        with pytest.raises(ValueError, match="LEAGUES"):
            make_config(leagues=[])

        monkeypatch.setenv("LEAGUES", '{"league_id": "111"}')
        with pytest.raises(ValueError, match="JSON list"):
            make_config(leagues=[])


def make_record(**extra):
    record = logging.LogRecord("live_events.test", logging.INFO, __file__, 1, "Poll completed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    """Tests for structured log output."""

    def test_json_includes_extra_fields(self):
        data = json.loads(JSONFormatter().format(make_record(active_games=2, poll_count=7)))
        assert data["message"] == "Poll completed"
        assert data["level"] == "INFO"
        assert data["logger"] == "live_events.test"
        assert data["active_games"] == 2
        assert data["poll_count"] == 7

    def test_text_appends_context(self):
        line = TextFormatter().format(make_record(game_id="g1"))
        assert "Poll completed" in line
        assert line.endswith("[game_id=g1]")

    def test_text_without_context(self):
        assert not TextFormatter().format(make_record()).endswith("]")
