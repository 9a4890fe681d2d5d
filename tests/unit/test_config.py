"""Settings loading from the environment."""

from __future__ import annotations

from wikirace.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.min_plausible_time_ms == 1000
        assert settings.room_inactivity_timeout_seconds == 300
        assert settings.reaper_interval_seconds == 15.0
        assert settings.progress_debounce_seconds == 1.5
        assert settings.rankings_default_limit == 30

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("WIKIRACE_ROOM_INACTIVITY_TIMEOUT_SECONDS", "60")
        monkeypatch.setenv("WIKIRACE_REAPER_ENABLED", "false")
        settings = Settings(_env_file=None)
        assert settings.room_inactivity_timeout_seconds == 60
        assert settings.reaper_enabled is False
