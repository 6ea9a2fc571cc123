"""Tests for ResilienceSettings — defaults, environment overrides, validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from careline.core.settings import ResilienceSettings, get_settings


class TestResilienceSettings:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        settings = ResilienceSettings()

        assert settings.probe_timeout_s == 5.0
        assert settings.probe_interval_s == 30.0
        assert settings.max_delay_ms == 30_000
        assert (settings.default_max_retries, settings.default_base_delay_ms) == (3, 1000)
        assert (settings.poor_max_retries, settings.poor_base_delay_ms) == (1, 2000)
        assert settings.exponential_backoff is True
        assert settings.network_aware is True

    def test_environment_override(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CARELINE_POOR_MAX_RETRIES", "0")
        monkeypatch.setenv("CARELINE_PROBE_URL", "https://app.test/favicon.ico")

        settings = ResilienceSettings()
        assert settings.poor_max_retries == 0
        assert settings.probe_url == "https://app.test/favicon.ico"

    def test_env_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("CARELINE_PROBE_TIMEOUT_S=2.5\nUNRELATED=1\n")
        assert ResilienceSettings().probe_timeout_s == 2.5

    def test_validation(self):
        with pytest.raises(ValidationError):
            ResilienceSettings(probe_timeout_s=0)
        with pytest.raises(ValidationError):
            ResilienceSettings(default_max_retries=-1)

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()
