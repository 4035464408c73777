"""Tests for application settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from safedeal.config import Settings


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch) -> None:
    for name in Settings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)


class TestDefaults:
    def test_polling_and_auto_confirm_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.poll_interval_seconds == 10
        assert settings.message_page_size == 100
        assert settings.message_max_length == 4000
        assert settings.auto_confirm_enabled is True
        assert settings.auto_confirm_grace_period_hours == 168
        assert settings.auto_confirm_sweep_interval_seconds == 300
        assert settings.arbitrator_api_key == ""

    def test_one_async_database_url(self) -> None:
        settings = Settings(_env_file=None)
        url_settings = {name for name in dir(settings) if name.endswith("database_url")}
        assert url_settings == {"database_url"}
        assert settings.database_url.startswith("postgresql+asyncpg://")


class TestEnvironment:
    def test_environment_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "3")
        monkeypatch.setenv("AUTO_CONFIRM_ENABLED", "false")
        settings = Settings(_env_file=None)
        assert settings.poll_interval_seconds == 3
        assert settings.auto_confirm_enabled is False

    @pytest.mark.parametrize(
        "field", ["poll_interval_seconds", "message_page_size", "auto_confirm_grace_period_hours"]
    )
    def test_non_positive_values_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    def test_is_development(self) -> None:
        assert Settings(_env_file=None, app_env="development").is_development
        assert not Settings(_env_file=None, app_env="production").is_development
