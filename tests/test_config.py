"""Unit tests for settings and logging setup."""

import logging

import pytest
from pydantic import ValidationError

from lfc.config import Settings, configure_logging, settings_from_env


class TestSettingsFromEnv:
    """Tests for settings_from_env."""

    def test_defaults(self, monkeypatch):
        for name in Settings.model_fields:
            monkeypatch.delenv(f"LFC_{name.upper()}", raising=False)
        settings = settings_from_env()
        assert settings.log_level == "WARNING"
        assert settings.strict_fit is False
        assert settings.use_vectorized_backend is False
        assert settings.max_fit_attempts == 10
        assert settings.data_dir is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("LFC_STRICT_FIT", "true")
        monkeypatch.setenv("LFC_USE_VECTORIZED_BACKEND", "1")
        monkeypatch.setenv("LFC_MAX_FIT_ATTEMPTS", "3")
        monkeypatch.setenv("LFC_LOG_LEVEL", "debug")
        settings = settings_from_env()
        assert settings.strict_fit is True
        assert settings.use_vectorized_backend is True
        assert settings.max_fit_attempts == 3
        assert settings.log_level == "debug"

    def test_invalid_attempts_rejected(self, monkeypatch):
        monkeypatch.setenv("LFC_MAX_FIT_ATTEMPTS", "0")
        with pytest.raises(ValidationError):
            settings_from_env()


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_root_level(self):
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        configure_logging("warning")
        assert logging.getLogger().level == logging.WARNING
