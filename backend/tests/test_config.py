"""
Tests for centralized configuration.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from vizengine.core.config import Settings, get_settings, reload_settings


def test_settings_defaults(monkeypatch):
    """Test that settings have sensible defaults."""
    for name in ("RATE_LIMIT_PER_MINUTE", "MAX_DATASET_ROWS", "LOG_LEVEL", "MIN_PATTERN_SUPPORT",
                 "HIERARCHY_MIN_CONFIDENCE", "TREE_MAX_DEPTH", "TREE_MAX_BREADTH", "STORAGE_BACKEND"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.rate_limit_per_minute == 60
    assert settings.max_dataset_rows == 100000
    assert settings.log_level == "INFO"
    assert settings.min_pattern_support == 2
    assert settings.hierarchy_min_confidence == 0.9
    assert settings.tree_max_depth == 3
    assert settings.tree_max_breadth == 10
    assert settings.storage_backend == "memory"


def test_settings_from_env(monkeypatch):
    """Test loading settings from environment variables."""
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "20")
    monkeypatch.setenv("AUTO_LEARNING_ENABLED", "no")
    monkeypatch.setenv("LEARNING_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("LOG_FORMAT", "JSON")

    settings = reload_settings()

    assert settings.rate_limit_per_minute == 20
    assert settings.auto_learning_enabled is False
    assert settings.learning_interval_seconds == 2.5
    assert settings.log_format == "json"


def test_settings_validation():
    """Test that invalid settings are rejected."""
    with pytest.raises(PydanticValidationError):
        Settings(log_level="LOUD")

    with pytest.raises(PydanticValidationError):
        Settings(rate_limit_per_minute=0)

    with pytest.raises(PydanticValidationError):
        Settings(min_rule_confidence=1.5)

    with pytest.raises(PydanticValidationError):
        Settings(storage_backend="sqlite")


def test_log_level_is_normalized():
    assert Settings(log_level="debug").log_level == "DEBUG"


def test_allowed_origins_list():
    settings = Settings(allowed_origins="http://a.test, http://b.test,,")
    assert settings.allowed_origins_list == ["http://a.test", "http://b.test"]


def test_get_settings_singleton():
    """Test that get_settings returns the same instance."""
    assert get_settings() is get_settings()
