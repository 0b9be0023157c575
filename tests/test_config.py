"""
Tests for engine configuration.
"""

import pytest
from pydantic import ValidationError

from stepflow.core.config import (
    EngineConfig,
    LogLevel,
    RetryConfig,
    get_config,
    reset_config,
    set_config,
)


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self):
        config = EngineConfig()

        assert config.default_step_timeout == 30.0
        assert config.retry.base_delay == 1.0
        assert config.retry.multiplier == 2.0
        assert config.retry.max_delay == 30.0
        assert config.history.max_records == 1000
        assert config.history.persistence_path is None
        assert config.log_level == LogLevel.INFO

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("STEPFLOW_LOG_LEVEL", "debug")
        monkeypatch.setenv("STEPFLOW_DEFAULT_STEP_TIMEOUT", "12.5")
        monkeypatch.setenv("STEPFLOW_RETRY__BASE_DELAY", "0.5")

        config = EngineConfig()

        assert config.log_level == LogLevel.DEBUG
        assert config.default_step_timeout == 12.5
        assert config.retry.base_delay == 0.5

    def test_invalid_values(self):
        with pytest.raises(ValidationError):
            EngineConfig(default_step_timeout=0)
        with pytest.raises(ValidationError):
            RetryConfig(multiplier=0.5)

    def test_file_round_trip(self, tmp_path):
        path = tmp_path / "conf" / "stepflow.json"
        original = EngineConfig(default_step_timeout=5.0, retry=RetryConfig(base_delay=0.2))

        original.to_file(path)
        loaded = EngineConfig.from_file(path)

        assert loaded.default_step_timeout == 5.0
        assert loaded.retry.base_delay == 0.2

        with pytest.raises(FileNotFoundError):
            EngineConfig.from_file(tmp_path / "missing.json")


class TestRetryBackoff:
    """Tests for the backoff formula."""

    def test_exponential_growth_is_capped(self):
        retry = RetryConfig(base_delay=1.0, multiplier=2.0, max_delay=5.0)

        assert [retry.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_constant_backoff(self):
        retry = RetryConfig(base_delay=0.5, multiplier=1.0, max_delay=10.0)

        assert retry.delay_for(0) == retry.delay_for(3) == 0.5


class TestGlobalConfig:
    """Tests for the lazily created global instance."""

    def test_get_set_reset(self):
        first = get_config()
        assert get_config() is first

        custom = EngineConfig(default_step_timeout=3.0)
        set_config(custom)
        assert get_config() is custom

        reset_config()
        assert get_config() is not custom
