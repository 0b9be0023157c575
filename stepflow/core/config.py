"""
Stepflow Configuration

Engine settings with:
- Environment-based configuration
- Type-safe settings with Pydantic
- JSON config files
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RetryConfig(BaseModel):
    """Backoff between step attempts: min(base_delay * multiplier ** n, max_delay)."""
    base_delay: float = Field(default=1.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number ``attempt`` (0-based)."""
        return min(self.base_delay * (self.multiplier ** attempt), self.max_delay)


class HistoryConfig(BaseModel):
    """Configuration for the execution history store."""
    max_records: int = Field(default=1000, gt=0)
    persistence_path: Optional[Path] = None


class EngineConfig(BaseSettings):
    """
    Main engine configuration.

    Environment variables are prefixed with STEPFLOW_ (e.g. STEPFLOW_LOG_LEVEL=DEBUG,
    STEPFLOW_RETRY__BASE_DELAY=0.5).
    """

    default_step_timeout: float = Field(default=30.0, gt=0.0)

    retry: RetryConfig = Field(default_factory=RetryConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)

    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "text"] = "json"

    model_config = {
        "env_prefix": "STEPFLOW_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        """Accept lower-case level names."""
        if isinstance(v, str):
            return v.upper()
        return v

    @classmethod
    def from_file(cls, config_path: Path) -> "EngineConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


# Global configuration instance (lazy loaded)
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global engine configuration instance."""
    global _config
    if _config is None:
        _config = EngineConfig()
    return _config


def set_config(config: EngineConfig) -> None:
    """Set the global engine configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration to default."""
    global _config
    _config = None
