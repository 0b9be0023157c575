"""
Stepflow Core

Configuration and logging shared by all engine components.
"""

from stepflow.core.config import (
    EngineConfig,
    HistoryConfig,
    LogLevel,
    RetryConfig,
    get_config,
    reset_config,
    set_config,
)
from stepflow.core.logging import setup_logging, setup_logging_from_config

__all__ = [
    "EngineConfig",
    "HistoryConfig",
    "LogLevel",
    "RetryConfig",
    "get_config",
    "reset_config",
    "set_config",
    "setup_logging",
    "setup_logging_from_config",
]
