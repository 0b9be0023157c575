"""
Shared fixtures for Stepflow tests.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
import structlog

from stepflow.core.config import EngineConfig, RetryConfig, reset_config
from stepflow.engine import WorkflowEngine
from stepflow.steps.registry import StepExecutor, StepExecutorRegistry
from stepflow.types import StepType


def pytest_configure(config):
    """Route structlog through the stdlib so test output stays off stdout."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


class RecordingExecutor(StepExecutor):
    """Fake executor that records every call."""

    def __init__(
        self,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
        fail_times: Optional[int] = None,
        hang: bool = False,
        gate: Optional[asyncio.Event] = None,
    ):
        self.outputs = outputs if outputs is not None else {"output": "ok"}
        self.error = error
        self.fail_times = fail_times
        self.hang = hang
        self.gate = gate
        self.calls: List[Dict[str, Any]] = []
        self.started = asyncio.Event()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def execute(self, step_type: StepType, params: Dict[str, Any]) -> Any:
        self.calls.append(dict(params))
        self.started.set()

        if self.gate is not None:
            await self.gate.wait()

        if self.hang:
            await asyncio.sleep(3600)

        if self.error is not None:
            if self.fail_times is None or len(self.calls) <= self.fail_times:
                raise self.error

        return self.outputs


@pytest.fixture(autouse=True)
def _reset_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def recording_executor():
    """Factory for RecordingExecutor."""
    return RecordingExecutor


@pytest.fixture
def fast_config():
    """Engine config with near-zero backoff."""
    return EngineConfig(
        retry=RetryConfig(base_delay=0.01, multiplier=1.0, max_delay=0.01),
    )


@pytest.fixture
def make_engine(fast_config):
    """Factory for engines with the given executors keyed by step type."""

    def factory(executors: Optional[Dict[StepType, StepExecutor]] = None, **kwargs) -> WorkflowEngine:
        registry = kwargs.pop("registry", None) or StepExecutorRegistry(executors or {})
        kwargs.setdefault("config", fast_config)
        return WorkflowEngine(executors=registry, **kwargs)

    return factory
