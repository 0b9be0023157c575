"""
Stepflow Step Executor Registry

Maps step types to the collaborators that perform their side effects.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog

from stepflow.errors import ExecutorNotFoundError, StepExecutionError
from stepflow.types import StepDefinition, StepType, coerce_value

logger = structlog.get_logger(__name__)

OutputMap = Dict[str, Any]


@dataclass
class StepOutcome:
    """Explicit result an executor may return instead of raising."""
    success: bool = True
    outputs: OutputMap = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def ok(cls, **outputs: Any) -> "StepOutcome":
        return cls(success=True, outputs=outputs)

    @classmethod
    def failure(cls, error: str) -> "StepOutcome":
        return cls(success=False, error=error)


class StepExecutor(ABC):
    """
    Performs the side effect of a step.

    Executors receive parameters that are already interpolated, must be safe
    to cancel, and must not retry on their own.
    """

    @abstractmethod
    async def execute(self, step_type: StepType, params: Dict[str, Any]) -> Any:
        """Run the step. Return an OutputMap, a StepOutcome, or a plain value."""


class FunctionStepExecutor(StepExecutor):
    """
    Adapts a sync or async callable ``func(params)`` to an executor.

    Sync callables run in a worker thread so a blocking call never stalls
    the event loop; a timed-out or cancelled attempt stops waiting for it.
    """

    def __init__(self, func: Callable[[Dict[str, Any]], Any]):
        self.func = func

    async def execute(self, step_type: StepType, params: Dict[str, Any]) -> Any:
        if asyncio.iscoroutinefunction(self.func):
            return await self.func(params)

        result = await asyncio.to_thread(self.func, params)
        if asyncio.iscoroutine(result):
            result = await result
        return result


class StepExecutorRegistry:
    """
    Capability lookup from step type to executor.

    The engine never special-cases a step type beyond dispatch through here.
    """

    def __init__(self, executors: Optional[Dict[StepType, StepExecutor]] = None):
        self._executors: Dict[StepType, StepExecutor] = {}
        for step_type, executor in (executors or {}).items():
            self.register(step_type, executor)

    def register(self, step_type: StepType, executor: Any) -> None:
        """Register an executor (or a plain callable) for a step type."""
        if not isinstance(executor, StepExecutor):
            if not callable(executor):
                raise TypeError(f"Executor for {step_type} must be a StepExecutor or callable")
            executor = FunctionStepExecutor(executor)
        self._executors[StepType(step_type)] = executor
        logger.info("executor_registered", step_type=StepType(step_type).value)

    def unregister(self, step_type: StepType) -> bool:
        return self._executors.pop(StepType(step_type), None) is not None

    def get(self, step_type: StepType) -> Optional[StepExecutor]:
        return self._executors.get(StepType(step_type))

    def has(self, step_type: StepType) -> bool:
        return StepType(step_type) in self._executors

    def registered_types(self) -> List[StepType]:
        return list(self._executors.keys())

    async def execute(self, step: StepDefinition, params: Dict[str, Any]) -> OutputMap:
        """
        Dispatch a step to its executor.

        Raises:
            ExecutorNotFoundError: no executor for the step type
            StepExecutionError: the executor reported a failed outcome
        """
        executor = self._executors.get(step.type)
        if executor is None:
            raise ExecutorNotFoundError(step.type.value)

        result = await executor.execute(step.type, params)
        return self._normalize(step, result)

    @staticmethod
    def _normalize(step: StepDefinition, result: Any) -> OutputMap:
        """Turn an executor's return value into an OutputMap."""
        if isinstance(result, StepOutcome):
            if not result.success:
                raise StepExecutionError(step.name, result.error or "Step reported failure")
            result = result.outputs

        if result is None:
            return {}

        if isinstance(result, dict):
            return {str(k): coerce_value(v) for k, v in result.items()}

        return {"output": coerce_value(result)}
