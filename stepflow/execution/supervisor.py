"""
Stepflow Retry/Timeout Supervisor

Runs one step invocation with a per-attempt timeout and a bounded retry budget.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog

from stepflow.core.config import RetryConfig
from stepflow.errors import (
    ExecutionCancelledError,
    StepExecutionError,
    StepTimeoutError,
)
from stepflow.execution.signals import RunSignals
from stepflow.types import StepDefinition, StepResult, StepStatus

logger = structlog.get_logger(__name__)

Invoke = Callable[[], Awaitable[Any]]
RetryCallback = Callable[[int, str], Awaitable[None]]


class RetrySupervisor:
    """
    Supervises step attempts.

    - Every attempt gets the full step timeout
    - Failed attempts are retried up to ``retry_count`` times with capped
      exponential backoff
    - No new attempt starts while the run is paused
    - Cancellation abandons the in-flight attempt without waiting for it
    """

    def __init__(self, retry: Optional[RetryConfig] = None):
        self.retry = retry or RetryConfig()

    async def run(
        self,
        step: StepDefinition,
        invoke: Invoke,
        signals: RunSignals,
        on_retry: Optional[RetryCallback] = None,
    ) -> StepResult:
        """
        Run ``invoke`` under supervision.

        Returns a completed or failed StepResult. Raises
        ExecutionCancelledError when the run is cancelled mid-step.
        """
        started_at = datetime.now()
        last_error: Optional[str] = None
        last_error_type: Optional[str] = None

        for attempt in range(step.retry_count + 1):
            if attempt > 0:
                await signals.sleep(self.retry.delay_for(attempt - 1))
                await signals.wait_until_runnable()
                if on_retry:
                    await on_retry(attempt, last_error or "")

            try:
                output = await self._attempt(step, invoke, signals)

            except ExecutionCancelledError:
                raise

            except (StepTimeoutError, StepExecutionError) as e:
                last_error, last_error_type = str(e), type(e).__name__

            except Exception as e:
                wrapped = StepExecutionError(step.name, str(e) or type(e).__name__, e)
                last_error, last_error_type = str(wrapped), type(wrapped).__name__

            else:
                return StepResult(
                    step_id=step.id,
                    step_name=step.name,
                    status=StepStatus.COMPLETED,
                    started_at=started_at,
                    completed_at=datetime.now(),
                    output=output,
                    retries=attempt,
                )

            logger.warning(
                "step_attempt_failed",
                step_id=step.id,
                step_name=step.name,
                attempt=attempt + 1,
                max_attempts=step.retry_count + 1,
                error=last_error,
            )

        return StepResult(
            step_id=step.id,
            step_name=step.name,
            status=StepStatus.FAILED,
            started_at=started_at,
            completed_at=datetime.now(),
            error=last_error,
            error_type=last_error_type,
            retries=step.retry_count,
        )

    async def _attempt(
        self,
        step: StepDefinition,
        invoke: Invoke,
        signals: RunSignals,
    ) -> Any:
        """Race one attempt against its timeout and the cancel signal."""
        signals.raise_if_cancelled()

        task = asyncio.ensure_future(invoke())
        cancel_waiter = asyncio.ensure_future(signals.wait_cancelled())

        try:
            done, _ = await asyncio.wait(
                {task, cancel_waiter},
                timeout=step.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            self._abandon(task)
            raise
        finally:
            cancel_waiter.cancel()

        if task in done:
            if task.cancelled():
                if signals.cancelled:
                    raise ExecutionCancelledError(signals.execution_id)
                # Cancelled from inside the executor, not by the run
                raise StepExecutionError(step.name, "cancelled by executor")
            return task.result()

        self._abandon(task)

        if signals.cancelled:
            logger.info("step_attempt_abandoned", step_id=step.id, reason="cancelled")
            raise ExecutionCancelledError(signals.execution_id)

        logger.warning("step_attempt_timeout", step_id=step.id, timeout=step.timeout)
        raise StepTimeoutError(step.name, step.timeout)

    @staticmethod
    def _abandon(task: asyncio.Future) -> None:
        """Stop waiting on an attempt; it may still finish in the background."""
        task.cancel()
        task.add_done_callback(_consume_result)


def _consume_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()
