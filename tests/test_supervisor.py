"""
Tests for the retry/timeout supervisor and run signals.
"""

import asyncio

import pytest

from stepflow.core.config import RetryConfig
from stepflow.errors import ExecutionCancelledError
from stepflow.execution.signals import RunSignals
from stepflow.execution.supervisor import RetrySupervisor
from stepflow.types import StepDefinition, StepStatus, StepType

FAST_RETRY = RetryConfig(base_delay=0.01, multiplier=1.0, max_delay=0.01)


def make_step(retry_count: int = 0, timeout: float = 5.0) -> StepDefinition:
    return StepDefinition(
        id="s1",
        name="Query",
        type=StepType.SYSTEM_QUERY,
        retry_count=retry_count,
        timeout=timeout,
    )


class Flaky:
    """Invoke callable that fails a fixed number of times."""

    def __init__(self, failures: int, hang: bool = False):
        self.failures = failures
        self.hang = hang
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.hang:
            await asyncio.sleep(3600)
        if self.calls <= self.failures:
            raise RuntimeError(f"boom {self.calls}")
        return {"output": self.calls}


class TestRetrySupervisor:
    """Tests for RetrySupervisor."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        supervisor = RetrySupervisor(FAST_RETRY)
        invoke = Flaky(failures=0)

        result = await supervisor.run(make_step(retry_count=3), invoke, RunSignals())

        assert result.status == StepStatus.COMPLETED
        assert result.output == {"output": 1}
        assert result.retries == 0
        assert invoke.calls == 1

    @pytest.mark.asyncio
    async def test_recovers_after_retries(self):
        supervisor = RetrySupervisor(FAST_RETRY)
        invoke = Flaky(failures=2)
        retried = []

        async def on_retry(attempt, error):
            retried.append((attempt, error))

        result = await supervisor.run(make_step(retry_count=3), invoke, RunSignals(), on_retry)

        assert result.success
        assert result.retries == 2
        assert [a for a, _ in retried] == [1, 2]
        assert "boom 1" in retried[0][1]

    @pytest.mark.asyncio
    async def test_exhaustion(self):
        supervisor = RetrySupervisor(FAST_RETRY)
        invoke = Flaky(failures=100)

        result = await supervisor.run(make_step(retry_count=2), invoke, RunSignals())

        assert result.status == StepStatus.FAILED
        assert result.retries == 2
        assert invoke.calls == 3
        assert result.error == "Step 'Query' failed: boom 3"
        assert result.error_type == "StepExecutionError"

    @pytest.mark.asyncio
    async def test_timeout_per_attempt(self):
        supervisor = RetrySupervisor(FAST_RETRY)
        invoke = Flaky(failures=0, hang=True)

        result = await supervisor.run(make_step(retry_count=1, timeout=0.05), invoke, RunSignals())

        assert result.status == StepStatus.FAILED
        assert result.error_type == "StepTimeoutError"
        assert "timed out after 0.05s" in result.error
        assert invoke.calls == 2

    @pytest.mark.asyncio
    async def test_cancel_abandons_attempt(self):
        supervisor = RetrySupervisor(FAST_RETRY)
        signals = RunSignals("exec-1")
        invoke = Flaky(failures=0, hang=True)

        async def cancel_soon():
            await asyncio.sleep(0.05)
            signals.cancel()

        canceller = asyncio.create_task(cancel_soon())

        with pytest.raises(ExecutionCancelledError):
            await asyncio.wait_for(
                supervisor.run(make_step(timeout=30.0), invoke, signals),
                timeout=2.0,
            )

        await canceller

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        supervisor = RetrySupervisor(RetryConfig(base_delay=10.0, max_delay=10.0))
        signals = RunSignals()
        invoke = Flaky(failures=100)

        task = asyncio.create_task(supervisor.run(make_step(retry_count=1), invoke, signals))
        await asyncio.sleep(0.05)
        signals.cancel()

        with pytest.raises(ExecutionCancelledError):
            await asyncio.wait_for(task, timeout=2.0)
        assert invoke.calls == 1

    @pytest.mark.asyncio
    async def test_no_retry_while_paused(self):
        supervisor = RetrySupervisor(FAST_RETRY)
        signals = RunSignals()
        calls = []

        async def invoke():
            calls.append(1)
            if len(calls) == 1:
                signals.pause()
                raise RuntimeError("first attempt fails")
            return {"output": "ok"}

        task = asyncio.create_task(supervisor.run(make_step(retry_count=1), invoke, signals))
        await asyncio.sleep(0.1)

        assert len(calls) == 1
        assert not task.done()

        signals.resume()
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.success
        assert result.retries == 1


class TestRunSignals:
    """Tests for RunSignals."""

    @pytest.mark.asyncio
    async def test_pause_and_resume(self):
        signals = RunSignals()
        assert not signals.paused

        signals.pause()
        assert signals.paused

        waiter = asyncio.create_task(signals.wait_until_runnable())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        signals.resume()
        await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancel_wakes_paused_waiter(self):
        signals = RunSignals()
        signals.pause()

        waiter = asyncio.create_task(signals.wait_until_runnable())
        await asyncio.sleep(0.01)
        signals.cancel()

        with pytest.raises(ExecutionCancelledError):
            await asyncio.wait_for(waiter, timeout=1.0)

        signals.pause()
        assert not signals.paused

    @pytest.mark.asyncio
    async def test_sleep_is_cut_short(self):
        signals = RunSignals()
        task = asyncio.create_task(signals.sleep(10.0))
        await asyncio.sleep(0.01)
        signals.cancel()

        with pytest.raises(ExecutionCancelledError):
            await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_executor_cancellation_is_a_step_failure(self):
        supervisor = RetrySupervisor(FAST_RETRY)
        calls = []

        async def invoke():
            calls.append(1)
            raise asyncio.CancelledError()

        result = await supervisor.run(make_step(retry_count=1), invoke, RunSignals())

        assert result.status == StepStatus.FAILED
        assert result.error_type == "StepExecutionError"
        assert "cancelled by executor" in result.error
        assert len(calls) == 2
