"""
Stepflow Run Signals

Pause/resume/cancel primitives observed by the step loop and the supervisor.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from stepflow.errors import ExecutionCancelledError


class RunSignals:
    """
    Cooperative control signals for one execution.

    The run is "runnable" while not paused; cancellation wakes every waiter.
    """

    def __init__(self, execution_id: Optional[str] = None):
        self.execution_id = execution_id
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._cancelled = asyncio.Event()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def pause(self) -> None:
        if not self.cancelled:
            self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def cancel(self) -> None:
        self._cancelled.set()
        self._resumed.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ExecutionCancelledError(self.execution_id)

    async def wait_until_runnable(self) -> None:
        """Suspend while paused. Raises ExecutionCancelledError once cancelled."""
        self.raise_if_cancelled()
        await self._resumed.wait()
        self.raise_if_cancelled()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep that is cut short by cancellation."""
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()
