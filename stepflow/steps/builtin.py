"""
Stepflow Built-in Step Executors

Executors for the step types the engine can run without host integration:
delay, text_processing, notification, conditional and user_input.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from stepflow.steps.registry import StepExecutor, StepExecutorRegistry
from stepflow.types import StepType

logger = structlog.get_logger(__name__)


def _require(params: Dict[str, Any], name: str) -> Any:
    value = params.get(name)
    if value is None or value == "":
        raise ValueError(f"Missing parameter: {name}")
    return value


class DelayStepExecutor(StepExecutor):
    """Sleeps for ``duration`` seconds."""

    async def execute(self, step_type: StepType, params: Dict[str, Any]) -> Any:
        duration = float(params.get("duration", 0) or 0)
        if duration < 0:
            raise ValueError(f"Invalid duration: {duration}")

        if duration:
            await asyncio.sleep(duration)

        return {"delayed": True, "seconds": duration}


class TextProcessingStepExecutor(StepExecutor):
    """Applies a simple string operation to ``text``."""

    OPERATIONS: Dict[str, Callable[[str], Any]] = {
        "uppercase": str.upper,
        "lowercase": str.lower,
        "trim": str.strip,
        "length": len,
    }

    async def execute(self, step_type: StepType, params: Dict[str, Any]) -> Any:
        text = params.get("text")
        if text is None:
            raise ValueError("Missing parameter: text")
        operation = _require(params, "operation")

        func = self.OPERATIONS.get(str(operation).lower())
        if func is None:
            raise ValueError(f"Unsupported text operation: {operation}")

        return {"output": func(str(text)), "operation": operation}


class NotificationStepExecutor(StepExecutor):
    """
    Emits a notification.

    Notifications are always logged; a ``notifier(title, message)`` callback
    (sync or async) may forward them to the host.
    """

    def __init__(self, notifier: Optional[Callable[[str, str], Any]] = None):
        self.notifier = notifier
        self.sent: List[Dict[str, str]] = []

    async def execute(self, step_type: StepType, params: Dict[str, Any]) -> Any:
        title = str(_require(params, "title"))
        message = str(params.get("message", ""))

        logger.info("notification", title=title, message=message)

        if self.notifier:
            result = self.notifier(title, message)
            if asyncio.iscoroutine(result):
                await result

        self.sent.append({"title": title, "message": message})
        return {"output": f"Notification sent: {title}", "title": title}


class ConditionalStepExecutor(StepExecutor):
    """A conditional step reaches its executor only when its condition held."""

    async def execute(self, step_type: StepType, params: Dict[str, Any]) -> Any:
        return {"output": True}


# === User Input ===


@dataclass
class InputRequest:
    """A pending request for a value from a person."""
    id: str
    prompt: str
    default_value: Any = None
    created_at: datetime = field(default_factory=datetime.now)
    future: Optional[asyncio.Future] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "default_value": self.default_value,
            "created_at": self.created_at.isoformat(),
        }


class InputBroker:
    """
    Hands user-input requests to the host and suspends until answered.

    Waiting is a plain future, so a pending request costs nothing while the
    person thinks. The supervisor's step timeout still bounds the wait.
    """

    def __init__(self):
        self._requests: Dict[str, InputRequest] = {}
        self._callbacks: List[Callable[[InputRequest], Any]] = []

    def on_request(self, callback: Callable[[InputRequest], Any]) -> None:
        """Register a callback invoked for every new request."""
        self._callbacks.append(callback)

    def pending(self) -> List[InputRequest]:
        return list(self._requests.values())

    async def request(self, prompt: str, default_value: Any = None) -> Any:
        """Publish a request and wait for ``provide``."""
        loop = asyncio.get_running_loop()
        request = InputRequest(
            id=str(uuid.uuid4()),
            prompt=prompt,
            default_value=default_value,
            future=loop.create_future(),
        )
        self._requests[request.id] = request

        logger.info("input_requested", request_id=request.id, prompt=prompt)

        try:
            for callback in self._callbacks:
                try:
                    result = callback(request)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    logger.error("input_callback_error", request_id=request.id, error=str(e))

            return await request.future
        finally:
            self._requests.pop(request.id, None)

    def provide(self, request_id: str, value: Any) -> bool:
        """Answer a pending request. Returns False if it is unknown or done."""
        request = self._requests.get(request_id)
        if request is None or request.future is None or request.future.done():
            return False

        request.future.set_result(value)
        logger.info("input_provided", request_id=request_id)
        return True

    def cancel(self, request_id: str) -> bool:
        """Withdraw a pending request; its waiter sees CancelledError."""
        request = self._requests.get(request_id)
        if request is None or request.future is None or request.future.done():
            return False

        request.future.cancel()
        return True


class UserInputStepExecutor(StepExecutor):
    """
    Asks for a value.

    Without a broker the step answers with ``defaultValue``.
    """

    def __init__(self, broker: Optional[InputBroker] = None):
        self.broker = broker

    async def execute(self, step_type: StepType, params: Dict[str, Any]) -> Any:
        prompt = str(_require(params, "prompt"))
        default_value = params.get("defaultValue", "")

        if self.broker is None:
            return {"output": default_value}

        value = await self.broker.request(prompt, default_value)
        if value is None or value == "":
            value = default_value

        return {"output": value}


def register_builtin_executors(
    registry: StepExecutorRegistry,
    broker: Optional[InputBroker] = None,
    notifier: Optional[Callable[[str, str], Any]] = None,
) -> StepExecutorRegistry:
    """Register the built-in executors on a registry."""
    registry.register(StepType.DELAY, DelayStepExecutor())
    registry.register(StepType.TEXT_PROCESSING, TextProcessingStepExecutor())
    registry.register(StepType.NOTIFICATION, NotificationStepExecutor(notifier))
    registry.register(StepType.CONDITIONAL, ConditionalStepExecutor())
    registry.register(StepType.USER_INPUT, UserInputStepExecutor(broker))
    return registry
