"""
Stepflow Workflow Engine

Execution controller for a single run and the engine that owns all runs.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

import structlog

from stepflow.conditions.evaluator import ConditionEvaluator
from stepflow.conditions.probes import EnvironmentProbes
from stepflow.core.config import EngineConfig, get_config
from stepflow.errors import (
    AlreadyRunningError,
    ExecutionCancelledError,
    ExecutorNotFoundError,
    InvalidTransitionError,
    InvalidWorkflowError,
    RetriesExhaustedError,
    WorkflowNotFoundError,
)
from stepflow.execution.context import ExecutionContext
from stepflow.execution.history import ExecutionHistoryStore
from stepflow.execution.signals import RunSignals
from stepflow.execution.supervisor import RetrySupervisor
from stepflow.steps.registry import StepExecutorRegistry
from stepflow.types import (
    EventType,
    ExecutionResult,
    ExecutionStatus,
    StepDefinition,
    StepResult,
    StepStatus,
    StepType,
    WorkflowDefinition,
    WorkflowEvent,
)

if TYPE_CHECKING:
    from stepflow.registry import WorkflowRegistry

logger = structlog.get_logger(__name__)

EventCallback = Callable[[WorkflowEvent], Any]

TERMINAL_EVENTS = {
    ExecutionStatus.COMPLETED: EventType.EXECUTION_COMPLETED,
    ExecutionStatus.FAILED: EventType.EXECUTION_FAILED,
    ExecutionStatus.CANCELLED: EventType.EXECUTION_CANCELLED,
}


class ExecutionController:
    """
    State machine for one run of a workflow.

    idle -> running -> (paused <-> running) -> completed | cancelled | failed

    The controller owns its context and variable store. Progress is published
    as WorkflowEvents to callbacks and subscriber queues.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        executors: StepExecutorRegistry,
        evaluator: Optional[ConditionEvaluator] = None,
        supervisor: Optional[RetrySupervisor] = None,
        probes: Optional[EnvironmentProbes] = None,
        history: Optional[ExecutionHistoryStore] = None,
        initial_variables: Optional[Mapping[str, Any]] = None,
        execution_id: Optional[str] = None,
        on_finished: Optional[Callable[["ExecutionController"], None]] = None,
    ):
        self.definition = definition.snapshot()
        self.executors = executors
        self.evaluator = evaluator or ConditionEvaluator()
        self.supervisor = supervisor or RetrySupervisor()
        self.probes = probes
        self.history = history

        self.context = ExecutionContext(self.definition, initial_variables, execution_id)
        self.signals = RunSignals(self.context.execution_id)

        self._on_finished = on_finished
        self._callbacks: List[EventCallback] = []
        self._queues: List[asyncio.Queue] = []

        self._task: Optional[asyncio.Task] = None
        self._finished = asyncio.Event()
        self._result: Optional[ExecutionResult] = None

    # === Properties ===

    @property
    def execution_id(self) -> str:
        return self.context.execution_id

    @property
    def workflow_id(self) -> str:
        return self.context.workflow_id

    @property
    def status(self) -> ExecutionStatus:
        return self.context.status

    @property
    def current_step_index(self) -> int:
        return self.context.current_step_index

    @property
    def result(self) -> Optional[ExecutionResult]:
        """The final result once the run reached a terminal state."""
        return self._result

    # === Subscriptions ===

    def on_event(self, callback: EventCallback) -> None:
        """Register a callback (sync or async) for every progress event."""
        self._callbacks.append(callback)

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        """Return a queue that receives every subsequent progress event."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    # === Transitions ===

    def start(self) -> "ExecutionController":
        """Enter ``running`` and schedule the step loop."""
        if self.status != ExecutionStatus.IDLE:
            raise InvalidTransitionError("start", self.status.value)

        self.context.start()
        self._task = asyncio.create_task(self._run())
        return self

    async def pause(self) -> None:
        """Stop at the next step boundary. Legal only while running."""
        if self.status != ExecutionStatus.RUNNING:
            raise InvalidTransitionError("pause", self.status.value)

        self.context.status = ExecutionStatus.PAUSED
        self.signals.pause()

        logger.info("execution_paused", execution_id=self.execution_id, step_index=self.current_step_index)
        await self._emit(EventType.PAUSED, index=self.current_step_index)

    async def resume(self) -> None:
        """Re-enter the step loop at the same index. Legal only while paused."""
        if self.status != ExecutionStatus.PAUSED:
            raise InvalidTransitionError("resume", self.status.value)

        self.context.status = ExecutionStatus.RUNNING
        self.signals.resume()

        logger.info("execution_resumed", execution_id=self.execution_id, step_index=self.current_step_index)
        await self._emit(EventType.RESUMED, index=self.current_step_index)

    async def cancel(self, wait: bool = True) -> Optional[ExecutionResult]:
        """
        Cancel the run from running or paused.

        The in-flight step attempt is abandoned immediately. Returns the
        final result unless ``wait`` is False or the caller is the run itself.
        """
        if self.status not in (ExecutionStatus.RUNNING, ExecutionStatus.PAUSED):
            raise InvalidTransitionError("cancel", self.status.value)

        logger.info("execution_cancel_requested", execution_id=self.execution_id)
        self.signals.cancel()

        if not wait or asyncio.current_task() is self._task:
            return None
        return await self.wait()

    async def wait(self) -> ExecutionResult:
        """Wait for the terminal ExecutionResult. Never raises for failed or cancelled runs."""
        if self.status == ExecutionStatus.IDLE:
            raise InvalidTransitionError("wait for", self.status.value)

        await self._finished.wait()
        return self._result

    # === Step Loop ===

    async def _run(self) -> None:
        ctx = self.context

        logger.info(
            "execution_started",
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            workflow_version=self.definition.version,
            total_steps=ctx.total_steps,
        )
        await self._emit(
            EventType.EXECUTION_STARTED,
            data={"workflow_name": self.definition.name, "total_steps": ctx.total_steps},
        )

        try:
            while True:
                await self.signals.wait_until_runnable()
                if not ctx.has_more_steps:
                    break

                index = ctx.current_step_index
                step = self.definition.steps[index]
                result = await self._run_step(step, index)
                ctx.record(result)

                if result.status == StepStatus.FAILED and not step.continue_on_error:
                    error = RetriesExhaustedError(step.name, result.retries, result.error)
                    await self._finish(ExecutionStatus.FAILED, str(error), type(error).__name__)
                    return

                ctx.advance()

            await self._finish(ExecutionStatus.COMPLETED)

        except ExecutionCancelledError as e:
            await self._finish(ExecutionStatus.CANCELLED, str(e), type(e).__name__)

        except asyncio.CancelledError:
            self.signals.cancel()
            await self._finish(
                ExecutionStatus.CANCELLED,
                "Workflow execution was cancelled",
                ExecutionCancelledError.__name__,
            )
            raise

        except Exception as e:
            logger.exception("execution_error", execution_id=self.execution_id, error=str(e))
            await self._finish(ExecutionStatus.FAILED, str(e), type(e).__name__)

    async def _run_step(self, step: StepDefinition, index: int) -> StepResult:
        """Run one step: gate, resolve, dispatch through the supervisor, merge outputs."""
        ctx = self.context

        if step.condition is not None:
            if not self.evaluator.evaluate(step.condition, ctx.variables, self.probes):
                now = datetime.now()
                logger.info("step_skipped", execution_id=self.execution_id, step_id=step.id)
                await self._emit(
                    EventType.STEP_SKIPPED,
                    step,
                    index,
                    data={"condition": step.condition.describe()},
                )
                return StepResult(
                    step_id=step.id,
                    step_name=step.name,
                    status=StepStatus.SKIPPED,
                    started_at=now,
                    completed_at=now,
                )

        if not self.executors.has(step.type):
            error = ExecutorNotFoundError(step.type.value)
            now = datetime.now()
            logger.error("step_failed", execution_id=self.execution_id, step_id=step.id, error=str(error))
            await self._emit(EventType.STEP_FAILED, step, index, data={"error": str(error)})
            return StepResult(
                step_id=step.id,
                step_name=step.name,
                status=StepStatus.FAILED,
                started_at=now,
                completed_at=now,
                error=str(error),
                error_type=type(error).__name__,
            )

        logger.info(
            "step_started",
            execution_id=self.execution_id,
            step_id=step.id,
            step_type=step.type.value,
            index=index,
        )
        await self._emit(EventType.STEP_STARTED, step, index, data={"step_type": step.type.value})

        params = ctx.variables.resolve(step.parameters)
        started_at = datetime.now()

        async def invoke() -> Dict[str, Any]:
            return await self.executors.execute(step, params)

        async def on_retry(attempt: int, error: str) -> None:
            logger.info("step_retrying", execution_id=self.execution_id, step_id=step.id, attempt=attempt)
            await self._emit(
                EventType.STEP_RETRYING,
                step,
                index,
                data={"attempt": attempt, "error": error},
            )

        try:
            result = await self.supervisor.run(step, invoke, self.signals, on_retry)

        except ExecutionCancelledError as e:
            ctx.record(StepResult(
                step_id=step.id,
                step_name=step.name,
                status=StepStatus.CANCELLED,
                started_at=started_at,
                completed_at=datetime.now(),
                error=str(e),
                error_type=type(e).__name__,
            ))
            raise

        if result.success:
            self._apply_outputs(step, params, result.output or {})
            logger.info(
                "step_completed",
                execution_id=self.execution_id,
                step_id=step.id,
                retries=result.retries,
                duration_ms=result.duration_ms,
            )
            await self._emit(
                EventType.STEP_COMPLETED,
                step,
                index,
                data={"output": result.output, "retries": result.retries},
            )
        else:
            logger.warning(
                "step_failed",
                execution_id=self.execution_id,
                step_id=step.id,
                retries=result.retries,
                error=result.error,
                continue_on_error=step.continue_on_error,
            )
            await self._emit(
                EventType.STEP_FAILED,
                step,
                index,
                data={"error": result.error, "retries": result.retries},
            )

        return result

    def _apply_outputs(self, step: StepDefinition, params: Dict[str, Any], outputs: Dict[str, Any]) -> None:
        """Fold a step's OutputMap into the variable store."""
        store = self.context.variables

        target = params.get("outputVariable")
        if step.type == StepType.USER_INPUT:
            target = params.get("inputVariable") or target

        if target and outputs:
            primary = outputs["output"] if "output" in outputs else outputs
            store.set(str(target), primary)

        mapping = params.get("outputs")
        if isinstance(mapping, dict):
            for key, variable in mapping.items():
                if key in outputs and variable:
                    store.set(str(variable), outputs[key])

    async def _finish(
        self,
        status: ExecutionStatus,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> None:
        """Terminal transition: fold, release, record, announce."""
        self.context.finish(status, error, error_type)
        result = self.context.to_result()
        self._result = result

        if self._on_finished:
            self._on_finished(self)

        log = logger.info if status == ExecutionStatus.COMPLETED else logger.warning
        log(
            "execution_finished",
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            status=status.value,
            completed_steps=result.completed_steps,
            skipped_steps=result.skipped_steps,
            failed_steps=result.failed_steps,
            duration_ms=result.duration_ms,
            error=error,
        )

        try:
            if self.history is not None:
                await self.history.append(result)
            await self._emit(
                TERMINAL_EVENTS[status],
                data={
                    "status": status.value,
                    "success": result.success,
                    "error": error,
                    "duration_ms": result.duration_ms,
                },
            )
        finally:
            self._finished.set()

    async def _emit(
        self,
        event_type: EventType,
        step: Optional[StepDefinition] = None,
        index: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Publish an event to queues and callbacks."""
        event = WorkflowEvent(
            event_type=event_type,
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            step_id=step.id if step else None,
            step_index=index,
            data=data or {},
        )

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("event_queue_full", execution_id=self.execution_id, event_type=event_type.value)

        for callback in list(self._callbacks):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("callback_error", event_type=event_type.value, error=str(e))

    def to_dict(self) -> Dict[str, Any]:
        return self.context.to_dict()

    def __repr__(self) -> str:
        return f"ExecutionController({self.context!r})"


class WorkflowEngine:
    """
    Owns execution controllers.

    Features:
    - At most one active run per workflow id
    - Shared executor registry, probes, supervisor and history
    - Engine-wide event callbacks
    - Runs by definition or by id through an optional workflow registry
    """

    def __init__(
        self,
        executors: Optional[StepExecutorRegistry] = None,
        probes: Optional[EnvironmentProbes] = None,
        history: Optional[ExecutionHistoryStore] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        workflows: Optional["WorkflowRegistry"] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.config = config or get_config()
        self.executors = executors or StepExecutorRegistry()
        self.probes = probes
        self.evaluator = evaluator or ConditionEvaluator()
        self.supervisor = RetrySupervisor(self.config.retry)
        self.history = history or ExecutionHistoryStore(
            persistence_path=self.config.history.persistence_path,
            max_records=self.config.history.max_records,
        )
        self.workflows = workflows

        self._active: Dict[str, ExecutionController] = {}
        self._callbacks: List[EventCallback] = []
        self._total_started = 0

        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the engine."""
        if self._initialized:
            return

        await self.history.initialize()
        if self.workflows is not None:
            await self.workflows.initialize()

        self._initialized = True
        logger.info("workflow_engine_initialized", executors=[t.value for t in self.executors.registered_types()])

    async def shutdown(self) -> None:
        """Cancel active runs and flush history."""
        logger.info("workflow_engine_shutting_down", active=len(self._active))

        controllers = list(self._active.values())
        for controller in controllers:
            if controller.status in (ExecutionStatus.RUNNING, ExecutionStatus.PAUSED):
                await controller.cancel(wait=False)

        if controllers:
            await asyncio.gather(*(c.wait() for c in controllers))

        await self.history.shutdown()
        if self.workflows is not None:
            await self.workflows.shutdown()

        self._initialized = False

    # === Events ===

    def on_event(self, callback: EventCallback) -> None:
        """Register a callback for events of every run started afterwards."""
        self._callbacks.append(callback)

    # === Runs ===

    async def start(
        self,
        definition: WorkflowDefinition,
        initial_variables: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionController:
        """
        Start a run of ``definition``.

        Raises:
            InvalidWorkflowError: the definition does not validate
            AlreadyRunningError: the workflow id already has an active run
        """
        errors = definition.validate()
        if errors:
            raise InvalidWorkflowError(errors)

        # Check and claim without yielding to the loop
        existing = self._active.get(definition.id)
        if existing is not None:
            logger.warning(
                "workflow_already_running",
                workflow_id=definition.id,
                execution_id=existing.execution_id,
            )
            raise AlreadyRunningError(definition.id, existing.execution_id)

        controller = ExecutionController(
            definition,
            self.executors,
            evaluator=self.evaluator,
            supervisor=self.supervisor,
            probes=self.probes,
            history=self.history,
            initial_variables=initial_variables,
            on_finished=self._release,
        )
        for callback in self._callbacks:
            controller.on_event(callback)

        self._active[definition.id] = controller
        self._total_started += 1
        return controller.start()

    async def run(
        self,
        definition: WorkflowDefinition,
        initial_variables: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionResult:
        """Start a run and wait for its result."""
        controller = await self.start(definition, initial_variables)
        return await controller.wait()

    async def execute(
        self,
        workflow_id: str,
        initial_variables: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionController:
        """Start a run of a stored workflow."""
        if self.workflows is None:
            raise WorkflowNotFoundError(workflow_id)

        definition = await self.workflows.get(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(workflow_id)
        if not definition.enabled:
            raise InvalidWorkflowError([f"Workflow {workflow_id} is disabled"])

        return await self.start(definition, initial_variables)

    def _release(self, controller: ExecutionController) -> None:
        if self._active.get(controller.workflow_id) is controller:
            del self._active[controller.workflow_id]

    # === Control ===

    def get_active(self, workflow_id: str) -> Optional[ExecutionController]:
        return self._active.get(workflow_id)

    def is_running(self, workflow_id: str) -> bool:
        return workflow_id in self._active

    def list_active(self) -> List[ExecutionController]:
        return list(self._active.values())

    def _require_active(self, workflow_id: str) -> ExecutionController:
        controller = self._active.get(workflow_id)
        if controller is None:
            raise WorkflowNotFoundError(workflow_id)
        return controller

    async def pause(self, workflow_id: str) -> None:
        await self._require_active(workflow_id).pause()

    async def resume(self, workflow_id: str) -> None:
        await self._require_active(workflow_id).resume()

    async def cancel(self, workflow_id: str) -> Optional[ExecutionResult]:
        return await self._require_active(workflow_id).cancel()

    # === Statistics ===

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        by_status: Dict[str, int] = {}
        for controller in self._active.values():
            by_status[controller.status.value] = by_status.get(controller.status.value, 0) + 1

        return {
            "active_executions": len(self._active),
            "total_started": self._total_started,
            "by_status": by_status,
            "history_records": len(self.history),
            "executors": [t.value for t in self.executors.registered_types()],
        }
