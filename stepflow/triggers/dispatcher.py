"""
Stepflow Trigger Dispatcher

Starts workflow runs when their triggers fire.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from pathlib import PurePath
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

import structlog
from croniter import croniter

from stepflow.errors import AlreadyRunningError, InvalidWorkflowError
from stepflow.types import TriggerConfig, TriggerType, WorkflowDefinition

if TYPE_CHECKING:
    from stepflow.engine import ExecutionController, WorkflowEngine

logger = structlog.get_logger(__name__)

# Trigger parameter compared against the fired event, per trigger type
MATCH_KEYS = {
    TriggerType.FILE_CHANGED: "path",
    TriggerType.APP_LAUNCHED: "appName",
    TriggerType.SYSTEM_EVENT: "eventType",
    TriggerType.HOTKEY: "keyCombo",
    TriggerType.WEBHOOK: "path",
}


class TriggerDispatcher:
    """
    Dispatches triggers to the engine.

    Features:
    - Scheduled triggers (cron ``schedule`` or ``intervalSeconds``)
    - Event triggers matched on one parameter per trigger type
    - Manual firing
    - Repeated firing never produces a second concurrent run
    """

    def __init__(self, engine: "WorkflowEngine"):
        self.engine = engine

        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._schedule_tasks: Dict[str, asyncio.Task] = {}
        self._fire_count = 0

    async def shutdown(self) -> None:
        """Stop all schedule loops."""
        tasks = list(self._schedule_tasks.values())
        self._schedule_tasks.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Trigger dispatcher shutdown")

    # === Registration ===

    async def register(self, definition: WorkflowDefinition) -> None:
        """Activate the enabled triggers of a workflow, replacing earlier ones."""
        await self.unregister(definition.id)
        self._definitions[definition.id] = definition.snapshot()

        if not definition.enabled:
            logger.info("workflow_disabled", workflow_id=definition.id)
            return

        for trigger in definition.triggers:
            if not trigger.enabled:
                continue

            if trigger.type == TriggerType.SCHEDULED:
                if self.next_fire_time(trigger) is None:
                    logger.warning("schedule_invalid", trigger_id=trigger.id, parameters=trigger.parameters)
                    continue
                self._schedule_tasks[trigger.id] = asyncio.create_task(
                    self._schedule_loop(definition.id, trigger)
                )

            logger.info(
                "trigger_registered",
                trigger_id=trigger.id,
                type=trigger.type.value,
                workflow_id=definition.id,
            )

    async def unregister(self, workflow_id: str) -> bool:
        """Deactivate all triggers of a workflow."""
        definition = self._definitions.pop(workflow_id, None)
        if definition is None:
            return False

        for trigger in definition.triggers:
            task = self._schedule_tasks.pop(trigger.id, None)
            if task:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        logger.info("triggers_unregistered", workflow_id=workflow_id)
        return True

    def registered(self) -> List[str]:
        return list(self._definitions.keys())

    # === Firing ===

    async def fire(
        self,
        trigger_type: TriggerType,
        variables: Optional[Mapping[str, Any]] = None,
        **match: Any,
    ) -> List["ExecutionController"]:
        """
        Fire an event; start every workflow with a matching enabled trigger.

        Args:
            trigger_type: Kind of event
            variables: Extra seed variables for the started runs
            **match: Event attributes (path, appName, eventType, keyCombo)

        Returns:
            Controllers of the runs that were started
        """
        trigger_type = TriggerType(trigger_type)
        started = []

        for definition in list(self._definitions.values()):
            if not definition.enabled:
                continue

            for trigger in definition.triggers:
                if trigger.enabled and trigger.type == trigger_type and self.matches(trigger, match):
                    controller = await self._dispatch(definition, trigger, match, variables)
                    if controller is not None:
                        started.append(controller)
                    break

        return started

    async def fire_manual(
        self,
        workflow_id: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> Optional["ExecutionController"]:
        """Start a registered workflow by hand."""
        definition = self._definitions.get(workflow_id)
        if definition is None:
            logger.warning("manual_trigger_unknown_workflow", workflow_id=workflow_id)
            return None

        trigger = TriggerConfig(type=TriggerType.MANUAL)
        return await self._dispatch(definition, trigger, {}, variables)

    @staticmethod
    def matches(trigger: TriggerConfig, event: Mapping[str, Any]) -> bool:
        """Check an event against a trigger. A trigger without the key matches any event."""
        key = MATCH_KEYS.get(trigger.type)
        if key is None:
            return True

        expected = trigger.parameters.get(key)
        if expected in (None, ""):
            return True

        actual = event.get(key)
        if actual is None:
            return False

        if trigger.type == TriggerType.FILE_CHANGED:
            watched, changed = PurePath(str(expected)), PurePath(str(actual))
            return changed == watched or watched in changed.parents

        if trigger.type == TriggerType.APP_LAUNCHED:
            return str(actual).lower() == str(expected).lower()

        return str(actual) == str(expected)

    async def _dispatch(
        self,
        definition: WorkflowDefinition,
        trigger: TriggerConfig,
        event: Mapping[str, Any],
        variables: Optional[Mapping[str, Any]],
    ) -> Optional["ExecutionController"]:
        """Hand one firing to the engine."""
        self._fire_count += 1

        seed: Dict[str, Any] = {
            "trigger": {"id": trigger.id, "type": trigger.type.value, **dict(event)},
        }
        if variables:
            seed.update(variables)

        try:
            controller = await self.engine.start(definition, seed)

        except AlreadyRunningError as e:
            logger.info(
                "trigger_ignored_already_running",
                workflow_id=definition.id,
                trigger_id=trigger.id,
                execution_id=e.execution_id,
            )
            return None

        except InvalidWorkflowError as e:
            logger.error("trigger_invalid_workflow", workflow_id=definition.id, errors=e.errors)
            return None

        logger.info(
            "trigger_fired",
            workflow_id=definition.id,
            trigger_id=trigger.id,
            type=trigger.type.value,
            execution_id=controller.execution_id,
        )
        return controller

    # === Schedules ===

    @staticmethod
    def next_fire_time(trigger: TriggerConfig, now: Optional[datetime] = None) -> Optional[datetime]:
        """Next time a scheduled trigger fires, or None if it has no valid schedule."""
        now = now or datetime.now()
        params = trigger.parameters

        expression = params.get("schedule")
        if expression:
            try:
                return croniter(str(expression), now).get_next(datetime)
            except (ValueError, KeyError) as e:
                logger.error("cron_calculation_error", expression=expression, error=str(e))
                return None

        interval = params.get("intervalSeconds")
        if interval is not None:
            try:
                seconds = float(interval)
            except (TypeError, ValueError):
                return None
            if seconds > 0:
                return now + timedelta(seconds=seconds)

        return None

    async def _schedule_loop(self, workflow_id: str, trigger: TriggerConfig) -> None:
        """Sleep until each fire time, then dispatch."""
        while True:
            next_time = self.next_fire_time(trigger)
            if next_time is None:
                return

            delay = max(0.0, (next_time - datetime.now()).total_seconds())
            await asyncio.sleep(delay)

            definition = self._definitions.get(workflow_id)
            if definition is None:
                return

            try:
                await self._dispatch(definition, trigger, {"scheduled_at": next_time.isoformat()}, None)
            except Exception as e:
                logger.exception(
                    "schedule_dispatch_error",
                    workflow_id=workflow_id,
                    trigger_id=trigger.id,
                    error=str(e),
                )

    def get_stats(self) -> Dict[str, Any]:
        """Get dispatcher statistics."""
        return {
            "workflows": len(self._definitions),
            "schedules": len(self._schedule_tasks),
            "fired": self._fire_count,
        }
