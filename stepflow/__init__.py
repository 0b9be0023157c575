"""
Stepflow - Workflow Execution Engine

Runs declarative multi-step workflows with:
- Conditional steps
- Retries and per-attempt timeouts
- Variable propagation between steps
- Pause, resume and cancel
- Execution history
"""

__version__ = "1.0.0"

from stepflow.engine import ExecutionController, WorkflowEngine
from stepflow.registry import WorkflowRegistry
from stepflow.types import (
    Condition,
    ConditionType,
    EventType,
    ExecutionResult,
    ExecutionStatus,
    StepDefinition,
    StepResult,
    StepStatus,
    StepType,
    TriggerConfig,
    TriggerType,
    WorkflowDefinition,
    WorkflowEvent,
)

__all__ = [
    "ExecutionController",
    "WorkflowEngine",
    "WorkflowRegistry",
    "Condition",
    "ConditionType",
    "EventType",
    "ExecutionResult",
    "ExecutionStatus",
    "StepDefinition",
    "StepResult",
    "StepStatus",
    "StepType",
    "TriggerConfig",
    "TriggerType",
    "WorkflowDefinition",
    "WorkflowEvent",
    "__version__",
]
