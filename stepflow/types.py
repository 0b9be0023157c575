"""
Stepflow Types

Core dataclasses for workflow definitions and execution results.
"""

from __future__ import annotations

import copy
import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


# === Values ===

# Variables and step parameters are restricted to a small closed lattice.
Value = Union[str, int, float, bool, List[Any], Dict[str, Any]]

DEFAULT_STEP_TIMEOUT = 30.0


def is_value(value: Any) -> bool:
    """Check whether a value belongs to the variable lattice."""
    if isinstance(value, (str, bool, int, float)):
        return True
    if isinstance(value, list):
        return all(is_value(item) for item in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and is_value(v) for k, v in value.items())
    return False


def coerce_value(value: Any) -> Value:
    """Coerce an arbitrary object into the variable lattice."""
    if value is None:
        return ""
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [coerce_value(item) for item in value]
    if isinstance(value, dict):
        return {str(k): coerce_value(v) for k, v in value.items()}
    if isinstance(value, Enum):
        return coerce_value(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def stringify(value: Any) -> str:
    """String form used for interpolation and string comparisons."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    if value is None:
        return ""
    return str(value)


# === Enums ===


class StepType(str, Enum):
    """Closed set of step kinds dispatched through the executor registry."""
    FILE_OPERATION = "file_operation"
    APP_CONTROL = "app_control"
    SYSTEM_QUERY = "system_query"
    USER_INPUT = "user_input"
    CONDITIONAL = "conditional"
    DELAY = "delay"
    TEXT_PROCESSING = "text_processing"
    NOTIFICATION = "notification"


class ConditionType(str, Enum):
    """Condition predicates."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    FILE_EXISTS = "file_exists"
    APP_RUNNING = "app_running"


class TriggerType(str, Enum):
    """Types of workflow triggers."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    FILE_CHANGED = "file_changed"
    APP_LAUNCHED = "app_launched"
    SYSTEM_EVENT = "system_event"
    HOTKEY = "hotkey"
    WEBHOOK = "webhook"


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.CANCELLED,
            ExecutionStatus.FAILED,
        )


class StepStatus(str, Enum):
    """Outcome of one step."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class EventType(str, Enum):
    """Progress events emitted by an execution."""
    EXECUTION_STARTED = "execution_started"
    STEP_STARTED = "step_started"
    STEP_RETRYING = "step_retrying"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_SKIPPED = "step_skipped"
    PAUSED = "paused"
    RESUMED = "resumed"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_CANCELLED = "execution_cancelled"


def _new_id() -> str:
    return str(uuid.uuid4())


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# === Conditions ===


@dataclass
class Condition:
    """A boolean gate over the variable store and the environment."""
    type: ConditionType = ConditionType.EQUALS
    variable: str = ""
    value: Any = None

    def describe(self) -> str:
        """Human-readable form used in logs."""
        return f"{self.variable} {self.type.value} {self.value!r}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "variable": self.variable,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        """Create from dictionary."""
        return cls(
            type=ConditionType(data.get("type", "equals")),
            variable=data.get("variable", ""),
            value=data.get("value"),
        )


# === Triggers ===


@dataclass
class TriggerConfig:
    """What starts a run. The engine treats triggers as metadata only."""
    id: str = field(default_factory=_new_id)
    type: TriggerType = TriggerType.MANUAL
    parameters: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "parameters": copy.deepcopy(self.parameters),
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerConfig":
        """Create from dictionary."""
        return cls(
            id=data.get("id", _new_id()),
            type=TriggerType(data.get("type", "manual")),
            parameters=copy.deepcopy(data.get("parameters", {})),
            enabled=data.get("enabled", True),
        )


# === Steps ===


@dataclass
class StepDefinition:
    """One unit of work in a workflow."""
    id: str = field(default_factory=_new_id)
    name: str = ""
    type: StepType = StepType.NOTIFICATION

    # Values may contain ${var} placeholders
    parameters: Dict[str, Any] = field(default_factory=dict)

    # Error handling
    continue_on_error: bool = False
    retry_count: int = 0
    timeout: float = DEFAULT_STEP_TIMEOUT

    # Gate
    condition: Optional[Condition] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "parameters": copy.deepcopy(self.parameters),
            "continue_on_error": self.continue_on_error,
            "retry_count": self.retry_count,
            "timeout": self.timeout,
            "condition": self.condition.to_dict() if self.condition else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepDefinition":
        """Create from dictionary."""
        return cls(
            id=data.get("id", _new_id()),
            name=data.get("name", ""),
            type=StepType(data.get("type", "notification")),
            parameters=copy.deepcopy(data.get("parameters", {})),
            continue_on_error=data.get("continue_on_error", False),
            retry_count=data.get("retry_count", 0),
            timeout=data.get("timeout", DEFAULT_STEP_TIMEOUT),
            condition=Condition.from_dict(data["condition"]) if data.get("condition") else None,
        )


# === Workflow Definition ===


@dataclass
class WorkflowDefinition:
    """A workflow definition. Edited only by whole-definition replacement."""
    id: str = field(default_factory=_new_id)
    version: int = 1

    name: str = ""
    description: str = ""

    steps: List[StepDefinition] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    triggers: List[TriggerConfig] = field(default_factory=list)

    enabled: bool = True
    tags: List[str] = field(default_factory=list)

    created_at: datetime = field(default_factory=datetime.now)
    modified_at: datetime = field(default_factory=datetime.now)

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        """Get a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def validate(self) -> List[str]:
        """Validate the definition. Returns list of errors."""
        errors = []

        if not self.name:
            errors.append("Workflow name is required")

        if not self.steps:
            errors.append("Workflow must have at least one step")

        seen = set()
        for step in self.steps:
            if step.id in seen:
                errors.append(f"Duplicate step id: {step.id}")
            seen.add(step.id)

            if step.retry_count < 0:
                errors.append(f"Step {step.id} has negative retry_count")
            if step.timeout is None or step.timeout <= 0:
                errors.append(f"Step {step.id} must have a positive timeout")
            if step.type == StepType.CONDITIONAL and step.condition is None:
                errors.append(f"Conditional step {step.id} requires a condition")
            if not is_value(step.parameters):
                errors.append(f"Step {step.id} has parameters outside the value types")

        for name, value in self.variables.items():
            if not is_value(value):
                errors.append(f"Variable {name} has an unsupported type")

        return errors

    def snapshot(self) -> "WorkflowDefinition":
        """Deep copy used for a run, isolated from later edits."""
        return copy.deepcopy(self)

    def with_changes(self, **changes: Any) -> "WorkflowDefinition":
        """Copy-on-write edit: returns a new definition with a bumped version."""
        changes = copy.deepcopy(changes)
        changes.setdefault("version", self.version + 1)
        changes.setdefault("modified_at", datetime.now())
        return replace(copy.deepcopy(self), **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
            "variables": copy.deepcopy(self.variables),
            "triggers": [t.to_dict() for t in self.triggers],
            "enabled": self.enabled,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Create from dictionary."""
        workflow = cls(
            id=data.get("id", _new_id()),
            version=data.get("version", 1),
            name=data.get("name", ""),
            description=data.get("description", ""),
            variables=copy.deepcopy(data.get("variables", {})),
            enabled=data.get("enabled", True),
            tags=list(data.get("tags", [])),
        )

        for step_data in data.get("steps", []):
            workflow.steps.append(StepDefinition.from_dict(step_data))

        for trigger_data in data.get("triggers", []):
            workflow.triggers.append(TriggerConfig.from_dict(trigger_data))

        if data.get("created_at"):
            workflow.created_at = _parse_datetime(data["created_at"])
        if data.get("modified_at"):
            workflow.modified_at = _parse_datetime(data["modified_at"])

        return workflow

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Export as a JSON document."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, document: str) -> "WorkflowDefinition":
        """Import from a JSON document."""
        return cls.from_dict(json.loads(document))


# === Execution Results ===


@dataclass(frozen=True)
class StepResult:
    """Immutable record of one attempted (or skipped) step."""
    step_id: str
    step_name: str
    status: StepStatus
    started_at: datetime
    completed_at: datetime
    output: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    retries: int = 0

    @property
    def success(self) -> bool:
        return self.status == StepStatus.COMPLETED

    @property
    def skipped(self) -> bool:
        return self.status == StepStatus.SKIPPED

    @property
    def duration_ms(self) -> float:
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "output": self.output,
            "error": self.error,
            "error_type": self.error_type,
            "retries": self.retries,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepResult":
        """Create from dictionary."""
        return cls(
            step_id=data["step_id"],
            step_name=data.get("step_name", ""),
            status=StepStatus(data["status"]),
            started_at=_parse_datetime(data["started_at"]),
            completed_at=_parse_datetime(data["completed_at"]),
            output=data.get("output"),
            error=data.get("error"),
            error_type=data.get("error_type"),
            retries=data.get("retries", 0),
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Immutable summary of a finished execution."""
    execution_id: str
    workflow_id: str
    workflow_name: str
    workflow_version: int
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime
    success: bool
    completed_steps: int
    skipped_steps: int
    failed_steps: int
    total_steps: int
    step_results: Tuple[StepResult, ...] = ()
    variables: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "workflow_version": self.workflow_version,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "success": self.success,
            "completed_steps": self.completed_steps,
            "skipped_steps": self.skipped_steps,
            "failed_steps": self.failed_steps,
            "total_steps": self.total_steps,
            "step_results": [r.to_dict() for r in self.step_results],
            "variables": copy.deepcopy(self.variables),
            "error": self.error,
            "error_type": self.error_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionResult":
        """Create from dictionary."""
        return cls(
            execution_id=data["execution_id"],
            workflow_id=data["workflow_id"],
            workflow_name=data.get("workflow_name", ""),
            workflow_version=data.get("workflow_version", 1),
            status=ExecutionStatus(data["status"]),
            started_at=_parse_datetime(data["started_at"]),
            completed_at=_parse_datetime(data["completed_at"]),
            success=data.get("success", False),
            completed_steps=data.get("completed_steps", 0),
            skipped_steps=data.get("skipped_steps", 0),
            failed_steps=data.get("failed_steps", 0),
            total_steps=data.get("total_steps", 0),
            step_results=tuple(StepResult.from_dict(r) for r in data.get("step_results", [])),
            variables=data.get("variables", {}),
            error=data.get("error"),
            error_type=data.get("error_type"),
        )


# === Events ===


@dataclass
class WorkflowEvent:
    """A progress event emitted by an execution."""
    event_type: EventType
    execution_id: str
    workflow_id: str
    step_id: Optional[str] = None
    step_index: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "event_type": self.event_type.value,
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "step_id": self.step_id,
            "step_index": self.step_index,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }
