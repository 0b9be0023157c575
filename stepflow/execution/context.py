"""
Stepflow Execution Context

Mutable state of one in-flight run, folded into an ExecutionResult at the end.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import structlog

from stepflow.execution.variables import VariableStore
from stepflow.types import (
    ExecutionResult,
    ExecutionStatus,
    StepResult,
    StepStatus,
    WorkflowDefinition,
)

logger = structlog.get_logger(__name__)


class ExecutionContext:
    """
    State of one execution, owned by its controller.

    Features:
    - Variable store seeded from the definition, then from the caller
    - Forward-only step index
    - Ordered step results
    """

    def __init__(
        self,
        workflow: WorkflowDefinition,
        initial_variables: Optional[Mapping[str, Any]] = None,
        execution_id: Optional[str] = None,
    ):
        self.execution_id = execution_id or str(uuid.uuid4())
        self.workflow = workflow
        self.workflow_id = workflow.id

        self.status = ExecutionStatus.IDLE
        self.current_step_index = 0

        self.variables = VariableStore(workflow.variables)
        if initial_variables:
            self.variables.merge(initial_variables)

        self.step_results: List[StepResult] = []
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.error: Optional[str] = None
        self.error_type: Optional[str] = None

    # === State ===

    @property
    def total_steps(self) -> int:
        return len(self.workflow.steps)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def has_more_steps(self) -> bool:
        return self.current_step_index < self.total_steps

    def start(self) -> None:
        """Mark execution as started."""
        self.status = ExecutionStatus.RUNNING
        self.started_at = datetime.now()

    def advance(self) -> None:
        """Move to the next step."""
        self.current_step_index += 1

    def record(self, result: StepResult) -> None:
        """Append a step result."""
        self.step_results.append(result)

    def finish(
        self,
        status: ExecutionStatus,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> None:
        """Enter a terminal state."""
        self.status = status
        self.error = error
        self.error_type = error_type
        self.completed_at = datetime.now()

    # === Summary ===

    def _count(self, status: StepStatus) -> int:
        return sum(1 for r in self.step_results if r.status == status)

    def to_result(self) -> ExecutionResult:
        """Fold the context into an immutable ExecutionResult."""
        started_at = self.started_at or datetime.now()
        completed_at = self.completed_at or datetime.now()
        failed = self._count(StepStatus.FAILED)

        return ExecutionResult(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            workflow_name=self.workflow.name,
            workflow_version=self.workflow.version,
            status=self.status,
            started_at=started_at,
            completed_at=completed_at,
            success=self.status == ExecutionStatus.COMPLETED and failed == 0,
            completed_steps=self._count(StepStatus.COMPLETED),
            skipped_steps=self._count(StepStatus.SKIPPED),
            failed_steps=failed,
            total_steps=self.total_steps,
            step_results=tuple(self.step_results),
            variables=self.variables.snapshot(),
            error=self.error,
            error_type=self.error_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Live view of the execution, for status displays."""
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "total_steps": self.total_steps,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "variables": self.variables.snapshot(),
            "error": self.error,
        }

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(execution={self.execution_id}, "
            f"status={self.status.value}, step={self.current_step_index}/{self.total_steps})"
        )
