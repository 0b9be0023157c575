"""
Stepflow Errors

Exception hierarchy shared by the engine and its collaborators.
"""

from __future__ import annotations

from typing import Optional


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class InvalidWorkflowError(WorkflowError):
    """Raised when a definition fails validation."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid workflow: {'; '.join(self.errors)}")


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow id is unknown."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class AlreadyRunningError(WorkflowError):
    """Raised when a run is started for a workflow that already has one."""

    def __init__(self, workflow_id: str, execution_id: Optional[str] = None):
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        super().__init__(f"Workflow {workflow_id} is already running")


class InvalidTransitionError(WorkflowError):
    """Raised when pause/resume/cancel is called from the wrong state."""

    def __init__(self, action: str, status: str):
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} an execution that is {status}")


class ExecutorNotFoundError(WorkflowError):
    """Raised when no executor is registered for a step type."""

    def __init__(self, step_type: str):
        self.step_type = step_type
        super().__init__(f"No executor registered for step type: {step_type}")


class StepExecutionError(WorkflowError):
    """Wraps a failure reported by a step executor."""

    def __init__(self, step_name: str, message: str, cause: Optional[BaseException] = None):
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"Step '{step_name}' failed: {message}")


class StepTimeoutError(WorkflowError):
    """Raised when a single step attempt exceeds its timeout."""

    def __init__(self, step_name: str, timeout: float):
        self.step_name = step_name
        self.timeout = timeout
        super().__init__(f"Step '{step_name}' timed out after {timeout}s")


class RetriesExhaustedError(WorkflowError):
    """Raised at run level when a step fails after its whole retry budget."""

    def __init__(self, step_name: str, retries: int, last_error: Optional[str] = None):
        self.step_name = step_name
        self.retries = retries
        self.last_error = last_error
        message = f"Step '{step_name}' failed after {retries} retries"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)


class ConditionEvaluationDegraded(WorkflowError):
    """
    A condition could not be evaluated meaningfully.

    Never escapes the evaluator; the condition resolves to False.
    """


class ExecutionCancelledError(WorkflowError):
    """Raised inside a run when it has been cancelled."""

    def __init__(self, execution_id: Optional[str] = None):
        self.execution_id = execution_id
        super().__init__("Workflow execution was cancelled")
