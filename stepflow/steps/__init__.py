"""
Stepflow Steps

Step executor registry and built-in executors.
"""

from stepflow.steps.builtin import (
    ConditionalStepExecutor,
    DelayStepExecutor,
    InputBroker,
    InputRequest,
    NotificationStepExecutor,
    TextProcessingStepExecutor,
    UserInputStepExecutor,
    register_builtin_executors,
)
from stepflow.steps.registry import (
    FunctionStepExecutor,
    StepExecutor,
    StepExecutorRegistry,
    StepOutcome,
)

__all__ = [
    "StepExecutor",
    "StepExecutorRegistry",
    "StepOutcome",
    "FunctionStepExecutor",
    "DelayStepExecutor",
    "TextProcessingStepExecutor",
    "NotificationStepExecutor",
    "ConditionalStepExecutor",
    "UserInputStepExecutor",
    "InputBroker",
    "InputRequest",
    "register_builtin_executors",
]
