"""
Stepflow Execution

Execution infrastructure:
- Variable store and interpolation
- Execution context
- Run signals and the retry/timeout supervisor
- Execution history
"""

from stepflow.execution.variables import VariableStore
from stepflow.execution.context import ExecutionContext
from stepflow.execution.signals import RunSignals
from stepflow.execution.supervisor import RetrySupervisor
from stepflow.execution.history import ExecutionHistoryStore

__all__ = [
    "VariableStore",
    "ExecutionContext",
    "RunSignals",
    "RetrySupervisor",
    "ExecutionHistoryStore",
]
