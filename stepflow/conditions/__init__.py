"""
Stepflow Conditions

Condition evaluation for step gating:
- Comparison operators
- Environment probes (file_exists, app_running)
"""

from stepflow.conditions.evaluator import ConditionEvaluator
from stepflow.conditions.operators import OperatorRegistry, compare
from stepflow.conditions.probes import (
    CallableProbes,
    EnvironmentProbes,
    LocalEnvironmentProbes,
)

__all__ = [
    "ConditionEvaluator",
    "OperatorRegistry",
    "compare",
    "CallableProbes",
    "EnvironmentProbes",
    "LocalEnvironmentProbes",
]
