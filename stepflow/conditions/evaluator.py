"""
Stepflow Condition Evaluator

Evaluates step conditions against the variable store and environment probes.
"""

from __future__ import annotations

from typing import Optional

import structlog

from stepflow.conditions.operators import OperatorRegistry
from stepflow.conditions.probes import EnvironmentProbes
from stepflow.errors import ConditionEvaluationDegraded
from stepflow.execution.variables import VariableStore
from stepflow.types import Condition, ConditionType, stringify

logger = structlog.get_logger(__name__)

PROBE_CONDITIONS = (ConditionType.FILE_EXISTS, ConditionType.APP_RUNNING)


class ConditionEvaluator:
    """
    Evaluates conditions.

    Never raises: a condition that cannot be evaluated resolves to False.
    """

    def __init__(self, operators: Optional[OperatorRegistry] = None):
        self._operators = operators or OperatorRegistry()

    def evaluate(
        self,
        condition: Condition,
        store: VariableStore,
        probes: Optional[EnvironmentProbes] = None,
    ) -> bool:
        """
        Evaluate a condition.

        Args:
            condition: Condition to evaluate
            store: Variables of the current execution
            probes: Environment probes for file_exists / app_running

        Returns:
            Boolean result
        """
        try:
            if condition.type in PROBE_CONDITIONS:
                result = self._evaluate_probe(condition, store, probes)
            else:
                left = store.get(condition.variable)
                result = self._operators.evaluate(condition.type, left, condition.value)

        except ConditionEvaluationDegraded as e:
            logger.warning(
                "condition_degraded",
                condition=condition.describe(),
                error=str(e),
            )
            return False

        except Exception as e:
            logger.error(
                "condition_error",
                condition=condition.describe(),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.debug(
            "condition_evaluated",
            condition=condition.describe(),
            result=result,
        )

        return bool(result)

    def _evaluate_probe(
        self,
        condition: Condition,
        store: VariableStore,
        probes: Optional[EnvironmentProbes],
    ) -> bool:
        """Delegate to the host's environment probes."""
        if probes is None:
            raise ConditionEvaluationDegraded(f"No environment probes for {condition.type.value}")

        argument = self._probe_argument(condition, store)
        if not argument:
            raise ConditionEvaluationDegraded(f"Empty argument for {condition.type.value}")

        return probes.probe(condition.type.value, argument)

    @staticmethod
    def _probe_argument(condition: Condition, store: VariableStore) -> str:
        """The condition value (interpolated), else the named variable's value."""
        if isinstance(condition.value, str) and condition.value:
            return store.interpolate(condition.value)
        if condition.value is not None and condition.value != "":
            return stringify(condition.value)
        if condition.variable:
            return stringify(store.get(condition.variable))
        return ""
