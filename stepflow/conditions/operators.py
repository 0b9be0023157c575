"""
Stepflow Condition Operators

Comparison operators for variable conditions.
"""

from __future__ import annotations

from typing import Any, Callable, Dict

from stepflow.errors import ConditionEvaluationDegraded
from stepflow.types import ConditionType, stringify


class OperatorRegistry:
    """
    Registry of comparison operators over (variable value, literal value).

    A missing variable is passed as None.
    """

    def __init__(self):
        self._operators: Dict[ConditionType, Callable[[Any, Any], bool]] = {}
        self._register_builtin_operators()

    def _register_builtin_operators(self) -> None:
        """Register built-in operators."""
        self._operators[ConditionType.EQUALS] = self._equals
        self._operators[ConditionType.NOT_EQUALS] = self._not_equals
        self._operators[ConditionType.CONTAINS] = self._contains
        self._operators[ConditionType.GREATER_THAN] = self._greater_than
        self._operators[ConditionType.LESS_THAN] = self._less_than

    def evaluate(
        self,
        condition_type: ConditionType,
        left: Any,
        right: Any,
    ) -> bool:
        """Evaluate an operator."""
        func = self._operators.get(condition_type)
        if not func:
            raise ConditionEvaluationDegraded(f"Unknown operator: {condition_type}")

        return func(left, right)

    # === Operator Implementations ===

    @staticmethod
    def _equals(left: Any, right: Any) -> bool:
        """String-form equality; a missing variable never equals anything."""
        if left is None:
            return False
        return stringify(left) == stringify(right)

    @staticmethod
    def _not_equals(left: Any, right: Any) -> bool:
        """Negation of equals."""
        return not OperatorRegistry._equals(left, right)

    @staticmethod
    def _contains(left: Any, right: Any) -> bool:
        """Substring, list membership, or map key membership."""
        if left is None:
            return False
        needle = stringify(right)
        if isinstance(left, list):
            return any(stringify(item) == needle for item in left)
        if isinstance(left, dict):
            return needle in left
        return needle in stringify(left)

    @staticmethod
    def _greater_than(left: Any, right: Any) -> bool:
        """Numeric comparison."""
        return to_number(left) > to_number(right)

    @staticmethod
    def _less_than(left: Any, right: Any) -> bool:
        """Numeric comparison."""
        return to_number(left) < to_number(right)


def to_number(value: Any) -> float:
    """Coerce to float or raise ConditionEvaluationDegraded."""
    if isinstance(value, bool) or value is None:
        raise ConditionEvaluationDegraded(f"Not a number: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise ConditionEvaluationDegraded(f"Not a number: {value!r}")


_default_registry = OperatorRegistry()


def compare(left: Any, condition_type: ConditionType, right: Any) -> bool:
    """Compare two values with the default registry."""
    return _default_registry.evaluate(condition_type, left, right)
