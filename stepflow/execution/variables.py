"""
Stepflow Variable Store

Per-execution variables with ${name} interpolation.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, Iterator, List, Mapping, Optional

import structlog

from stepflow.types import Value, coerce_value, stringify

logger = structlog.get_logger(__name__)


class VariableStore:
    """
    Variables scoped to one execution.

    Features:
    - Values restricted to str/int/float/bool/list/map
    - ${name} interpolation that never raises
    - Dotted access into nested maps and lists (${user.name}, ${items.0})
    """

    # Placeholder pattern for ${ variable }
    PLACEHOLDER_PATTERN = re.compile(r"\$\{\s*([^}]+?)\s*\}")

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Value] = {}
        if initial:
            self.merge(initial)

    # === Data Access ===

    def get(self, name: str, default: Any = None) -> Any:
        """Get a variable by exact name, falling back to a dotted path."""
        if name in self._data:
            return self._data[name]
        if "." in name:
            return self._get_nested(self._data, name.split("."), default)
        return default

    def set(self, name: str, value: Any) -> None:
        """Set a variable. Values outside the lattice are coerced."""
        self._data[name] = coerce_value(value)
        logger.debug("variable_set", name=name)

    def delete(self, name: str) -> None:
        """Remove a variable if present."""
        self._data.pop(name, None)

    def has(self, name: str) -> bool:
        """Check if a variable resolves."""
        return self.get(name, _MISSING) is not _MISSING

    def merge(self, values: Mapping[str, Any]) -> None:
        """Set several variables at once."""
        for name, value in values.items():
            self.set(name, value)

    def snapshot(self) -> Dict[str, Value]:
        """Deep copy of all variables."""
        return copy.deepcopy(self._data)

    def names(self) -> List[str]:
        return list(self._data.keys())

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    # === Interpolation ===

    def interpolate(self, template: str) -> str:
        """
        Substitute every ${name} with the stringified value.

        Unresolved placeholders are left verbatim.
        """
        if not isinstance(template, str) or "${" not in template:
            return template

        def replace(match: re.Match) -> str:
            value = self.get(match.group(1), _MISSING)
            if value is _MISSING:
                return match.group(0)
            return stringify(value)

        return self.PLACEHOLDER_PATTERN.sub(replace, template)

    def resolve(self, value: Any) -> Any:
        """
        Interpolate a parameter structure.

        A string consisting of exactly one resolvable placeholder yields the
        typed value rather than its string form.
        """
        if isinstance(value, str):
            match = self.PLACEHOLDER_PATTERN.fullmatch(value)
            if match:
                resolved = self.get(match.group(1), _MISSING)
                if resolved is not _MISSING:
                    return copy.deepcopy(resolved)
            return self.interpolate(value)

        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}

        if isinstance(value, list):
            return [self.resolve(item) for item in value]

        return value

    # === Nested Access ===

    def _get_nested(self, data: Any, parts: List[str], default: Any) -> Any:
        if not parts:
            return data

        if isinstance(data, dict):
            if parts[0] not in data:
                return default
            return self._get_nested(data[parts[0]], parts[1:], default)

        if isinstance(data, list):
            try:
                index = int(parts[0])
            except ValueError:
                return default
            if 0 <= index < len(data):
                return self._get_nested(data[index], parts[1:], default)

        return default

    def __repr__(self) -> str:
        return f"VariableStore(names={self.names()})"


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


_MISSING: Any = _Missing()
