"""Builder for the structured properties attached to events.

Values form a JSON-like tree of strings, numbers, booleans, lists and
objects. None is never stored: inserting a key with a None value leaves the
key out entirely.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple, TypeVar

from zksync_telemetry.errors import BuildError

V = TypeVar("V")


def to_structured_value(value: Any) -> Any:
    """Convert a Python value into a structured (JSON-compatible) value.

    Args:
        value: A str, int, float, bool, list/tuple, mapping or TelemetryProps

    Returns:
        The converted value

    Raises:
        BuildError: If the value (or any nested value) has an unsupported type,
            or a list or mapping contains itself
    """
    return _convert(value, set())


def _convert(value: Any, ancestors: Set[int]) -> Any:
    if isinstance(value, TelemetryProps):
        return value.to_inner()
    # bool is a subclass of int, so it has to be checked first
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise BuildError(f"Non-finite number is not a valid property value: {value}")
        return value
    if isinstance(value, (list, tuple, Mapping)):
        if id(value) in ancestors:
            raise BuildError(f"Circular reference in {type(value).__name__} property value")
        ancestors.add(id(value))
        try:
            return _convert_container(value, ancestors)
        finally:
            ancestors.discard(id(value))
    raise BuildError(f"Unsupported property value type: {type(value).__name__}")


def _convert_container(value: Any, ancestors: Set[int]) -> Any:
    if isinstance(value, Mapping):
        obj: Dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise BuildError(f"Object keys must be strings, got {type(key).__name__}")
            if item is not None:
                obj[key] = _convert(item, ancestors)
        return obj

    items = []
    for item in value:
        if item is None:
            raise BuildError("None is not a valid array element")
        items.append(_convert(item, ancestors))
    return items


class TelemetryProps:
    """Mutable builder for event properties.

    Example:
        props = TelemetryProps().insert("command", "deploy").insert("retries", 3)
        props.insert("network", None)  # no-op, "network" stays absent
    """

    def __init__(self) -> None:
        self._inner: Any = {}

    @classmethod
    def from_value(cls, value: Any) -> TelemetryProps:
        """Create a builder whose root is the converted value."""
        props = cls()
        props._inner = to_structured_value(value)
        return props

    @classmethod
    def from_str(cls, value: str) -> TelemetryProps:
        if not isinstance(value, str):
            raise BuildError(f"Expected str, got {type(value).__name__}")
        return cls.from_value(value)

    @classmethod
    def from_number(cls, value: float) -> TelemetryProps:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise BuildError(f"Expected a number, got {type(value).__name__}")
        return cls.from_value(value)

    @classmethod
    def from_bool(cls, value: bool) -> TelemetryProps:
        if not isinstance(value, bool):
            raise BuildError(f"Expected bool, got {type(value).__name__}")
        return cls.from_value(value)

    @classmethod
    def from_array(cls, values: Iterable[Any]) -> TelemetryProps:
        """Create a builder holding a list; each element is converted in order."""
        return cls.from_value(list(values))

    @classmethod
    def from_mapping(cls, values: Mapping) -> TelemetryProps:
        """Create a builder from a mapping. Keys with None values are dropped."""
        return cls.from_value(values)

    def insert(self, key: str, value: Optional[Any]) -> TelemetryProps:
        """Set a key on the root object.

        A None value is a no-op. If the root currently holds a scalar or a
        list it is replaced by a new object containing only this key.

        Returns:
            self, for chaining
        """
        if value is None:
            return self

        converted = to_structured_value(value)
        if not isinstance(self._inner, dict):
            self._inner = {}
        self._inner[str(key)] = converted
        return self

    def insert_with(
        self, key: str, value: V, transform: Callable[[V], Optional[Any]]
    ) -> TelemetryProps:
        """Insert transform(value), so derived or conditional fields need no branching."""
        return self.insert(key, transform(value))

    def to_inner(self) -> Any:
        """Return a copy of the current tree."""
        return copy.deepcopy(self._inner)

    def to_map(self) -> Optional[Dict[str, Any]]:
        """Return the tree as a dict, or None if the root is not an object."""
        if isinstance(self._inner, dict):
            return copy.deepcopy(self._inner)
        return None

    def finalize_as_object(self) -> Dict[str, Any]:
        """Return the tree as a dict.

        Raises:
            BuildError: If the root is not an object
        """
        result = self.to_map()
        if result is None:
            raise BuildError(
                f"Properties must be an object, got {type(self._inner).__name__}"
            )
        return result

    def take(self) -> TelemetryProps:
        """Move the current tree into a new builder and reset this one."""
        taken = TelemetryProps()
        taken._inner = self._inner
        self._inner = {}
        return taken

    def drain(self) -> Tuple[Any, TelemetryProps]:
        """Return the current tree together with this builder, now reset."""
        inner = self._inner
        self._inner = {}
        return inner, self

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TelemetryProps):
            return self._inner == other._inner
        return NotImplemented

    def __repr__(self) -> str:
        return f"TelemetryProps({self._inner!r})"
