"""
Typed values for SLAQ expressions.

A :class:`Value` is a closed tagged union: every operator and function
dispatches on :class:`ValueType` and must handle each variant explicitly.
This module also owns the coercion and ordering rules shared by the
comparison operators, MIN/MAX aggregation and ORDER BY.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Tuple

from .errors import EvaluationError

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?$")


class ValueType(Enum):
    """Variants of the :class:`Value` union."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    LIST = "list"


@dataclass(frozen=True)
class Value:
    """An immutable, typed query value.

    Attributes:
        type: The variant tag
        data: The payload (str, int, float, bool, datetime or tuple of Value)
    """

    type: ValueType
    data: Any

    def __post_init__(self) -> None:
        if self.type is ValueType.LIST:
            items = tuple(self.data)
            for item in items:
                if item.type is ValueType.LIST:
                    raise ValueError("list values cannot be nested")
            object.__setattr__(self, "data", items)

    @classmethod
    def of_string(cls, data: str) -> "Value":
        return cls(ValueType.STRING, data)

    @classmethod
    def of_int(cls, data: int) -> "Value":
        return cls(ValueType.INTEGER, int(data))

    @classmethod
    def of_float(cls, data: float) -> "Value":
        return cls(ValueType.FLOAT, float(data))

    @classmethod
    def of_bool(cls, data: bool) -> "Value":
        return cls(ValueType.BOOLEAN, bool(data))

    @classmethod
    def of_timestamp(cls, data: datetime) -> "Value":
        return cls(ValueType.TIMESTAMP, data)

    @classmethod
    def of_list(cls, items: Iterable["Value"]) -> "Value":
        return cls(ValueType.LIST, tuple(items))

    @classmethod
    def from_python(cls, obj: Any) -> "Value":
        """Wrap a plain Python object read off a log record."""
        if isinstance(obj, Value):
            return obj
        if isinstance(obj, bool):
            return cls.of_bool(obj)
        if isinstance(obj, int):
            return cls.of_int(obj)
        if isinstance(obj, float):
            return cls.of_float(obj)
        if isinstance(obj, datetime):
            return cls.of_timestamp(obj)
        if isinstance(obj, (list, tuple)):
            return cls.of_list(cls.from_python(item) for item in obj)
        if obj is None:
            return cls.of_string("")
        return cls.of_string(str(obj))

    @property
    def is_numeric(self) -> bool:
        return self.type in (ValueType.INTEGER, ValueType.FLOAT)

    def render(self) -> str:
        """Render the value as a SLAQ literal that lexes back to an equal value."""
        if self.type is ValueType.STRING:
            quote = '"' if "'" in self.data else "'"
            return f"{quote}{self.data}{quote}"
        if self.type is ValueType.INTEGER:
            text = str(self.data)
            return f"'{text}'" if self.data < 0 else text
        if self.type is ValueType.FLOAT:
            # Bare numerals lex without sign or exponent; anything else is quoted
            text = repr(self.data)
            return f"'{text}'" if text.startswith("-") or "e" in text else text
        if self.type is ValueType.BOOLEAN:
            return "TRUE" if self.data else "FALSE"
        if self.type is ValueType.TIMESTAMP:
            return f"'{self.data.strftime(TIMESTAMP_FORMAT)}'"
        return "(" + ", ".join(item.render() for item in self.data) + ")"

    def display(self) -> str:
        """Render the value for table and CSV output."""
        if self.type is ValueType.STRING:
            return self.data
        if self.type is ValueType.INTEGER:
            return str(self.data)
        if self.type is ValueType.FLOAT:
            return f"{self.data:.2f}"
        if self.type is ValueType.BOOLEAN:
            return "true" if self.data else "false"
        if self.type is ValueType.TIMESTAMP:
            return self.data.strftime(TIMESTAMP_FORMAT)
        return "(" + ", ".join(item.display() for item in self.data) + ")"

    def to_json(self) -> Any:
        """Convert to a JSON-serializable Python object."""
        if self.type is ValueType.TIMESTAMP:
            return self.data.isoformat()
        if self.type is ValueType.LIST:
            return [item.to_json() for item in self.data]
        return self.data

    def __str__(self) -> str:
        return self.render()


def parse_number(text: str) -> Value:
    """Parse an integer or float literal.

    Raises:
        ValueError: If the text is not a number
    """
    if _INT_RE.match(text):
        return Value.of_int(int(text))
    if _FLOAT_RE.match(text):
        number = float(text)
        if math.isinf(number):
            raise ValueError(f"number out of range: {text!r}")
        return Value.of_float(number)
    raise ValueError(f"not a number: {text!r}")


def _string_to_number(value: Value) -> Value:
    try:
        return parse_number(value.data.strip())
    except ValueError:
        return value


def _as_aware(stamp: datetime) -> datetime:
    # Literal timestamps carry no zone; treat them as UTC.
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=timezone.utc)
    return stamp


def coerce_pair(left: Value, right: Value) -> Tuple[Value, Value]:
    """Bring two values to a common type where the coercion rules allow.

    Strings facing a number are parsed as integer, then float; an integer
    facing a float is widened. Anything else is returned unchanged.
    """
    if left.type is right.type:
        return left, right

    if left.type is ValueType.STRING and right.is_numeric:
        left = _string_to_number(left)
    if right.type is ValueType.STRING and left.is_numeric:
        right = _string_to_number(right)

    if left.type is ValueType.INTEGER and right.type is ValueType.FLOAT:
        left = Value.of_float(left.data)
    if right.type is ValueType.INTEGER and left.type is ValueType.FLOAT:
        right = Value.of_float(right.data)

    return left, right


def compare_values(left: Value, right: Value) -> int:
    """Compare two values, returning -1, 0 or 1.

    Raises:
        EvaluationError: If the values cannot be brought to a comparable type
    """
    left, right = coerce_pair(left, right)

    if left.type is not right.type:
        raise EvaluationError(
            f"cannot compare {left.type.value} with {right.type.value}"
        )

    if left.type is ValueType.LIST:
        raise EvaluationError("cannot compare list values")

    a, b = left.data, right.data
    if left.type is ValueType.TIMESTAMP:
        a, b = _as_aware(a), _as_aware(b)

    if a == b:
        return 0
    return -1 if a < b else 1


def to_bool(value: Value) -> bool:
    """Coerce a value to a boolean for AND/OR/NOT.

    Raises:
        EvaluationError: For timestamps and lists
    """
    if value.type is ValueType.BOOLEAN:
        return value.data
    if value.type in (ValueType.INTEGER, ValueType.FLOAT):
        return value.data != 0
    if value.type is ValueType.STRING:
        return value.data != ""
    raise EvaluationError(f"cannot convert {value.type.value} to boolean")
