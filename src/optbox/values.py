"""
Value model for the optbox sandbox.

Every runtime value is a ``Value``: a tagged union over a small set of kinds.
"No value" is the ``ABSENT`` variant, never Python's ``None`` leaking through
the evaluator.

Kinds:
    - INTEGER  (signed 64-bit range, enforced by the evaluator)
    - FLOAT
    - TEXT
    - BOOLEAN
    - ABSENT
    - TUPLE    (ordered, immutable sequence of Values)
    - MAPPING  (key -> value pairs; keys are integers, text or booleans, all of one kind)

ARCHITECTURAL RULE:
    Values are immutable (frozen=True) and compare by kind AND payload.
    ``Value.integer(1)`` is not equal to ``Value.boolean(True)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Tuple, Union


INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class ValueKind(Enum):
    """The variants of the Value union."""

    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"
    BOOLEAN = "boolean"
    ABSENT = "absent"
    TUPLE = "tuple"
    MAPPING = "mapping"


# Kinds a mapping key may have
KEY_KINDS = frozenset({ValueKind.INTEGER, ValueKind.TEXT, ValueKind.BOOLEAN})

Payload = Union[int, float, str, bool, None, Tuple["Value", ...], Tuple[Tuple["Value", "Value"], ...]]

_PAYLOAD_TYPES = {
    ValueKind.INTEGER: int,
    ValueKind.FLOAT: float,
    ValueKind.TEXT: str,
    ValueKind.BOOLEAN: bool,
    ValueKind.TUPLE: tuple,
    ValueKind.MAPPING: tuple,
}


@dataclass(frozen=True)
class Value:
    """
    A single sandbox value.

    Use the constructors (``Value.integer``, ``Value.text``, ``Value.tuple_of`` ...) or
    ``Value.of`` rather than building the dataclass by hand; they coerce the
    payload into the exact Python type the kind expects.

    Properties:
        kind: ValueKind tag
        payload: Python payload (None for ABSENT, tuple of Values for TUPLE,
            tuple of (key, value) pairs for MAPPING)
    """

    kind: ValueKind
    payload: Payload = None

    def __post_init__(self):
        if self.kind is ValueKind.ABSENT:
            if self.payload is not None:
                raise TypeError("ABSENT values carry no payload")
            return

        expected = _PAYLOAD_TYPES[self.kind]
        # bool is a subclass of int; keep the two kinds apart
        if self.kind is not ValueKind.BOOLEAN and isinstance(self.payload, bool):
            raise TypeError(f"{self.kind.value} payload cannot be a bool")
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} payload must be {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )
        if self.kind is ValueKind.TUPLE:
            for item in self.payload:
                if not isinstance(item, Value):
                    raise TypeError(f"tuple items must be Values, got {type(item).__name__}")
        if self.kind is ValueKind.MAPPING:
            _check_entries(self.payload)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def integer(cls, n: int) -> "Value":
        return cls(ValueKind.INTEGER, int(n))

    @classmethod
    def floating(cls, x: float) -> "Value":
        return cls(ValueKind.FLOAT, float(x))

    @classmethod
    def text(cls, s: str) -> "Value":
        return cls(ValueKind.TEXT, str(s))

    @classmethod
    def boolean(cls, b: bool) -> "Value":
        return cls(ValueKind.BOOLEAN, bool(b))

    @classmethod
    def tuple_of(cls, items: Iterable["Value"]) -> "Value":
        return cls(ValueKind.TUPLE, tuple(items))

    @classmethod
    def mapping_of(cls, entries: Iterable[Tuple["Value", "Value"]]) -> "Value":
        return cls(ValueKind.MAPPING, tuple((key, value) for key, value in entries))

    @classmethod
    def of(cls, obj: Any) -> "Value":
        """
        Wrap a native Python object.

        None -> ABSENT, bool -> BOOLEAN, int -> INTEGER, float -> FLOAT,
        str -> TEXT, tuple/list -> TUPLE, dict -> MAPPING (recursively).
        Values pass through.
        """
        if isinstance(obj, Value):
            return obj
        if obj is None:
            return ABSENT
        if isinstance(obj, bool):
            return cls.boolean(obj)
        if isinstance(obj, int):
            return cls.integer(obj)
        if isinstance(obj, float):
            return cls.floating(obj)
        if isinstance(obj, str):
            return cls.text(obj)
        if isinstance(obj, (tuple, list)):
            return cls.tuple_of(cls.of(item) for item in obj)
        if isinstance(obj, dict):
            return cls.mapping_of((cls.of(key), cls.of(value)) for key, value in obj.items())
        raise TypeError(f"Cannot convert {type(obj).__name__} to a sandbox Value")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_absent(self) -> bool:
        return self.kind is ValueKind.ABSENT

    @property
    def is_numeric(self) -> bool:
        return self.kind in (ValueKind.INTEGER, ValueKind.FLOAT)

    def to_python(self) -> Any:
        """Inverse of ``Value.of``: tuples come back as Python tuples, mappings as dicts."""
        if self.kind is ValueKind.TUPLE:
            return tuple(item.to_python() for item in self.payload)
        if self.kind is ValueKind.MAPPING:
            return {key.payload: value.to_python() for key, value in self.payload}
        return self.payload

    def __str__(self) -> str:
        return describe(self)


ABSENT = Value(ValueKind.ABSENT)
TRUE = Value.boolean(True)
FALSE = Value.boolean(False)


def _check_entries(entries: tuple) -> None:
    seen = set()
    for entry in entries:
        if not (isinstance(entry, tuple) and len(entry) == 2 and all(isinstance(v, Value) for v in entry)):
            raise TypeError("mapping entries must be (Value, Value) pairs")
        key = entry[0]
        if key.kind not in KEY_KINDS:
            raise TypeError(f"mapping keys must be integer, text or boolean, got {key.kind.value}")
        if key.kind is not entries[0][0].kind:
            raise TypeError("mapping keys must all be of one kind")
        if key in seen:
            raise TypeError(f"duplicate mapping key {describe(key)}")
        seen.add(key)


def fits_int64(n: int) -> bool:
    return INT64_MIN <= n <= INT64_MAX


def quote_text(s: str) -> str:
    """Double-quote a string using the escapes the parser understands."""
    escaped = (
        s.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def describe(value: Value) -> str:
    """
    Render a value the way the sandbox displays results.

    Examples:
        42, 0.5, "apple", true, nil, (1, "B"), [1: "one"], [:]
    """
    kind = value.kind
    if kind is ValueKind.ABSENT:
        return "nil"
    if kind is ValueKind.BOOLEAN:
        return "true" if value.payload else "false"
    if kind is ValueKind.TEXT:
        return quote_text(value.payload)
    if kind is ValueKind.FLOAT:
        return repr(value.payload)
    if kind is ValueKind.TUPLE:
        if len(value.payload) == 1:
            return f"({describe(value.payload[0])},)"
        return "(" + ", ".join(describe(item) for item in value.payload) + ")"
    if kind is ValueKind.MAPPING:
        if not value.payload:
            return "[:]"
        return "[" + ", ".join(f"{describe(k)}: {describe(v)}" for k, v in value.payload) + "]"
    return str(value.payload)
