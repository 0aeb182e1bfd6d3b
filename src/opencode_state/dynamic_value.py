"""Schema-less JSON values.

The server emits free-form data in a few places (tool input, tool output
metadata, ``server.connected`` properties). Those payloads are kept as a
closed tagged variant so they can be inspected without a fixed schema and
written back out unchanged.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from opencode_state.errors import StructuralDecodeError

# Keys searched, in order, when rendering a map for display.
DISPLAY_KEYS = ("path", "pattern", "command", "query", "description")


class ValueKind(str, Enum):
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    NULL = "null"
    LIST = "list"
    MAP = "map"


Payload = Union[bool, int, float, str, None, tuple["DynamicValue", ...], dict[str, "DynamicValue"]]


@dataclass(frozen=True)
class DynamicValue:
    """Equality is by value; map and list payloads make instances unhashable."""

    kind: ValueKind
    value: Payload = None

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def null(cls) -> DynamicValue:
        return cls(ValueKind.NULL, None)

    @classmethod
    def from_python(cls, obj: Any) -> DynamicValue:
        """Wrap a native value. Anything without a JSON counterpart becomes null."""
        if isinstance(obj, DynamicValue):
            return obj
        # bool before int: bool is an int subclass
        if isinstance(obj, bool):
            return cls(ValueKind.BOOL, obj)
        if isinstance(obj, int):
            return cls(ValueKind.INT, obj)
        if isinstance(obj, float):
            if not math.isfinite(obj):
                return cls.null()
            return cls(ValueKind.FLOAT, obj)
        if isinstance(obj, str):
            return cls(ValueKind.STRING, obj)
        if isinstance(obj, (list, tuple)):
            return cls(ValueKind.LIST, tuple(cls.from_python(item) for item in obj))
        if isinstance(obj, dict) and all(isinstance(k, str) for k in obj):
            return cls(ValueKind.MAP, {k: cls.from_python(v) for k, v in obj.items()})
        return cls.null()

    def to_python(self) -> Any:
        if self.kind == ValueKind.LIST:
            return [item.to_python() for item in self.value]  # type: ignore[union-attr]
        if self.kind == ValueKind.MAP:
            return {k: v.to_python() for k, v in self.value.items()}  # type: ignore[union-attr]
        if self.kind == ValueKind.FLOAT and not math.isfinite(self.value):  # type: ignore[arg-type]
            return None
        return self.value

    def get(self, key: str) -> DynamicValue | None:
        if self.kind != ValueKind.MAP:
            return None
        return self.value.get(key)  # type: ignore[union-attr]

    def as_str(self) -> str | None:
        return self.value if self.kind == ValueKind.STRING else None  # type: ignore[return-value]

    def to_display_string(self) -> str:
        if self.kind == ValueKind.STRING:
            return self.value  # type: ignore[return-value]
        if self.kind == ValueKind.BOOL:
            return "true" if self.value else "false"
        if self.kind == ValueKind.NULL:
            return "null"
        if self.kind == ValueKind.INT:
            return str(self.value)
        if self.kind == ValueKind.FLOAT:
            return repr(self.value)
        if self.kind == ValueKind.MAP:
            for key in DISPLAY_KEYS:
                child = self.value.get(key)  # type: ignore[union-attr]
                if child is not None and child.kind == ValueKind.STRING:
                    return child.value  # type: ignore[return-value]
        return _canonical_json(self.to_python())


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def decode(data: bytes | str) -> DynamicValue:
    try:
        obj = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as ex:
        raise StructuralDecodeError(f"invalid JSON: {ex}") from ex
    return DynamicValue.from_python(obj)


def encode(value: DynamicValue) -> bytes:
    return json.dumps(value.to_python(), ensure_ascii=False, separators=(",", ":"), allow_nan=False).encode("utf-8")


def decode_map(obj: dict[str, Any]) -> dict[str, DynamicValue]:
    return {k: DynamicValue.from_python(v) for k, v in obj.items()}


def encode_map(values: dict[str, DynamicValue]) -> dict[str, Any]:
    return {k: v.to_python() for k, v in values.items()}
