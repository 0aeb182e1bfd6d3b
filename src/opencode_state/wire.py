"""Field readers shared by the record decoders.

Every reader raises ``StructuralDecodeError`` when a present field has the
wrong JSON type. Optional readers return ``None`` for absent or null fields.
"""

from __future__ import annotations

import json
from typing import Any

from opencode_state.errors import StructuralDecodeError


def load_object(data: bytes | str, what: str) -> dict[str, Any]:
    try:
        obj = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as ex:
        raise StructuralDecodeError(f"invalid JSON: {ex}", path=what) from ex
    if not isinstance(obj, dict):
        raise StructuralDecodeError(f"expected object, got {type(obj).__name__}", path=what)
    return obj


def require_object(obj: Any, what: str) -> dict[str, Any]:
    if not isinstance(obj, dict):
        raise StructuralDecodeError(f"expected object, got {type(obj).__name__}", path=what)
    return obj


def require_str(obj: dict[str, Any], key: str, what: str) -> str:
    value = obj.get(key)
    if value is None:
        raise StructuralDecodeError(f"missing required field {key!r}", path=what)
    if not isinstance(value, str):
        raise StructuralDecodeError(f"field {key!r} must be a string", path=what)
    return value


def opt_str(obj: dict[str, Any], key: str, what: str) -> str | None:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise StructuralDecodeError(f"field {key!r} must be a string", path=what)
    return value


def opt_bool(obj: dict[str, Any], key: str, what: str) -> bool | None:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise StructuralDecodeError(f"field {key!r} must be a boolean", path=what)
    return value


def opt_int(obj: dict[str, Any], key: str, what: str) -> int | None:
    value = obj.get(key)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise StructuralDecodeError(f"field {key!r} must be an integer", path=what)
    return value


def require_int(obj: dict[str, Any], key: str, what: str) -> int:
    value = opt_int(obj, key, what)
    if value is None:
        raise StructuralDecodeError(f"missing required field {key!r}", path=what)
    return value


def opt_float(obj: dict[str, Any], key: str, what: str) -> float | None:
    value = obj.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise StructuralDecodeError(f"field {key!r} must be a number", path=what)
    return float(value)


def opt_object(obj: dict[str, Any], key: str, what: str) -> dict[str, Any] | None:
    value = obj.get(key)
    if value is None:
        return None
    return require_object(value, f"{what}.{key}")


def opt_list(obj: dict[str, Any], key: str, what: str) -> list[Any] | None:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise StructuralDecodeError(f"field {key!r} must be a list", path=what)
    return value


def compact(obj: dict[str, Any]) -> dict[str, Any]:
    """Drop ``None`` entries so absent optionals stay absent on the wire."""
    return {k: v for k, v in obj.items() if v is not None}
