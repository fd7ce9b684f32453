"""Field discovery for rule authoring.

Walks a sample metadata object and describes every field a condition could
target. Has no role in evaluation.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from .coercion import to_js_string

MAX_NESTING = 3

_DATETIME_PREFIX = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}", re.ASCII)
_ALL_DIGITS = re.compile(r"\d+", re.ASCII)
_CAPITAL = re.compile(r"([A-Z])")


@dataclass(slots=True, frozen=True)
class FieldDescriptor:
    path: str
    display_name: str
    type: str
    example: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def field_type(value: Any) -> str:
    if value is None:
        return "unknown"
    if isinstance(value, list | tuple):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "integer" if value.is_integer() else "number"
    if isinstance(value, str):
        if _DATETIME_PREFIX.match(value):
            return "datetime"
        if _ALL_DIGITS.fullmatch(value):
            return "numeric-string"
        return "string"
    return "unknown"


def display_name(path: str) -> str:
    """``caller.agentDepartment`` -> ``Agent Department (caller)``."""
    parts = path.split(".")
    readable = _CAPITAL.sub(r" \1", parts[-1])
    readable = readable[:1].upper() + readable[1:]
    if len(parts) > 1:
        return f"{readable} ({parts[-2]})"
    return readable


def field_example(value: Any) -> str:
    if isinstance(value, list | tuple):
        if not value:
            return "[]"
        more = ", ..." if len(value) > 1 else ""
        return f"[{to_js_string(value[0])}{more}]"
    if isinstance(value, Mapping):
        return "{...}"
    return to_js_string(value)


def _walk(sample: Mapping[str, Any], prefix: str) -> list[FieldDescriptor]:
    found: list[FieldDescriptor] = []
    for key, value in sample.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        kind = field_type(value)
        found.append(FieldDescriptor(path=path, display_name=display_name(path), type=kind, example=field_example(value)))
        # nesting is counted in path segments, so dotted keys use up depth
        if kind == "object" and len(prefix.split(".")) < MAX_NESTING:
            found.extend(_walk(value, path))
    return found


def _sort_key(descriptor: FieldDescriptor) -> tuple[str, str]:
    return descriptor.display_name.casefold(), descriptor.display_name


def discover_fields(sample: Mapping[str, Any]) -> list[FieldDescriptor]:
    """Describe every field of ``sample``, nested objects included, sorted by display name."""
    if not isinstance(sample, Mapping):
        return []
    return sorted(_walk(sample, ""), key=_sort_key)


def discover_fields_from_json(text: str) -> list[FieldDescriptor]:
    """Parse sample metadata text and discover its fields.

    Raises ``json.JSONDecodeError`` for malformed text; non-object samples
    yield no fields.
    """
    return discover_fields(json.loads(text))
