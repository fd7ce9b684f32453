"""JavaScript-compatible value coercion for rule evaluation.

Rules are authored against loosely typed metadata, so comparisons follow
JavaScript semantics: ``String()``, ``Number()``, ``==`` and truthiness.
A field missing from the context is ``UNDEFINED``, which is distinct from
an explicit ``None`` (``null``).
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from decimal import Decimal
from typing import Any


class _Undefined:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED: Any = _Undefined()

_MAX_SAFE_INTEGER = 2**53

_DECIMAL_PATTERN = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)
_RADIX_PATTERNS = (
    (re.compile(r"0[xX][0-9a-fA-F]+", re.ASCII), 16),
    (re.compile(r"0[oO][0-7]+", re.ASCII), 8),
    (re.compile(r"0[bB][01]+", re.ASCII), 2),
)
# JS String.prototype.trim also strips these.
_JS_WHITESPACE = " \t\n\r\v\f\xa0\u1680\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a\u2028\u2029\u202f\u205f\u3000\ufeff"


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_nullish(value: Any) -> bool:
    return value is None or value is UNDEFINED


def _format_number(value: int | float) -> str:
    """Render a number like ``Number.prototype.toString``.

    Digits come from ``repr``, which is the shortest round-tripping form;
    only the placement of the decimal point and exponent follows JS.
    """
    if isinstance(value, int):
        if abs(value) < _MAX_SAFE_INTEGER:
            return str(value)
        try:
            value = float(value)
        except OverflowError:
            return "Infinity" if value > 0 else "-Infinity"
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).as_tuple()
    digits = "".join(str(digit) for digit in digit_tuple)
    point = exponent + len(digits)
    digits = digits.rstrip("0")
    count = len(digits)

    if count <= point <= 21:
        text = digits + "0" * (point - count)
    elif 0 < point <= 21:
        text = f"{digits[:point]}.{digits[point:]}"
    elif -6 < point <= 0:
        text = "0." + "0" * -point + digits
    else:
        mantissa = digits if count == 1 else f"{digits[0]}.{digits[1:]}"
        power = point - 1
        text = f"{mantissa}e{'+' if power >= 0 else '-'}{abs(power)}"
    return sign + text


def to_js_string(value: Any) -> str:
    """Coerce ``value`` the way JavaScript's ``String()`` does."""
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        return _format_number(value)
    if isinstance(value, list | tuple):
        return ",".join("" if _is_nullish(item) else to_js_string(item) for item in value)
    if isinstance(value, Mapping):
        return "[object Object]"
    return str(value)


def _parse_js_number(text: str) -> float:
    stripped = text.strip(_JS_WHITESPACE)
    if not stripped:
        return 0.0
    if _DECIMAL_PATTERN.fullmatch(stripped):
        return float(stripped)
    if stripped in {"Infinity", "+Infinity"}:
        return math.inf
    if stripped == "-Infinity":
        return -math.inf
    for pattern, base in _RADIX_PATTERNS:
        if pattern.fullmatch(stripped):
            return float(int(stripped[2:], base))
    return math.nan


def to_js_number(value: Any) -> float:
    """Coerce ``value`` the way JavaScript's ``Number()`` does (NaN on failure)."""
    if value is UNDEFINED:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if _is_number(value):
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    if isinstance(value, str):
        return _parse_js_number(value)
    if isinstance(value, list | tuple):
        return _parse_js_number(to_js_string(value))
    return math.nan


def is_js_falsy(value: Any) -> bool:
    if _is_nullish(value) or value is False:
        return True
    if isinstance(value, str):
        return value == ""
    if _is_number(value):
        return value == 0 or (isinstance(value, float) and math.isnan(value))
    return False


def loose_equals(left: Any, right: Any) -> bool:
    """JavaScript abstract equality (``==``)."""
    if _is_nullish(left) or _is_nullish(right):
        return _is_nullish(left) and _is_nullish(right)
    if isinstance(left, bool):
        return loose_equals(to_js_number(left), right)
    if isinstance(right, bool):
        return loose_equals(left, to_js_number(right))
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if _is_number(left) and isinstance(right, str):
        return left == to_js_number(right)
    if isinstance(left, str) and _is_number(right):
        return to_js_number(left) == right
    left_object = isinstance(left, list | tuple | Mapping)
    right_object = isinstance(right, list | tuple | Mapping)
    if left_object and right_object:
        return left is right
    if left_object:
        return loose_equals(to_js_string(left), right)
    if right_object:
        return loose_equals(left, to_js_string(right))
    return left == right


def resolve_field(context: Mapping[str, Any] | None, path: str) -> Any:
    """Look up ``path`` in the context.

    An exact key wins; otherwise the dotted path is walked through nested
    mappings. Returns ``UNDEFINED`` when nothing is found.
    """
    if context is None:
        return UNDEFINED
    if path in context:
        return context[path]
    current: Any = context
    for key in path.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return UNDEFINED
        current = current[key]
    return current
