from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any

from .coercion import UNDEFINED, is_js_falsy, loose_equals, resolve_field, to_js_number, to_js_string
from .models import Condition, ConditionOperator

logger = logging.getLogger(__name__)

ConditionHandler = Callable[[Any, Condition], bool]


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def _expected(condition: Condition) -> Any:
    return UNDEFINED if condition.value is None else condition.value


def _equals(actual: Any, condition: Condition) -> bool:
    return loose_equals(actual, _expected(condition))


def _not_equals(actual: Any, condition: Condition) -> bool:
    return not loose_equals(actual, _expected(condition))


def _in(actual: Any, condition: Condition) -> bool:
    return to_js_string(actual) in condition.values


def _not_in(actual: Any, condition: Condition) -> bool:
    return to_js_string(actual) not in condition.values


def _contains(actual: Any, condition: Condition) -> bool:
    return to_js_string(_expected(condition)) in to_js_string(actual)


def _not_contains(actual: Any, condition: Condition) -> bool:
    return not _contains(actual, condition)


def _starts_with(actual: Any, condition: Condition) -> bool:
    return to_js_string(actual).startswith(to_js_string(_expected(condition)))


def _ends_with(actual: Any, condition: Condition) -> bool:
    return to_js_string(actual).endswith(to_js_string(_expected(condition)))


def _is_null_or_empty(actual: Any, condition: Condition) -> bool:
    return is_js_falsy(actual)


def _is_not_null_or_empty(actual: Any, condition: Condition) -> bool:
    return not is_js_falsy(actual)


def _compare(actual: Any, condition: Condition, greater: bool) -> bool:
    left = to_js_number(actual)
    right = to_js_number(_expected(condition))
    if math.isnan(left) or math.isnan(right):
        return False
    return left > right if greater else left < right


def _greater_than(actual: Any, condition: Condition) -> bool:
    return _compare(actual, condition, greater=True)


def _less_than(actual: Any, condition: Condition) -> bool:
    return _compare(actual, condition, greater=False)


def _regex_match(actual: Any, condition: Condition) -> bool:
    # new RegExp(undefined) matches everything
    pattern = condition.value or ""
    try:
        compiled = _compile_pattern(pattern)
    except re.error as exc:
        logger.warning(
            "invalid_regex_pattern",
            extra={"field": condition.field, "pattern": pattern, "error": str(exc)},
        )
        return False
    return compiled.search(to_js_string(actual)) is not None


OPERATOR_HANDLERS: dict[str, ConditionHandler] = {
    ConditionOperator.EQUALS.value: _equals,
    ConditionOperator.NOT_EQUALS.value: _not_equals,
    ConditionOperator.IN.value: _in,
    ConditionOperator.NOT_IN.value: _not_in,
    ConditionOperator.CONTAINS.value: _contains,
    ConditionOperator.NOT_CONTAINS.value: _not_contains,
    ConditionOperator.STARTS_WITH.value: _starts_with,
    ConditionOperator.ENDS_WITH.value: _ends_with,
    ConditionOperator.IS_NULL_OR_EMPTY.value: _is_null_or_empty,
    ConditionOperator.IS_NOT_NULL_OR_EMPTY.value: _is_not_null_or_empty,
    ConditionOperator.GREATER_THAN.value: _greater_than,
    ConditionOperator.LESS_THAN.value: _less_than,
    ConditionOperator.REGEX_MATCH.value: _regex_match,
}


def evaluate_condition(condition: Condition, context: Mapping[str, Any]) -> bool:
    """Decide whether a single condition holds against ``context``.

    Never raises for bad operands: unknown operators, unparseable numbers and
    invalid patterns all evaluate to ``False``.
    """
    if not condition.is_valid:
        return False
    handler = OPERATOR_HANDLERS.get(condition.operator)
    if handler is None:
        logger.debug("unknown_condition_operator", extra={"operator": condition.operator})
        return False
    actual = resolve_field(context, condition.field)
    return bool(handler(actual, condition))
