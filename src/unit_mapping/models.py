from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field as dataclass_field, replace
from enum import Enum
from typing import Any

from .coercion import to_js_string

DEFAULT_VERSION = "1.0"
DEFAULT_UNIT_ID = "nra-default-unit"


class RuleValidationError(ValueError):
    """Raised when authored rule or condition input has the wrong shape."""


class ConditionOperator(str, Enum):
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    IN = "IN"
    NOT_IN = "NOT_IN"
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    IS_NULL_OR_EMPTY = "IS_NULL_OR_EMPTY"
    IS_NOT_NULL_OR_EMPTY = "IS_NOT_NULL_OR_EMPTY"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    REGEX_MATCH = "REGEX_MATCH"


class Combinator(str, Enum):
    AND = "AND"
    OR = "OR"


SET_OPERATORS = frozenset({ConditionOperator.IN.value, ConditionOperator.NOT_IN.value})
VALUELESS_OPERATORS = frozenset(
    {ConditionOperator.IS_NULL_OR_EMPTY.value, ConditionOperator.IS_NOT_NULL_OR_EMPTY.value}
)


def split_values(raw_value: str | None) -> tuple[str, ...]:
    """Split comma-separated set operator input, keeping empty members."""
    if not raw_value:
        return ()
    return tuple(part.strip() for part in raw_value.split(","))


def _scalar_text(raw_value: Any, what: str) -> str:
    if isinstance(raw_value, str):
        return raw_value
    if raw_value is None or isinstance(raw_value, bool | int | float):
        return to_js_string(raw_value)
    raise RuleValidationError(f"{what} must be a scalar, got {type(raw_value).__name__}")


def _operator_text(operator: Any) -> str:
    if isinstance(operator, Enum):
        return str(operator.value)
    if operator is None:
        return ""
    if not isinstance(operator, str):
        raise RuleValidationError("condition operator must be a string")
    return operator.strip()


@dataclass(slots=True, frozen=True)
class Condition:
    """Single field/operator/value predicate.

    The value shape follows the operator: set operators carry ``values``,
    valueless operators carry neither, everything else carries ``value``.
    Use :meth:`create` to build one from raw authoring input; it also keeps
    the text as typed in ``source`` so switching operators never rewrites it.
    """

    field: str = ""
    operator: str = ConditionOperator.EQUALS.value
    value: str | None = ""
    values: tuple[str, ...] = ()
    source: str | None = dataclass_field(default=None, compare=False, repr=False)

    @classmethod
    def create(cls, field: Any = "", operator: Any = ConditionOperator.EQUALS, raw_value: Any = "") -> Condition:
        if field is None:
            field = ""
        if not isinstance(field, str):
            raise RuleValidationError("condition field must be a string")
        operator_name = _operator_text(operator)

        if operator_name in SET_OPERATORS:
            if isinstance(raw_value, list | tuple):
                values = tuple(_scalar_text(item, "set member").strip() for item in raw_value)
                source = ", ".join(values)
            else:
                source = "" if raw_value is None else _scalar_text(raw_value, "condition value")
                values = split_values(source)
            return cls(field=field, operator=operator_name, value=None, values=values, source=source)

        if operator_name in VALUELESS_OPERATORS:
            source = raw_value if isinstance(raw_value, str) else ""
            return cls(field=field, operator=operator_name, value=None, source=source)

        if isinstance(raw_value, list | tuple):
            raise RuleValidationError(f"operator {operator_name or '<unset>'} takes a single value, not a list")
        value = None if raw_value is None else _scalar_text(raw_value, "condition value")
        return cls(field=field, operator=operator_name, value=value, source=value or "")

    @property
    def is_valid(self) -> bool:
        return bool(self.field.strip()) and bool(self.operator)

    @property
    def raw_value(self) -> str:
        if self.source is not None:
            return self.source
        if self.operator in SET_OPERATORS:
            return ", ".join(self.values)
        return self.value or ""

    def with_changes(self, **changes: Any) -> Condition:
        """Re-create the condition so an operator change re-tags the value."""
        unknown = set(changes) - {"field", "operator", "value"}
        if unknown:
            raise RuleValidationError(f"unknown condition attribute(s): {', '.join(sorted(unknown))}")
        return Condition.create(
            changes.get("field", self.field),
            changes.get("operator", self.operator),
            changes.get("value", self.raw_value),
        )


def _coerce_priority(raw: Any) -> int:
    if isinstance(raw, bool):
        raise RuleValidationError("priority must be an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            pass
    raise RuleValidationError(f"priority must be an integer, got {raw!r}")


def _coerce_combinator(raw: Any) -> str:
    candidate = _operator_text(raw).upper() or Combinator.AND.value
    if candidate not in {item.value for item in Combinator}:
        raise RuleValidationError(f"condition operator must be AND or OR, got {raw!r}")
    return candidate


@dataclass(slots=True, frozen=True)
class Rule:
    id: str
    name: str = ""
    priority: int = 0
    unit_id: str = ""
    conditions: tuple[Condition, ...] = ()
    condition_operator: str = Combinator.AND.value

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise RuleValidationError("rule id must be a non-empty string")
        object.__setattr__(self, "priority", _coerce_priority(self.priority))
        object.__setattr__(self, "condition_operator", _coerce_combinator(self.condition_operator))
        object.__setattr__(self, "unit_id", "" if self.unit_id is None else str(self.unit_id))
        object.__setattr__(self, "name", "" if self.name is None else str(self.name))
        conditions = tuple(self.conditions)
        if not all(isinstance(item, Condition) for item in conditions):
            raise RuleValidationError("rule conditions must be Condition instances")
        object.__setattr__(self, "conditions", conditions)

    @property
    def valid_conditions(self) -> tuple[Condition, ...]:
        return tuple(condition for condition in self.conditions if condition.is_valid)

    @property
    def is_evaluable(self) -> bool:
        return bool(self.unit_id) and bool(self.valid_conditions)

    def with_changes(self, **changes: Any) -> Rule:
        allowed = {"name", "priority", "unit_id", "condition_operator", "conditions"}
        unknown = set(changes) - allowed
        if unknown:
            raise RuleValidationError(f"unknown rule attribute(s): {', '.join(sorted(unknown))}")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "priority": self.priority,
            "unit_id": self.unit_id,
            "condition_operator": self.condition_operator,
            "conditions": [
                {"field": condition.field, "operator": condition.operator, "value": condition.raw_value}
                for condition in self.conditions
            ],
        }


@dataclass(slots=True, frozen=True)
class RuleSet:
    version: str = DEFAULT_VERSION
    default_unit_id: str = DEFAULT_UNIT_ID
    rules: tuple[Rule, ...] = dataclass_field(default_factory=tuple)

    def __post_init__(self) -> None:
        rules = tuple(self.rules)
        seen: set[str] = set()
        for rule in rules:
            if rule.id in seen:
                raise RuleValidationError(f"duplicate rule id: {rule.id}")
            seen.add(rule.id)
        object.__setattr__(self, "rules", rules)

    def with_rules(self, rules: Iterable[Rule]) -> RuleSet:
        return replace(self, rules=tuple(rules))
