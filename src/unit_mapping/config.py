"""Canonical ``unit_mapping_rules`` interchange format.

Building drops anything that could never match (invalid conditions, rules
without a unit id or without valid conditions). Parsing is the inverse, so a
built config loads back into a rule set that matches the same contexts.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .models import (
    DEFAULT_UNIT_ID,
    DEFAULT_VERSION,
    SET_OPERATORS,
    VALUELESS_OPERATORS,
    Combinator,
    Condition,
    Rule,
    RuleSet,
    RuleValidationError,
)

CONFIG_ROOT_KEY = "unit_mapping_rules"

logger = logging.getLogger(__name__)


class ConfigParseError(ValueError):
    """Raised when config text or structure cannot be loaded."""


@dataclass(slots=True, frozen=True)
class ConfigValidation:
    valid: bool
    error: str | None = None


def build_condition(condition: Condition) -> dict[str, Any] | None:
    if not condition.is_valid:
        return None
    built: dict[str, Any] = {"field": condition.field, "operator": condition.operator}
    if condition.operator in VALUELESS_OPERATORS:
        return built
    if condition.operator in SET_OPERATORS:
        built["values"] = list(condition.values)
    else:
        built["value"] = condition.value
    return built


def build_conditions(rule: Rule) -> dict[str, Any] | None:
    clauses = [built for built in (build_condition(condition) for condition in rule.conditions) if built is not None]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"operator": rule.condition_operator, "clauses": clauses}


def build_rule(rule: Rule) -> dict[str, Any] | None:
    if not rule.unit_id:
        return None
    conditions = build_conditions(rule)
    if conditions is None:
        return None
    return {
        "id": rule.id,
        "name": rule.name or rule.id,
        "priority": rule.priority,
        "conditions": conditions,
        "result": {"unit_id": rule.unit_id},
    }


def build_config(
    rules: Iterable[Rule],
    version: str = DEFAULT_VERSION,
    default_unit_id: str = DEFAULT_UNIT_ID,
) -> dict[str, Any]:
    built_rules = [built for built in (build_rule(rule) for rule in rules) if built is not None]
    return {
        CONFIG_ROOT_KEY: {
            "version": version,
            "default_unit_id": default_unit_id,
            "rules": built_rules,
        }
    }


def build_ruleset_config(ruleset: RuleSet) -> dict[str, Any]:
    return build_config(ruleset.rules, version=ruleset.version, default_unit_id=ruleset.default_unit_id)


def dump_config(config: Mapping[str, Any]) -> str:
    return json.dumps(config, indent=2, ensure_ascii=False)


def _decode_error_message(exc: json.JSONDecodeError) -> str:
    return f"line {exc.lineno} column {exc.colno}: {exc.msg}"


def validate_config(text: str) -> ConfigValidation:
    """Check that ``text`` is well-formed JSON; rule contents are not inspected."""
    try:
        json.loads(text)
    except json.JSONDecodeError as exc:
        return ConfigValidation(valid=False, error=_decode_error_message(exc))
    except TypeError as exc:
        return ConfigValidation(valid=False, error=str(exc))
    return ConfigValidation(valid=True)


def _rule_error(label: str, message: str) -> ConfigParseError:
    return ConfigParseError(f"rule {label}: {message}")


def _load_condition(raw: Any, label: str) -> Condition | None:
    if not isinstance(raw, Mapping):
        raise _rule_error(label, "each condition must be an object")
    field = raw.get("field")
    operator = raw.get("operator")
    if not field or not operator:
        return None
    raw_value = raw["values"] if "values" in raw else raw.get("value")
    try:
        return Condition.create(field, operator, raw_value)
    except RuleValidationError as exc:
        raise _rule_error(label, str(exc)) from exc


def _load_conditions(raw: Any, label: str) -> tuple[tuple[Condition, ...], str]:
    if raw is None:
        return (), Combinator.AND.value
    if not isinstance(raw, Mapping):
        raise _rule_error(label, "conditions must be an object")
    if "clauses" in raw:
        clauses = raw["clauses"]
        if not isinstance(clauses, list):
            raise _rule_error(label, "clauses must be a list")
        loaded = (_load_condition(clause, label) for clause in clauses)
        return tuple(item for item in loaded if item is not None), str(raw.get("operator") or Combinator.AND.value)
    condition = _load_condition(raw, label)
    return ((condition,) if condition is not None else ()), Combinator.AND.value


def _load_rule(raw: Any, index: int) -> Rule:
    if not isinstance(raw, Mapping):
        raise ConfigParseError(f"rule #{index}: must be an object")
    rule_id = str(raw.get("id") or f"rule-{index}")
    label = repr(rule_id)
    conditions, condition_operator = _load_conditions(raw.get("conditions"), label)
    result = raw.get("result") or {}
    if not isinstance(result, Mapping):
        raise _rule_error(label, "result must be an object")
    try:
        return Rule(
            id=rule_id,
            name=str(raw.get("name") or rule_id),
            priority=raw.get("priority", 0),
            unit_id=str(result.get("unit_id") or ""),
            conditions=conditions,
            condition_operator=condition_operator,
        )
    except RuleValidationError as exc:
        raise _rule_error(label, str(exc)) from exc


def load_ruleset(payload: Any) -> RuleSet:
    """Turn a decoded canonical config into a :class:`RuleSet`."""
    if not isinstance(payload, Mapping):
        raise ConfigParseError("config must be a JSON object")
    body = payload.get(CONFIG_ROOT_KEY)
    if not isinstance(body, Mapping):
        raise ConfigParseError(f"missing '{CONFIG_ROOT_KEY}' object")
    raw_rules = body.get("rules", [])
    if not isinstance(raw_rules, list):
        raise ConfigParseError("rules must be a list")

    rules = [_load_rule(raw, index) for index, raw in enumerate(raw_rules, start=1)]
    try:
        ruleset = RuleSet(
            version=str(body.get("version") or DEFAULT_VERSION),
            default_unit_id=str(body.get("default_unit_id") or DEFAULT_UNIT_ID),
            rules=tuple(rules),
        )
    except RuleValidationError as exc:
        raise ConfigParseError(str(exc)) from exc
    logger.debug("config_loaded", extra={"version": ruleset.version, "rule_count": len(ruleset.rules)})
    return ruleset


def parse_config(text: str) -> RuleSet:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigParseError(_decode_error_message(exc)) from exc
    return load_ruleset(payload)
