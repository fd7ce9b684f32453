from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from .conditions import evaluate_condition
from .models import Combinator, Rule, RuleSet

logger = logging.getLogger(__name__)

STATUS_MATCHED = "matched"
STATUS_NO_MATCH = "no_match"
STATUS_SKIPPED = "skipped"

REASON_MISSING_UNIT_ID = "missing_unit_id"
REASON_NO_CONDITIONS = "no_conditions"
REASON_NO_VALID_CONDITIONS = "no_valid_conditions"

_REASON_TEXT = {
    REASON_MISSING_UNIT_ID: "Skipped - No unit ID configured",
    REASON_NO_CONDITIONS: "Skipped - No conditions configured",
    REASON_NO_VALID_CONDITIONS: "No valid conditions configured",
}


@dataclass(slots=True)
class ConditionTrace:
    field: str
    operator: str
    result: bool


@dataclass(slots=True)
class RuleTraceEntry:
    rule_id: str
    name: str
    priority: int
    status: str
    reason: str | None = None
    conditions: list[ConditionTrace] = field(default_factory=list)


@dataclass(slots=True)
class EvaluationResult:
    unit_id: str
    matched_rule_id: str | None
    matched_rule_name: str | None
    trace: list[RuleTraceEntry]

    @property
    def used_default(self) -> bool:
        return self.matched_rule_id is None

    def to_dict(self, include_trace: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "unit_id": self.unit_id,
            "matched_rule_id": self.matched_rule_id,
            "matched_rule_name": self.matched_rule_name,
        }
        if include_trace:
            payload["trace"] = [asdict(entry) for entry in self.trace]
        return payload


def order_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Highest priority first; ties keep their authored order."""
    return sorted(rules, key=lambda rule: rule.priority, reverse=True)


def combine(results: list[bool], condition_operator: str) -> bool:
    if condition_operator == Combinator.OR.value:
        return any(results)
    return all(results)


def rule_matches(rule: Rule, context: Mapping[str, Any]) -> bool:
    valid_conditions = rule.valid_conditions
    if not valid_conditions:
        return False
    return combine([evaluate_condition(condition, context) for condition in valid_conditions], rule.condition_operator)


@dataclass(slots=True, frozen=True)
class RuleEngine:
    """Evaluator bound to one immutable rule set snapshot.

    Safe to share between threads: evaluation keeps no state between calls.
    """

    ruleset: RuleSet
    ordered_rules: tuple[Rule, ...]

    @classmethod
    def from_ruleset(cls, ruleset: RuleSet) -> RuleEngine:
        return cls(ruleset=ruleset, ordered_rules=tuple(order_rules(ruleset.rules)))

    def evaluate(self, context: Mapping[str, Any]) -> EvaluationResult:
        trace: list[RuleTraceEntry] = []

        for rule in self.ordered_rules:
            entry = RuleTraceEntry(rule_id=rule.id, name=rule.name, priority=rule.priority, status=STATUS_NO_MATCH)
            trace.append(entry)

            if not rule.unit_id:
                entry.status = STATUS_SKIPPED
                entry.reason = REASON_MISSING_UNIT_ID
                continue
            if not rule.conditions:
                entry.status = STATUS_SKIPPED
                entry.reason = REASON_NO_CONDITIONS
                continue

            valid_conditions = rule.valid_conditions
            if not valid_conditions:
                entry.reason = REASON_NO_VALID_CONDITIONS
                continue

            results = []
            for condition in valid_conditions:
                outcome = evaluate_condition(condition, context)
                results.append(outcome)
                entry.conditions.append(ConditionTrace(field=condition.field, operator=condition.operator, result=outcome))

            if combine(results, rule.condition_operator):
                entry.status = STATUS_MATCHED
                result = EvaluationResult(
                    unit_id=rule.unit_id,
                    matched_rule_id=rule.id,
                    matched_rule_name=rule.name,
                    trace=trace,
                )
                self._log_result(result)
                return result

        result = EvaluationResult(
            unit_id=self.ruleset.default_unit_id,
            matched_rule_id=None,
            matched_rule_name=None,
            trace=trace,
        )
        self._log_result(result)
        return result

    def _log_result(self, result: EvaluationResult) -> None:
        logger.info(
            "unit_mapping_evaluated",
            extra={
                "unit_id": result.unit_id,
                "matched_rule_id": result.matched_rule_id,
                "used_default": result.used_default,
                "rules_considered": len(result.trace),
                "ruleset_version": self.ruleset.version,
            },
        )


def evaluate_rules(ruleset: RuleSet, context: Mapping[str, Any]) -> EvaluationResult:
    engine = RuleEngine.from_ruleset(ruleset)
    return engine.evaluate(context)


def format_trace(result: EvaluationResult) -> str:
    """Render a human readable evaluation report."""
    lines = [
        f"Matched Rule: {result.matched_rule_name or 'None (using default)'}",
        f"Result Unit ID: {result.unit_id}",
        "Evaluation Details:",
    ]
    for entry in result.trace:
        lines.append("")
        lines.append(f"Evaluating Rule: {entry.name} (Priority: {entry.priority})")
        if entry.status == STATUS_SKIPPED:
            lines.append(f"  {_REASON_TEXT[entry.reason or REASON_NO_CONDITIONS]}")
            continue
        for condition in entry.conditions:
            lines.append(f"  {condition.field} {condition.operator}: {'true' if condition.result else 'false'}")
        if entry.reason:
            lines.append(f"  {_REASON_TEXT[entry.reason]}")
        lines.append(f"  Result: {'MATCH' if entry.status == STATUS_MATCHED else 'NO MATCH'}")
    if result.used_default:
        lines.append("")
        lines.append("No rules matched - using default unit ID")
    return "\n".join(lines)
