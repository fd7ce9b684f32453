from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any

from .config import build_ruleset_config
from .models import Combinator, Condition, ConditionOperator, Rule, RuleSet
from .rules_engine import EvaluationResult, RuleEngine

logger = logging.getLogger(__name__)

FIRST_RULE_PRIORITY = 100
PRIORITY_STEP = 10


class RuleNotFoundError(LookupError):
    """Raised when an authoring operation names an unknown rule id."""


class ConditionNotFoundError(LookupError):
    """Raised when a condition index is outside the rule's condition list."""


def _check_condition_index(rule: Rule, index: int) -> None:
    if not 0 <= index < len(rule.conditions):
        raise ConditionNotFoundError(f"rule {rule.id} has no condition at index {index}")


class RuleSetRepository:
    """Owns the authored rule list.

    Every mutation builds a new immutable :class:`RuleSet` and swaps it in
    with a single assignment, so readers always see a complete snapshot.
    """

    def __init__(self, ruleset: RuleSet | None = None) -> None:
        self._lock = threading.Lock()
        self._engine = RuleEngine.from_ruleset(ruleset or RuleSet())
        self._rule_counter = len(self._engine.ruleset.rules)

    def snapshot(self) -> RuleSet:
        return self._engine.ruleset

    def _commit(self, ruleset: RuleSet) -> None:
        self._engine = RuleEngine.from_ruleset(ruleset)

    def _mutate(self, change: Callable[[RuleSet], RuleSet]) -> RuleSet:
        with self._lock:
            updated = change(self._engine.ruleset)
            self._commit(updated)
            return updated

    def _index_of(self, ruleset: RuleSet, rule_id: str) -> int:
        for index, rule in enumerate(ruleset.rules):
            if rule.id == rule_id:
                return index
        raise RuleNotFoundError(f"rule not found: {rule_id}")

    def _replace_rule(self, rule_id: str, change: Callable[[Rule], Rule]) -> Rule:
        updated_rule: Rule | None = None

        def apply(ruleset: RuleSet) -> RuleSet:
            nonlocal updated_rule
            index = self._index_of(ruleset, rule_id)
            rules = list(ruleset.rules)
            updated_rule = change(rules[index])
            rules[index] = updated_rule
            return ruleset.with_rules(rules)

        self._mutate(apply)
        assert updated_rule is not None
        return updated_rule

    def replace(self, ruleset: RuleSet) -> RuleSet:
        with self._lock:
            self._commit(ruleset)
            self._rule_counter = max(self._rule_counter, len(ruleset.rules))
        logger.info("ruleset_replaced", extra={"version": ruleset.version, "rule_count": len(ruleset.rules)})
        return ruleset

    def set_default_unit_id(self, default_unit_id: str) -> RuleSet:
        return self._mutate(lambda ruleset: replace(ruleset, default_unit_id=str(default_unit_id)))

    def set_version(self, version: str) -> RuleSet:
        return self._mutate(lambda ruleset: replace(ruleset, version=str(version)))

    def add_rule(self, **fields: Any) -> Rule:
        created: Rule | None = None

        def apply(ruleset: RuleSet) -> RuleSet:
            nonlocal created
            existing = {rule.id for rule in ruleset.rules}
            counter = self._rule_counter + 1
            while f"rule-{counter}" in existing:
                counter += 1
            defaults: dict[str, Any] = {
                "name": f"Rule {counter}",
                "priority": FIRST_RULE_PRIORITY - (counter - 1) * PRIORITY_STEP,
                "unit_id": "",
                "conditions": (),
                "condition_operator": Combinator.AND.value,
            }
            created = Rule(id=f"rule-{counter}", **{**defaults, **fields})
            self._rule_counter = counter
            return ruleset.with_rules([*ruleset.rules, created])

        self._mutate(apply)
        assert created is not None
        logger.info("rule_added", extra={"rule_id": created.id, "priority": created.priority})
        return created

    def update_rule(self, rule_id: str, **changes: Any) -> Rule:
        updated = self._replace_rule(rule_id, lambda rule: rule.with_changes(**changes))
        logger.info("rule_updated", extra={"rule_id": rule_id, "changed": sorted(changes)})
        return updated

    def delete_rule(self, rule_id: str) -> None:
        def apply(ruleset: RuleSet) -> RuleSet:
            index = self._index_of(ruleset, rule_id)
            rules = list(ruleset.rules)
            del rules[index]
            return ruleset.with_rules(rules)

        self._mutate(apply)
        logger.info("rule_deleted", extra={"rule_id": rule_id})

    def move_rule(self, rule_id: str, direction: int) -> RuleSet:
        """Swap a rule with its neighbour. List order does not affect evaluation."""

        def apply(ruleset: RuleSet) -> RuleSet:
            index = self._index_of(ruleset, rule_id)
            target = index + direction
            if target < 0 or target >= len(ruleset.rules):
                return ruleset
            rules = list(ruleset.rules)
            rules[index], rules[target] = rules[target], rules[index]
            return ruleset.with_rules(rules)

        return self._mutate(apply)

    def add_condition(
        self,
        rule_id: str,
        field: str = "",
        operator: str = ConditionOperator.EQUALS.value,
        value: Any = "",
    ) -> Rule:
        condition = Condition.create(field, operator, value)
        return self._replace_rule(rule_id, lambda rule: rule.with_changes(conditions=(*rule.conditions, condition)))

    def update_condition(self, rule_id: str, index: int, **changes: Any) -> Rule:
        def change(rule: Rule) -> Rule:
            _check_condition_index(rule, index)
            conditions = list(rule.conditions)
            conditions[index] = conditions[index].with_changes(**changes)
            return rule.with_changes(conditions=tuple(conditions))

        return self._replace_rule(rule_id, change)

    def remove_condition(self, rule_id: str, index: int) -> Rule:
        def change(rule: Rule) -> Rule:
            _check_condition_index(rule, index)
            conditions = list(rule.conditions)
            del conditions[index]
            return rule.with_changes(conditions=tuple(conditions))

        return self._replace_rule(rule_id, change)

    def build_config(self) -> dict[str, Any]:
        return build_ruleset_config(self.snapshot())

    def evaluate(self, context: Mapping[str, Any]) -> EvaluationResult:
        return self._engine.evaluate(context)
