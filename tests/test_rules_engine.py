from unit_mapping.models import Condition, Rule, RuleSet
from unit_mapping.rules_engine import (
    STATUS_MATCHED,
    STATUS_NO_MATCH,
    STATUS_SKIPPED,
    RuleEngine,
    evaluate_rules,
    format_trace,
    order_rules,
    rule_matches,
)


def sales_rule(**overrides) -> Rule:
    fields = {
        "id": "rule-1",
        "name": "Sales Team Rule",
        "priority": 100,
        "unit_id": "sales-unit",
        "conditions": (Condition.create("department", "EQUALS", "Sales"),),
    }
    fields.update(overrides)
    return Rule(**fields)


def test_matching_rule_returns_its_unit_id() -> None:
    ruleset = RuleSet(default_unit_id="def-unit", rules=(sales_rule(),))

    result = evaluate_rules(ruleset, {"department": "Sales"})

    assert result.unit_id == "sales-unit"
    assert result.matched_rule_id == "rule-1"
    assert result.used_default is False


def test_no_match_falls_back_to_default_unit() -> None:
    ruleset = RuleSet(default_unit_id="def-unit", rules=(sales_rule(),))

    result = evaluate_rules(ruleset, {"department": "Ops"})

    assert result.unit_id == "def-unit"
    assert result.matched_rule_id is None
    assert result.used_default is True


def test_priority_ties_keep_list_order() -> None:
    first = sales_rule(id="A", unit_id="unit-a")
    second = sales_rule(id="B", unit_id="unit-b")

    assert evaluate_rules(RuleSet(rules=(first, second)), {"department": "Sales"}).unit_id == "unit-a"
    assert evaluate_rules(RuleSet(rules=(second, first)), {"department": "Sales"}).unit_id == "unit-b"


def test_higher_priority_wins_regardless_of_list_order() -> None:
    low = sales_rule(id="low", priority=10, unit_id="unit-low")
    high = sales_rule(id="high", priority=90, unit_id="unit-high")

    result = evaluate_rules(RuleSet(rules=(low, high)), {"department": "Sales"})

    assert result.unit_id == "unit-high"
    assert [rule.id for rule in order_rules([low, high])] == ["high", "low"]


def test_or_rule_matches_when_only_second_condition_holds() -> None:
    rule = sales_rule(
        condition_operator="OR",
        conditions=(
            Condition.create("department", "EQUALS", "Sales"),
            Condition.create("region", "IN", "EMEA, APAC"),
        ),
    )

    assert rule_matches(rule, {"department": "Ops", "region": "APAC"}) is True
    assert rule_matches(rule, {"department": "Ops", "region": "AMER"}) is False


def test_and_rule_requires_every_condition() -> None:
    rule = sales_rule(
        conditions=(
            Condition.create("department", "EQUALS", "Sales"),
            Condition.create("duration", "GREATER_THAN", "240"),
        ),
    )

    assert rule_matches(rule, {"department": "Sales", "duration": 300}) is True
    assert rule_matches(rule, {"department": "Sales", "duration": "not-a-number"}) is False


def test_invalid_conditions_are_ignored_by_the_combinator() -> None:
    rule = sales_rule(conditions=(Condition.create("", "EQUALS", "x"), Condition.create("department", "EQUALS", "Sales")))

    assert rule_matches(rule, {"department": "Sales"}) is True


def test_rule_with_only_invalid_conditions_never_matches() -> None:
    rule = sales_rule(conditions=(Condition.create("", "IS_NULL_OR_EMPTY", None),))
    result = evaluate_rules(RuleSet(default_unit_id="def-unit", rules=(rule,)), {})

    assert result.unit_id == "def-unit"
    assert result.trace[0].status == STATUS_NO_MATCH
    assert result.trace[0].reason == "no_valid_conditions"


def test_rules_without_unit_or_conditions_are_skipped_in_trace() -> None:
    no_unit = sales_rule(id="no-unit", name="No Unit", priority=300, unit_id="")
    no_conditions = sales_rule(id="empty", name="Empty", priority=200, conditions=())
    fallback = sales_rule(id="sales", priority=100)

    result = evaluate_rules(RuleSet(rules=(fallback, no_conditions, no_unit)), {"department": "Sales"})

    assert result.unit_id == "sales-unit"
    assert [(entry.rule_id, entry.status, entry.reason) for entry in result.trace] == [
        ("no-unit", STATUS_SKIPPED, "missing_unit_id"),
        ("empty", STATUS_SKIPPED, "no_conditions"),
        ("sales", STATUS_MATCHED, None),
    ]
    assert result.trace[2].conditions[0].result is True


def test_evaluation_stops_at_first_match() -> None:
    first = sales_rule(id="first", priority=50)
    second = sales_rule(id="second", priority=40)

    result = evaluate_rules(RuleSet(rules=(first, second)), {"department": "Sales"})

    assert [entry.rule_id for entry in result.trace] == ["first"]


def test_invalid_regex_does_not_abort_remaining_rules() -> None:
    broken = sales_rule(id="broken", priority=200, conditions=(Condition.create("phone", "REGEX_MATCH", "(+44"),))
    fallback = sales_rule(id="sales", priority=100)

    result = evaluate_rules(RuleSet(rules=(broken, fallback)), {"phone": "+44", "department": "Sales"})

    assert result.matched_rule_id == "sales"


def test_engine_can_be_reused_for_multiple_contexts() -> None:
    engine = RuleEngine.from_ruleset(RuleSet(default_unit_id="def-unit", rules=(sales_rule(),)))

    assert engine.evaluate({"department": "Sales"}).unit_id == "sales-unit"
    assert engine.evaluate({"department": "Ops"}).unit_id == "def-unit"


def test_result_to_dict_optionally_includes_trace() -> None:
    result = evaluate_rules(RuleSet(rules=(sales_rule(),)), {"department": "Sales"})

    assert "trace" not in result.to_dict(include_trace=False)
    payload = result.to_dict()
    assert payload["trace"][0]["conditions"] == [{"field": "department", "operator": "EQUALS", "result": True}]


def test_format_trace_reports_skips_and_default() -> None:
    no_unit = sales_rule(id="no-unit", name="Draft", priority=300, unit_id="")
    result = evaluate_rules(RuleSet(default_unit_id="def-unit", rules=(no_unit, sales_rule())), {"department": "Ops"})

    report = format_trace(result)

    assert "Matched Rule: None (using default)" in report
    assert "Evaluating Rule: Draft (Priority: 300)" in report
    assert "Skipped - No unit ID configured" in report
    assert "Result: NO MATCH" in report
    assert report.endswith("No rules matched - using default unit ID")
