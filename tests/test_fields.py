import json

import pytest

from unit_mapping.fields import discover_fields, discover_fields_from_json, display_name, field_example, field_type


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, "unknown"),
        ([1, 2], "array"),
        ({"a": 1}, "object"),
        (True, "boolean"),
        (42, "integer"),
        (42.0, "integer"),
        (4.2, "number"),
        ("2024-05-01T10:15:00Z", "datetime"),
        ("2024-05-01", "string"),
        ("0042", "numeric-string"),
        ("42\n", "string"),
        ("Sales", "string"),
    ],
)
def test_field_type_classification(value, expected) -> None:
    assert field_type(value) == expected


def test_display_name_splits_camel_case_and_names_parent() -> None:
    assert display_name("agentDepartment") == "Agent Department"
    assert display_name("caller.phoneNumber") == "Phone Number (caller)"
    assert display_name("queue_name") == "Queue_name"


def test_field_example_formats() -> None:
    assert field_example([]) == "[]"
    assert field_example(["a"]) == "[a]"
    assert field_example(["a", "b"]) == "[a, ...]"
    assert field_example({"x": 1}) == "{...}"
    assert field_example(False) == "false"
    assert field_example(None) == "null"


def test_discover_fields_recurses_and_sorts_by_display_name() -> None:
    sample = {
        "agentDepartment": "Sales",
        "caller": {"phoneNumber": "+44123", "isVip": True},
        "duration": 312,
    }

    fields = discover_fields(sample)

    assert [field.display_name for field in fields] == [
        "Agent Department",
        "Caller",
        "Duration",
        "Is Vip (caller)",
        "Phone Number (caller)",
    ]
    by_path = {field.path: field for field in fields}
    assert by_path["caller"].type == "object"
    assert by_path["caller"].example == "{...}"
    assert by_path["caller.isVip"].type == "boolean"
    assert by_path["duration"].type == "integer"


def test_discover_fields_stops_after_three_nested_levels() -> None:
    sample = {"a": {"b": {"c": {"d": {"e": 1}}}}}

    paths = {field.path for field in discover_fields(sample)}

    assert paths == {"a", "a.b", "a.b.c", "a.b.c.d"}


def test_dotted_keys_count_towards_nesting_depth() -> None:
    sample = {"a.b": {"c": {"d": {"e": 1}}}}

    paths = {field.path for field in discover_fields(sample)}

    assert paths == {"a.b", "a.b.c", "a.b.c.d"}


def test_discover_fields_is_pure() -> None:
    sample = {"caller": {"region": "EMEA"}}
    before = json.dumps(sample)

    assert discover_fields(sample) == discover_fields(sample)
    assert json.dumps(sample) == before


def test_discover_fields_from_json_text() -> None:
    fields = discover_fields_from_json('{"queue": "billing"}')

    assert [field.to_dict() for field in fields] == [
        {"path": "queue", "display_name": "Queue", "type": "string", "example": "billing"}
    ]
    assert discover_fields_from_json("[1, 2]") == []
