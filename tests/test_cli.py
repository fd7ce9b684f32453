import json

from unit_mapping.__main__ import main

CONFIG = {
    "unit_mapping_rules": {
        "version": "1.0",
        "default_unit_id": "def-unit",
        "rules": [
            {
                "id": "rule-1",
                "name": "Long Calls",
                "priority": 100,
                "conditions": {"field": "duration", "operator": "GREATER_THAN", "value": "240"},
                "result": {"unit_id": "long-calls"},
            }
        ],
    }
}


def test_validate_command(tmp_path, capsys) -> None:
    good = tmp_path / "good.json"
    good.write_text(json.dumps(CONFIG), encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text("{", encoding="utf-8")

    assert main(["validate", str(good)]) == 0
    assert "JSON is valid!" in capsys.readouterr().out
    assert main(["validate", str(bad)]) == 1
    assert "JSON validation error" in capsys.readouterr().err


def test_evaluate_command(tmp_path, capsys) -> None:
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(CONFIG), encoding="utf-8")

    assert main(["evaluate", str(path), "--context", '{"duration": 300}']) == 0
    assert capsys.readouterr().out.strip() == "long-calls"

    assert main(["evaluate", str(path), "--context", '{"duration": "not-a-number"}', "--trace"]) == 0
    report = capsys.readouterr().out
    assert "Result Unit ID: def-unit" in report
    assert "Evaluating Rule: Long Calls (Priority: 100)" in report

    assert main(["evaluate", str(path), "--context", "{broken"]) == 1


def test_fields_command(tmp_path, capsys) -> None:
    sample = tmp_path / "sample.json"
    sample.write_text('{"startedAt": "2024-01-01T09:00:00Z"}', encoding="utf-8")

    assert main(["fields", str(sample)]) == 0
    fields = json.loads(capsys.readouterr().out)
    assert fields == [{"path": "startedAt", "display_name": "Started At", "type": "datetime", "example": "2024-01-01T09:00:00Z"}]


def test_unreadable_inputs_exit_with_error(tmp_path, capsys) -> None:
    missing = tmp_path / "missing.json"
    binary = tmp_path / "binary.json"
    binary.write_bytes(b"\xff\xfe\x00{")

    assert main(["validate", str(missing)]) == 1
    assert "could not read" in capsys.readouterr().err
    assert main(["evaluate", str(binary), "--context", "{}"]) == 1
    assert "could not read" in capsys.readouterr().err
    assert main(["fields", str(missing)]) == 1
    assert "could not read" in capsys.readouterr().err
