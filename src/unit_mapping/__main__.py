from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .app import create_app
from .config import ConfigParseError, parse_config, validate_config
from .fields import discover_fields_from_json
from .rules_engine import evaluate_rules, format_trace


def _read_input(path: str) -> str | None:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        print(f"could not read {path}: {exc}", file=sys.stderr)
        return None


def _validate(args: argparse.Namespace) -> int:
    text = _read_input(args.config)
    if text is None:
        return 1
    outcome = validate_config(text)
    if outcome.valid:
        print("JSON is valid!")
        return 0
    print(f"JSON validation error: {outcome.error}", file=sys.stderr)
    return 1


def _evaluate(args: argparse.Namespace) -> int:
    text = _read_input(args.config)
    if text is None:
        return 1
    try:
        ruleset = parse_config(text)
    except ConfigParseError as exc:
        print(f"invalid config: {exc}", file=sys.stderr)
        return 1
    try:
        context = json.loads(args.context)
    except json.JSONDecodeError:
        print("Invalid JSON in test metadata", file=sys.stderr)
        return 1
    if not isinstance(context, dict):
        print("test metadata must be a JSON object", file=sys.stderr)
        return 1

    result = evaluate_rules(ruleset, context)
    if args.trace:
        print(format_trace(result))
    else:
        print(result.unit_id)
    return 0


def _fields(args: argparse.Namespace) -> int:
    text = _read_input(args.sample)
    if text is None:
        return 1
    try:
        descriptors = discover_fields_from_json(text)
    except json.JSONDecodeError as exc:
        print(f"could not parse sample metadata: {exc}", file=sys.stderr)
        return 1
    print(json.dumps([descriptor.to_dict() for descriptor in descriptors], indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Unit mapping rules tooling")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--config", default=None, help="canonical config JSON to load at startup")

    validate = subparsers.add_parser("validate", help="check that a config file is well-formed JSON")
    validate.add_argument("config")

    evaluate = subparsers.add_parser("evaluate", help="resolve the unit id for a context")
    evaluate.add_argument("config")
    evaluate.add_argument("--context", required=True, help="context metadata as a JSON object")
    evaluate.add_argument("--trace", action="store_true", help="print the per-rule evaluation report")

    fields = subparsers.add_parser("fields", help="discover condition fields from sample metadata")
    fields.add_argument("sample")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.WARNING)

    if args.command == "serve":
        app = create_app(args.config)
        app.run(host=args.host, port=args.port, debug=False)
        return 0
    if args.command == "validate":
        return _validate(args)
    if args.command == "evaluate":
        return _evaluate(args)
    return _fields(args)


if __name__ == "__main__":
    sys.exit(main())
