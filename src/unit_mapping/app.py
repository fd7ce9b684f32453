from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from flask import Flask, abort, jsonify, request
from werkzeug.exceptions import BadRequest, HTTPException

from .config import ConfigParseError, parse_config, validate_config
from .fields import discover_fields
from .models import RuleValidationError
from .repository import ConditionNotFoundError, RuleNotFoundError, RuleSetRepository

APP_NAME = "unit-mapping"
EXTENSION_KEY = "unit_mapping"
RULE_FIELDS = {"name", "priority", "unit_id", "condition_operator"}
CONDITION_FIELDS = {"field", "operator", "value"}


def _configure_observability(app: Flask, app_name: str) -> None:
    app.config["APP_NAME"] = app_name
    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("unit_mapping").setLevel(level)


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def _configure_error_handlers(app: Flask) -> None:
    @app.errorhandler(BadRequest)
    def handle_bad_request(error: BadRequest) -> Any:
        app.logger.warning("bad_request", extra={"path": request.path, "method": request.method, "error": str(error)})
        if _is_api_request():
            return jsonify({"error": error.description or "invalid request payload"}), 400
        return error

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException) -> Any:
        app.logger.warning(
            "http_error",
            extra={"path": request.path, "method": request.method, "status_code": error.code, "error": error.description},
        )
        if _is_api_request():
            return jsonify({"error": error.description}), error.code
        return error

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        app.logger.exception("unexpected_error", extra={"path": request.path, "method": request.method})
        if _is_api_request():
            return jsonify({"error": "internal server error"}), 500
        raise error


def _initial_repository(config_path: str | None) -> RuleSetRepository:
    path = config_path or os.environ.get("UNIT_MAPPING_CONFIG")
    if not path:
        return RuleSetRepository()
    return RuleSetRepository(parse_config(Path(path).read_text(encoding="utf-8")))


def _json_body() -> dict[str, Any]:
    if not request.get_data():
        return {}
    payload = request.get_json(force=True, silent=False)
    if not isinstance(payload, dict):
        abort(400, description="request body must be a JSON object")
    return payload


def _pick(payload: dict[str, Any], allowed: set[str]) -> dict[str, Any]:
    unknown = set(payload) - allowed
    if unknown:
        abort(400, description=f"unsupported field(s): {', '.join(sorted(unknown))}")
    return dict(payload)


def get_repository(app: Flask) -> RuleSetRepository:
    return app.extensions[EXTENSION_KEY]


def create_app(config_path: str | None = None) -> Flask:
    app = Flask(__name__)
    _configure_observability(app, APP_NAME)
    _configure_error_handlers(app)
    app.extensions[EXTENSION_KEY] = _initial_repository(config_path)

    @app.errorhandler(RuleNotFoundError)
    def handle_rule_not_found(error: RuleNotFoundError) -> Any:
        return jsonify({"error": str(error)}), 404

    @app.errorhandler(ConditionNotFoundError)
    def handle_missing_condition(error: ConditionNotFoundError) -> Any:
        return jsonify({"error": str(error)}), 404

    @app.errorhandler(RuleValidationError)
    def handle_rule_validation(error: RuleValidationError) -> Any:
        app.logger.warning("rule_validation_failed", extra={"path": request.path, "error": str(error)})
        return jsonify({"error": str(error)}), 400

    @app.get("/healthz")
    def healthz() -> Any:
        return jsonify({"status": "ok", "app": app.config["APP_NAME"]})

    @app.get("/api/config")
    def get_config() -> Any:
        return jsonify(get_repository(app).build_config())

    @app.put("/api/config")
    def replace_config() -> Any:
        try:
            ruleset = parse_config(request.get_data(as_text=True))
        except ConfigParseError as exc:
            return jsonify({"error": str(exc)}), 400
        get_repository(app).replace(ruleset)
        return jsonify(get_repository(app).build_config())

    @app.post("/api/config/validate")
    def validate() -> Any:
        outcome = validate_config(request.get_data(as_text=True))
        if not outcome.valid:
            app.logger.info("config_validation_failed", extra={"error": outcome.error})
        return jsonify({"valid": outcome.valid, "error": outcome.error})

    @app.put("/api/settings")
    def update_settings() -> Any:
        body = _pick(_json_body(), {"default_unit_id", "version"})
        repository = get_repository(app)
        if "default_unit_id" in body:
            repository.set_default_unit_id(str(body["default_unit_id"]))
        if "version" in body:
            repository.set_version(str(body["version"]))
        snapshot = repository.snapshot()
        return jsonify({"version": snapshot.version, "default_unit_id": snapshot.default_unit_id})

    @app.post("/api/evaluate")
    def evaluate() -> Any:
        body = _json_body()
        context = body.get("context", {})
        if not isinstance(context, dict):
            return jsonify({"error": "context must be an object"}), 400
        include_trace = bool(body.get("include_trace", False))
        result = get_repository(app).evaluate(context)
        return jsonify(result.to_dict(include_trace=include_trace))

    @app.post("/api/fields")
    def fields() -> Any:
        sample = _json_body().get("sample", {})
        if not isinstance(sample, dict):
            return jsonify({"error": "sample must be an object"}), 400
        return jsonify({"fields": [descriptor.to_dict() for descriptor in discover_fields(sample)]})

    @app.get("/api/rules")
    def list_rules() -> Any:
        snapshot = get_repository(app).snapshot()
        return jsonify({"rules": [rule.to_dict() for rule in snapshot.rules]})

    @app.post("/api/rules")
    def create_rule() -> Any:
        rule = get_repository(app).add_rule(**_pick(_json_body(), RULE_FIELDS))
        return jsonify(rule.to_dict()), 201

    @app.put("/api/rules/<rule_id>")
    def update_rule(rule_id: str) -> Any:
        rule = get_repository(app).update_rule(rule_id, **_pick(_json_body(), RULE_FIELDS))
        return jsonify(rule.to_dict())

    @app.delete("/api/rules/<rule_id>")
    def delete_rule(rule_id: str) -> Any:
        get_repository(app).delete_rule(rule_id)
        return jsonify({"deleted": rule_id})

    @app.post("/api/rules/<rule_id>/move")
    def move_rule(rule_id: str) -> Any:
        direction = _json_body().get("direction")
        if direction not in (-1, 1):
            return jsonify({"error": "direction must be -1 or 1"}), 400
        snapshot = get_repository(app).move_rule(rule_id, direction)
        return jsonify({"order": [rule.id for rule in snapshot.rules]})

    @app.post("/api/rules/<rule_id>/conditions")
    def add_condition(rule_id: str) -> Any:
        rule = get_repository(app).add_condition(rule_id, **_pick(_json_body(), CONDITION_FIELDS))
        return jsonify(rule.to_dict()), 201

    @app.put("/api/rules/<rule_id>/conditions/<int:index>")
    def update_condition(rule_id: str, index: int) -> Any:
        rule = get_repository(app).update_condition(rule_id, index, **_pick(_json_body(), CONDITION_FIELDS))
        return jsonify(rule.to_dict())

    @app.delete("/api/rules/<rule_id>/conditions/<int:index>")
    def remove_condition(rule_id: str, index: int) -> Any:
        rule = get_repository(app).remove_condition(rule_id, index)
        return jsonify(rule.to_dict())

    return app
