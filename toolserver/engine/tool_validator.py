"""Payload and result checks against declarative field schemas."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from toolserver.errors import OutputValidationError, SchemaValidationError
from toolserver.models.tool import TOOL_KINDS, Tool

FIELD_TYPES = ("string", "number", "integer", "boolean", "array", "object")
INTERNAL_ACTIONS = ("create_ticket", "transfer_department", "send_message", "close_conversation", "assign_agent")
HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
AUTH_TYPES = ("bearer", "basic", "api_key")


def type_name(value: Any) -> str:
    """JSON-style name of a runtime value, used in error messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def matches_type(value: Any, expected: str) -> bool:
    # bool is an int subclass; it never satisfies number/integer
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, list)
    if expected == "object":
        return isinstance(value, Mapping)
    # Unrecognised declared type: accept anything
    return True


class ToolValidator:
    """Validates tool schemas, input payloads and execution results."""

    def validate_payload(self, tool: Tool, payload: Mapping[str, Any]) -> None:
        inputs = tool.inputs
        if not inputs:
            return

        errors = self._check_fields(inputs, payload, prefix="")

        allowed = {field.get("name") for field in inputs}
        extra = [key for key in payload if key not in allowed]
        if extra:
            errors.append(f"Unexpected fields: {', '.join(extra)}")

        if errors:
            raise SchemaValidationError(tool.name, errors)

    def validate_result(self, tool: Tool, result: Any) -> None:
        outputs = tool.outputs
        if not outputs:
            return
        if isinstance(result, list):
            # List bodies: every object item must satisfy the output schema
            errors = []
            for index, item in enumerate(result):
                if isinstance(item, Mapping):
                    errors.extend(f"[{index}] {e}" for e in self._check_fields(outputs, item, prefix="output "))
            if errors:
                raise OutputValidationError(tool.name, errors)
            return
        if not isinstance(result, Mapping):
            raise OutputValidationError(tool.name, [f"Result must be an object but got {type_name(result)}"])

        errors = self._check_fields(outputs, result, prefix="output ")
        if errors:
            raise OutputValidationError(tool.name, errors)

    @staticmethod
    def _check_fields(fields: list[dict], data: Mapping[str, Any], prefix: str) -> list[str]:
        errors: list[str] = []
        for field in fields:
            name = field.get("name")
            expected = field.get("type")

            if name not in data:
                if field.get("required", False):
                    errors.append(f"Missing required {prefix}field: {name}")
                continue

            value = data[name]
            if not matches_type(value, expected):
                label = "Output field" if prefix else "Field"
                errors.append(f"{label} {name} expects {expected} but got {type_name(value)}")
        return errors

    # ── Definition checks (used when tools are created/updated) ──

    def validate_schema_definition(self, schema: Any) -> list[str]:
        """Return every problem found in a schema definition; empty means valid."""
        if not isinstance(schema, Mapping):
            return ["Schema must be an object with 'inputs' and 'outputs' arrays"]

        errors: list[str] = []
        for section in ("inputs", "outputs"):
            fields = schema.get(section)
            if not isinstance(fields, list):
                errors.append(f"Schema must have '{section}' array")
                continue
            for index, field in enumerate(fields):
                errors.extend(self._validate_schema_field(field, f"{section}[{index}]"))
        return errors

    @staticmethod
    def _validate_schema_field(field: Any, context: str) -> list[str]:
        if not isinstance(field, Mapping):
            return [f"{context} must be an object"]

        errors = []
        name = field.get("name")
        if not isinstance(name, str) or not name:
            errors.append(f"{context} must have a non-empty 'name' string")
        if field.get("type") not in FIELD_TYPES:
            errors.append(f"{context} must have a valid 'type' ({', '.join(FIELD_TYPES)})")
        if "required" in field and not isinstance(field["required"], bool):
            errors.append(f"{context} 'required' must be boolean")
        if "description" in field and not isinstance(field["description"], str):
            errors.append(f"{context} 'description' must be string")
        return errors

    def validate_config(self, kind: str, config: Any) -> list[str]:
        """Check that a tool config has the shape its kind requires."""
        if kind not in TOOL_KINDS:
            return [f"Tool kind must be one of: {', '.join(TOOL_KINDS)}"]
        if not isinstance(config, Mapping):
            return ["Config must be an object"]

        errors: list[str] = []
        if kind == "internal":
            action = config.get("action")
            if not action:
                errors.append("config.action is required for internal tools")
            elif action not in INTERNAL_ACTIONS:
                errors.append(f"config.action must be one of: {', '.join(INTERNAL_ACTIONS)}")
            for key in ("url", "method"):
                if key in config:
                    errors.append(f"config.{key} is not allowed for internal tools")
            return errors

        url = config.get("url")
        if not url:
            errors.append("config.url is required for external tools")
        else:
            parsed = urlparse(str(url))
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append("config.url must be a valid http(s) URL")

        method = config.get("method")
        if not method:
            errors.append("config.method is required for external tools")
        elif str(method).upper() not in HTTP_METHODS:
            errors.append(f"config.method must be one of: {', '.join(HTTP_METHODS)}")

        timeout = config.get("timeout")
        if timeout is not None and (not matches_type(timeout, "number") or timeout <= 0):
            errors.append("config.timeout must be a number greater than 0")

        retries = config.get("retries")
        if retries is not None and (not matches_type(retries, "integer") or retries < 1):
            errors.append("config.retries must be an integer of at least 1")

        if "headers" in config and not isinstance(config["headers"], list):
            errors.append("config.headers must be an array")

        auth = config.get("auth")
        if auth:
            if not isinstance(auth, Mapping) or auth.get("type") not in AUTH_TYPES:
                errors.append(f"config.auth.type must be one of: {', '.join(AUTH_TYPES)}")

        if "body" in config and not isinstance(config["body"], Mapping):
            errors.append("config.body must be an object")

        if "action" in config:
            errors.append("config.action is not allowed for external tools")
        return errors
