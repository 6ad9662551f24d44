"""Tests for payload, result, schema and config validation."""

from __future__ import annotations

import pytest

from toolserver.engine.tool_validator import ToolValidator, matches_type, type_name
from toolserver.errors import OutputValidationError, SchemaValidationError
from toolserver.models.tool import Tool


def _tool(inputs=None, outputs=None) -> Tool:
    return Tool(name="Create Ticket", slug="create-ticket", kind="internal",
                tool_schema={"inputs": inputs or [], "outputs": outputs or []})


TITLE = {"name": "title", "type": "string", "required": True}
COUNT = {"name": "count", "type": "integer", "required": False}
AMOUNT = {"name": "amount", "type": "number", "required": False}


class TestTypeMatching:
    def test_number_accepts_int_and_float(self):
        assert matches_type(3, "number")
        assert matches_type(3.5, "number")

    def test_integer_rejects_float(self):
        assert matches_type(3, "integer")
        assert not matches_type(3.0, "integer")

    def test_bool_is_not_numeric(self):
        assert not matches_type(True, "integer")
        assert not matches_type(False, "number")
        assert matches_type(True, "boolean")

    def test_object_and_array(self):
        assert matches_type({"a": 1}, "object")
        assert not matches_type([1], "object")
        assert matches_type([1], "array")
        assert not matches_type("x", "array")

    def test_type_names(self):
        assert type_name(True) == "boolean"
        assert type_name(1) == "integer"
        assert type_name(1.5) == "number"
        assert type_name(None) == "null"
        assert type_name({}) == "object"


class TestValidatePayload:
    def test_empty_inputs_accept_anything(self):
        ToolValidator().validate_payload(_tool(), {"whatever": [1, 2], "x": None})

    def test_valid_payload(self):
        ToolValidator().validate_payload(_tool([TITLE, COUNT, AMOUNT]), {"title": "Help", "count": 2, "amount": 2})

    def test_missing_required(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            ToolValidator().validate_payload(_tool([TITLE]), {})
        assert exc_info.value.errors == ["Missing required field: title"]
        assert "Missing required field: title" in str(exc_info.value)

    def test_errors_are_collected(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            ToolValidator().validate_payload(_tool([TITLE, COUNT]), {"count": 1.5, "extra": 1, "other": 2})
        assert exc_info.value.errors == [
            "Missing required field: title",
            "Field count expects integer but got number",
            "Unexpected fields: extra, other",
        ]

    def test_unexpected_field_rejected(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            ToolValidator().validate_payload(_tool([TITLE]), {"title": "x", "note": "y"})
        assert exc_info.value.errors == ["Unexpected fields: note"]

    def test_validation_is_repeatable(self):
        validator = ToolValidator()
        tool = _tool([TITLE])
        messages = []
        for _ in range(2):
            with pytest.raises(SchemaValidationError) as exc_info:
                validator.validate_payload(tool, {"title": 5})
            messages.append(exc_info.value.errors)
        assert messages[0] == messages[1] == ["Field title expects string but got integer"]

    def test_schema_errors_are_not_retried(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            ToolValidator().validate_payload(_tool([TITLE]), {})
        assert exc_info.value.recoverable is False


class TestValidateResult:
    OUTPUTS = [{"name": "ticket_id", "type": "string", "required": True}]

    def test_valid_result_with_extra_keys(self):
        ToolValidator().validate_result(_tool(outputs=self.OUTPUTS), {"ticket_id": "t1", "status": "created"})

    def test_missing_output(self):
        with pytest.raises(OutputValidationError) as exc_info:
            ToolValidator().validate_result(_tool(outputs=self.OUTPUTS), {"status": "created"})
        assert exc_info.value.errors == ["Missing required output field: ticket_id"]
        assert exc_info.value.recoverable is False

    def test_wrong_output_type(self):
        with pytest.raises(OutputValidationError) as exc_info:
            ToolValidator().validate_result(_tool(outputs=self.OUTPUTS), {"ticket_id": 42})
        assert exc_info.value.errors == ["Output field ticket_id expects string but got integer"]

    def test_list_result_checks_each_item(self):
        with pytest.raises(OutputValidationError) as exc_info:
            ToolValidator().validate_result(_tool(outputs=self.OUTPUTS), [{"ticket_id": "a"}, {}])
        assert exc_info.value.errors == ["[1] Missing required output field: ticket_id"]

    def test_scalar_result_rejected(self):
        with pytest.raises(OutputValidationError):
            ToolValidator().validate_result(_tool(outputs=self.OUTPUTS), "ok")

    def test_no_outputs_accepts_anything(self):
        ToolValidator().validate_result(_tool(), "anything")


class TestSchemaDefinition:
    def test_valid_definition(self):
        schema = {"inputs": [TITLE], "outputs": [{"name": "id", "type": "string", "description": "Id"}]}
        assert ToolValidator().validate_schema_definition(schema) == []

    def test_missing_sections(self):
        errors = ToolValidator().validate_schema_definition({"inputs": []})
        assert errors == ["Schema must have 'outputs' array"]

    def test_errors_are_accumulated(self):
        schema = {
            "inputs": [{"name": "", "type": "text"}, {"name": "ok", "type": "string", "required": "yes"}],
            "outputs": ["nope"],
        }
        errors = ToolValidator().validate_schema_definition(schema)
        assert errors == [
            "inputs[0] must have a non-empty 'name' string",
            "inputs[0] must have a valid 'type' (string, number, integer, boolean, array, object)",
            "inputs[1] 'required' must be boolean",
            "outputs[0] must be an object",
        ]

    def test_not_a_mapping(self):
        assert ToolValidator().validate_schema_definition(None) != []


class TestConfig:
    def test_internal_config(self):
        assert ToolValidator().validate_config("internal", {"action": "create_ticket", "priority": "high"}) == []

    def test_internal_rejects_http_fields(self):
        errors = ToolValidator().validate_config("internal", {"action": "create_ticket", "url": "http://x"})
        assert errors == ["config.url is not allowed for internal tools"]

    def test_internal_unknown_action(self):
        errors = ToolValidator().validate_config("internal", {"action": "launch_rocket"})
        assert len(errors) == 1 and errors[0].startswith("config.action must be one of")

    def test_external_config(self):
        config = {
            "url": "https://api.example.com/orders/{order_id}",
            "method": "get",
            "timeout": 10,
            "retries": 2,
            "headers": [{"key": "X-Token", "value": "{{secret.ORDERS}}"}],
            "auth": {"type": "bearer", "token": "abc"},
        }
        assert ToolValidator().validate_config("external", config) == []

    def test_external_rejects_action_and_bad_values(self):
        errors = ToolValidator().validate_config(
            "external", {"url": "ftp://files", "method": "TRACE", "retries": 0, "action": "create_ticket"},
        )
        assert "config.url must be a valid http(s) URL" in errors
        assert any(e.startswith("config.method must be one of") for e in errors)
        assert "config.retries must be an integer of at least 1" in errors
        assert "config.action is not allowed for external tools" in errors

    def test_unknown_kind(self):
        assert ToolValidator().validate_config("plugin", {}) == ["Tool kind must be one of: internal, external"]
