from typing import Any, Dict

import pytest
from pydantic import ValidationError

from text_tool_bridge.bridge_core import SchemaValidator, ToolValidationError


def test_assert_no_recursive_refs_no_recursion() -> None:
    schema = {
        "type": "object",
        "properties": {
            "prop1": {"type": "string"},
            "prop2": {"type": "object", "properties": {"subprop": {"type": "integer"}}},
        },
    }
    # Should not raise
    SchemaValidator.assert_no_recursive_refs(schema)


def test_assert_no_recursive_refs_with_recursion() -> None:
    schema = {
        "$defs": {"Node": {"type": "object", "properties": {"child": {"$ref": "#/$defs/Node"}}}},
        "properties": {"root": {"$ref": "#/$defs/Node"}},
    }
    with pytest.raises(ToolValidationError, match="Recursive structure detected"):
        SchemaValidator.assert_no_recursive_refs(schema)


def test_sanitize_schema_removes_metadata() -> None:
    schema = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "$id": "http://example.com/schema",
        "title": "MySchema",
        "type": "object",
        "properties": {"field": {"type": "string", "title": "FieldTitle"}},
        "definitions": {"SomeDef": {}},
    }
    sanitized = SchemaValidator.sanitize_schema(schema)

    assert "$schema" not in sanitized
    assert "$id" not in sanitized
    assert "title" not in sanitized
    assert "definitions" not in sanitized
    assert "title" not in sanitized["properties"]["field"]


def test_sanitize_schema_keeps_arguments_named_like_keywords() -> None:
    schema = {"type": "object", "properties": {"title": {"type": "string"}}}

    assert SchemaValidator.sanitize_schema(schema)["properties"] == {"title": {"type": "string"}}


def test_sanitize_schema_simplifies_optional() -> None:
    schema = {
        "type": "object",
        "properties": {
            "optional_field": {
                "anyOf": [{"type": "integer", "description": "An integer"}, {"type": "null"}],
                "description": "Parent description",
                "default": None,
            }
        },
    }
    field = SchemaValidator.sanitize_schema(schema)["properties"]["optional_field"]

    assert "anyOf" not in field
    assert field["type"] == "integer"
    assert field["description"] == "Parent description"
    assert field["default"] is None


def test_sanitize_schema_enforces_additional_properties() -> None:
    sanitized = SchemaValidator.sanitize_schema({"type": "object", "properties": {"field": {"type": "string"}}})

    assert sanitized["additionalProperties"] is False


@pytest.mark.parametrize(
    "prop, label",
    [
        ({"type": "string"}, "string"),
        ({"type": ["null", "integer"]}, "integer"),
        ({"enum": ["a", "b"]}, "enum"),
        ({"type": "uuid"}, "unknown"),
        ({}, "unknown"),
    ],
)
def test_type_label(prop: Dict[str, Any], label: str) -> None:
    assert SchemaValidator.type_label(prop) == label


def test_describe_fields_marks_required_properties() -> None:
    schema = {
        "type": "object",
        "properties": {"city": {"type": "string"}, "days": {"type": "integer"}},
        "required": ["city"],
    }

    assert SchemaValidator.describe_fields(schema) == [("city", "string", True), ("days", "integer", False)]
    assert SchemaValidator.describe_fields(None) == []


def test_model_from_schema_validates_top_level_fields() -> None:
    schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query"},
            "limit": {"type": "integer", "default": 10},
            "mode": {"enum": ["fast", "exact"]},
            "filters": {"type": "object"},
        },
        "required": ["query"],
    }
    model = SchemaValidator.model_from_schema("search", schema)
    assert model is not None

    args = model.model_validate({"query": "cats", "limit": "5", "filters": {"tag": "x"}})
    assert args.query == "cats"  # type: ignore[attr-defined]
    assert args.limit == 5  # type: ignore[attr-defined]
    assert args.mode is None  # type: ignore[attr-defined]
    assert model.model_validate({"query": "cats"}).limit == 10  # type: ignore[attr-defined]
    assert model.model_fields["query"].description == "Search query"

    with pytest.raises(ValidationError):
        model.model_validate({"query": "cats", "mode": "slow"})
    with pytest.raises(ValidationError):
        model.model_validate({"limit": 1})


def test_model_from_schema_without_properties() -> None:
    assert SchemaValidator.model_from_schema("noop", {"type": "object"}) is None
    assert SchemaValidator.model_from_schema("noop", None) is None
