"""Tests for JSON Schema conversion and provider schema adaptation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from deskpilot.runtime.tools.schema import EmptyArgs, PydanticSchemaConverter
from deskpilot.runtime.tools.schema_compat import (
    PLACEHOLDER_PROPERTY,
    GeminiSchemaAdapter,
    IdentitySchemaAdapter,
    declared_input_schema,
    schema_adapter_for,
)


class TestPydanticSchemaConverter:
    def test_required_and_optional_properties(self) -> None:
        model = PydanticSchemaConverter().to_args_model(
            "fs---read_file",
            {
                "type": "object",
                "properties": {"path": {"type": "string"}, "limit": {"type": "integer"}},
                "required": ["path"],
            },
        )
        parsed = model.model_validate({"path": "a.txt"})
        assert parsed.model_dump(by_alias=True, exclude_none=True) == {"path": "a.txt"}
        with pytest.raises(ValidationError):
            model.model_validate({"limit": 3})

    def test_type_mismatch_is_rejected(self) -> None:
        model = PydanticSchemaConverter().to_args_model(
            "t", {"type": "object", "properties": {"count": {"type": "integer"}}, "required": ["count"]}
        )
        with pytest.raises(ValidationError):
            model.model_validate({"count": "many"})

    def test_non_identifier_property_names(self) -> None:
        model = PydanticSchemaConverter().to_args_model(
            "t", {"type": "object", "properties": {"file-path": {"type": "string"}, "class": {"type": "string"}}}
        )
        parsed = model.model_validate({"file-path": "x", "class": "y"})
        assert parsed.model_dump(by_alias=True) == {"file-path": "x", "class": "y"}

    def test_enum_values(self) -> None:
        model = PydanticSchemaConverter().to_args_model(
            "t", {"type": "object", "properties": {"mode": {"enum": ["a", "b"]}}, "required": ["mode"]}
        )
        assert model.model_validate({"mode": "a"}).model_dump(by_alias=True) == {"mode": "a"}
        with pytest.raises(ValidationError):
            model.model_validate({"mode": "c"})

    def test_nested_objects_and_arrays(self) -> None:
        model = PydanticSchemaConverter().to_args_model(
            "t",
            {
                "type": "object",
                "properties": {
                    "items": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {"id": {"type": "integer"}},
                            "required": ["id"],
                        },
                    }
                },
                "required": ["items"],
            },
        )
        parsed = model.model_validate({"items": [{"id": 1}, {"id": 2}]})
        assert parsed.model_dump(by_alias=True) == {"items": [{"id": 1}, {"id": 2}]}
        with pytest.raises(ValidationError):
            model.model_validate({"items": [{"id": "x"}]})

    def test_extra_properties_forbidden_only_when_declared(self) -> None:
        open_model = PydanticSchemaConverter().to_args_model("t", {"type": "object", "properties": {"a": {"type": "string"}}})
        open_model.model_validate({"a": "x", "b": 1})

        closed = PydanticSchemaConverter().to_args_model(
            "t", {"type": "object", "properties": {"a": {"type": "string"}}, "additionalProperties": False}
        )
        with pytest.raises(ValidationError):
            closed.model_validate({"a": "x", "b": 1})

    def test_invalid_schema_accepts_anything(self) -> None:
        model = PydanticSchemaConverter().to_args_model("t", {"type": "object", "properties": ["not", "a", "map"]})
        assert model is EmptyArgs
        model.model_validate({"anything": True})


class TestGeminiSchemaAdapter:
    def test_rewrites_top_level_properties(self) -> None:
        schema = {
            "type": "object",
            "properties": {
                "when": {"type": "string", "format": "date-time"},
                "uri": {"type": "string", "format": "uri", "default": "x"},
                "choice": {"anyOf": [{"type": "string"}, {"type": "integer"}]},
                "nothing": {"type": "null"},
            },
        }
        out = GeminiSchemaAdapter().adapt(schema)
        props = out["properties"]
        assert props["when"] == {"type": "string", "format": "date-time"}
        assert props["uri"] == {"type": "string"}
        assert "anyOf" not in props["choice"]
        assert props["choice"]["any_of"] == [{"type": "string"}, {"type": "integer"}]
        assert props["choice"]["type"] == "string"
        assert props["nothing"]["type"] == "string"
        assert schema["properties"]["uri"]["format"] == "uri"

    def test_empty_properties_get_placeholder(self) -> None:
        out = GeminiSchemaAdapter().adapt({"type": "object"})
        assert list(out["properties"]) == [PLACEHOLDER_PROPERTY]


class TestDeclaredInputSchema:
    def test_identity_adapter_closes_schema(self) -> None:
        out = declared_input_schema({"properties": {"a": {"type": "string"}}}, adapter=IdentitySchemaAdapter())
        assert out["type"] == "object"
        assert out["additionalProperties"] is False

    def test_gemini_adapter_drops_additional_properties(self) -> None:
        out = declared_input_schema(
            {"type": "object", "properties": {}, "additionalProperties": False}, adapter=GeminiSchemaAdapter()
        )
        assert "additionalProperties" not in out
        assert PLACEHOLDER_PROPERTY in out["properties"]

    def test_missing_schema(self) -> None:
        out = declared_input_schema(None, adapter=IdentitySchemaAdapter())
        assert out == {"type": "object", "properties": {}, "additionalProperties": False}

    def test_adapter_lookup(self) -> None:
        assert isinstance(schema_adapter_for(" Gemini "), GeminiSchemaAdapter)
        assert isinstance(schema_adapter_for("openai"), IdentitySchemaAdapter)
