from __future__ import annotations

import logging
import re
from typing import Any, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, create_model

logger = logging.getLogger(__name__)


class EmptyArgs(BaseModel):
    """Fallback arguments model: accepts any object."""

    model_config = ConfigDict(extra="allow")


class SchemaConverter(Protocol):
    def to_args_model(self, name: str, schema: dict[str, Any]) -> type[BaseModel]: ...


_SCALARS: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "null": type(None),
}


def _model_name(name: str) -> str:
    cleaned = re.sub(r"\W+", "_", name).strip("_") or "Tool"
    return f"{cleaned}_Args"


class PydanticSchemaConverter:
    """
    JSON Schema (as published by MCP servers) to a pydantic model used for argument validation.

    Property names are kept as aliases so any JSON key works, including ones that are not Python
    identifiers. Unsupported constructs validate as `Any`. A schema that cannot be converted
    falls back to `EmptyArgs`.
    """

    def to_args_model(self, name: str, schema: dict[str, Any]) -> type[BaseModel]:
        try:
            return self._object_model(_model_name(name), schema)
        except Exception as e:
            logger.warning("Could not convert input schema for tool %s, accepting any object: %s", name, e)
            return EmptyArgs

    def _object_model(self, model_name: str, schema: dict[str, Any]) -> type[BaseModel]:
        if not isinstance(schema, dict):
            raise ValueError("schema must be an object")
        props = schema.get("properties") or {}
        if not isinstance(props, dict):
            raise ValueError("properties must be an object")
        required = {r for r in (schema.get("required") or []) if isinstance(r, str)}

        fields: dict[str, Any] = {}
        for index, (prop, prop_schema) in enumerate(props.items()):
            annotation = self._annotation(f"{model_name}_{index}", prop_schema if isinstance(prop_schema, dict) else {})
            if prop in required:
                fields[f"field_{index}"] = (annotation, Field(..., alias=prop))
            else:
                fields[f"field_{index}"] = (Optional[annotation], Field(None, alias=prop))

        extra = "forbid" if schema.get("additionalProperties") is False else "allow"
        return create_model(model_name, __config__=ConfigDict(extra=extra), **fields)

    def _annotation(self, model_name: str, schema: dict[str, Any]) -> Any:
        enum = schema.get("enum")
        if isinstance(enum, list) and enum and all(isinstance(v, (str, int, float, bool)) for v in enum):
            return Literal[tuple(enum)]
        if "const" in schema and isinstance(schema["const"], (str, int, float, bool)):
            return Literal[schema["const"]]

        variants = schema.get("anyOf") or schema.get("oneOf")
        if isinstance(variants, list) and variants:
            members = [self._annotation(f"{model_name}_{i}", v if isinstance(v, dict) else {}) for i, v in enumerate(variants)]
            return Union[tuple(members)]

        typ = schema.get("type")
        if isinstance(typ, list):
            members = [self._type_annotation(model_name, t, schema) for t in typ if isinstance(t, str)]
            if not members:
                return Any
            return Union[tuple(members)]
        if isinstance(typ, str):
            return self._type_annotation(model_name, typ, schema)
        return Any

    def _type_annotation(self, model_name: str, typ: str, schema: dict[str, Any]) -> Any:
        if typ in _SCALARS:
            return _SCALARS[typ]
        if typ == "array":
            items = schema.get("items")
            if isinstance(items, dict) and items:
                return list[self._annotation(f"{model_name}_item", items)]
            return list[Any]
        if typ == "object":
            if isinstance(schema.get("properties"), dict) and schema["properties"]:
                return self._object_model(model_name, schema)
            return dict[str, Any]
        return Any
