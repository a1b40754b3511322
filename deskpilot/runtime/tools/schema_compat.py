from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any, Protocol

logger = logging.getLogger(__name__)

PLACEHOLDER_PROPERTY = "placeholder"
_GEMINI_STRING_FORMATS = {"enum", "date-time"}


class SchemaAdapter(Protocol):
    """Rewrites a tool's declared input schema so a provider family accepts it."""

    supports_additional_properties: bool

    def adapt(self, schema: dict[str, Any]) -> dict[str, Any]: ...


class IdentitySchemaAdapter:
    supports_additional_properties = True

    def adapt(self, schema: dict[str, Any]) -> dict[str, Any]:
        return deepcopy(schema)


class GeminiSchemaAdapter:
    """
    Gemini rejects several common JSON Schema features at request time.

    Only top-level properties are rewritten:
      - anyOf/oneOf/allOf are renamed to any_of/one_of/all_of
      - `default` is dropped
      - string `format`s other than enum/date-time are dropped
      - a missing or "null" type becomes "string"
    and an empty property map gets a placeholder property.
    """

    supports_additional_properties = False

    def adapt(self, schema: dict[str, Any]) -> dict[str, Any]:
        fixed = deepcopy(schema) if isinstance(schema, dict) else {"type": "object"}
        props = fixed.get("properties")
        if not isinstance(props, dict):
            props = {}
            fixed["properties"] = props

        for key, prop in props.items():
            if not isinstance(prop, dict):
                props[key] = {"type": "string"}
                continue
            for camel, snake in (("anyOf", "any_of"), ("oneOf", "one_of"), ("allOf", "all_of")):
                if camel in prop:
                    prop[snake] = prop.pop(camel)
            prop.pop("default", None)
            fmt = prop.get("format")
            if prop.get("type") == "string" and fmt and fmt not in _GEMINI_STRING_FORMATS:
                logger.debug("Removing unsupported format %r for property %r in Gemini schema", fmt, key)
                del prop["format"]
            if not prop.get("type") or prop.get("type") == "null":
                prop["type"] = "string"

        if not props:
            fixed["properties"] = {
                PLACEHOLDER_PROPERTY: {
                    "type": "string",
                    "description": "Placeholder property to satisfy Gemini schema requirements",
                }
            }
        return fixed


SCHEMA_ADAPTERS: dict[str, SchemaAdapter] = {
    "gemini": GeminiSchemaAdapter(),
}

_IDENTITY = IdentitySchemaAdapter()


def schema_adapter_for(provider_name: str, adapters: dict[str, SchemaAdapter] | None = None) -> SchemaAdapter:
    registry = SCHEMA_ADAPTERS if adapters is None else adapters
    return registry.get(provider_name.strip().lower(), _IDENTITY)


def declared_input_schema(schema: dict[str, Any] | None, *, adapter: SchemaAdapter) -> dict[str, Any]:
    """
    Schema sent to the provider for one tool: adapted for the provider family, always an object
    with a property map, and closed to extra properties where the provider supports saying so.
    """

    base = schema if isinstance(schema, dict) else {}
    adapted = adapter.adapt(base)
    out: dict[str, Any] = {**adapted, "type": adapted.get("type") or "object"}
    out["properties"] = adapted.get("properties") if isinstance(adapted.get("properties"), dict) else {}
    if adapter.supports_additional_properties:
        out["additionalProperties"] = False
    else:
        out.pop("additionalProperties", None)
    return out
