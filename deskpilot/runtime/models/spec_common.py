from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def _clean_non_empty_str(value: str, *, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string.")
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"{field_name} must be a non-empty string.")
    return cleaned


def _dedupe_str_list(values: list[str] | None) -> list[str]:
    if not values:
        return []
    out: list[str] = []
    seen: set[str] = set()
    for raw in values:
        if not isinstance(raw, str):
            continue
        item = raw.strip()
        if not item or item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


class CamelModel(BaseModel):
    """
    Base for settings documents shared with the desktop shell.

    The shell persists camelCase keys; Python callers use snake_case. Both are accepted on input
    and `dump_settings()` writes camelCase back.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump_settings(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
