from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .spec_common import CamelModel, _clean_non_empty_str


class McpServerConfig(CamelModel):
    """
    One entry of the `mcpServers` settings map.

    A local server has `command` (+ `args`, `env`); a remote one has `url` (+ `headers`).
    `args` keep order and duplicates: they are argv.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("command", "url")
    @classmethod
    def _validate_optional_strs(cls, v: str | None, info) -> str | None:
        if v is None:
            return None
        return _clean_non_empty_str(v, field_name=str(info.field_name))

    @property
    def is_local(self) -> bool:
        """Launched as a child process; `command` takes precedence over `url`."""
        return self.command is not None

    @property
    def is_remote(self) -> bool:
        return self.command is None and self.url is not None

    def string_values(self) -> Iterator[str]:
        """Every string-valued field (command, args, env values, url, header values)."""

        if self.command is not None:
            yield self.command
        yield from self.args
        yield from self.env.values()
        if self.url is not None:
            yield self.url
        yield from self.headers.values()


class McpTool(BaseModel):
    """Tool description as listed by an MCP server (and as stored in the tools cache)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}}, alias="inputSchema")
    server_name: str | None = Field(default=None, alias="serverName")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        return _clean_non_empty_str(v, field_name="name")
