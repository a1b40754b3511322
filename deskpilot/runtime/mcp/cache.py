from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..constants import MCP_TOOLS_CACHE_VERSION
from ..ids import now_ts_ms
from ..models.mcp_spec import McpTool

logger = logging.getLogger(__name__)


class ToolsCacheEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tools: list[McpTool] = Field(default_factory=list)
    cached_at: int = Field(default=0, alias="cachedAt")


class ToolsCacheDocument(BaseModel):
    version: int = MCP_TOOLS_CACHE_VERSION
    servers: dict[str, ToolsCacheEntry] = Field(default_factory=dict)


class McpToolsCache:
    """
    On-disk cache of `server name -> tool list`.

    The cache is only a fast path for listing tools. It is rebuilt from live connectors and a
    version mismatch or unreadable file starts from an empty cache.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._doc = ToolsCacheDocument()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("MCP tools cache not found at %s, starting empty", self._path)
            self._doc = ToolsCacheDocument()
            return
        except (OSError, ValueError) as e:
            logger.debug("MCP tools cache unreadable (%s), starting empty", e)
            self._doc = ToolsCacheDocument()
            return

        if not isinstance(raw, dict) or raw.get("version") != MCP_TOOLS_CACHE_VERSION:
            logger.warning("MCP tools cache version mismatch, ignoring")
            self._doc = ToolsCacheDocument()
            return

        try:
            self._doc = ToolsCacheDocument.model_validate(raw)
        except ValidationError as e:
            logger.debug("MCP tools cache invalid (%s), starting empty", e)
            self._doc = ToolsCacheDocument()
            return
        logger.info("MCP tools cache loaded (%d servers)", len(self._doc.servers))

    def save(self) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            payload = self._doc.model_dump(mode="json", by_alias=True)
            tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
            tmp.replace(self._path)
        except OSError as e:
            logger.error("Error saving MCP tools cache to %s: %s", self._path, e)
            return False
        logger.debug("MCP tools cache saved")
        return True

    def get(self, server_name: str) -> list[McpTool] | None:
        entry = self._doc.servers.get(server_name)
        if entry is None:
            return None
        return list(entry.tools)

    def update(self, server_name: str, tools: list[McpTool]) -> None:
        self._doc.servers[server_name] = ToolsCacheEntry(tools=list(tools), cached_at=now_ts_ms())

    def remove(self, server_name: str) -> None:
        self._doc.servers.pop(server_name, None)

    def clear(self) -> None:
        self._doc.servers.clear()

    def server_names(self) -> list[str]:
        return sorted(self._doc.servers)
