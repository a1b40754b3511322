from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .runtime.constants import MCP_TOOLS_CACHE_FILE
from .runtime.llm.openai_stream import OpenAICompatibleStreamProvider
from .runtime.llm.provider import StreamProvider
from .runtime.models.agent_profile import DEFAULT_AGENT_PROFILE, AgentProfile
from .runtime.models.mcp_spec import McpServerConfig
from .runtime.models.spec_common import _clean_non_empty_str
from .runtime.usage import ModelPricing

logger = logging.getLogger(__name__)

HOME_ENV = "DESKPILOT_HOME"
SETTINGS_FILE = "settings.json"


class ConfigError(ValueError):
    pass


def config_home() -> Path:
    raw = os.environ.get(HOME_ENV)
    if raw and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path.home() / ".deskpilot"


class ProviderSettings(BaseModel):
    """An OpenAI-compatible endpoint. `name` selects provider-specific schema handling (e.g. "gemini")."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = "openai"
    base_url: str | None = Field(default=None, alias="baseUrl")
    api_key: str | None = Field(default=None, alias="apiKey")
    api_key_env: str | None = Field(default=None, alias="apiKeyEnv")
    timeout_s: float | None = Field(default=None, gt=0, alias="timeoutS")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        return _clean_non_empty_str(v, field_name="name")

    def resolve_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            value = os.environ.get(self.api_key_env)
            if not value:
                raise ConfigError(f"Missing required environment variable '{self.api_key_env}'.")
            return value
        return None


class DeskpilotSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mcp_servers: dict[str, McpServerConfig] = Field(default_factory=dict, alias="mcpServers")
    agent_profiles: list[AgentProfile] = Field(default_factory=lambda: [DEFAULT_AGENT_PROFILE], alias="agentProfiles")
    providers: dict[str, ProviderSettings] = Field(default_factory=dict)
    model_pricing: dict[str, ModelPricing] = Field(default_factory=dict, alias="modelPricing")
    cache_dir: Path = Field(default_factory=lambda: config_home() / "cache", alias="cacheDir")

    @model_validator(mode="before")
    @classmethod
    def _unwrap_mcp_servers(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        servers = data.get("mcpServers", data.get("mcp_servers"))
        if isinstance(servers, dict) and isinstance(servers.get("mcpServers"), dict):
            data = dict(data)
            data["mcpServers"] = servers["mcpServers"]
            data.pop("mcp_servers", None)
        return data

    @property
    def tools_cache_file(self) -> Path:
        return self.cache_dir / MCP_TOOLS_CACHE_FILE

    def profile(self, profile_id: str) -> AgentProfile:
        for profile in self.agent_profiles:
            if profile.id == profile_id:
                return profile
        known = ", ".join(p.id for p in self.agent_profiles) or "(none)"
        raise ConfigError(f"Unknown agent profile {profile_id!r}. Available: {known}")


def parse_mcp_servers(raw: Any) -> dict[str, McpServerConfig]:
    """Accepts `{"mcpServers": {...}}` as well as a bare `{name: config}` map."""
    if not isinstance(raw, dict):
        raise ConfigError("MCP server config must be a JSON object.")
    servers = raw.get("mcpServers", raw)
    if not isinstance(servers, dict):
        raise ConfigError("'mcpServers' must be a JSON object.")
    try:
        return {str(name): McpServerConfig.model_validate(cfg) for name, cfg in servers.items()}
    except ValidationError as e:
        raise ConfigError(f"Invalid MCP server config: {e}") from e


def load_settings(path: Path | None = None) -> DeskpilotSettings:
    settings_path = path or (config_home() / SETTINGS_FILE)
    if not settings_path.exists():
        logger.debug("No settings file at %s, using defaults", settings_path)
        return DeskpilotSettings()
    try:
        raw = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read settings file {settings_path}: {e}") from e
    try:
        settings = DeskpilotSettings.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings file {settings_path}: {e}") from e
    logger.info("Loaded settings from %s (%d MCP servers)", settings_path, len(settings.mcp_servers))
    return settings


def make_provider_factory(settings: DeskpilotSettings):
    """Provider lookup by `profile.provider`; unknown providers yield None (reported by the agent)."""

    def _factory(profile: AgentProfile) -> StreamProvider | None:
        provider = settings.providers.get(profile.provider)
        if provider is None or not profile.model:
            return None
        return OpenAICompatibleStreamProvider(
            model=profile.model,
            api_key=provider.resolve_api_key(),
            base_url=provider.base_url,
            name=provider.name,
            profile_id=profile.id,
            timeout_s=provider.timeout_s,
        )

    return _factory
