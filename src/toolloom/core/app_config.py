from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from toolloom.core.exceptions import ConfigFileError
from toolloom.models.provider_model import ProviderConfig, ProviderType

# Separator between a tool source name and the tool name it exposes.
TOOL_NAME_SEPARATOR = "__"

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def expand_env(text: str) -> str:
    """Expand $VAR / ${VAR} references; unset variables become empty strings."""
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1) or m.group(2), ""), text)


def resolve_config_path(path: str) -> Path:
    """Resolve an app config path deterministically.

    Accepts absolute paths, or relative paths resolved against:
      1) the current working directory
      2) the project root (derived from this file location)
    """
    if not path or not str(path).strip():
        raise ConfigFileError("App config path is empty")

    raw = os.path.expandvars(str(path))
    raw = os.path.expanduser(raw)

    candidate = Path(raw)
    if candidate.is_absolute():
        if not candidate.exists():
            raise ConfigFileError(f"App config file not found. Path='{path}'")
        return candidate

    tried: list[Path] = []

    cwd_candidate = (Path.cwd() / candidate).resolve()
    tried.append(cwd_candidate)
    if cwd_candidate.exists():
        return cwd_candidate

    # parents: core -> toolloom -> src -> <repo>
    repo_root = Path(__file__).resolve().parents[3]
    repo_candidate = (repo_root / candidate).resolve()
    tried.append(repo_candidate)
    if repo_candidate.exists():
        return repo_candidate

    tried_str = ", ".join(str(p) for p in tried)
    raise ConfigFileError(
        f"App config file not found. Path='{path}'. Tried: {tried_str}"
    )


class MCPServerConfig(BaseModel):
    """Declarative config for a single MCP tool server."""

    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    enabled: bool = True

    # Optional HTTP headers for auth (e.g., Authorization: Bearer ...).
    headers: Optional[Dict[str, str]] = None

    timeout_s: float = 30.0

    # Matched against the raw MCP tool name, before namespacing.
    allow_tools: Optional[List[str]] = None
    deny_tools: Optional[List[str]] = None

    @model_validator(mode="after")
    def _normalize_and_validate(self) -> "MCPServerConfig":
        name = self.name.strip()
        if not name:
            raise ValueError("MCP server name cannot be empty")
        if TOOL_NAME_SEPARATOR in name:
            raise ValueError(f"MCP server name may not contain '{TOOL_NAME_SEPARATOR}'")

        hdrs = self.headers
        if hdrs is not None:
            cleaned: Dict[str, str] = {}
            for k, v in hdrs.items():
                k2 = str(k).strip()
                if not k2:
                    raise ValueError("headers contains an empty key")
                cleaned[k2] = str(v)
            object.__setattr__(self, "headers", cleaned)

        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")

        allow = [t.strip() for t in (self.allow_tools or []) if t and t.strip()]
        deny = [t.strip() for t in (self.deny_tools or []) if t and t.strip()]

        if allow and deny:
            overlap = sorted(set(allow).intersection(set(deny)))
            if overlap:
                raise ValueError(
                    f"allow_tools and deny_tools overlap for server '{name}': {overlap}"
                )

        object.__setattr__(self, "allow_tools", allow or None)
        object.__setattr__(self, "deny_tools", deny or None)
        object.__setattr__(self, "name", name)
        return self

    @property
    def tool_name_prefix(self) -> str:
        return f"{self.name}{TOOL_NAME_SEPARATOR}"


class AppConfig(BaseModel):
    """Top-level application config loaded from YAML."""

    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    mcp_servers: List[MCPServerConfig] = Field(default_factory=list)
    default_provider: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_provider_ids(cls, data: Any) -> Any:
        # The mapping key is the provider id unless the entry names one itself.
        if isinstance(data, dict) and isinstance(data.get("providers"), dict):
            providers = {}
            for key, entry in data["providers"].items():
                if isinstance(entry, dict):
                    entry = {**entry}
                    entry.setdefault("id", key)
                providers[key] = entry
            data = {**data, "providers": providers}
        return data

    @model_validator(mode="after")
    def _validate(self) -> "AppConfig":
        for key, p in self.providers.items():
            if p.id != key:
                raise ValueError(f"Provider id '{p.id}' does not match its key '{key}'")

        if self.default_provider and self.default_provider not in self.providers:
            raise ValueError(f"default_provider '{self.default_provider}' is not a configured provider")

        names: set[str] = set()
        for s in self.mcp_servers:
            if not s.enabled:
                continue
            if s.name in names:
                raise ValueError(f"Duplicate MCP server name among enabled servers: {s.name}")
            names.add(s.name)

        return self


def load_app_config(path: str, *, env_expand: bool = True, missing_ok: bool = False) -> AppConfig:
    """Load application configuration from a YAML file.

    The YAML may be either top-level keys {providers, mcp_servers, default_provider}
    or nested under a top-level `toolloom:` key. Environment variables in the file
    (e.g. ${OPENAI_API_KEY}) are expanded; unset ones expand to "" so the
    affected provider stays unconfigured.
    """
    try:
        p = resolve_config_path(path)
    except ConfigFileError:
        if missing_ok:
            return AppConfig()
        raise

    try:
        raw = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(f"Failed to read app config '{p}': {e}") from e
    if env_expand:
        raw = expand_env(raw)

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Failed to parse app config YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigFileError("App config YAML root must be a mapping/object")

    if "toolloom" in data and isinstance(data["toolloom"], dict):
        data = data["toolloom"]

    try:
        return AppConfig.model_validate(data)
    except ValueError as e:
        raise ConfigFileError(f"Invalid app config: {e}") from e


def config_snapshot(cfg: AppConfig) -> Dict[str, Any]:
    """A small, secret-free summary for logs/health endpoints."""
    return {
        "default_provider": cfg.default_provider,
        "providers": [
            {
                "id": p.id,
                "type": p.type.value,
                "enabled": p.enabled,
                "model": p.model,
                "endpoint": p.endpoint,
                "has_api_key": bool(p.api_key),
            }
            for p in cfg.providers.values()
        ],
        "mcp_servers": [
            {
                "name": s.name,
                "enabled": s.enabled,
                "url": s.url,
                "timeout_s": s.timeout_s,
                "header_keys": sorted(list((s.headers or {}).keys())),
                "allow_tools": s.allow_tools,
                "deny_tools": s.deny_tools,
            }
            for s in cfg.mcp_servers
        ],
    }


__all__ = [
    "AppConfig",
    "MCPServerConfig",
    "ProviderConfig",
    "ProviderType",
    "TOOL_NAME_SEPARATOR",
    "config_snapshot",
    "expand_env",
    "load_app_config",
    "resolve_config_path",
]
