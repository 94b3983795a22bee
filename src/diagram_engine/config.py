"""
Configuration models for the diagram engine.

Provides provider and engine configuration that can be loaded from YAML
files, plain dictionaries, or (for the shared built-in backend) environment
variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv

from diagram_engine.errors import ConfigurationError

ProviderType = Literal["openai", "anthropic", "builtin"]

PROVIDER_TYPES: tuple[str, ...] = ("openai", "anthropic", "builtin")

DEFAULT_BUILTIN_MODEL = "glm-4.6"


@dataclass
class ProviderConfig:
    """
    Connection settings for one LLM provider.

    Example YAML:
        type: openai
        name: My OpenAI
        base_url: https://api.openai.com/v1
        api_key: "sk-..."
        model: gpt-4o
    """

    type: ProviderType = "openai"
    base_url: str = ""
    api_key: str = ""
    model: str = ""
    name: str = ""
    max_tokens: int | None = None  # None = provider default
    temperature: float | None = None  # None = provider default

    @property
    def is_builtin(self) -> bool:
        return self.type == "builtin"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        """Create config from a dictionary (accepts camelCase keys too)."""
        return cls(
            type=data.get("type", "openai"),
            base_url=data.get("base_url", data.get("baseUrl", "")) or "",
            api_key=data.get("api_key", data.get("apiKey", "")) or "",
            model=data.get("model", "") or "",
            name=data.get("name", "") or "",
            max_tokens=data.get("max_tokens"),
            temperature=data.get("temperature"),
        )

    @classmethod
    def builtin_from_env(cls) -> ProviderConfig:
        """Build the shared built-in backend config from ``BUILTIN_GLM_*`` variables."""
        load_dotenv()
        return cls(
            type="builtin",
            base_url=os.environ.get("BUILTIN_GLM_BASE_URL", ""),
            api_key=os.environ.get("BUILTIN_GLM_API_KEY", ""),
            model=os.environ.get("BUILTIN_GLM_MODEL", DEFAULT_BUILTIN_MODEL),
            name="Built-in",
        )

    def validate(self, known_types: tuple[str, ...] = PROVIDER_TYPES) -> None:
        """
        Check the config before any request is dispatched.

        Args:
            known_types: Provider types that have an adapter

        Raises:
            ConfigurationError: If the provider type is unknown or credentials
                are missing
        """
        if self.type not in known_types:
            raise ConfigurationError(f"Unsupported provider type: {self.type}")
        if self.is_builtin and not (self.base_url and self.api_key):
            raise ConfigurationError("Built-in model API is not configured")
        if not self.base_url:
            raise ConfigurationError(f"Missing base URL for {self.type} provider")
        if not self.api_key:
            raise ConfigurationError(f"Missing API key for {self.type} provider")
        if not self.model and not self.is_builtin:
            raise ConfigurationError(f"Missing model name for {self.type} provider")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "base_url": self.base_url,
            "api_key": self.api_key,
            "model": self.model,
            "name": self.name,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }


@dataclass(frozen=True)
class UsageLimits:
    """Caps applied to the shared built-in backend."""

    requests_per_hour: int = 20
    tokens_per_hour: int = 5000
    requests_per_day: int = 50
    cooldown_minutes: int = 5

    def to_dict(self) -> dict[str, int]:
        return {
            "requests_per_hour": self.requests_per_hour,
            "tokens_per_hour": self.tokens_per_hour,
            "requests_per_day": self.requests_per_day,
            "cooldown_minutes": self.cooldown_minutes,
        }


@dataclass
class EngineConfig:
    """
    Top-level configuration for the diagram engine.

    Example YAML:
        provider:
          type: anthropic
          base_url: https://api.anthropic.com/v1
          api_key: "sk-ant-..."
          model: claude-sonnet-4-20250514
        storage_path: ~/.diagram-engine/usage.db
        request_timeout: 300
    """

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    storage_path: Path | None = None  # None = in-memory usage tracking
    request_timeout: float = 300.0
    connect_timeout: float = 30.0
    status_cache_seconds: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Create config from a dictionary."""
        provider_data = data.get("provider") or {}
        # A bare builtin entry takes its credentials from the environment
        if not provider_data or (
            provider_data.get("type") == "builtin" and not provider_data.get("api_key")
        ):
            provider = ProviderConfig.builtin_from_env()
        else:
            provider = ProviderConfig.from_dict(provider_data)

        storage = data.get("storage_path")
        return cls(
            provider=provider,
            storage_path=Path(storage).expanduser() if storage else None,
            request_timeout=data.get("request_timeout", 300.0),
            connect_timeout=data.get("connect_timeout", 30.0),
            status_cache_seconds=data.get("status_cache_seconds", 30.0),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> EngineConfig:
        """Load config from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> EngineConfig:
        """Load config from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.to_dict(),
            "storage_path": str(self.storage_path) if self.storage_path else None,
            "request_timeout": self.request_timeout,
            "connect_timeout": self.connect_timeout,
            "status_cache_seconds": self.status_cache_seconds,
        }
