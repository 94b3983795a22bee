"""
Adapter registry: maps a provider type to its adapter class.

The adapter is chosen once, when a generation is configured, never per frame.

Example:
    from diagram_engine.adapters.registry import default_registry

    adapter = default_registry.create(ProviderConfig.builtin_from_env())

    # Custom providers can be plugged in by type name
    default_registry.register("echo", EchoAdapter)
"""

from __future__ import annotations

from diagram_engine.adapters.anthropic import AnthropicAdapter
from diagram_engine.adapters.base import ProviderAdapter
from diagram_engine.adapters.builtin import BuiltinAdapter
from diagram_engine.adapters.openai import OpenAIAdapter
from diagram_engine.config import ProviderConfig
from diagram_engine.errors import ConfigurationError
from diagram_engine.logging import get_logger

logger = get_logger("adapters.registry")


class AdapterRegistry:
    """
    A registry of provider adapter classes keyed by provider type.

    Thread Safety:
        The registry is designed for single-threaded async usage.
        Registration and lookup are not protected by locks.
    """

    def __init__(self) -> None:
        self._adapters: dict[str, type[ProviderAdapter]] = {}

    def register(self, provider_type: str, adapter_cls: type[ProviderAdapter]) -> None:
        """
        Register an adapter class for a provider type.

        Raises:
            ValueError: If the provider type is empty
        """
        if not provider_type:
            raise ValueError("Provider type must not be empty")
        if provider_type in self._adapters:
            logger.debug("Overriding adapter: %s", provider_type)
        self._adapters[provider_type] = adapter_cls

    def unregister(self, provider_type: str) -> bool:
        return self._adapters.pop(provider_type, None) is not None

    def get(self, provider_type: str) -> type[ProviderAdapter] | None:
        return self._adapters.get(provider_type)

    def list_types(self) -> list[str]:
        return sorted(self._adapters)

    def create(self, config: ProviderConfig) -> ProviderAdapter:
        """
        Validate ``config`` and instantiate the matching adapter.

        Raises:
            ConfigurationError: If the type is unknown or credentials are missing
        """
        adapter_cls = self._adapters.get(config.type)
        if adapter_cls is None:
            raise ConfigurationError(f"Unsupported provider type: {config.type}")
        config.validate(tuple(self._adapters))
        return adapter_cls(config)

    def __contains__(self, provider_type: str) -> bool:
        return provider_type in self._adapters


def _build_default_registry() -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register("openai", OpenAIAdapter)
    registry.register("anthropic", AnthropicAdapter)
    registry.register("builtin", BuiltinAdapter)
    return registry


default_registry = _build_default_registry()


def create_adapter(config: ProviderConfig) -> ProviderAdapter:
    """Create the adapter for ``config`` from the default registry."""
    return default_registry.create(config)
