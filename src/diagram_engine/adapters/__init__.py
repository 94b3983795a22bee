"""
Provider adapters.

Each adapter normalizes one provider's streaming wire format into
``ContentFragment`` objects.
"""

from diagram_engine.adapters.anthropic import AnthropicAdapter
from diagram_engine.adapters.base import (
    ContentFragment,
    ImageAttachment,
    Message,
    ProviderAdapter,
    SSELineDecoder,
)
from diagram_engine.adapters.builtin import BuiltinAdapter
from diagram_engine.adapters.openai import OpenAIAdapter
from diagram_engine.adapters.registry import AdapterRegistry, create_adapter, default_registry

__all__ = [
    "AdapterRegistry",
    "AnthropicAdapter",
    "BuiltinAdapter",
    "ContentFragment",
    "ImageAttachment",
    "Message",
    "OpenAIAdapter",
    "ProviderAdapter",
    "SSELineDecoder",
    "create_adapter",
    "default_registry",
]
