"""
Transport layer: moves a built provider request over the wire and hands
back the raw response body. Framing and decoding belong to the adapters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

_SECRET_HEADERS = {"authorization", "x-api-key", "api-key"}


@dataclass
class TransportConfig:
    """Connection settings shared by every request a transport sends."""

    headers: dict[str, str] = field(default_factory=dict)
    # Generation streams can run for minutes; only the connect phase is short.
    timeout: float = 300.0
    connect_timeout: float = 30.0


@dataclass
class ProviderRequest:
    """A provider-specific streaming call, built by an adapter."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    method: str = "POST"

    def redacted_headers(self) -> dict[str, str]:
        """Headers with credentials masked, for logging."""
        return {
            key: ("***" if key.lower() in _SECRET_HEADERS else value)
            for key, value in self.headers.items()
        }

    def summary(self) -> str:
        model = self.body.get("model", "?")
        return f"{self.method} {self.url} model={model} messages={len(self.body.get('messages', []))}"


class TransportBase(ABC):
    """Sends one ProviderRequest and yields the response body as bytes."""

    def __init__(self, config: TransportConfig | None = None) -> None:
        self.config = config or TransportConfig()

    @abstractmethod
    async def stream(self, request: ProviderRequest) -> AsyncIterator[bytes]:
        """
        Yield raw body bytes in whatever chunk sizes the network delivers.

        Raises:
            TransportError: Network failure or a non-success HTTP status.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
