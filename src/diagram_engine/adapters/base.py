"""
Base provider adapter interface.

An adapter turns a provider's server-sent-event byte stream into an ordered
sequence of ``ContentFragment`` objects. Line framing, the ``[DONE]``
terminator and malformed-frame recovery are shared here; each provider
subclass only maps its own JSON frame shape and builds its own request.
"""

from __future__ import annotations

import codecs
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Any

from diagram_engine.config import ProviderConfig
from diagram_engine.errors import MalformedFrameError
from diagram_engine.logging import get_logger
from diagram_engine.transports.base import ProviderRequest

logger = get_logger("adapters")

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


@dataclass(frozen=True)
class ContentFragment:
    """One decoded unit of content, usage or termination from a provider stream."""

    content: str | None = None
    usage_tokens: int | None = None
    terminal: bool = False
    error_message: str | None = None

    @classmethod
    def done(cls) -> ContentFragment:
        return cls(terminal=True)

    @classmethod
    def failure(cls, message: str) -> ContentFragment:
        return cls(terminal=True, error_message=message)


@dataclass
class ImageAttachment:
    """Base64 image attached to a user message."""

    data: str
    mime_type: str = "image/png"


@dataclass
class Message:
    """A message in a conversation."""

    role: str  # "user", "assistant", "system"
    content: str
    image: ImageAttachment | None = None


class SSELineDecoder:
    """
    Splits a byte stream into lines.

    A trailing partial line is held back and prepended to the next chunk, and
    UTF-8 sequences split across chunks are decoded incrementally.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes | str) -> list[str]:
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        if not text:
            return []
        lines = (self._pending + text).split("\n")
        self._pending = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [tail.rstrip("\r")] if tail.strip() else []


class ProviderAdapter(ABC):
    """
    Abstract base class for provider stream adapters.

    Subclasses implement ``build_request()`` and ``adapt_frame()``; the
    uniform per-line contract is ``adapt(line) -> ContentFragment | None``.

    Example implementation for a custom provider:

        class EchoAdapter(ProviderAdapter):
            name = "echo"

            def build_request(self, messages):
                return ProviderRequest(url=f"{self.config.base_url}/echo")

            def adapt_frame(self, frame):
                if "text" in frame:
                    return ContentFragment(content=frame["text"])
                return None
    """

    name: str = ""

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @abstractmethod
    def build_request(self, messages: list[Message]) -> ProviderRequest:
        """Build the streaming HTTP request for ``messages``."""
        ...

    @abstractmethod
    def adapt_frame(self, frame: dict[str, Any]) -> ContentFragment | None:
        """Map one decoded ``data:`` JSON frame to a fragment, or None to skip it."""
        ...

    def adapt_line(self, line: str) -> ContentFragment | None:
        """Handle a non-blank line that is not ``data:``-prefixed. Ignored by default."""
        return None

    def decode_frame(self, payload: str) -> dict[str, Any]:
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise MalformedFrameError(f"Undecodable frame: {exc}", payload) from exc
        if not isinstance(frame, dict):
            raise MalformedFrameError("Frame is not a JSON object", payload)
        return frame

    def adapt(self, line: str) -> ContentFragment | None:
        """
        Normalize one raw SSE line.

        Returns:
            A fragment, or None for blank lines and frames carrying nothing
            of interest

        Raises:
            MalformedFrameError: If a ``data:`` payload is not a JSON object
        """
        stripped = line.strip()
        if not stripped:
            return None

        if not stripped.startswith(DATA_PREFIX):
            return self.adapt_line(stripped)

        payload = stripped[len(DATA_PREFIX) :].strip()
        if payload == DONE_MARKER:
            return ContentFragment.done()

        return self.adapt_frame(self.decode_frame(payload))

    def _adapt_or_skip(self, line: str) -> ContentFragment | None:
        try:
            return self.adapt(line)
        except MalformedFrameError as exc:
            logger.warning("Skipping malformed %s frame: %s (%r)", self.name, exc.message, exc.line[:200])
            return None

    async def stream(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[ContentFragment]:
        """
        Decode a raw byte stream into fragments.

        Stops after the first terminal fragment. A transport that simply ends
        without a terminator ends the fragment stream without one.
        """
        decoder = SSELineDecoder()

        async for chunk in chunks:
            for line in decoder.feed(chunk):
                fragment = self._adapt_or_skip(line)
                if fragment is None:
                    continue
                yield fragment
                if fragment.terminal:
                    return

        for line in decoder.flush():
            fragment = self._adapt_or_skip(line)
            if fragment is not None:
                yield fragment
                if fragment.terminal:
                    return

    def _max_tokens(self, default: int) -> int:
        return self.config.max_tokens if self.config.max_tokens is not None else default

    def _temperature(self, default: float) -> float:
        return self.config.temperature if self.config.temperature is not None else default
