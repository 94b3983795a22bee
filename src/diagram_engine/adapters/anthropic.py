"""
Anthropic Messages API adapter.

Only ``content_block_delta`` events carry text; ``message_stop`` ends the
stream and an ``error`` event ends it with a failure. Every other event type
(``message_start``, ``ping``, ...) is ignored.
"""

from __future__ import annotations

from typing import Any

from diagram_engine.adapters.base import ContentFragment, Message, ProviderAdapter
from diagram_engine.transports.base import ProviderRequest

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 1.0


def to_anthropic_message(message: Message) -> dict[str, Any]:
    """Convert a non-system message, expanding an attached image into a base64 block."""
    role = "assistant" if message.role == "assistant" else "user"
    if message.image is None:
        return {"role": role, "content": message.content}

    return {
        "role": role,
        "content": [
            {"type": "text", "text": message.content},
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": message.image.mime_type,
                    "data": message.image.data,
                },
            },
        ],
    }


class AnthropicAdapter(ProviderAdapter):
    """Adapter for Anthropic ``/messages`` streams."""

    name = "anthropic"

    def build_request(self, messages: list[Message]) -> ProviderRequest:
        system = next((m for m in messages if m.role == "system"), None)

        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": [to_anthropic_message(m) for m in messages if m.role != "system"],
            "max_tokens": self._max_tokens(DEFAULT_MAX_TOKENS),
            "stream": True,
            "temperature": self._temperature(DEFAULT_TEMPERATURE),
        }
        if system is not None:
            body["system"] = [{"type": "text", "text": system.content}]

        return ProviderRequest(
            url=f"{self.config.base_url.rstrip('/')}/messages",
            headers={
                "Content-Type": "application/json",
                "x-api-key": self.config.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            body=body,
        )

    def adapt_frame(self, frame: dict[str, Any]) -> ContentFragment | None:
        event_type = frame.get("type")

        if event_type == "content_block_delta":
            delta = frame.get("delta")
            text = delta.get("text") if isinstance(delta, dict) else None
            return ContentFragment(content=text) if text else None

        if event_type == "message_stop":
            return ContentFragment.done()

        if event_type == "error":
            error = frame.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            return ContentFragment.failure(f"Anthropic error: {message or error or 'unknown'}")

        return None
