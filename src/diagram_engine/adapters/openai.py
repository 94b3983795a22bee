"""
OpenAI-compatible chat completions adapter.

Frames look like ``{"choices": [{"delta": {"content": "..."}, "finish_reason": null}]}``.
"""

from __future__ import annotations

from typing import Any

from diagram_engine.adapters.base import ContentFragment, Message, ProviderAdapter
from diagram_engine.errors import MalformedFrameError
from diagram_engine.transports.base import ProviderRequest

DEFAULT_MAX_TOKENS = 4096


def to_openai_message(message: Message) -> dict[str, Any]:
    """Convert a message, expanding an attached image into multimodal parts."""
    if message.image is None:
        return {"role": message.role, "content": message.content}

    image = message.image
    return {
        "role": message.role,
        "content": [
            {"type": "text", "text": message.content},
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{image.mime_type};base64,{image.data}",
                    "detail": "high",
                },
            },
        ],
    }


class OpenAIAdapter(ProviderAdapter):
    """
    Adapter for OpenAI-compatible ``/chat/completions`` streams.

    Example:
        adapter = OpenAIAdapter(ProviderConfig(
            type="openai",
            base_url="https://api.openai.com/v1",
            api_key="sk-...",
            model="gpt-4o",
        ))
        request = adapter.build_request([Message(role="user", content="A login flow")])
    """

    name = "openai"

    def build_request(self, messages: list[Message]) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.config.base_url.rstrip('/')}/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.config.api_key}",
            },
            body={
                "model": self.config.model,
                "messages": [to_openai_message(m) for m in messages],
                "stream": True,
                "max_tokens": self._max_tokens(DEFAULT_MAX_TOKENS),
            },
        )

    def _first_choice(self, frame: dict[str, Any]) -> dict[str, Any] | None:
        choices = frame.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        choice = choices[0]
        if not isinstance(choice, dict):
            raise MalformedFrameError("choices[0] is not an object", str(frame))
        return choice

    def adapt_frame(self, frame: dict[str, Any]) -> ContentFragment | None:
        choice = self._first_choice(frame)
        if choice is None:
            return None

        delta = choice.get("delta")
        content = delta.get("content") if isinstance(delta, dict) else None
        finished = choice.get("finish_reason") is not None

        if not content and not finished:
            return None
        return ContentFragment(content=content or None, terminal=finished)
