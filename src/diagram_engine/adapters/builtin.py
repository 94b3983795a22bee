"""
Adapter for the shared built-in backend (GLM, OpenAI-compatible wire format).

On top of the OpenAI frame shape the backend sends ``{"usage": {"total_tokens": N}}``
frames, and may emit a raw ``error: <json-or-text>`` line (not ``data:``
prefixed) that terminates the stream. ``finish_reason`` does not end the
stream; the usage frame comes after it.
"""

from __future__ import annotations

import json
from typing import Any

from diagram_engine.adapters.base import ContentFragment, Message
from diagram_engine.adapters.openai import OpenAIAdapter
from diagram_engine.config import DEFAULT_BUILTIN_MODEL
from diagram_engine.transports.base import ProviderRequest

ERROR_PREFIX = "error:"
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 0.9


def messages_to_prompt(messages: list[Message]) -> str:
    """Flatten a conversation into the single prompt the built-in model takes."""
    system = next((m for m in messages if m.role == "system"), None)
    parts: list[str] = []

    if system is not None:
        parts.append(f"System: {system.content}\n\n")

    for message in messages:
        if message.role == "system":
            continue
        label = "User" if message.role == "user" else "Assistant"
        parts.append(f"{label}: {message.content}\n\n")

    parts.append("Assistant: ")
    return "".join(parts)


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


class BuiltinAdapter(OpenAIAdapter):
    """Adapter for the rate-limited built-in model."""

    name = "builtin"

    def build_request(self, messages: list[Message]) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.config.base_url.rstrip('/')}/v1/chat/completions",
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
            },
            body={
                "model": self.config.model or DEFAULT_BUILTIN_MODEL,
                "messages": [{"role": "user", "content": messages_to_prompt(messages)}],
                "stream": True,
                "temperature": self._temperature(DEFAULT_TEMPERATURE),
                "max_tokens": self._max_tokens(DEFAULT_MAX_TOKENS),
                "top_p": DEFAULT_TOP_P,
            },
        )

    def adapt_frame(self, frame: dict[str, Any]) -> ContentFragment | None:
        if frame.get("error"):
            return ContentFragment.failure(f"Built-in model error: {_error_text(frame['error'])}")

        # The usage frame arrives after finish_reason, so only [DONE] or an error ends the stream.
        fragment = super().adapt_frame(frame)
        content = fragment.content if fragment is not None else None

        usage = frame.get("usage")
        total = usage.get("total_tokens") if isinstance(usage, dict) else None
        if not isinstance(total, int) or isinstance(total, bool):
            total = None

        if content is None and total is None:
            return None
        return ContentFragment(content=content, usage_tokens=total)

    def adapt_line(self, line: str) -> ContentFragment | None:
        if not line.startswith(ERROR_PREFIX):
            return None

        payload = line[len(ERROR_PREFIX) :].strip()
        try:
            message = _error_text(json.loads(payload))
        except json.JSONDecodeError:
            message = payload
        return ContentFragment.failure(f"Built-in model error: {message or 'unknown'}")
