"""Incremental JSON extraction and repair for streamed model output.

``repair_json()`` is called on the *whole* accumulated buffer after every
network chunk, so each pass must stay linear in the buffer length. The
pipeline, in order:

1. strip a surrounding Markdown code fence
2. take the first balanced ``{...}`` / ``[...]`` span, else the widest
   bracket window
3. ``json.loads()`` the snippet as-is
4. escape stray double quotes inside strings and parse again
5. append the closers a truncated document is missing and parse again
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from diagram_engine.utils.scanner import (
    StructuralAnalysis,
    analyze_structure,
    extract_balanced_snippet,
)

_FENCE_OPEN_RE = re.compile(r"^```(?:json|javascript|js)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")

PREVIEW_LENGTH = 200
QUOTE_TERMINATORS = frozenset(":,}]")


class ParseStatus(str, Enum):
    """How (or whether) a snippet became a JSON value."""

    DIRECT = "direct"
    REPAIRED = "repaired"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ParseOutcome:
    """Result of one ``repair_json()`` pass."""

    status: ParseStatus
    value: Any = None
    snippet: str = ""
    applied_fix: str | None = None
    applied_closers: str = ""
    analysis: StructuralAnalysis | None = None
    diagnostics: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.status is not ParseStatus.FAILED


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json / ```js / ``` opener and a trailing ``` closer."""
    processed = text.strip()
    processed = _FENCE_OPEN_RE.sub("", processed, count=1)
    processed = _FENCE_CLOSE_RE.sub("", processed, count=1)
    return processed.strip()


def fallback_window(text: str) -> str:
    """
    Widest bracket window, used when no balanced span exists.

    Text that already starts with a bracket is returned whole. Otherwise the
    span from the first ``{`` to the last ``}`` wins, then the first ``[`` to
    the last ``]``. The result may still be invalid JSON.
    """
    if text.startswith(("{", "[")):
        return text

    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            return text[start : end + 1]

    return text


def _next_significant(text: str) -> list[str]:
    """For every index, the first non-whitespace character at or after it."""
    result = [""] * (len(text) + 1)
    for index in range(len(text) - 1, -1, -1):
        char = text[index]
        result[index] = result[index + 1] if char.isspace() else char
    return result


def fix_unescaped_quotes(text: str) -> str:
    """
    Escape double quotes that sit inside a string value.

    A quote inside a string only closes it when the next non-whitespace
    character is ``:``, ``,``, ``}``, ``]`` or the end of the text; any other
    quote is emitted as ``\\"``.
    """
    lookahead = _next_significant(text)
    out: list[str] = []
    in_string = False
    escape_next = False

    for index, char in enumerate(text):
        if escape_next:
            out.append(char)
            escape_next = False
            continue

        if char == "\\":
            out.append(char)
            escape_next = True
            continue

        if char != '"':
            out.append(char)
            continue

        if not in_string:
            in_string = True
            out.append(char)
        elif lookahead[index + 1] in QUOTE_TERMINATORS or lookahead[index + 1] == "":
            in_string = False
            out.append(char)
        else:
            out.append('\\"')

    return "".join(out)


def preview_text(text: str, length: int = PREVIEW_LENGTH) -> str:
    """First ``length`` characters with whitespace runs collapsed."""
    return re.sub(r"\s+", " ", text[:length]).strip()


def repair_json(text: str) -> ParseOutcome:
    """
    Recover a JSON value from (possibly partial) model output.

    Args:
        text: The full accumulated buffer, not just the latest delta

    Returns:
        ParseOutcome with the parsed value, or status FAILED with diagnostics
    """
    cleaned = strip_code_fence(text)
    analysis = analyze_structure(cleaned)
    diagnostics: list[str] = []

    snippet = extract_balanced_snippet(cleaned)
    if snippet is None:
        snippet = fallback_window(cleaned)

    try:
        value = json.loads(snippet)
        return ParseOutcome(ParseStatus.DIRECT, value, snippet, analysis=analysis)
    except json.JSONDecodeError as exc:
        diagnostics.append(f"direct parse failed: {exc}")

    fixed = fix_unescaped_quotes(snippet)
    if fixed != snippet:
        try:
            value = json.loads(fixed)
            return ParseOutcome(
                ParseStatus.REPAIRED,
                value,
                fixed,
                applied_fix="escaped_quotes",
                analysis=analysis,
            )
        except json.JSONDecodeError as exc:
            diagnostics.append(f"quote repair failed: {exc}")

    if analysis.pending_closers:
        completed = cleaned + analysis.pending_closers
        try:
            value = json.loads(completed)
            return ParseOutcome(
                ParseStatus.COMPLETED,
                value,
                completed,
                applied_closers=analysis.pending_closers,
                analysis=analysis,
            )
        except json.JSONDecodeError as exc:
            diagnostics.append(
                f"still invalid after appending {analysis.pending_closers}: {exc}"
            )

    return ParseOutcome(
        ParseStatus.FAILED,
        snippet=cleaned,
        analysis=analysis,
        diagnostics=tuple(diagnostics),
    )


def format_failure(outcome: ParseOutcome, reason: str | None = None) -> str:
    """Build a human-readable message for a failed (or element-less) outcome."""
    base = reason or "No valid JSON array or element object found in the generated code"
    hints: list[str] = []

    analysis = outcome.analysis
    if analysis is not None:
        if analysis.pending_count > 0:
            hints.append(f"looks like it is missing {analysis.pending_closers}")
        if analysis.has_mismatched_closing:
            hints.append("brackets are mismatched")

    hint_msg = f" ({'; '.join(hints)})" if hints else ""
    detail = "; ".join(outcome.diagnostics) or "make sure the output is complete JSON"
    preview = preview_text(outcome.snippet) or "empty"
    return f"{base}{hint_msg}. {detail}. Preview: {preview}"
