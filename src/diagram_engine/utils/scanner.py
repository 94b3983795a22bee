"""
String-aware bracket scanning shared by extraction, repair and diagnostics.

The scanner walks text once, left to right, tracking whether it is inside a
double-quoted string, whether the previous character was a backslash escape,
and the stack of open ``{`` / ``[`` brackets. Brackets inside strings are never
counted.
"""

from __future__ import annotations

from dataclasses import dataclass, field

OPENERS = "{["
CLOSERS = "}]"
CLOSER_FOR = {"{": "}", "[": "]"}


@dataclass
class BracketScanner:
    """
    Incremental scan state. Feed characters with ``step()``.

    ``step()`` returns what the character meant structurally:
    ``"open"``, ``"close"`` (matched the top of the stack),
    ``"mismatch"`` (a closer that did not match), ``"quote"`` (a string
    boundary), or ``None`` for anything else.
    """

    in_string: bool = False
    escape_next: bool = False
    stack: list[str] = field(default_factory=list)

    def step(self, char: str) -> str | None:
        if self.escape_next:
            self.escape_next = False
            return None

        if char == "\\":
            self.escape_next = True
            return None

        if char == '"':
            self.in_string = not self.in_string
            return "quote"

        if self.in_string:
            return None

        if char in OPENERS:
            self.stack.append(char)
            return "open"

        if char in CLOSERS:
            if self.stack and CLOSER_FOR[self.stack[-1]] == char:
                self.stack.pop()
                return "close"
            return "mismatch"

        return None

    @property
    def depth(self) -> int:
        return len(self.stack)

    def pending_closers(self) -> str:
        """Closing brackets that would balance the current stack, innermost first."""
        return "".join(CLOSER_FOR[opener] for opener in reversed(self.stack))


@dataclass(frozen=True)
class StructuralAnalysis:
    """Bracket balance diagnostics for a text snapshot."""

    is_balanced: bool
    has_mismatched_closing: bool
    pending_closers: str
    pending_count: int


def analyze_structure(text: str) -> StructuralAnalysis:
    """
    Report whether ``text`` is balanced and which closers it is missing.

    A mismatched closer is recorded but does not pop the stack, so the
    pending closers still describe the openers that were never closed.
    """
    scanner = BracketScanner()
    mismatched = False

    for char in text:
        if scanner.step(char) == "mismatch":
            mismatched = True

    return StructuralAnalysis(
        is_balanced=scanner.depth == 0 and not mismatched,
        has_mismatched_closing=mismatched,
        pending_closers=scanner.pending_closers(),
        pending_count=scanner.depth,
    )


def extract_balanced_snippet(text: str) -> str | None:
    """
    Return the first complete, balanced ``{...}`` or ``[...]`` span in ``text``.

    The first opener seen at depth zero marks the candidate start. A closer
    that does not match the innermost opener abandons the candidate and the
    scan restarts from a clean stack. Returns ``None`` if no span closes.
    """
    scanner = BracketScanner()
    start = -1

    for index, char in enumerate(text):
        was_empty = scanner.depth == 0
        event = scanner.step(char)

        if event == "open":
            if was_empty:
                start = index
        elif event == "close":
            if scanner.depth == 0 and start != -1:
                return text[start : index + 1]
        elif event == "mismatch" and not was_empty:
            scanner.stack.clear()
            start = -1

    return None
