"""
Error taxonomy for diagram generation.

Every failure that reaches the orchestrator boundary is a
``DiagramEngineError`` tagged with a ``kind`` string, so callers can branch on
the kind without importing every subclass. ``MalformedFrameError`` is the one
exception that never leaves the provider adapters: a single undecodable frame
is logged and skipped there.

No error in this module is retried automatically. Regenerating is a separate
user action.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from diagram_engine.usage.monitor import RateLimitDecision
    from diagram_engine.utils.scanner import StructuralAnalysis


class DiagramEngineError(Exception):
    """Base class for all diagram engine errors."""

    kind: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": self.message}


class TransportError(DiagramEngineError):
    """Network, DNS, TLS, timeout or HTTP status failure talking to a provider."""

    kind = "transport"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class ProviderFrameError(DiagramEngineError):
    """The provider sent an explicit error frame and ended the stream."""

    kind = "provider_frame"


class MalformedFrameError(DiagramEngineError):
    """A single frame could not be decoded. Recovered inside the adapter."""

    kind = "malformed_frame"

    def __init__(self, message: str, line: str = "") -> None:
        super().__init__(message)
        self.line = line


class RepairFailure(DiagramEngineError):
    """No renderable JSON could be recovered from the generated text."""

    kind = "repair_failure"

    def __init__(
        self,
        message: str,
        analysis: StructuralAnalysis | None = None,
        preview: str = "",
        diagnostics: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.analysis = analysis
        self.preview = preview
        self.diagnostics = diagnostics or []

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["preview"] = self.preview
        data["diagnostics"] = list(self.diagnostics)
        if self.analysis is not None:
            data["pending_closers"] = self.analysis.pending_closers
            data["has_mismatched_closing"] = self.analysis.has_mismatched_closing
        return data


class LimitExceeded(DiagramEngineError):
    """The shared built-in backend refused the request (quota or cooldown)."""

    kind = "limit_exceeded"

    def __init__(self, message: str, decision: RateLimitDecision) -> None:
        super().__init__(message)
        self.decision = decision

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["violation"] = self.decision.violation_kind.value if self.decision.violation_kind else None
        data["current"] = self.decision.current
        data["limit"] = self.decision.limit
        data["cooldown_end"] = (
            self.decision.cooldown_end.isoformat() if self.decision.cooldown_end else None
        )
        return data


class ConfigurationError(DiagramEngineError):
    """Provider configuration is missing or unusable; raised before dispatch."""

    kind = "configuration"


class GenerationCancelled(DiagramEngineError):
    """Raised inside a generation that was cancelled externally."""

    kind = "cancelled"
