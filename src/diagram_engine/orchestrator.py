"""
Generation orchestrator.

Runs one diagram generation end to end:

    IDLE -> AWAITING_LIMITER -> STREAMING -> COMPLETED | FAILED | CANCELLED

The built-in backend is gated on its status and on the usage monitor before
any network call. While streaming, every content fragment is appended to the
generation's buffer and the *whole* buffer is re-repaired and re-extracted,
so the renderer sees the diagram grow before the document is complete. When
the stream finishes, a final pass runs, the optimizer is applied, and the
settled element array is rendered.

Example:
    from diagram_engine import DiagramOrchestrator, ProviderConfig

    async with DiagramOrchestrator(
        ProviderConfig.builtin_from_env(),
        renderer=lambda elements: canvas.update(elements),
    ) as orchestrator:
        result = await orchestrator.generate("Login flow with 2FA", chart_type="flowchart")
    if not result.ok:
        print(result.error.message)

Everything runs on one event loop: the transport read is the only suspension
point, and repair/extract work runs to completion between reads.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from diagram_engine.adapters.base import ImageAttachment, Message
from diagram_engine.adapters.registry import AdapterRegistry, default_registry
from diagram_engine.config import ProviderConfig
from diagram_engine.elements import (
    ElementRecord,
    ElementShape,
    ExtractedElements,
    extract_elements,
    find_incomplete_records,
)
from diagram_engine.errors import (
    ConfigurationError,
    DiagramEngineError,
    GenerationCancelled,
    LimitExceeded,
    ProviderFrameError,
    RepairFailure,
)
from diagram_engine.logging import get_logger
from diagram_engine.prompts import build_messages
from diagram_engine.status import BuiltinStatusChecker
from diagram_engine.transports.base import TransportBase, TransportConfig
from diagram_engine.transports.http import HTTPStreamTransport
from diagram_engine.usage.monitor import UsageMonitor
from diagram_engine.utils.json_repair import ParseOutcome, format_failure, preview_text, repair_json

logger = get_logger("orchestrator")

Renderer = Callable[[list[ElementRecord]], None]
Optimizer = Callable[[list[ElementRecord]], list[ElementRecord]]
UsageListener = Callable[[dict[str, Any]], None]
TransportFactory = Callable[[], TransportBase]


class GenerationState(str, Enum):
    IDLE = "idle"
    AWAITING_LIMITER = "awaiting_limiter"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {GenerationState.COMPLETED, GenerationState.FAILED, GenerationState.CANCELLED}
)


def parse_elements(text: str) -> tuple[ExtractedElements | None, ParseOutcome]:
    """Repair ``text`` and look up its element array."""
    outcome = repair_json(text)
    if not outcome.ok:
        return None, outcome
    return extract_elements(outcome.value), outcome


class Generation:
    """
    One in-flight request. Owns its accumulation buffer exclusively.

    Once cancelled, the buffer is frozen: further appends raise
    ``GenerationCancelled``.
    """

    def __init__(self, messages: list[Message]) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.messages = messages
        self.state = GenerationState.IDLE
        self.outcome: ParseOutcome | None = None
        self.elements: list[ElementRecord] | None = None
        self.shape: ElementShape | None = None
        self.error: DiagramEngineError | None = None
        self._chunks: list[str] = []
        self._cancelled = False

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def append(self, content: str) -> None:
        if self._cancelled:
            raise GenerationCancelled("Generation was cancelled")
        self._chunks.append(content)

    def cancel(self) -> None:
        if self.state in TERMINAL_STATES:
            return
        self._cancelled = True
        self.state = GenerationState.CANCELLED


@dataclass
class GenerationResult:
    """Final state of a generation."""

    state: GenerationState
    elements: list[ElementRecord] = field(default_factory=list)
    text: str = ""
    outcome: ParseOutcome | None = None
    shape: ElementShape | None = None
    error: DiagramEngineError | None = None
    generation_id: str = ""

    @property
    def ok(self) -> bool:
        return self.state is GenerationState.COMPLETED


def _identity(elements: list[ElementRecord]) -> list[ElementRecord]:
    return elements


class DiagramOrchestrator:
    """
    Drives generations against one provider configuration.

    Args:
        config: Provider to generate with
        monitor: Usage monitor for the built-in backend (shared, process-wide)
        status_checker: Built-in status collaborator; created on demand and
            closed by ``aclose()`` in that case
        renderer: Receives every element array, partial and final
        optimizer: Layout transform applied to the final array
        usage_listener: Receives usage stats after each usage update
        transport_factory: Creates one transport per generation
        registry: Adapter registry used to pick the provider adapter
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        monitor: UsageMonitor | None = None,
        status_checker: BuiltinStatusChecker | None = None,
        renderer: Renderer | None = None,
        optimizer: Optimizer | None = None,
        usage_listener: UsageListener | None = None,
        transport_factory: TransportFactory | None = None,
        transport_config: TransportConfig | None = None,
        registry: AdapterRegistry | None = None,
    ) -> None:
        self.config = config
        self.monitor = monitor or UsageMonitor()
        self.renderer = renderer
        self.optimizer = optimizer or _identity
        self.usage_listener = usage_listener
        self.registry = registry or default_registry
        self._status_checker = status_checker
        self._owns_status_checker = status_checker is None
        self._transport_config = transport_config or TransportConfig()
        self._transport_factory = transport_factory or self._default_transport
        self._active: Generation | None = None
        self._last_messages: list[Message] | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active(self) -> Generation | None:
        return self._active

    @property
    def status_checker(self) -> BuiltinStatusChecker:
        if self._status_checker is None:
            self._status_checker = BuiltinStatusChecker(self.config)
        return self._status_checker

    async def aclose(self) -> None:
        """Cancel any active generation and close the status checker if this orchestrator created it."""
        self.cancel()
        if self._status_checker is not None and self._owns_status_checker:
            await self._status_checker.close()
            self._status_checker = None

    async def __aenter__(self) -> DiagramOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def cancel(self) -> bool:
        """
        Cancel the in-flight generation, if any.

        The buffer stops growing immediately; the stream reader is released
        at the next fragment boundary. Whatever was last rendered stays.
        """
        generation = self._active
        if generation is None or generation.state in TERMINAL_STATES:
            return False
        logger.info("Cancelling generation %s", generation.id)
        generation.cancel()
        return True

    async def generate(
        self,
        user_input: str,
        chart_type: str = "auto",
        image: ImageAttachment | None = None,
    ) -> GenerationResult:
        """Generate a diagram from a natural-language description."""
        return await self.run(build_messages(user_input, chart_type, image))

    async def regenerate(self) -> GenerationResult:
        """Re-run the last conversation. This is the only retry path."""
        if self._last_messages is None:
            raise ConfigurationError("Nothing to regenerate yet")
        return await self.run(self._last_messages)

    async def run(self, messages: list[Message]) -> GenerationResult:
        """Run one generation for ``messages``, cancelling any generation still active."""
        self.cancel()

        generation = Generation(messages)
        self._active = generation
        self._last_messages = messages
        logger.info("Generation %s started (%s)", generation.id, self.config.type)

        try:
            return await self._run(generation)
        finally:
            if self._active is generation:
                self._active = None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run(self, generation: Generation) -> GenerationResult:
        generation.state = GenerationState.AWAITING_LIMITER
        try:
            adapter = self.registry.create(self.config)
            if self.config.is_builtin:
                await self._gate_builtin()
        except DiagramEngineError as exc:
            return self._fail(generation, exc)

        if generation.cancelled:
            return self._result(generation)

        request = adapter.build_request(generation.messages)
        transport = self._transport_factory()
        chunks = transport.stream(request)
        fragments = adapter.stream(chunks)
        generation.state = GenerationState.STREAMING

        try:
            async for fragment in fragments:
                if generation.cancelled:
                    break

                if fragment.content:
                    generation.append(fragment.content)
                    self._render_partial(generation)

                if fragment.usage_tokens is not None:
                    self._record_tokens(fragment.usage_tokens)

                if fragment.terminal:
                    if fragment.error_message:
                        raise ProviderFrameError(fragment.error_message)
                    break
        except DiagramEngineError as exc:
            return self._fail(generation, exc)
        finally:
            await fragments.aclose()
            close_chunks = getattr(chunks, "aclose", None)
            if close_chunks is not None:
                await close_chunks()
            await transport.close()

        if generation.cancelled:
            logger.info("Generation %s cancelled after %d chars", generation.id, len(generation.text))
            return self._result(generation)

        return self._complete(generation)

    async def _gate_builtin(self) -> None:
        status = await self.status_checker.get_status()
        if not status.ready:
            raise ConfigurationError(status.message or f"Built-in model is {status.status}")

        report = self.monitor.record_usage(self.monitor.session, 0)
        self._notify_usage()
        if not report.allowed:
            message = self.monitor.describe_decision(report.decision) or "Usage limit exceeded"
            raise LimitExceeded(message, report.decision)

    def _render_partial(self, generation: Generation) -> None:
        extracted, outcome = parse_elements(generation.text)
        generation.outcome = outcome
        if extracted is None:
            logger.debug(
                "Generation %s: nothing renderable yet (%s, %d chars)",
                generation.id,
                outcome.status.value,
                len(generation.text),
            )
            return

        generation.elements = extracted.elements
        generation.shape = extracted.shape
        self._render(extracted.elements)

    def _complete(self, generation: Generation) -> GenerationResult:
        extracted, outcome = parse_elements(generation.text)
        generation.outcome = outcome

        if extracted is None:
            reason = None if not outcome.ok else "Parsed JSON contains no element array"
            return self._fail(
                generation,
                RepairFailure(
                    format_failure(outcome, reason),
                    analysis=outcome.analysis,
                    preview=preview_text(outcome.snippet),
                    diagnostics=list(outcome.diagnostics),
                ),
            )

        incomplete = find_incomplete_records(extracted.elements)
        if incomplete:
            logger.warning(
                "Generation %s: %d element(s) missing id/type/x/y (first at index %d)",
                generation.id,
                len(incomplete),
                incomplete[0],
            )

        elements = self.optimizer(list(extracted.elements))
        generation.elements = elements
        generation.shape = extracted.shape
        self._render(elements)

        generation.state = GenerationState.COMPLETED
        logger.info(
            "Generation %s completed: %d elements via %s (%s)",
            generation.id,
            len(elements),
            extracted.shape.value,
            outcome.status.value,
        )
        return self._result(generation)

    def _fail(self, generation: Generation, error: DiagramEngineError) -> GenerationResult:
        if generation.cancelled:
            return self._result(generation)
        generation.state = GenerationState.FAILED
        generation.error = error
        logger.error("Generation %s failed [%s]: %s", generation.id, error.kind, error.message)
        return self._result(generation)

    def _result(self, generation: Generation) -> GenerationResult:
        return GenerationResult(
            state=generation.state,
            elements=list(generation.elements or []),
            text=generation.text,
            outcome=generation.outcome,
            shape=generation.shape,
            error=generation.error,
            generation_id=generation.id,
        )

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _render(self, elements: list[ElementRecord]) -> None:
        if self.renderer is not None:
            self.renderer(elements)

    def _record_tokens(self, tokens: int) -> None:
        if not self.config.is_builtin:
            return
        report = self.monitor.record_usage(self.monitor.session, tokens, count_request=False)
        self._notify_usage()
        if not report.allowed:
            logger.info(
                "Token usage now %d; next built-in request will be refused (%s)",
                report.tokens,
                report.decision.violation_kind.value if report.decision.violation_kind else "",
            )

    def _notify_usage(self) -> None:
        if self.usage_listener is not None:
            self.usage_listener(self.monitor.get_usage_stats())

    def _default_transport(self) -> TransportBase:
        return HTTPStreamTransport(self._transport_config)
