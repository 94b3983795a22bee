"""Tests for the generation orchestrator."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import pytest

from diagram_engine.config import ProviderConfig
from diagram_engine.elements import ElementShape
from diagram_engine.errors import (
    ConfigurationError,
    LimitExceeded,
    ProviderFrameError,
    RepairFailure,
    TransportError,
)
from diagram_engine.orchestrator import DiagramOrchestrator, GenerationState, parse_elements
from diagram_engine.status import BuiltinStatus
from diagram_engine.transports.base import ProviderRequest, TransportBase
from diagram_engine.utils.json_repair import ParseStatus

TEXT_1 = {"id": "1", "type": "text", "x": 0, "y": 0}
RECT_A = {"id": "a", "type": "rectangle", "x": 0, "y": 0}


class FakeTransport(TransportBase):
    """Replays canned chunks and records the requests it was given."""

    def __init__(self, chunks: list[str], error: Exception | None = None) -> None:
        super().__init__()
        self.chunks = [chunk.encode("utf-8") for chunk in chunks]
        self.error = error
        self.requests: list[ProviderRequest] = []
        self.yielded = 0
        self.closed = False

    async def stream(self, request: ProviderRequest) -> AsyncIterator[bytes]:
        self.requests.append(request)
        for chunk in self.chunks:
            self.yielded += 1
            yield chunk
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True


class BlockingTransport(FakeTransport):
    """Stops after the first chunk until ``release`` is set."""

    def __init__(self, chunks: list[str]) -> None:
        super().__init__(chunks)
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def stream(self, request: ProviderRequest) -> AsyncIterator[bytes]:
        self.requests.append(request)
        yield self.chunks[0]
        self.reached.set()
        await self.release.wait()
        for chunk in self.chunks[1:]:
            yield chunk


class StubStatusChecker:
    def __init__(self, status: str = "ready", message: str = "") -> None:
        error = {"code": "TEST", "message": message} if message else None
        self.status = BuiltinStatus(status=status, error=error)
        self.calls = 0

    async def get_status(self, force: bool = False) -> BuiltinStatus:
        self.calls += 1
        return self.status


def openai_sse(*contents: str, done: bool = True) -> list[str]:
    frames = [
        "data: " + json.dumps({"choices": [{"delta": {"content": c}, "finish_reason": None}]}) + "\n\n"
        for c in contents
    ]
    if done:
        frames.append("data: [DONE]\n\n")
    return frames


class Recorder:
    """Collects every array pushed to the renderer and every usage update."""

    def __init__(self) -> None:
        self.renders: list[list[dict[str, Any]]] = []
        self.usage: list[dict[str, Any]] = []

    def render(self, elements):
        self.renders.append(list(elements))

    def on_usage(self, stats):
        self.usage.append(stats)


def make_orchestrator(config, transports, recorder=None, **kwargs) -> DiagramOrchestrator:
    pending = iter(transports)
    recorder = recorder or Recorder()
    return DiagramOrchestrator(
        config,
        renderer=recorder.render,
        usage_listener=recorder.on_usage,
        transport_factory=lambda: next(pending),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestStreaming:
    @pytest.mark.asyncio
    async def test_three_chunk_document_renders_progressively(self, openai_config):
        transport = FakeTransport(openai_sse('{"elements":[', json.dumps(TEXT_1), "]}"))
        recorder = Recorder()
        orchestrator = make_orchestrator(openai_config, [transport], recorder)

        result = await orchestrator.generate("One label")

        assert result.state is GenerationState.COMPLETED
        assert result.ok
        assert result.elements == [TEXT_1]
        assert result.shape is ElementShape.ELEMENTS
        assert result.outcome.status is ParseStatus.DIRECT
        assert result.text == '{"elements":[' + json.dumps(TEXT_1) + "]}"
        # empty array, partial, complete, final
        assert recorder.renders == [[], [TEXT_1], [TEXT_1], [TEXT_1]]
        assert transport.closed is True
        assert orchestrator.active is None

    @pytest.mark.asyncio
    async def test_request_built_by_adapter(self, openai_config):
        transport = FakeTransport(openai_sse("[]"))
        orchestrator = make_orchestrator(openai_config, [transport])

        await orchestrator.generate("A login flow", chart_type="flowchart")

        request = transport.requests[0]
        assert request.url == "https://api.example.com/v1/chat/completions"
        assert request.body["messages"][0]["role"] == "system"
        assert request.body["messages"][1]["content"].startswith("A login flow")

    @pytest.mark.asyncio
    async def test_optimizer_applied_to_final_array_only(self, openai_config):
        def shift(elements):
            return [{**e, "x": e["x"] + 100} for e in elements]

        transport = FakeTransport(openai_sse("[", json.dumps(RECT_A), "]"))
        recorder = Recorder()
        orchestrator = make_orchestrator(openai_config, [transport], recorder, optimizer=shift)

        result = await orchestrator.generate("Box")

        assert result.elements == [{**RECT_A, "x": 100}]
        assert recorder.renders[-1] == [{**RECT_A, "x": 100}]
        assert all(render == [] or render[0]["x"] == 0 for render in recorder.renders[:-1])

    @pytest.mark.asyncio
    async def test_stream_ending_without_terminator_completes(self, openai_config):
        transport = FakeTransport(openai_sse(json.dumps([RECT_A]), done=False))
        orchestrator = make_orchestrator(openai_config, [transport])

        result = await orchestrator.generate("Box")

        assert result.state is GenerationState.COMPLETED
        assert result.elements == [RECT_A]

    @pytest.mark.asyncio
    async def test_fenced_output_with_prose(self, openai_config):
        text = "Here is your diagram:\n```json\n" + json.dumps({"data": [{"elements": [RECT_A]}]}) + "\n```"
        transport = FakeTransport(openai_sse(text[:20], text[20:]))
        orchestrator = make_orchestrator(openai_config, [transport])

        result = await orchestrator.generate("Box")

        assert result.ok
        assert result.shape is ElementShape.DATA_LIST
        assert result.elements == [RECT_A]

    @pytest.mark.asyncio
    async def test_anthropic_stream(self, anthropic_config):
        chunks = [
            'data: {"type": "message_start", "message": {}}\n\n',
            "data: " + json.dumps({"type": "content_block_delta", "delta": {"text": json.dumps([RECT_A])}}) + "\n\n",
            'data: {"type": "message_stop"}\n\n',
        ]
        transport = FakeTransport(chunks)
        orchestrator = make_orchestrator(anthropic_config, [transport])

        result = await orchestrator.generate("Box")

        assert result.ok
        assert result.elements == [RECT_A]
        assert transport.requests[0].url == "https://api.anthropic.com/v1/messages"

    @pytest.mark.asyncio
    async def test_third_party_provider_leaves_usage_alone(self, openai_config, monitor):
        transport = FakeTransport(openai_sse("[]"))
        orchestrator = make_orchestrator(openai_config, [transport], monitor=monitor)

        await orchestrator.generate("Nothing")

        assert monitor.session.request_count == 0


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_unrecoverable_text(self, openai_config):
        transport = FakeTransport(openai_sse("I cannot draw that."))
        recorder = Recorder()
        orchestrator = make_orchestrator(openai_config, [transport], recorder)

        result = await orchestrator.generate("?")

        assert result.state is GenerationState.FAILED
        assert isinstance(result.error, RepairFailure)
        assert result.error.message.startswith("No valid JSON array or element object found")
        assert result.error.preview == "I cannot draw that."
        assert recorder.renders == []

    @pytest.mark.asyncio
    async def test_json_without_elements(self, openai_config):
        transport = FakeTransport(openai_sse('{"foo": 1}'))
        orchestrator = make_orchestrator(openai_config, [transport])

        result = await orchestrator.generate("?")

        assert isinstance(result.error, RepairFailure)
        assert result.error.message.startswith("Parsed JSON contains no element array")

    @pytest.mark.asyncio
    async def test_transport_error_keeps_partial_render(self, openai_config):
        transport = FakeTransport(
            openai_sse("[" + json.dumps(RECT_A), done=False),
            error=TransportError("Connection closed unexpectedly by the provider"),
        )
        recorder = Recorder()
        orchestrator = make_orchestrator(openai_config, [transport], recorder)

        result = await orchestrator.generate("Box")

        assert result.state is GenerationState.FAILED
        assert result.error.kind == "transport"
        assert result.elements == [RECT_A]
        assert recorder.renders == [[RECT_A]]
        assert transport.closed is True

    @pytest.mark.asyncio
    async def test_provider_error_frame(self, builtin_config, monitor):
        chunks = [
            openai_sse("[" + json.dumps(RECT_A), done=False)[0],
            'error: {"message": "model overloaded"}\n',
        ]
        transport = FakeTransport(chunks)
        orchestrator = make_orchestrator(
            builtin_config, [transport], monitor=monitor, status_checker=StubStatusChecker()
        )

        result = await orchestrator.generate("Box")

        assert result.state is GenerationState.FAILED
        assert isinstance(result.error, ProviderFrameError)
        assert result.error.message == "Built-in model error: model overloaded"
        assert result.elements == [RECT_A]

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_dispatch(self, openai_config):
        openai_config.api_key = ""
        transport = FakeTransport(openai_sse("[]"))
        orchestrator = make_orchestrator(openai_config, [transport])

        result = await orchestrator.generate("Box")

        assert isinstance(result.error, ConfigurationError)
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_error_to_dict(self, openai_config):
        transport = FakeTransport(openai_sse('[{"id":"a","type":"rec'))
        orchestrator = make_orchestrator(openai_config, [transport])

        result = await orchestrator.generate("Box")

        data = result.error.to_dict()
        assert data["kind"] == "repair_failure"
        assert data["pending_closers"] == "}]"
        assert data["has_mismatched_closing"] is False


# ---------------------------------------------------------------------------
# Built-in backend gating
# ---------------------------------------------------------------------------


class TestBuiltinGating:
    @pytest.mark.asyncio
    async def test_usage_recorded_and_corrected(self, builtin_config, monitor):
        chunks = openai_sse(json.dumps([RECT_A]), done=False) + [
            'data: {"choices": [], "usage": {"total_tokens": 812}}\n\n',
            "data: [DONE]\n\n",
        ]
        recorder = Recorder()
        status = StubStatusChecker()
        orchestrator = make_orchestrator(
            builtin_config, [FakeTransport(chunks)], recorder, monitor=monitor, status_checker=status
        )

        result = await orchestrator.generate("Box")

        assert result.ok
        assert monitor.session.request_count == 1
        assert monitor.session.token_count == 812
        assert status.calls == 1
        assert [u["tokens"] for u in recorder.usage] == [0, 812]
        assert recorder.usage[-1]["limits"]["tokens_per_hour"] == 5000

    @pytest.mark.asyncio
    async def test_usage_frame_after_finish_reason_is_counted(self, builtin_config, monitor):
        finish = {"choices": [{"delta": {}, "finish_reason": "stop"}]}
        chunks = openai_sse(json.dumps([RECT_A]), done=False) + [
            f"data: {json.dumps(finish)}\n\n",
            'data: {"choices": [], "usage": {"total_tokens": 812}}\n\n',
            "data: [DONE]\n\n",
        ]
        orchestrator = make_orchestrator(
            builtin_config, [FakeTransport(chunks)], monitor=monitor, status_checker=StubStatusChecker()
        )

        result = await orchestrator.generate("Box")

        assert result.ok
        assert monitor.session.request_count == 1
        assert monitor.session.token_count == 812

    @pytest.mark.asyncio
    async def test_limit_exceeded_makes_no_request(self, builtin_config, monitor):
        monitor.session.request_count = 20
        transport = FakeTransport(openai_sse("[]"))
        orchestrator = make_orchestrator(
            builtin_config, [transport], monitor=monitor, status_checker=StubStatusChecker()
        )

        result = await orchestrator.generate("Box")

        assert result.state is GenerationState.FAILED
        assert isinstance(result.error, LimitExceeded)
        assert result.error.message.startswith("Hourly request limit reached (20/20)")
        assert result.error.to_dict()["violation"] == "HOURLY_REQUESTS"
        assert transport.requests == []
        assert monitor.is_in_cooldown() is True

    @pytest.mark.asyncio
    async def test_cooldown_refuses_next_generation(self, builtin_config, monitor, clock):
        monitor.session.request_count = 20
        orchestrator = make_orchestrator(
            builtin_config,
            [FakeTransport(openai_sse("[]")), FakeTransport(openai_sse("[]"))],
            monitor=monitor,
            status_checker=StubStatusChecker(),
        )
        await orchestrator.generate("Box")

        clock.advance(minutes=2)
        result = await orchestrator.generate("Box")

        assert result.error.decision.violation_kind.value == "COOLDOWN"
        assert result.error.decision.cooldown_end is not None

    @pytest.mark.asyncio
    async def test_backend_not_ready(self, builtin_config, monitor):
        transport = FakeTransport(openai_sse("[]"))
        orchestrator = make_orchestrator(
            builtin_config,
            [transport],
            monitor=monitor,
            status_checker=StubStatusChecker("maintenance", "API health check failed"),
        )

        result = await orchestrator.generate("Box")

        assert isinstance(result.error, ConfigurationError)
        assert result.error.message == "API health check failed"
        assert transport.requests == []
        assert monitor.session.request_count == 0


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class ClosingStatusChecker(StubStatusChecker):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_closes_created_status_checker(self, builtin_config):
        orchestrator = DiagramOrchestrator(builtin_config)
        client = orchestrator.status_checker._acquire()

        await orchestrator.aclose()

        assert client.is_closed is True
        assert orchestrator._status_checker is None

    @pytest.mark.asyncio
    async def test_injected_status_checker_left_open(self, builtin_config):
        checker = ClosingStatusChecker()

        async with DiagramOrchestrator(builtin_config, status_checker=checker) as orchestrator:
            assert orchestrator.status_checker is checker

        assert checker.closed is False

    @pytest.mark.asyncio
    async def test_aclose_without_status_checker(self, openai_config):
        orchestrator = DiagramOrchestrator(openai_config)
        await orchestrator.aclose()
        assert orchestrator._status_checker is None


# ---------------------------------------------------------------------------
# Cancellation and regeneration
# ---------------------------------------------------------------------------


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_from_renderer(self, openai_config):
        transport = FakeTransport(openai_sse("[" + json.dumps(RECT_A), ",", json.dumps(TEXT_1) + "]"))
        recorder = Recorder()
        orchestrator = make_orchestrator(openai_config, [transport], recorder)

        def render_then_cancel(elements):
            recorder.render(elements)
            orchestrator.cancel()

        orchestrator.renderer = render_then_cancel
        result = await orchestrator.generate("Box")

        assert result.state is GenerationState.CANCELLED
        assert result.error is None
        assert result.text == "[" + json.dumps(RECT_A)
        assert result.elements == [RECT_A]
        assert recorder.renders == [[RECT_A]]
        assert transport.yielded < len(transport.chunks)
        assert transport.closed is True

    def test_cancel_without_generation(self, openai_config):
        assert make_orchestrator(openai_config, []).cancel() is False

    @pytest.mark.asyncio
    async def test_new_generation_cancels_previous(self, openai_config):
        first = BlockingTransport(openai_sse("[" + json.dumps(RECT_A), "]"))
        second = FakeTransport(openai_sse(json.dumps([TEXT_1])))
        recorder = Recorder()
        orchestrator = make_orchestrator(openai_config, [first, second], recorder)

        task = asyncio.create_task(orchestrator.generate("first"))
        await first.reached.wait()

        second_result = await orchestrator.generate("second")
        first.release.set()
        first_result = await task

        assert second_result.ok
        assert second_result.elements == [TEXT_1]
        assert first_result.state is GenerationState.CANCELLED
        assert first_result.text == "[" + json.dumps(RECT_A)
        assert first.closed is True
        assert recorder.renders[-1] == [TEXT_1]

    @pytest.mark.asyncio
    async def test_regenerate_reuses_last_messages(self, openai_config):
        transports = [FakeTransport(openai_sse("[]")), FakeTransport(openai_sse("[]"))]
        orchestrator = make_orchestrator(openai_config, transports)

        await orchestrator.generate("Box", chart_type="tree")
        result = await orchestrator.regenerate()

        assert result.ok
        assert transports[0].requests[0].body == transports[1].requests[0].body

    @pytest.mark.asyncio
    async def test_regenerate_without_history(self, openai_config):
        with pytest.raises(ConfigurationError):
            await make_orchestrator(openai_config, []).regenerate()


class TestParseElements:
    def test_partial_text(self):
        extracted, outcome = parse_elements('[{"id":"a","type":"rectangle","x":0,"y":0}')
        assert outcome.status is ParseStatus.COMPLETED
        assert extracted.elements == [RECT_A]

    def test_unparseable(self):
        extracted, outcome = parse_elements("nope")
        assert extracted is None
        assert not outcome.ok
