"""
Diagram Engine - streaming diagram generation from LLM output.

This library turns a natural-language description into an Excalidraw element
array, rendering the diagram progressively while the model is still writing.
It normalizes OpenAI-compatible, Anthropic and built-in backend streams,
repairs truncated or sloppy JSON on every chunk, and enforces usage limits on
the shared built-in backend.

Example:
    from diagram_engine import DiagramOrchestrator, ProviderConfig

    orchestrator = DiagramOrchestrator(
        ProviderConfig(
            type="openai",
            base_url="https://api.openai.com/v1",
            api_key="sk-...",
            model="gpt-4o",
        ),
        renderer=lambda elements: print(f"{len(elements)} elements"),
    )

    result = await orchestrator.generate("CI pipeline with test and deploy stages")
"""

from diagram_engine.adapters import (
    AdapterRegistry,
    AnthropicAdapter,
    BuiltinAdapter,
    ContentFragment,
    ImageAttachment,
    Message,
    OpenAIAdapter,
    ProviderAdapter,
    create_adapter,
)
from diagram_engine.config import EngineConfig, ProviderConfig, UsageLimits
from diagram_engine.elements import (
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
    MalformedFrameError,
    ProviderFrameError,
    RepairFailure,
    TransportError,
)
from diagram_engine.orchestrator import (
    DiagramOrchestrator,
    GenerationResult,
    GenerationState,
    parse_elements,
)
from diagram_engine.prompts import build_messages
from diagram_engine.status import BuiltinStatus, BuiltinStatusChecker
from diagram_engine.transports import HTTPStreamTransport, ProviderRequest, TransportBase
from diagram_engine.usage import (
    MemoryStore,
    RateLimitDecision,
    SQLiteStore,
    UsageMonitor,
    UsageSession,
    ViolationKind,
)
from diagram_engine.utils import ParseOutcome, ParseStatus, analyze_structure, repair_json

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    "DiagramOrchestrator",
    "GenerationResult",
    "GenerationState",
    "parse_elements",
    "build_messages",
    # Config
    "EngineConfig",
    "ProviderConfig",
    "UsageLimits",
    # Adapters
    "AdapterRegistry",
    "ProviderAdapter",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "BuiltinAdapter",
    "ContentFragment",
    "ImageAttachment",
    "Message",
    "create_adapter",
    # Transports
    "TransportBase",
    "HTTPStreamTransport",
    "ProviderRequest",
    # Repair / extraction
    "repair_json",
    "analyze_structure",
    "ParseOutcome",
    "ParseStatus",
    "extract_elements",
    "find_incomplete_records",
    "ExtractedElements",
    "ElementShape",
    # Usage
    "UsageMonitor",
    "UsageSession",
    "RateLimitDecision",
    "ViolationKind",
    "MemoryStore",
    "SQLiteStore",
    # Status
    "BuiltinStatus",
    "BuiltinStatusChecker",
    # Errors
    "DiagramEngineError",
    "TransportError",
    "ProviderFrameError",
    "MalformedFrameError",
    "RepairFailure",
    "LimitExceeded",
    "ConfigurationError",
    "GenerationCancelled",
]
