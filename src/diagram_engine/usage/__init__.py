"""
Usage tracking and rate limiting for the shared built-in backend.
"""

from diagram_engine.usage.monitor import (
    RateLimitDecision,
    UsageMonitor,
    UsageReport,
    UsageSession,
    Violation,
    ViolationKind,
)
from diagram_engine.usage.store import KeyValueStore, MemoryStore, SQLiteStore

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "RateLimitDecision",
    "SQLiteStore",
    "UsageMonitor",
    "UsageReport",
    "UsageSession",
    "Violation",
    "ViolationKind",
]
