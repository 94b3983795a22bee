"""
Usage monitoring and rate limiting for the shared built-in backend.

The monitor keeps one rolling usage session: request and token counters that
reset whenever the wall-clock hour or the calendar day changes. Each recorded
call is checked against the caps in ``UsageLimits``; a denial is appended to
the session's violation log and starts a cooldown during which every request
is refused.

Operations take the session explicitly and read time from an injectable
clock, so tests can drive the monitor without touching real time or storage.

Example:
    from diagram_engine.usage import MemoryStore, UsageMonitor

    monitor = UsageMonitor(store=MemoryStore())
    session = monitor.session

    report = monitor.record_usage(session, 0)   # reserve the request slot
    if not report.decision.allowed:
        print(monitor.describe_decision(report.decision))

    monitor.record_usage(session, 812)          # correct the token tally

Accounting is best-effort across processes: the session is read, modified
and written back without locking.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from diagram_engine.config import UsageLimits
from diagram_engine.logging import get_logger
from diagram_engine.usage.store import KeyValueStore, MemoryStore

logger = get_logger("usage")

SESSION_KEY = "usage-session"

Clock = Callable[[], datetime]


class ViolationKind(str, Enum):
    COOLDOWN = "COOLDOWN"
    HOURLY_REQUESTS = "HOURLY_REQUESTS"
    HOURLY_TOKENS = "HOURLY_TOKENS"
    DAILY_REQUESTS = "DAILY_REQUESTS"


@dataclass
class Violation:
    """One denied call in the violation log."""

    timestamp: datetime
    kind: ViolationKind
    current: int
    limit: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "type": self.kind.value,
            "current": self.current,
            "limit": self.limit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Violation:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            kind=ViolationKind(data["type"]),
            current=data.get("current", 0),
            limit=data.get("limit", 0),
        )


@dataclass
class UsageSession:
    """Counters for the current hour window."""

    last_reset: datetime
    request_count: int = 0
    token_count: int = 0
    last_request: datetime | None = None
    violations: list[Violation] = field(default_factory=list)

    @classmethod
    def fresh(cls, now: datetime) -> UsageSession:
        return cls(last_reset=now)

    def reset(self, now: datetime) -> None:
        """Zero the session in place so existing references see the new window."""
        self.last_reset = now
        self.request_count = 0
        self.token_count = 0
        self.last_request = None
        self.violations = []

    def is_stale(self, now: datetime) -> bool:
        """Whether ``now`` falls in a different hour or calendar day than the last reset."""
        return now.date() != self.last_reset.date() or now.hour != self.last_reset.hour

    @property
    def last_violation(self) -> Violation | None:
        return self.violations[-1] if self.violations else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.request_count,
            "tokens": self.token_count,
            "lastReset": self.last_reset.isoformat(),
            "lastRequest": self.last_request.isoformat() if self.last_request else None,
            "violations": [v.to_dict() for v in self.violations],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageSession:
        last_request = data.get("lastRequest")
        return cls(
            last_reset=datetime.fromisoformat(data["lastReset"]),
            request_count=data.get("requests", 0),
            token_count=data.get("tokens", 0),
            last_request=datetime.fromisoformat(last_request) if last_request else None,
            violations=[Violation.from_dict(v) for v in data.get("violations", [])],
        )


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a limit check."""

    allowed: bool
    violation_kind: ViolationKind | None = None
    current: int | None = None
    limit: int | None = None
    cooldown_end: datetime | None = None


@dataclass(frozen=True)
class UsageReport:
    """Decision plus a snapshot of the counters after recording."""

    decision: RateLimitDecision
    requests: int
    tokens: int
    last_request: datetime | None

    @property
    def allowed(self) -> bool:
        return self.decision.allowed


ALLOWED = RateLimitDecision(allowed=True)


class UsageMonitor:
    """
    Tracks built-in backend usage and enforces hourly/daily caps with cooldown.

    Args:
        store: Where the session is persisted (defaults to in-memory)
        clock: Returns the current local time (defaults to ``datetime.now``)
        limits: Caps to enforce (defaults to ``UsageLimits()``)
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        clock: Clock | None = None,
        limits: UsageLimits | None = None,
    ) -> None:
        self.store = store or MemoryStore()
        self.clock = clock or datetime.now
        self.limits = limits or UsageLimits()
        self._session: UsageSession | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @property
    def session(self) -> UsageSession:
        """The process-wide session, loaded from the store on first access."""
        if self._session is None:
            self._session = self.load_session()
        return self._session

    def load_session(self, now: datetime | None = None) -> UsageSession:
        """Read the persisted session, starting a fresh one if absent, unreadable or stale."""
        now = now or self.clock()
        try:
            raw = self.store.get(SESSION_KEY)
        except Exception as exc:
            logger.warning("Failed to load usage session: %s", exc)
            raw = None

        if raw:
            try:
                session = UsageSession.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Discarding unreadable usage session: %s", exc)
            else:
                if not session.is_stale(now):
                    return session
                logger.debug("Usage session from %s is stale, starting fresh", session.last_reset)

        session = UsageSession.fresh(now)
        self.save_session(session)
        return session

    def save_session(self, session: UsageSession) -> None:
        try:
            self.store.set(SESSION_KEY, json.dumps(session.to_dict()))
        except Exception as exc:
            logger.warning("Failed to save usage session: %s", exc)

    def _roll_window(self, session: UsageSession, now: datetime) -> None:
        if session.is_stale(now):
            logger.info("Usage window rolled over (last reset %s)", session.last_reset.isoformat())
            session.reset(now)
            self.save_session(session)

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    def get_limits(self) -> UsageLimits:
        return self.limits

    def _cooldown_end(self, session: UsageSession) -> datetime | None:
        last = session.last_violation
        if last is None:
            return None
        return last.timestamp + timedelta(minutes=self.limits.cooldown_minutes)

    def check_limits(self, session: UsageSession, now: datetime | None = None) -> RateLimitDecision:
        """
        Evaluate the session against the caps. First match wins:
        active cooldown, hourly requests, hourly tokens, daily requests.
        """
        now = now or self.clock()
        self._roll_window(session, now)
        limits = self.limits

        cooldown_end = self._cooldown_end(session)
        if cooldown_end is not None and now < cooldown_end:
            return RateLimitDecision(
                allowed=False,
                violation_kind=ViolationKind.COOLDOWN,
                current=0,
                limit=0,
                cooldown_end=cooldown_end,
            )

        if session.request_count >= limits.requests_per_hour:
            return RateLimitDecision(
                allowed=False,
                violation_kind=ViolationKind.HOURLY_REQUESTS,
                current=session.request_count,
                limit=limits.requests_per_hour,
            )

        if session.token_count >= limits.tokens_per_hour:
            return RateLimitDecision(
                allowed=False,
                violation_kind=ViolationKind.HOURLY_TOKENS,
                current=session.token_count,
                limit=limits.tokens_per_hour,
            )

        if (
            now.date() == session.last_reset.date()
            and session.request_count >= limits.requests_per_day
        ):
            return RateLimitDecision(
                allowed=False,
                violation_kind=ViolationKind.DAILY_REQUESTS,
                current=session.request_count,
                limit=limits.requests_per_day,
            )

        return ALLOWED

    def record_usage(
        self,
        session: UsageSession,
        token_delta: int = 0,
        now: datetime | None = None,
        count_request: bool = True,
    ) -> UsageReport:
        """
        Record one call against the caps.

        With ``count_request=True`` (dispatch time, usually ``token_delta=0``)
        the caps are checked first: a denied call is appended to the violation
        log and consumes nothing, an allowed call takes a request slot. With
        ``count_request=False`` only the token tally is corrected, using the
        usage the provider reported mid-stream; the returned decision then
        tells whether the *next* request would be allowed.
        """
        now = now or self.clock()
        self._roll_window(session, now)

        if count_request:
            decision = self.check_limits(session, now)
            if decision.allowed:
                session.request_count += 1
                session.token_count += token_delta
                session.last_request = now
            elif decision.violation_kind is not None:
                session.violations.append(
                    Violation(
                        timestamp=now,
                        kind=decision.violation_kind,
                        current=decision.current or 0,
                        limit=decision.limit or 0,
                    )
                )
                logger.warning(
                    "Usage limit hit: %s (current=%s, limit=%s)",
                    decision.violation_kind.value,
                    decision.current,
                    decision.limit,
                )
        else:
            session.token_count += token_delta
            decision = self.check_limits(session, now)

        self.save_session(session)
        return UsageReport(
            decision=decision,
            requests=session.request_count,
            tokens=session.token_count,
            last_request=session.last_request,
        )

    def is_in_cooldown(self, session: UsageSession | None = None, now: datetime | None = None) -> bool:
        session = session or self.session
        cooldown_end = self._cooldown_end(session)
        return cooldown_end is not None and (now or self.clock()) < cooldown_end

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_usage_stats(self, session: UsageSession | None = None) -> dict[str, Any]:
        """Payload for the usage display."""
        session = session or self.session
        self._roll_window(session, self.clock())
        return {
            "requests": session.request_count,
            "tokens": session.token_count,
            "last_reset": session.last_reset.isoformat(),
            "last_request": session.last_request.isoformat() if session.last_request else None,
            "violation_count": len(session.violations),
            "limits": self.limits.to_dict(),
        }

    def reset_usage(self) -> UsageSession:
        """Start a fresh session immediately, discarding counters and violations."""
        session = self.session
        session.reset(self.clock())
        self.save_session(session)
        return session

    def describe_decision(self, decision: RateLimitDecision) -> str | None:
        """User-facing explanation of a denial, or None when allowed."""
        if decision.allowed:
            return None

        kind = decision.violation_kind
        if kind is ViolationKind.HOURLY_REQUESTS:
            return (
                f"Hourly request limit reached ({decision.limit}/{decision.limit}). "
                "Wait for the next hour or configure your own API."
            )
        if kind is ViolationKind.HOURLY_TOKENS:
            return "Hourly token limit reached. Wait for the next hour or configure your own API."
        if kind is ViolationKind.DAILY_REQUESTS:
            return (
                f"Daily request limit reached ({decision.limit}/{decision.limit}). "
                "Try again tomorrow or configure your own API."
            )
        if kind is ViolationKind.COOLDOWN:
            if decision.cooldown_end is not None:
                return (
                    "Rate limit triggered, retry after the cooldown ends at "
                    f"{decision.cooldown_end.strftime('%H:%M:%S')}."
                )
            return "Rate limit triggered, retry after the cooldown."
        return "API call restricted. Configure your own API or try again later."
