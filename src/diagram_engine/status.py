"""
Availability check for the shared built-in backend.

Only a ``ready`` status lets a generation be dispatched to the built-in
model. The status is ``disabled`` when the backend has no credentials,
``maintenance`` when its health check fails, and ``error`` when the check
itself breaks unexpectedly.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

import httpx

from diagram_engine.config import DEFAULT_BUILTIN_MODEL, ProviderConfig
from diagram_engine.logging import get_logger
from diagram_engine.transports.http import describe_http_error

logger = get_logger("status")

StatusValue = Literal["ready", "disabled", "maintenance", "error"]

HEALTH_CHECK_TIMEOUT = 5.0


@dataclass
class BuiltinStatus:
    """Snapshot of the built-in backend's availability."""

    status: StatusValue
    model: str = DEFAULT_BUILTIN_MODEL
    error: dict[str, Any] | None = None
    last_checked: datetime = field(default_factory=datetime.now)

    @property
    def ready(self) -> bool:
        return self.status == "ready"

    @property
    def message(self) -> str:
        if self.error:
            return str(self.error.get("message", ""))
        return ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "provider": "builtin",
            "status": self.status,
            "model": self.model,
            "last_checked": self.last_checked.isoformat(),
        }
        if self.error:
            data["error"] = self.error
        return data


class BuiltinStatusChecker:
    """
    Checks (and briefly caches) the built-in backend's status.

    Args:
        config: Built-in provider config
        client: Optional httpx client (injected in tests)
        cache_seconds: How long a result is reused
        timeout: Health-check timeout in seconds
        clock: Monotonic clock used for cache expiry
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient | None = None,
        cache_seconds: float = 30.0,
        timeout: float = HEALTH_CHECK_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self._clock = clock
        self._client = client
        self._owns_client = client is None
        self._cached: BuiltinStatus | None = None
        self._cached_at = 0.0

    def invalidate(self) -> None:
        self._cached = None

    async def get_status(self, force: bool = False) -> BuiltinStatus:
        """Return the cached status, re-checking when stale or ``force`` is set."""
        now = self._clock()
        if not force and self._cached is not None and now - self._cached_at < self.cache_seconds:
            return self._cached

        status = await self._check()
        self._cached = status
        self._cached_at = now
        return status

    async def _check(self) -> BuiltinStatus:
        model = self.config.model or DEFAULT_BUILTIN_MODEL

        if not (self.config.base_url and self.config.api_key):
            return BuiltinStatus(
                status="disabled",
                model=model,
                error={"code": "NOT_CONFIGURED", "message": "Built-in model API is not configured"},
            )

        try:
            failure = await self._health_check()
        except Exception as exc:
            logger.exception("Built-in status check failed unexpectedly")
            return BuiltinStatus(
                status="error",
                model=model,
                error={"code": "INTERNAL_ERROR", "message": "Internal error", "details": str(exc)},
            )

        if failure is not None:
            return BuiltinStatus(
                status="maintenance",
                model=model,
                error={
                    "code": "HEALTH_CHECK_FAILED",
                    "message": "API health check failed",
                    "details": failure,
                },
            )

        return BuiltinStatus(status="ready", model=model)

    async def _health_check(self) -> dict[str, Any] | None:
        """``GET {base}/v1/models``. Returns None on success, else error details."""
        url = f"{self.config.base_url.rstrip('/')}/v1/models"
        client = self._acquire()
        try:
            response = await client.get(
                url,
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            details = {
                "type": type(exc).__name__,
                "url": url,
                "message": describe_http_error(exc, self.timeout),
                "details": str(exc),
            }
            logger.error("Built-in health check failed: %s", details)
            return details

        if response.is_success:
            logger.info("Built-in health check passed (%s %s)", url, response.status_code)
            return None

        details = {
            "type": "InvalidResponseError",
            "code": "INVALID_RESPONSE",
            "url": url,
            "message": f"Unexpected status {response.status_code} ({response.reason_phrase})",
            "status": response.status_code,
        }
        logger.error("Built-in health check got invalid response: %s", details)
        return details

    def _acquire(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(trust_env=False)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
