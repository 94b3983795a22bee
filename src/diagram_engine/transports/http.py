"""HTTP transport: streams a provider response body over httpx."""

from __future__ import annotations

import ssl
from collections.abc import AsyncIterator

import httpx

from diagram_engine.errors import TransportError
from diagram_engine.logging import get_logger
from diagram_engine.transports.base import ProviderRequest, TransportBase, TransportConfig

logger = get_logger("transports.http")

_STATUS_MESSAGES = {
    400: "Bad request, check the input",
    401: "Invalid API key or insufficient permissions",
    403: "Invalid API key or insufficient permissions",
    404: "API endpoint not found",
    429: "Too many requests, try again later",
}


def describe_status(status_code: int, body: str = "") -> str:
    """Human-readable message for a failed HTTP status."""
    if status_code in _STATUS_MESSAGES:
        message = _STATUS_MESSAGES[status_code]
    elif status_code >= 500:
        message = "Provider server error, try again later"
    else:
        message = f"Request failed ({status_code})"
    body = body.strip()
    if body:
        message = f"{message}: {status_code} {body[:500]}"
    return message


def describe_http_error(exc: Exception, timeout: float | None = None) -> str:
    """Normalize an httpx exception into a short message."""
    if isinstance(exc, httpx.TimeoutException):
        if timeout:
            return f"Request timed out (over {timeout:g}s)"
        return "Request timed out"
    if isinstance(exc, httpx.ConnectError):
        cause = exc.__cause__ or exc.__context__
        text = str(exc).lower()
        if isinstance(cause, ssl.SSLError) or "ssl" in text or "certificate" in text:
            return "SSL/TLS certificate verification failed"
        if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo" in text:
            return "Could not resolve the API host name (DNS problem)"
        return "Network connection failed, the API is unreachable"
    if isinstance(exc, httpx.RemoteProtocolError):
        return "Connection closed unexpectedly by the provider"
    return f"Network error: {exc}"


class HTTPStreamTransport(TransportBase):
    """
    Streams a POST response body chunk by chunk.

    An ``httpx.AsyncClient`` may be injected (tests pass one built on
    ``httpx.MockTransport``); otherwise one is created on first use and
    closed by ``close()``.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config)
        self._client = client
        self._owns_client = client is None

    def _acquire(self) -> httpx.AsyncClient:
        if self._client is None:
            # trust_env=False keeps proxy variables from rerouting provider traffic
            self._client = httpx.AsyncClient(
                trust_env=False,
                timeout=httpx.Timeout(self.config.timeout, connect=self.config.connect_timeout),
                headers=self.config.headers,
            )
        return self._client

    async def stream(self, request: ProviderRequest) -> AsyncIterator[bytes]:
        client = self._acquire()
        logger.debug("%s headers=%s", request.summary(), request.redacted_headers())
        try:
            async with client.stream(
                request.method,
                request.url,
                headers=request.headers,
                json=request.body,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        describe_status(response.status_code, body),
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as exc:
            logger.error("Transport failure for %s: %s", request.url, exc)
            raise TransportError(describe_http_error(exc, self.config.timeout)) from exc

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
