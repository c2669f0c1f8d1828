"""Async OpenCode server client.

HTTP transport for the OpenCode headless server API using httpx:
- Basic auth and per-request project directory scoping
- Retry with exponential backoff for transient statuses and network errors
- 204 No Content handling on every method
- Server-Sent Events subscription with cancellable reads
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx

from opencode_bridge.config.app import BridgeConfig
from opencode_bridge.errors import OpenCodeConnectionError, OpenCodeError
from opencode_bridge.health import HealthStatus, check_health
from opencode_bridge.sse import SSEDecoder, SSEEvent

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:4096"
DEFAULT_USERNAME = "opencode"
DIRECTORY_HEADER = "x-opencode-directory"

MAX_RETRIES = 2
BASE_DELAY = 0.5

MAX_POLL_DURATION = 30.0
SSE_CONNECT_TIMEOUT = 10.0


def basic_auth_header(username: str | None, password: str) -> str:
    """Build a Basic Authorization header value; username defaults to "opencode"."""
    user = username if username is not None else DEFAULT_USERNAME
    token = base64.b64encode(f"{user}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


class OpenCodeClient:
    """Async HTTP client for the OpenCode server API.

    Args:
        base_url: Server base URL (default: http://127.0.0.1:4096)
        username: Basic auth username (default: "opencode" when a password is set)
        password: Basic auth password; no Authorization header without it
        timeout: Default request timeout in seconds (default: no timeout)
        transport: Optional httpx transport, mainly for tests
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.removesuffix("/")
        self._auth_header = basic_auth_header(username, password) if password else None

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: BridgeConfig) -> OpenCodeClient:
        return cls(
            base_url=config.base_url,
            username=config.username,
            password=config.password,
            timeout=config.request_timeout,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> OpenCodeClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _headers(self, accept: str = "application/json", directory: str | None = None) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": accept}
        if self._auth_header:
            headers["Authorization"] = self._auth_header
        if directory:
            headers[DIRECTORY_HEADER] = directory
        return headers

    @staticmethod
    def _clean_query(query: dict[str, Any] | None) -> dict[str, Any] | None:
        if not query:
            return None
        return {k: v for k, v in query.items() if v is not None and v != ""}

    async def health(self) -> HealthStatus:
        """Probe the server's health endpoint. Never raises."""
        headers = {"Authorization": self._auth_header} if self._auth_header else None
        return await check_health(self._base_url, headers=headers)

    async def get(
        self,
        path: str,
        query: dict[str, Any] | None = None,
        *,
        directory: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self.request("GET", path, query=query, directory=directory, timeout=timeout)

    async def post(
        self,
        path: str,
        body: Any = None,
        *,
        query: dict[str, Any] | None = None,
        directory: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self.request(
            "POST", path, body=body, query=query, directory=directory, timeout=timeout
        )

    async def patch(
        self,
        path: str,
        body: Any = None,
        *,
        query: dict[str, Any] | None = None,
        directory: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self.request(
            "PATCH", path, body=body, query=query, directory=directory, timeout=timeout
        )

    async def put(
        self,
        path: str,
        body: Any = None,
        *,
        query: dict[str, Any] | None = None,
        directory: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self.request(
            "PUT", path, body=body, query=query, directory=directory, timeout=timeout
        )

    async def delete(
        self,
        path: str,
        query: dict[str, Any] | None = None,
        *,
        directory: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self.request("DELETE", path, query=query, directory=directory, timeout=timeout)

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        query: dict[str, Any] | None = None,
        directory: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Execute an HTTP request with retries.

        Attempts are strictly sequential. Transient statuses (429/502/503/504)
        and network errors are retried up to MAX_RETRIES times, sleeping
        BASE_DELAY * 2**(retry - 1) before each retry. Any other non-2xx
        status raises immediately.

        Args:
            method: HTTP method
            path: API path
            body: JSON-serializable request body; None sends no payload
            query: Query parameters; None and empty-string values are dropped
            directory: Project directory sent as the x-opencode-directory header
            timeout: Per-call timeout in seconds; aborts the transfer itself

        Returns:
            Decoded JSON, raw text for non-JSON responses, or None for 204

        Raises:
            OpenCodeError: On non-2xx responses
            OpenCodeConnectionError: When the server could not be reached
        """
        params = self._clean_query(query)
        headers = self._headers(directory=directory)
        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = timeout

        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method,
                    path,
                    json=body,
                    params=params,
                    headers=headers,
                    **extra,
                )
            except httpx.TransportError as e:
                if attempt >= MAX_RETRIES:
                    raise OpenCodeConnectionError(
                        f"{method} {path} failed after {attempt + 1} attempts: {e}",
                        method=method,
                        path=path,
                    ) from e
                failure = str(e)
            else:
                if response.is_success:
                    return self._decode(response)

                text = response.text
                error = OpenCodeError(
                    f"{method} {path} failed ({response.status_code}): {text}",
                    status=response.status_code,
                    method=method,
                    path=path,
                    body=text,
                )
                if not error.is_transient or attempt >= MAX_RETRIES:
                    raise error
                failure = str(error)

            attempt += 1
            delay = BASE_DELAY * 2 ** (attempt - 1)
            logger.warning(
                f"{method} {path} failed ({failure}), retrying in {delay}s "
                f"(attempt {attempt + 1}/{MAX_RETRIES + 1})"
            )
            await asyncio.sleep(delay)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204:
            return None
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text

    async def subscribe_sse(
        self,
        path: str = "/event",
        *,
        cancel: asyncio.Event | None = None,
        directory: str | None = None,
    ) -> AsyncIterator[SSEEvent]:
        """Subscribe to a Server-Sent Events stream.

        Yields events in stream order until the server closes the stream or
        ``cancel`` is set. Setting ``cancel`` interrupts the pending read and
        closes the connection; so does cancelling the consuming task. A
        dropped stream is not re-established.

        Args:
            path: Event stream path
            cancel: Event that stops the subscription when set
            directory: Project directory sent as the x-opencode-directory header

        Raises:
            OpenCodeError: If the server rejects the subscription
            OpenCodeConnectionError: If the connection fails or drops
        """
        headers = self._headers(accept="text/event-stream", directory=directory)
        headers["Cache-Control"] = "no-cache"
        timeout = httpx.Timeout(None, connect=SSE_CONNECT_TIMEOUT)

        try:
            async with self._client.stream("GET", path, headers=headers, timeout=timeout) as response:
                if not response.is_success:
                    text = (await response.aread()).decode("utf-8", errors="replace")
                    raise OpenCodeError(
                        f"SSE {path} failed ({response.status_code}): {text}",
                        status=response.status_code,
                        method="GET",
                        path=path,
                        body=text,
                    )

                decoder = SSEDecoder()
                chunks = response.aiter_bytes()
                while True:
                    chunk = await _read_chunk(chunks, cancel)
                    if chunk is None:
                        break
                    for event in decoder.feed(chunk):
                        yield event
        except httpx.TransportError as e:
            raise OpenCodeConnectionError(f"SSE {path} failed: {e}", method="GET", path=path) from e

    async def poll_events(
        self,
        path: str = "/event",
        *,
        duration: float = 3.0,
        max_events: int = 50,
        directory: str | None = None,
    ) -> list[SSEEvent]:
        """Collect events for a bounded period.

        Args:
            path: Event stream path
            duration: Seconds to collect for (capped at 30)
            max_events: Stop after this many events

        Returns:
            Events received before the deadline or the cap, in order

        Raises:
            OpenCodeError: If the server rejects the subscription
            OpenCodeConnectionError: If the connection fails before any event arrives
        """
        cancel = asyncio.Event()
        timer = asyncio.get_running_loop().call_later(min(duration, MAX_POLL_DURATION), cancel.set)
        events: list[SSEEvent] = []
        try:
            async with aclosing(
                self.subscribe_sse(path, cancel=cancel, directory=directory)
            ) as stream:
                async for event in stream:
                    events.append(event)
                    if len(events) >= max_events:
                        break
        except OpenCodeConnectionError as e:
            if not events:
                raise
            logger.warning(f"Event stream dropped after {len(events)} event(s): {e}")
        finally:
            timer.cancel()
        return events


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return None


async def _read_chunk(chunks: AsyncIterator[bytes], cancel: asyncio.Event | None) -> bytes | None:
    """Read the next chunk, or None when the stream ends or ``cancel`` is set."""
    if cancel is None:
        return await _next_chunk(chunks)

    if cancel.is_set():
        return None

    read = asyncio.create_task(_next_chunk(chunks))
    waiter = asyncio.create_task(cancel.wait())
    try:
        await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not read.done():
            read.cancel()
            await asyncio.wait({read})

    if read.cancelled():
        return None
    return read.result()
