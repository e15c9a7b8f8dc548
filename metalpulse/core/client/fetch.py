"""HTTP client for upstream quote feeds."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import httpx

from metalpulse.core.exceptions import FetchTimeoutError, FetchTransportError
from metalpulse.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "metalpulse/1.0"


class FetchClient:
    """Single-shot fetches with a hard timeout and no retries.

    ``fetch`` reads a whole JSON response; ``fetch_event`` reads a
    server-sent-event stream only until its first complete ``data:`` event.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Mapping[str, str] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"User-Agent": DEFAULT_USER_AGENT, **(headers or {})},
            transport=transport,
        )

    async def __aenter__(self) -> FetchClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def fetch(self, url: str) -> bytes:
        """GET ``url`` and return the body."""

        return await self._bounded(url, self._get(url))

    async def fetch_event(self, url: str) -> bytes:
        """Open an event stream and return the first complete event block."""

        return await self._bounded(url, self._first_event(url))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _bounded(self, url: str, work) -> bytes:
        try:
            return await asyncio.wait_for(work, timeout=self.timeout)
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise FetchTimeoutError(f"fetch timed out after {self.timeout}s", url, self.timeout) from exc
        except httpx.HTTPStatusError as exc:
            raise FetchTransportError(
                f"upstream answered {exc.response.status_code}", url, exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchTransportError(f"transport error: {exc}", url) from exc

    async def _get(self, url: str) -> bytes:
        response = await self._client.get(url, headers={"Accept": "application/json"})
        response.raise_for_status()
        return response.content

    async def _first_event(self, url: str) -> bytes:
        async with self._client.stream("GET", url, headers={"Accept": "text/event-stream"}) as response:
            response.raise_for_status()
            buffer = ""
            async for chunk in response.aiter_text():
                buffer += chunk.replace("\r\n", "\n")
                event = _complete_event(buffer)
                if event is not None:
                    return event.encode("utf-8")
        if "data:" in buffer:
            # Stream closed right after an unterminated final event.
            return buffer.strip().encode("utf-8")
        raise FetchTransportError("event stream closed before the first event", url)


def _complete_event(buffer: str) -> str | None:
    """First ``\\n\\n``-terminated block carrying a ``data:`` line, if one has arrived."""

    start = 0
    while True:
        end = buffer.find("\n\n", start)
        if end == -1:
            return None
        block = buffer[start:end]
        if any(line.startswith("data:") for line in block.splitlines()):
            return block + "\n\n"
        start = end + 2


__all__ = ["DEFAULT_TIMEOUT", "FetchClient"]
