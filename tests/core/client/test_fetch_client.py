"""Tests for the upstream fetch client."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from metalpulse.core.client.fetch import FetchClient
from metalpulse.core.exceptions import FetchTimeoutError, FetchTransportError

URL = "https://feeds.test/aluminum"


@pytest.mark.asyncio
async def test_fetch_returns_body_and_sends_user_agent() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b'{"spot_price": 241}')

    async with FetchClient(transport=httpx.MockTransport(handler)) as client:
        body = await client.fetch(URL)

    assert body == b'{"spot_price": 241}'
    assert seen[0].headers["User-Agent"].startswith("metalpulse/")
    assert seen[0].headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_error_status_raises_transport_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))

    async with FetchClient(transport=transport) as client:
        with pytest.raises(FetchTransportError) as excinfo:
            await client.fetch(URL)

    assert excinfo.value.status_code == 502
    assert excinfo.value.details["url"] == URL


@pytest.mark.asyncio
async def test_connection_failure_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    async with FetchClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(FetchTransportError) as excinfo:
            await client.fetch(URL)

    assert excinfo.value.status_code is None


@pytest.mark.asyncio
async def test_slow_upstream_raises_timeout() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1.0)
        return httpx.Response(200, content=b"{}")

    async with FetchClient(timeout=0.05, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(FetchTimeoutError) as excinfo:
            await client.fetch(URL)

    assert excinfo.value.timeout == 0.05


@pytest.mark.asyncio
async def test_fetch_event_returns_first_complete_event() -> None:
    stream = b': keep-alive\n\ndata: {"success": true, "data": {"Value": "1"}}\n\ndata: {"success": true}\n\n'

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Accept"] == "text/event-stream"
        return httpx.Response(200, content=stream, headers={"Content-Type": "text/event-stream"})

    async with FetchClient(transport=httpx.MockTransport(handler)) as client:
        event = await client.fetch_event(URL)

    assert event == b'data: {"success": true, "data": {"Value": "1"}}\n\n'


@pytest.mark.asyncio
async def test_fetch_event_without_events_fails() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b": keep-alive\n\n"))

    async with FetchClient(transport=transport) as client:
        with pytest.raises(FetchTransportError):
            await client.fetch_event(URL)


def test_timeout_must_be_positive() -> None:
    with pytest.raises(ValueError):
        FetchClient(timeout=0)
