"""
Tests for WebSocketTransport (streamhub/ws_routes.py) and the idle reaper loop.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.websockets import WebSocketState

from conftest import FakeTransport
from streamhub.idle_reaper import reap_idle_loop
from streamhub.ws_hub import LiveHub
from streamhub.ws_routes import WebSocketTransport


def _make_ws(*, fail_send=False):
    """Create a mock connected WebSocket."""
    ws = MagicMock()
    ws.client_state = WebSocketState.CONNECTED
    ws.application_state = WebSocketState.CONNECTED
    ws.send_text = AsyncMock()
    ws.close = AsyncMock()
    if fail_send:
        ws.send_text.side_effect = RuntimeError("connection closed")
    return ws


@pytest.mark.asyncio
async def test_frames_are_written_in_order():
    ws = _make_ws()
    transport = WebSocketTransport(ws)
    writer = asyncio.create_task(transport.run())

    for text in ("a", "b", "c"):
        transport.send(text)
    transport.close()
    await asyncio.wait_for(writer, timeout=1)

    assert [c.args[0] for c in ws.send_text.await_args_list] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_close_while_peer_connected_closes_socket():
    ws = _make_ws()
    transport = WebSocketTransport(ws)
    writer = asyncio.create_task(transport.run())

    transport.close()
    await asyncio.wait_for(writer, timeout=1)

    ws.close.assert_awaited_once_with(code=1000)
    assert not transport.is_open


@pytest.mark.asyncio
async def test_close_after_peer_left_does_not_close_again():
    ws = _make_ws()
    ws.client_state = WebSocketState.DISCONNECTED
    transport = WebSocketTransport(ws)
    assert not transport.is_open

    writer = asyncio.create_task(transport.run())
    transport.close()
    transport.close()  # idempotent
    await asyncio.wait_for(writer, timeout=1)

    ws.close.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_send_stops_writer_and_marks_closed():
    ws = _make_ws(fail_send=True)
    transport = WebSocketTransport(ws)
    writer = asyncio.create_task(transport.run())

    transport.send("x")
    await asyncio.wait_for(writer, timeout=1)

    assert not transport.is_open
    ws.send_text.assert_awaited_once_with("x")


@pytest.mark.asyncio
async def test_send_never_blocks():
    ws = _make_ws()
    transport = WebSocketTransport(ws)
    for i in range(100):
        transport.send(str(i))
    assert transport.pending == 100
    ws.send_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_reap_idle_loop_sweeps_periodically():
    now = [0.0]
    hub = LiveHub(monotonic=lambda: now[0])
    transport = FakeTransport()
    cid = hub.connect(transport)
    now[0] = 100.0

    task = asyncio.create_task(reap_idle_loop(hub, idle_timeout_s=10, interval_s=0.01))
    try:
        for _ in range(100):
            if hub.get_connection(cid) is None:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    assert hub.get_connection(cid) is None
    assert transport.closed
