"""
Shared pytest fixtures and configuration for live hub tests.
"""

import json
import os
import sys
from datetime import datetime, timezone

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from streamhub.ws_hub import LiveHub


FIXED_NOW = datetime(2026, 1, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)
FIXED_TS = "2026-01-01T12:00:00.123Z"


class FakeTransport:
    """In-memory Transport that records decoded frames."""

    def __init__(self, *, open=True, fail_send=False):
        self.open = open
        self.fail_send = fail_send
        self.closed = False
        self.frames = []

    @property
    def is_open(self):
        return self.open and not self.closed

    def send(self, text):
        if self.fail_send:
            raise RuntimeError("connection closed")
        self.frames.append(json.loads(text))

    def close(self):
        self.closed = True

    def of_type(self, msg_type):
        return [f for f in self.frames if f["type"] == msg_type]

    def types(self):
        return [f["type"] for f in self.frames]

    def clear(self):
        self.frames.clear()


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def hub():
    """Isolated hub with a frozen clock."""
    return LiveHub(clock=lambda: FIXED_NOW)


@pytest.fixture
def join(hub):
    """Connect a fake client and join it to a stream. Returns (connection_id, transport)."""
    def _join(stream_id, user_id, *, is_creator=None, transport=None):
        transport = transport or FakeTransport()
        cid = hub.connect(transport)
        payload = {"userId": user_id, "streamId": stream_id}
        if is_creator is not None:
            payload["isCreator"] = is_creator
        hub.handle_message(cid, json.dumps({"type": "join_stream", "payload": payload}))
        return cid, transport
    return _join


# Pytest hooks for custom behavior
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "ws: mark test as WebSocket test")


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)

        if "test_" in item.nodeid and "integration" not in item.nodeid:
            item.add_marker(pytest.mark.unit)

        mod = getattr(item, "module", None)
        modfile = getattr(mod, "__file__", "") or ""
        basename = os.path.basename(modfile)
        if basename.startswith("test_ws_"):
            item.add_marker(pytest.mark.ws)
