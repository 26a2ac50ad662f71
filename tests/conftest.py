"""Pytest configuration and shared fixtures for coiotd tests."""

from __future__ import annotations

import os
import sys

import pytest

_TESTS_DIR = os.path.dirname(__file__)
_PROJECT_ROOT = os.path.abspath(os.path.join(_TESTS_DIR, ".."))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from samples import DEVICE_IP  # noqa: E402


@pytest.fixture
def anyio_backend():
    """Run anyio-marked tests on asyncio (the backend FastAPI/uvicorn use)."""
    return "asyncio"


class RecordingSocket:
    """Stand-in for the UDP socket: records every sendto()."""

    def __init__(self):
        self.sent: list[tuple[bytes, tuple]] = []

    def sendto(self, data, addr):
        self.sent.append((data, addr))

    def close(self):
        pass


@pytest.fixture(autouse=True)
def _disable_coiot_listener(monkeypatch):
    """Avoid binding UDP sockets in tests."""
    from coiotip.server import CoIoTListener

    def _start(self):  # pragma: no cover - trivial override
        self._running = True

    def _stop(self):  # pragma: no cover - trivial override
        self._running = False

    monkeypatch.setattr(CoIoTListener, "start", _start)
    monkeypatch.setattr(CoIoTListener, "stop", _stop)


@pytest.fixture
def listener():
    """A CoIoTListener whose outgoing datagrams are recorded, not sent."""
    from coiotip.server import CoIoTListener

    lst = CoIoTListener(multicast=False)
    lst._sock = RecordingSocket()
    return lst


@pytest.fixture
def sent_requests(listener):
    """Decoded (uri, message) pairs of all requests the listener sent."""
    from coiotip import frames

    def _sent():
        out = []
        for data, _addr in listener._sock.sent:
            msg = frames.decode_message(data)
            out.append((frames.uri_path(msg), msg))
        return out

    return _sent


@pytest.fixture
def profile():
    from core.profile import DeviceProfile

    return DeviceProfile(device_type="SHSW-1", num_relays=1)


@pytest.fixture
def cache():
    from core.channel_cache import ChannelCache

    return ChannelCache("test-device")


@pytest.fixture
def make_session(listener):
    """Factory for started ProtocolSessions; collects their callbacks."""
    from core.profile import DeviceProfile
    from core.session import ProtocolSession

    def _make(profile=None, **kwargs):
        calls = {"updates": [], "online": 0, "events": [], "polls": 0, "messages": []}

        def on_channel_update(device_id, values):
            calls["updates"].append(values)

        def on_online(device_id):
            calls["online"] += 1

        def on_event(device_id, group, event):
            calls["events"].append((group, event))

        def on_request_poll(device_id):
            calls["polls"] += 1

        def on_message(device_id, record):
            calls["messages"].append(record)

        session = ProtocolSession(
            device_id="test-device",
            ip=DEVICE_IP,
            listener=listener,
            profile=profile or DeviceProfile(num_relays=1),
            on_channel_update=on_channel_update,
            on_online=on_online,
            on_event=on_event,
            on_request_poll=on_request_poll,
            on_message=on_message,
            **kwargs,
        )
        session.calls = calls
        session.start()
        return session

    return _make


@pytest.fixture
def tmp_db_path(tmp_path):
    """Provide a temporary SQLite database path."""
    return str(tmp_path / "test_coiotd.db")


@pytest.fixture
def db(tmp_db_path):
    """Create a fresh Database with schema applied."""
    from persistence.db import Database

    database = Database(db_path=tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def message_inspector():
    from core.message_inspector import MessageInspector

    return MessageInspector(max_size=100)


@pytest.fixture
def ws_hub():
    """Create a WebSocketHub instance (no event loop bound)."""
    from api.websocket_hub import WebSocketHub

    return WebSocketHub()


@pytest.fixture
def device_manager(db, listener, message_inspector, ws_hub):
    """A DeviceManager with one configured Shelly1."""
    from core.device_manager import DeviceManager

    manager = DeviceManager(
        db=db,
        listener=listener,
        inspector=message_inspector,
        on_channel_update=ws_hub.push_channel_update,
        on_event=ws_hub.push_event,
    )
    manager.bootstrap_from_config(
        {
            "devices": [
                {
                    "id": "shelly1-hall",
                    "name": "Hall",
                    "ip": DEVICE_IP,
                    "profile": {"device_type": "SHSW-1", "num_relays": 1},
                }
            ]
        }
    )
    yield manager
    manager.stop_all()


@pytest.fixture
def app(device_manager, ws_hub, message_inspector):
    """Create a FastAPI test app with all dependencies injected."""
    from api.app import create_app

    return create_app(
        manager=device_manager,
        ws_hub=ws_hub,
        message_inspector=message_inspector,
    )


@pytest.fixture
async def client(app):
    """Create an AsyncClient for HTTP testing against the ASGI app."""
    import httpx

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture(autouse=True)
def _run_sync_endpoints_inline(monkeypatch):
    """Run sync FastAPI endpoints inline to avoid AnyIO threadpool hangs."""
    import fastapi.concurrency as fastapi_concurrency
    import fastapi.dependencies.utils as fastapi_dep_utils
    import fastapi.routing as fastapi_routing
    import starlette.concurrency as starlette_concurrency

    async def _run_inline(func, *args, **kwargs):
        return func(*args, **kwargs)

    monkeypatch.setattr(starlette_concurrency, "run_in_threadpool", _run_inline)
    monkeypatch.setattr(fastapi_concurrency, "run_in_threadpool", _run_inline)
    monkeypatch.setattr(fastapi_routing, "run_in_threadpool", _run_inline)
    monkeypatch.setattr(fastapi_dep_utils, "run_in_threadpool", _run_inline)
