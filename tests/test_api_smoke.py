"""Happy-path smoke tests for the coiotd inspection API."""

from __future__ import annotations

import pytest

from coiotip import constants as C
from samples import DEVICE_ADDR, description_response, generic, status_publish

pytestmark = pytest.mark.anyio


def _feed_device(listener, sent_requests):
    mid = next(msg["message_id"] for uri, msg in sent_requests() if uri == C.URI_DEVDESC)
    listener.handle_datagram(description_response(mid), DEVICE_ADDR)
    listener.handle_datagram(status_publish(4, generic((112, 1), (111, 17.25)), message_id=30), DEVICE_ADDR)


async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["devices_total"] == 1
    assert body["devices_observing"] == 0
    assert body["ws_connections"] == 0


async def test_list_and_get_device(client):
    resp = await client.get("/api/v1/devices")
    assert resp.status_code == 200
    devices = resp.json()
    assert [d["id"] for d in devices] == ["shelly1-hall"]
    assert devices[0]["session"]["state"] == "description_requested"

    resp = await client.get("/api/v1/devices/shelly1-hall")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Hall"


async def test_schema_and_channels(client, listener, sent_requests):
    _feed_device(listener, sent_requests)

    resp = await client.get("/api/v1/devices/shelly1-hall/schema")
    assert resp.status_code == 200
    schema = resp.json()
    assert [b["id"] for b in schema["blocks"]] == ["0"]
    assert schema["last_serial"] == 4

    resp = await client.get("/api/v1/devices/shelly1-hall/channels")
    assert resp.status_code == 200
    channels = {c["id"]: c for c in resp.json()}
    assert channels["relay#output"]["value"] == "ON"
    assert channels["meter#power"]["value"] == 17.25
    assert channels["meter#power"]["unit"] == "W"

    resp = await client.get("/api/v1/health")
    assert resp.json()["devices_observing"] == 1


async def test_messages(client, listener, sent_requests):
    _feed_device(listener, sent_requests)

    resp = await client.get("/api/v1/devices/shelly1-hall/messages", params={"limit": 1})
    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 1
    assert body["total_buffered"] == 2
    assert body["messages"][0]["outcome"] == "status"
    assert "relay#output=ON" in body["messages"][0]["updates"]


async def test_refresh(client, sent_requests):
    resp = await client.post("/api/v1/devices/shelly1-hall/refresh")
    assert resp.status_code == 202
    assert resp.json() == {"status": "requested", "device_id": "shelly1-hall"}
    assert [uri for uri, _ in sent_requests()] == [C.URI_DEVDESC, C.URI_DEVDESC]


async def test_unknown_device(client):
    for path in ("", "/schema", "/channels", "/messages"):
        resp = await client.get(f"/api/v1/devices/nonexistent{path}")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Device not found"

    resp = await client.post("/api/v1/devices/nonexistent/refresh")
    assert resp.status_code == 404
