"""Unit tests for Database CRUD operations."""

from __future__ import annotations

import sqlite3

import pytest


def _create_device(db, device_id: str = "dev-1", ip: str = "192.168.1.50") -> dict:
    return db.create_device(
        {
            "id": device_id,
            "name": "Hall",
            "ip": ip,
            "profile": {"device_type": "SHSW-1", "num_relays": 1},
        }
    )


def test_schema_created(db):
    row = db.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='channel_values'"
    ).fetchone()
    assert row is not None


def test_device_crud(db):
    device = _create_device(db)
    assert device["profile"] == {"device_type": "SHSW-1", "num_relays": 1}
    assert device["online"] is False
    assert device["last_seen"] is None

    updated = db.update_device("dev-1", {"name": "Hallway", "profile": {"num_relays": 2}})
    assert updated["name"] == "Hallway"
    assert updated["profile"] == {"num_relays": 2}

    assert [d["id"] for d in db.list_devices()] == ["dev-1"]
    assert db.delete_device("dev-1")
    assert db.get_device("dev-1") is None
    assert not db.delete_device("dev-1")


def test_duplicate_ip_rejected(db):
    _create_device(db)
    with pytest.raises(sqlite3.IntegrityError):
        _create_device(db, device_id="dev-2")


def test_description_round_trip(db):
    _create_device(db)
    assert db.get_description("dev-1") == ""

    db.save_description("dev-1", '{"blk":[]}')
    assert db.get_description("dev-1") == '{"blk":[]}'
    assert db.get_description("missing") == ""


def test_online_flag(db):
    _create_device(db)
    db.set_online("dev-1")

    device = db.get_device("dev-1")
    assert device["online"] is True
    assert device["last_seen"]

    db.set_online("dev-1", False)
    assert db.get_device("dev-1")["online"] is False


def test_channel_values_upsert(db):
    _create_device(db)
    db.save_channel_values("dev-1", {"relay#output": {"type": "onoff", "value": "ON"}})
    db.save_channel_values(
        "dev-1",
        {
            "relay#output": {"type": "onoff", "value": "OFF"},
            "meter#power": {"type": "quantity", "value": 12.5, "unit": "W"},
        },
    )

    rows = db.list_channel_values("dev-1")
    assert [r["channel_id"] for r in rows] == ["meter#power", "relay#output"]
    assert rows[1]["value"]["value"] == "OFF"

    assert db.clear_channel_values("dev-1") == 2
    assert db.list_channel_values("dev-1") == []


def test_channel_values_deleted_with_device(db):
    _create_device(db)
    db.save_channel_values("dev-1", {"relay#output": {"type": "onoff", "value": "ON"}})

    db.delete_device("dev-1")
    assert db.list_channel_values("dev-1") == []
