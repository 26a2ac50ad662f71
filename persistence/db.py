"""SQLite persistence layer for the CoIoT engine.

Stores configured devices (with their profile and the last CoIoT device
description they sent) and the last published value of every channel.
Uses synchronous sqlite3; the listener thread and the API share one
connection.
"""

import json
import logging
import os
import sqlite3
import threading
from datetime import UTC, datetime

logger = logging.getLogger("coiotd.persistence")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS devices (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    ip TEXT NOT NULL UNIQUE,
    profile JSON NOT NULL DEFAULT '{}',
    coiot_description TEXT NOT NULL DEFAULT '',
    online INTEGER NOT NULL DEFAULT 0,
    last_seen TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS channel_values (
    device_id TEXT NOT NULL REFERENCES devices(id) ON DELETE CASCADE,
    channel_id TEXT NOT NULL,
    value JSON NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (device_id, channel_id)
);

CREATE INDEX IF NOT EXISTS idx_channel_values_device ON channel_values(device_id);
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


class Database:
    """Synchronous SQLite database for device and channel persistence."""

    def __init__(self, db_path: str = "/app/data/coiotd.db"):
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self):
        """Open the database and apply schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()
        logger.info("Database opened: %s", self.db_path)

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if not self._conn:
            raise RuntimeError("Database not connected")
        return self._conn

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def list_devices(self) -> list[dict]:
        with self._lock:
            rows = self.conn.execute("SELECT * FROM devices ORDER BY id").fetchall()
        return [_parse_device_row(r) for r in rows]

    def get_device(self, device_id: str) -> dict | None:
        with self._lock:
            row = self.conn.execute("SELECT * FROM devices WHERE id = ?", (device_id,)).fetchone()
        return _parse_device_row(row) if row else None

    def create_device(self, data: dict) -> dict:
        now = _now()
        with self._lock:
            self.conn.execute(
                """INSERT INTO devices (id, name, ip, profile, coiot_description, online,
                   last_seen, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, 0, NULL, ?, ?)""",
                (
                    data["id"],
                    data.get("name") or data["id"],
                    data["ip"],
                    json.dumps(data.get("profile") or {}),
                    data.get("coiot_description", ""),
                    now,
                    now,
                ),
            )
            self.conn.commit()
        return self.get_device(data["id"])

    def update_device(self, device_id: str, data: dict) -> dict | None:
        sets = []
        vals = []
        for key in ("name", "ip"):
            if key in data:
                sets.append(f"{key} = ?")
                vals.append(data[key])
        if "profile" in data:
            sets.append("profile = ?")
            vals.append(json.dumps(data["profile"] or {}))
        if not sets:
            return self.get_device(device_id)
        sets.append("updated_at = ?")
        vals.append(_now())
        vals.append(device_id)
        with self._lock:
            self.conn.execute(f"UPDATE devices SET {', '.join(sets)} WHERE id = ?", vals)
            self.conn.commit()
        return self.get_device(device_id)

    def delete_device(self, device_id: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM devices WHERE id = ?", (device_id,))
            self.conn.commit()
        return cur.rowcount > 0

    def get_description(self, device_id: str) -> str:
        """Last CoIoT device description stored for a device ('' if none)."""
        with self._lock:
            row = self.conn.execute(
                "SELECT coiot_description FROM devices WHERE id = ?", (device_id,)
            ).fetchone()
        return row["coiot_description"] if row else ""

    def save_description(self, device_id: str, payload: str):
        with self._lock:
            self.conn.execute(
                "UPDATE devices SET coiot_description = ?, updated_at = ? WHERE id = ?",
                (payload, _now(), device_id),
            )
            self.conn.commit()

    def set_online(self, device_id: str, online: bool = True):
        """Mark a device reachable (and remember when it was last heard)."""
        with self._lock:
            if online:
                self.conn.execute(
                    "UPDATE devices SET online = 1, last_seen = ? WHERE id = ?",
                    (_now(), device_id),
                )
            else:
                self.conn.execute("UPDATE devices SET online = 0 WHERE id = ?", (device_id,))
            self.conn.commit()

    # ------------------------------------------------------------------
    # Channel values
    # ------------------------------------------------------------------

    def save_channel_values(self, device_id: str, values: dict[str, dict]):
        """Upsert {channel_id: value_dict} for a device."""
        if not values:
            return
        now = _now()
        with self._lock:
            self.conn.executemany(
                """INSERT INTO channel_values (device_id, channel_id, value, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(device_id, channel_id)
                   DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                [(device_id, cid, json.dumps(v), now) for cid, v in values.items()],
            )
            self.conn.commit()

    def list_channel_values(self, device_id: str) -> list[dict]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM channel_values WHERE device_id = ? ORDER BY channel_id",
                (device_id,),
            ).fetchall()
        return [_parse_channel_row(r) for r in rows]

    def clear_channel_values(self, device_id: str) -> int:
        with self._lock:
            cur = self.conn.execute("DELETE FROM channel_values WHERE device_id = ?", (device_id,))
            self.conn.commit()
        return cur.rowcount


def _parse_device_row(row) -> dict:
    """Parse a device row, deserializing JSON fields."""
    if row is None:
        return None
    d = dict(row)
    if d.get("profile") and isinstance(d["profile"], str):
        d["profile"] = json.loads(d["profile"])
    d["online"] = bool(d.get("online", 0))
    return d


def _parse_channel_row(row) -> dict:
    d = dict(row)
    if isinstance(d.get("value"), str):
        d["value"] = json.loads(d["value"])
    return d
