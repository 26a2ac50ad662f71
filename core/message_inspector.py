"""Message Inspector - ring buffer for decoded CoIoT message history.

Stores the last N messages per device for REST access. Each entry
includes timestamp, message kind (description/status), serial, the raw
payload, the processing outcome and the channel updates it produced.

Thread-safe: messages arrive from the CoIoT listener thread.
"""

import logging
import threading
import time
from collections import deque
from typing import Optional

logger = logging.getLogger("coiotd.message_inspector")

# Outcome → short label for the message list
OUTCOME_LABELS = {
    "description": "Device description",
    "status": "Status update",
    "duplicate": "Duplicate (discarded)",
    "no_schema": "No description yet",
    "malformed": "Malformed payload",
    "ignored": "Ignored",
}


class MessageEntry:
    """A single decoded CoIoT message record."""

    __slots__ = (
        "timestamp",
        "device_id",
        "ip",
        "uri",
        "serial",
        "payload",
        "outcome",
        "updates",
    )

    def __init__(
        self,
        device_id: str,
        ip: str,
        uri: str,
        serial: int,
        payload: str,
        outcome: str,
        updates: Optional[list[str]] = None,
    ):
        self.timestamp = time.time()
        self.device_id = device_id
        self.ip = ip
        self.uri = uri
        self.serial = serial
        self.payload = payload
        self.outcome = outcome
        self.updates = list(updates or [])

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "device_id": self.device_id,
            "ip": self.ip,
            "uri": self.uri,
            "serial": self.serial,
            "payload": self.payload,
            "outcome": self.outcome,
            "outcome_label": OUTCOME_LABELS.get(self.outcome, self.outcome),
            "updates": self.updates,
        }


class MessageInspector:
    """Ring buffer storing decoded message history per device."""

    def __init__(self, max_size: int = 500):
        self._max_size = max_size
        self._buffers: dict[str, deque[MessageEntry]] = {}
        self._lock = threading.Lock()
        self._total_count = 0
        self._outcomes: dict[str, int] = {}

    def record(self, device_id: str, record: dict):
        """Record one processed message (the dict a ProtocolSession reports)."""
        entry = MessageEntry(
            device_id=device_id,
            ip=record.get("ip", ""),
            uri=record.get("uri", ""),
            serial=record.get("serial", 0),
            payload=record.get("payload", ""),
            outcome=record.get("outcome", "ignored"),
            updates=record.get("updates"),
        )
        with self._lock:
            if device_id not in self._buffers:
                self._buffers[device_id] = deque(maxlen=self._max_size)
            self._buffers[device_id].append(entry)
            self._total_count += 1
            self._outcomes[entry.outcome] = self._outcomes.get(entry.outcome, 0) + 1

    def get_history(self, device_id: str, limit: int = 100, offset: int = 0) -> list[dict]:
        """Get message history for a device (newest first)."""
        with self._lock:
            buf = self._buffers.get(device_id)
            if not buf:
                return []
            entries = list(reversed(buf))
            return [e.to_dict() for e in entries[offset : offset + limit]]

    def get_stats(self, device_id: Optional[str] = None) -> dict:
        with self._lock:
            if device_id:
                buf = self._buffers.get(device_id)
                return {
                    "device_id": device_id,
                    "buffered": len(buf) if buf else 0,
                    "buffer_max": self._max_size,
                }
            return {
                "total_recorded": self._total_count,
                "outcomes": dict(self._outcomes),
                "devices": {did: len(buf) for did, buf in self._buffers.items()},
                "buffer_max": self._max_size,
            }

    def clear(self, device_id: Optional[str] = None):
        """Clear message history."""
        with self._lock:
            if device_id:
                self._buffers.pop(device_id, None)
            else:
                self._buffers.clear()
                self._total_count = 0
                self._outcomes.clear()
