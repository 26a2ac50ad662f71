"""DeviceManager - owns the CoIoT sessions of all configured devices.

Bridges between SQLite persistence and live ProtocolSession objects:
bootstraps devices from config.yaml, hands each session the stored device
description and persists what the sessions report (descriptions, channel
values, online state).
"""

import logging
from collections.abc import Callable

from coiot.models import ChannelValue
from coiotip.server import CoIoTListener
from persistence.db import Database

from .message_inspector import MessageInspector
from .profile import DeviceProfile
from .session import ProtocolSession

logger = logging.getLogger("coiotd.manager")


class DeviceManager:
    """Manages one ProtocolSession per device on a shared listener."""

    def __init__(
        self,
        db: Database,
        listener: CoIoTListener,
        inspector: MessageInspector | None = None,
        on_channel_update: Callable | None = None,
        on_event: Callable | None = None,
    ):
        self.db = db
        self.listener = listener
        self.inspector = inspector
        self.sessions: dict[str, ProtocolSession] = {}
        self.poll_requests: dict[str, int] = {}
        self._on_channel_update = on_channel_update
        self._on_event = on_event

    def bootstrap_from_config(self, config: dict):
        """Sync configured devices into the database, then start all sessions."""
        for dev_cfg in config.get("devices") or []:
            if not dev_cfg.get("id") or not dev_cfg.get("ip"):
                logger.warning("Skipping device without id/ip in config: %s", dev_cfg)
                continue
            data = {
                "id": str(dev_cfg["id"]),
                "name": dev_cfg.get("name") or str(dev_cfg["id"]),
                "ip": dev_cfg["ip"],
                "profile": dev_cfg.get("profile") or {},
            }
            if self.db.get_device(data["id"]):
                self.db.update_device(data["id"], data)
            else:
                self.db.create_device(data)
                logger.info("Device added from config: %s (%s)", data["id"], data["ip"])

        self.load_all_devices()

    def load_all_devices(self):
        for dev in self.db.list_devices():
            if dev["id"] not in self.sessions:
                self._load_device(dev)
        logger.info("%d CoIoT session(s) running", len(self.sessions))

    def _load_device(self, dev: dict) -> ProtocolSession:
        device_id = dev["id"]
        session = ProtocolSession(
            device_id=device_id,
            ip=dev["ip"],
            listener=self.listener,
            profile=DeviceProfile.from_dict(dev.get("profile")),
            load_description=lambda: self.db.get_description(device_id),
            save_description=lambda payload: self.db.save_description(device_id, payload),
            on_channel_update=self._handle_channel_update,
            on_online=self._handle_online,
            on_event=self._handle_event,
            on_request_poll=self._handle_request_poll,
            on_message=self.inspector.record if self.inspector else None,
        )
        # Register before starting so early responses find the session
        self.sessions[device_id] = session
        session.start()
        return session

    # ------------------------------------------------------------------
    # Session callbacks (listener thread)
    # ------------------------------------------------------------------

    def _handle_channel_update(self, device_id: str, updates: list[ChannelValue]):
        self.db.save_channel_values(device_id, {u.channel_id: u.to_dict() for u in updates})
        if self._on_channel_update:
            self._on_channel_update(device_id, [u.to_dict() for u in updates])

    def _handle_online(self, device_id: str):
        self.db.set_online(device_id, True)

    def _handle_event(self, device_id: str, group: str, event: str):
        if self._on_event:
            self._on_event(device_id, group, event)

    def _handle_request_poll(self, device_id: str):
        # HTTP polling is out of scope; count the requests for the status API
        self.poll_requests[device_id] = self.poll_requests.get(device_id, 0) + 1
        logger.debug("%s: supplementary poll requested", device_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_devices(self) -> list[dict]:
        """List devices with live session info."""
        devices = self.db.list_devices()
        for dev in devices:
            self._enrich(dev)
        return devices

    def get_device(self, device_id: str) -> dict | None:
        dev = self.db.get_device(device_id)
        return self._enrich(dev) if dev else None

    def _enrich(self, dev: dict) -> dict:
        dev.pop("coiot_description", None)
        session = self.sessions.get(dev["id"])
        dev["session"] = session.to_dict() if session else None
        dev["poll_requests"] = self.poll_requests.get(dev["id"], 0)
        return dev

    def get_schema(self, device_id: str) -> dict | None:
        session = self.sessions.get(device_id)
        if not session:
            return None
        return session.schema_dict()

    def get_channels(self, device_id: str) -> list[dict] | None:
        """Current channel values from the live cache, persisted values as fallback."""
        session = self.sessions.get(device_id)
        if not session:
            return None
        snapshot = session.cache.snapshot()
        if snapshot:
            channels = []
            for channel_id in sorted(snapshot):
                group, channel = channel_id.split("#", 1)
                channels.append(ChannelValue(group, channel, snapshot[channel_id]).to_dict())
            return channels
        return [row["value"] for row in self.db.list_channel_values(device_id)]

    def refresh(self, device_id: str) -> bool:
        """Request a fresh device description (external scheduler hook)."""
        session = self.sessions.get(device_id)
        if not session:
            return False
        session.request_description()
        logger.info("%s: device description requested", device_id)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop_all(self):
        """Stop all running sessions."""
        for session in self.sessions.values():
            session.stop()
        self.sessions.clear()
        logger.info("All sessions stopped")
