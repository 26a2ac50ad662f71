"""Protocol session - one CoIoT device behind the shared listener.

Holds the device's schema, dedup state and outstanding request slots and
drives the description/status exchange:

    IDLE → DESCRIPTION_REQUESTED → DESCRIPTION_KNOWN → OBSERVING

Messages arrive on the listener thread via on_message(). Decoder errors
are caught here and turned into log lines; nothing propagates back into
the listener loop.
"""

import logging
import threading
from collections.abc import Callable
from enum import Enum

from coiot import decode_description, decode_status, is_description, is_duplicate, is_status
from coiot.errors import (
    CoIoTError,
    DuplicateSerial,
    MalformedMessage,
    SchemaNotReady,
    TransportTimeout,
    UnknownSensorId,
)
from coiot.models import ChannelValue, DeviceSchema
from coiotip import constants as C
from coiotip.server import CoapRequest, CoIoTListener

from .channel_cache import ChannelCache
from .mapper import ChannelMapper
from .profile import DeviceProfile

logger = logging.getLogger("coiotd.session")


class SessionState(str, Enum):
    IDLE = "idle"
    DESCRIPTION_REQUESTED = "description_requested"
    DESCRIPTION_KNOWN = "description_known"
    OBSERVING = "observing"


class ProtocolSession:
    """Per-device CoIoT protocol state.

    Args:
        device_id: Configured device id (used in logs and callbacks)
        ip: Device IP address; datagrams from it are routed here
        listener: Shared CoIoTListener
        profile: DeviceProfile driving the channel mapping
        cache: Channel cache (a fresh one is created when omitted)
        load_description: fn() -> str, last persisted description payload
        save_description: fn(payload) to persist a received description
        on_channel_update: fn(device_id, [ChannelValue])
        on_online: fn(device_id) on every decoded message
        on_event: fn(device_id, group, event_type) for alarms and button pushes
        on_request_poll: fn(device_id) when a supplementary poll is advised
        on_message: fn(device_id, record) for the message inspector
    """

    def __init__(
        self,
        device_id: str,
        ip: str,
        listener: CoIoTListener,
        profile: DeviceProfile | None = None,
        cache: ChannelCache | None = None,
        load_description: Callable | None = None,
        save_description: Callable | None = None,
        on_channel_update: Callable | None = None,
        on_online: Callable | None = None,
        on_event: Callable | None = None,
        on_request_poll: Callable | None = None,
        on_message: Callable | None = None,
    ):
        self.device_id = device_id
        self.ip = ip
        self.listener = listener
        self.profile = profile or DeviceProfile()
        self.cache = cache if cache is not None else ChannelCache(device_id)
        self.schema = DeviceSchema()
        self.mapper = ChannelMapper(device_id, self.profile, self.cache)
        self.state = SessionState.IDLE
        self.coiot_device_id = ""  # type#mac#version from option 3332

        self._load_description = load_description
        self._save_description = save_description
        self._on_channel_update = on_channel_update
        self._on_online = on_online
        self._on_event = on_event
        self._on_request_poll = on_request_poll
        self._on_message = on_message

        self._req_description: CoapRequest | None = None
        self._req_status: CoapRequest | None = None
        self._lock = threading.RLock()

        self.stats = {
            "descriptions": 0,
            "status": 0,
            "duplicates": 0,
            "malformed": 0,
            "unknown_sensors": 0,
            "timeouts": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Register with the listener and ask the device to describe itself."""
        with self._lock:
            self.listener.add_listener(self.ip, self.on_message)
            self.request_description()
        logger.info(
            "%s: CoIoT session started for %s (%s)",
            self.device_id,
            self.ip,
            self.profile.device_type or "unknown type",
        )

    def stop(self):
        """Cancel outstanding requests and stop receiving messages."""
        with self._lock:
            self.listener.cancel_request(self._req_description)
            self.listener.cancel_request(self._req_status)
            self._req_description = None
            self._req_status = None
            self.listener.remove_listener(self.ip)
            self.state = SessionState.IDLE
        logger.info("%s: CoIoT session stopped", self.device_id)

    def reset(self):
        """Forget the schema and start over with a description request."""
        with self._lock:
            self.schema.clear()
            self.request_description()

    @property
    def is_running(self) -> bool:
        return self.state != SessionState.IDLE

    # ------------------------------------------------------------------
    # Requests (one per type, a new one replaces the old one)
    # ------------------------------------------------------------------

    def request_description(self) -> CoapRequest:
        with self._lock:
            self.listener.cancel_request(self._req_description)
            self.schema.reset_serial()
            self._req_description = self.listener.send_request(
                self.ip, C.URI_DEVDESC, confirmable=True, on_timeout=self._on_timeout
            )
            self.state = SessionState.DESCRIPTION_REQUESTED
            return self._req_description

    def request_status(self) -> CoapRequest:
        with self._lock:
            self.listener.cancel_request(self._req_status)
            self.schema.reset_serial()
            self._req_status = self.listener.send_request(
                self.ip, C.URI_DEVSTATUS, confirmable=False, on_timeout=self._on_timeout
            )
            self.state = SessionState.OBSERVING
            return self._req_status

    def _on_timeout(self, request: CoapRequest):
        # No retry: the next status broadcast or an external refresh recovers
        self.stats["timeouts"] += 1
        logger.info("%s: %s", self.device_id, TransportTimeout(request.uri, request.ip))

    # ------------------------------------------------------------------
    # Receive path
    # ------------------------------------------------------------------

    def on_message(self, message: dict, coiot: dict) -> bool:
        """Handle one CoAP message from the device. Returns True if it was processed."""
        uri = coiot["uri"]
        payload = coiot["payload"]
        serial = coiot["serial"] if coiot["serial"] is not None else 0
        if coiot["device_id"]:
            self.coiot_device_id = coiot["device_id"]

        logger.debug(
            "%s: CoIoT message from %s (%s) uri=%s serial=%s: %s",
            self.device_id,
            self.ip,
            self.coiot_device_id,
            uri,
            serial,
            payload,
        )

        if message["code"] != C.CODE_CONTENT and message["code"] != C.CODE_COIOT_STATUS:
            logger.debug(
                "%s: Unknown response code %d.%02d received, payload=%s",
                self.device_id,
                message["code"] >> 5,
                message["code"] & 0x1F,
                payload,
            )
            return False

        outcome = "ignored"
        updates: list[ChannelValue] = []
        try:
            with self._lock:
                if is_description(uri, payload):
                    self.handle_description(payload)
                    outcome = "description"
                elif is_status(uri, payload):
                    updates = self.handle_status(serial, payload)
                    outcome = "status"
                else:
                    logger.debug("%s: Unclassified CoIoT message uri=%s", self.device_id, uri)
                    return False
        except DuplicateSerial as e:
            self.stats["duplicates"] += 1
            logger.debug("%s: %s, ignore update; payload=%s", self.device_id, e, payload)
            outcome = "duplicate"
        except SchemaNotReady as e:
            logger.debug("%s: %s", self.device_id, e)
            outcome = "no_schema"
        except MalformedMessage as e:
            self.stats["malformed"] += 1
            logger.warning("%s: Unable to process CoIoT message: %s; payload=%s", self.device_id, e, payload)
            self._record(uri, serial, payload, "malformed")
            self.reset()
            return False

        self._record(uri, serial, payload, outcome, updates)
        if self._on_online:
            self._on_online(self.device_id)
        return outcome in ("description", "status")

    def handle_description(self, payload: str):
        """Decode a description, replace the schema and start observing status."""
        with self._lock:
            logger.debug("%s: CoIoT device description received: %s", self.device_id, payload)
            blocks, sensors = decode_description(payload)
            self.schema.replace(blocks, sensors)
            self.stats["descriptions"] += 1
            self.state = SessionState.DESCRIPTION_KNOWN
            logger.info(
                "%s: Device description with %d block(s) and %d sensor(s) loaded",
                self.device_id,
                len(blocks),
                len(sensors),
            )
            if self._save_description:
                self._save_description(payload)
            self.listener.cancel_request(self._req_description)
            self._req_description = None
            self.request_status()

    def handle_status(self, serial: int, payload: str) -> list[ChannelValue]:
        """Process one status snapshot. Returns the emitted channel updates.

        Raises SchemaNotReady, DuplicateSerial or MalformedMessage.
        """
        with self._lock:
            if self.schema.is_empty:
                self._bootstrap_schema()

            if is_duplicate(self.schema, serial, payload):
                raise DuplicateSerial(serial)

            readings, skipped = decode_status(payload)
            self.stats["status"] += 1
            logger.debug(
                "%s: %d status update(s) received, %d malformed", self.device_id, len(readings), skipped
            )

            pairs = []
            for reading in readings:
                sen = self.schema.get_sensor(reading.sensor_id)
                if sen is None:
                    self.stats["unknown_sensors"] += 1
                    logger.debug(
                        "%s: %s, value=%s skipped",
                        self.device_id,
                        UnknownSensorId(reading.sensor_id),
                        reading.raw_value,
                    )
                    continue
                pairs.append((sen, reading))

            result = self.mapper.map(self.schema, pairs)
            updates = result.updates

            self.schema.last_serial = serial
            self.schema.last_payload = payload

        for group, event in result.events:
            logger.info("%s: Event %s on %s", self.device_id, event, group)
            if self._on_event:
                self._on_event(self.device_id, group, event)

        if updates:
            logger.debug("%s: Process %d CoIoT channel update(s)", self.device_id, len(updates))
            if self._on_channel_update:
                self._on_channel_update(self.device_id, updates)
            if self.profile.supplementary_poll and not self.profile.is_sensor and self._on_request_poll:
                # CoIoT does not carry every value (e.g. averages); ask the owner for a poll
                self._on_request_poll(self.device_id)
        return updates

    def _bootstrap_schema(self):
        """Status before description: ask for one and fall back to the stored copy."""
        self.request_description()
        saved = self._load_description() if self._load_description else ""
        if not saved:
            raise SchemaNotReady("Device description not yet received, trigger auto-initialization")
        try:
            blocks, sensors = decode_description(saved)
        except CoIoTError as e:
            raise SchemaNotReady(f"Stored device description unusable: {e}") from e
        self.schema.replace(blocks, sensors)
        logger.info("%s: Device description restored from store", self.device_id)

    def _record(self, uri, serial, payload, outcome, updates=None):
        if not self._on_message:
            return
        self._on_message(
            self.device_id,
            {
                "ip": self.ip,
                "uri": uri,
                "serial": serial,
                "payload": payload,
                "outcome": outcome,
                "updates": [str(u) for u in updates or []],
            },
        )

    def schema_dict(self) -> dict:
        with self._lock:
            return self.schema.to_dict()

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "device_id": self.device_id,
                "ip": self.ip,
                "state": self.state.value,
                "coiot_device_id": self.coiot_device_id,
                "last_serial": self.schema.last_serial,
                "blocks": len(self.schema.blocks),
                "sensors": len(self.schema.sensors),
                "stats": dict(self.stats),
            }
