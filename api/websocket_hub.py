"""WebSocket Hub - manages connections and broadcasts channel updates.

Topics:
  - "channels:{device_id}" - channel updates and events of one device
  - "channels:*"           - the same for every device

Thread-safe: the CoIoT listener thread pushes through push_channel_update()
and push_event(), which use asyncio.run_coroutine_threadsafe() to bridge
into the uvicorn event loop.
"""

import asyncio
import json
import logging

from fastapi import WebSocket

logger = logging.getLogger("coiotd.ws")

ALL_DEVICES = "*"


def channel_topic(device_id: str) -> str:
    return f"channels:{device_id}"


class WebSocketHub:
    """Manages WebSocket connections and broadcasts events to subscribers."""

    def __init__(self):
        # topic -> set of WebSocket connections
        self._topics: dict[str, set[WebSocket]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def set_loop(self, loop: asyncio.AbstractEventLoop):
        """Set the asyncio event loop (called from uvicorn startup)."""
        self._loop = loop

    async def subscribe(self, ws: WebSocket, topic: str):
        if topic not in self._topics:
            self._topics[topic] = set()
        self._topics[topic].add(ws)
        logger.info("WS subscribed: %s (total: %d)", topic, len(self._topics[topic]))

    async def unsubscribe(self, ws: WebSocket, topic: str):
        if topic in self._topics:
            self._topics[topic].discard(ws)
            if not self._topics[topic]:
                del self._topics[topic]
            logger.info("WS unsubscribed: %s", topic)

    async def broadcast(self, topic: str, data: dict):
        """Send a JSON message to all subscribers of a topic."""
        subscribers = self._topics.get(topic)
        if not subscribers:
            return

        message = json.dumps(data)
        dead = []
        for ws in list(subscribers):
            try:
                await ws.send_text(message)
            except (ConnectionError, RuntimeError) as e:
                logger.warning("broadcast: send failed: %s", e)
                dead.append(ws)

        for ws in dead:
            subscribers.discard(ws)

    def _push(self, device_id: str, data: dict):
        if not self._loop or not self._loop.is_running():
            return
        try:
            for topic in (channel_topic(device_id), channel_topic(ALL_DEVICES)):
                asyncio.run_coroutine_threadsafe(self.broadcast(topic, data), self._loop)
        except RuntimeError:
            logger.debug("push: event loop closed, %s dropped", data.get("type"))

    def push_channel_update(self, device_id: str, updates: list[dict]):
        """Thread-safe: push channel updates from the listener thread."""
        self._push(device_id, {"type": "channel_update", "device_id": device_id, "channels": updates})

    def push_event(self, device_id: str, group: str, event: str):
        """Thread-safe: push a device event (OVERTEMP, SHORT_PUSH, ...)."""
        self._push(device_id, {"type": "event", "device_id": device_id, "group": group, "event": event})

    @property
    def connection_count(self) -> int:
        """Total active WebSocket connections across all topics."""
        return sum(len(s) for s in self._topics.values())
