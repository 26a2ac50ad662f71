"""Channel value cache - last published value per group#channel.

The mapper only emits a value when it differs from what is cached here,
which makes re-publishing the same status a no-op.

Thread-safe: written from the listener thread, read by the API.
"""

import logging
import threading
from typing import Optional

from coiot.models import State, mk_channel_id

logger = logging.getLogger("coiotd.cache")


class ChannelCache:
    """In-memory read/write cache of channel values."""

    def __init__(self, device_id: str = ""):
        self.device_id = device_id
        self._values: dict[str, State] = {}
        self._lock = threading.Lock()

    def get(self, group: str, channel: str) -> Optional[State]:
        with self._lock:
            return self._values.get(mk_channel_id(group, channel))

    def update(self, group: str, channel: str, value: State) -> bool:
        """Store value if it changed. Returns True when it did."""
        key = mk_channel_id(group, channel)
        with self._lock:
            if self._values.get(key) == value:
                return False
            self._values[key] = value
        logger.debug("%s: channel %s updated with %s", self.device_id, key, value)
        return True

    def snapshot(self) -> dict[str, State]:
        with self._lock:
            return dict(self._values)
