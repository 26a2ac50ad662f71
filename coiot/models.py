"""CoIoT data model - device schema, readings and channel values.

A device describes itself once (blocks + sensors) and then publishes
status snapshots that only carry (sensor id, value) pairs. The schema
below is what turns those numeric ids back into meaning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class SensorKind(str, Enum):
    """Closed set of sensor kinds, bound to their CoIoT type codes."""

    POWER = "P"
    TEMPERATURE = "T"
    HUMIDITY = "H"
    MOTION = "M"
    LUMINOSITY = "L"
    VOLTAGE = "V"
    CURRENT = "I"
    POWER_FACTOR = "PF"
    BATTERY = "B"
    ENERGY = "E"
    GENERIC = "S"

    @classmethod
    def from_code(cls, code: str) -> "SensorKind":
        """Resolve a type code; anything unknown is a catch-all sensor."""
        try:
            return cls((code or "").upper())
        except ValueError:
            return cls.GENERIC


def sort_key(sensor_id: str):
    """Order ids numerically when they are numbers ("9" < "112")."""
    return (0, int(sensor_id), "") if sensor_id.isdigit() else (1, 0, sensor_id)


@dataclass(frozen=True)
class Block:
    """A physical sub-unit of a device (Relay0, Sensor1, ...)."""

    id: str
    label: str = ""
    raw_type: Optional[str] = None
    range: Optional[str] = None
    links: Optional[str] = None


@dataclass(frozen=True)
class SensorDescriptor:
    """A logical measurement point, linked to a block.

    `type` holds the canonical CoIoT type code after normalization; `kind`
    is derived from it.
    """

    id: str
    type: str
    label: str = ""
    range: Optional[str] = None
    block_link: str = ""

    @property
    def kind(self) -> SensorKind:
        return SensorKind.from_code(self.type)


@dataclass(frozen=True)
class SensorReading:
    sensor_id: str
    raw_value: float


class DeviceSchema:
    """Per-device block and sensor tables plus the dedup state.

    Not thread-safe on its own - the owning session holds the lock.
    """

    def __init__(self):
        self.blocks: dict[str, Block] = {}
        self.sensors: dict[str, SensorDescriptor] = {}
        self.last_serial = -1
        self.last_payload = ""

    @property
    def is_empty(self) -> bool:
        return not self.blocks

    def replace(self, blocks: dict[str, Block], sensors: dict[str, SensorDescriptor]):
        """Swap in a new description (last description wins, no merge)."""
        self.blocks = dict(blocks)
        self.sensors = {k: sensors[k] for k in sorted(sensors, key=sort_key)}

    def clear(self):
        self.blocks = {}
        self.sensors = {}
        self.reset_serial()

    def reset_serial(self):
        self.last_serial = -1
        self.last_payload = ""

    def get_sensor(self, sensor_id: str) -> Optional[SensorDescriptor]:
        return self.sensors.get(sensor_id)

    def get_block(self, block_id: str) -> Optional[Block]:
        return self.blocks.get(block_id)

    def to_dict(self) -> dict:
        return {
            "blocks": [
                {"id": b.id, "label": b.label, "type": b.raw_type}
                for b in self.blocks.values()
            ],
            "sensors": [
                {
                    "id": s.id,
                    "type": s.type,
                    "kind": s.kind.name,
                    "label": s.label,
                    "range": s.range,
                    "link": s.block_link,
                }
                for s in self.sensors.values()
            ],
            "last_serial": self.last_serial,
        }


# ---------------------------------------------------------------------------
# Channel values - closed tagged union
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OnOffValue:
    on: bool

    def __str__(self):
        return "ON" if self.on else "OFF"

    def to_dict(self) -> dict:
        return {"type": "onoff", "value": str(self)}


@dataclass(frozen=True)
class QuantityValue:
    value: float
    unit: str

    def __str__(self):
        return f"{self.value} {self.unit}"

    def to_dict(self) -> dict:
        return {"type": "quantity", "value": self.value, "unit": self.unit}


@dataclass(frozen=True)
class DecimalValue:
    value: float

    def __str__(self):
        return str(self.value)

    def to_dict(self) -> dict:
        return {"type": "decimal", "value": self.value}


@dataclass(frozen=True)
class StringValue:
    text: str

    def __str__(self):
        return self.text

    def to_dict(self) -> dict:
        return {"type": "string", "value": self.text}


@dataclass(frozen=True)
class DateTimeValue:
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self):
        return self.timestamp.isoformat(timespec="seconds")

    def to_dict(self) -> dict:
        return {"type": "datetime", "value": str(self)}


State = Union[OnOffValue, QuantityValue, DecimalValue, StringValue, DateTimeValue]

ON = OnOffValue(True)
OFF = OnOffValue(False)


def mk_channel_id(group: str, channel: str) -> str:
    return f"{group}#{channel}"


@dataclass(frozen=True)
class ChannelValue:
    """One externally visible update: group#channel = value."""

    group: str
    channel: str
    value: State

    @property
    def channel_id(self) -> str:
        return mk_channel_id(self.group, self.channel)

    def __str__(self):
        return f"{self.channel_id}={self.value}"

    def to_dict(self) -> dict:
        data = {"group": self.group, "channel": self.channel, "id": self.channel_id}
        data.update(self.value.to_dict())
        return data
