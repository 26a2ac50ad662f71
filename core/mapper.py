"""Channel mapper - turns resolved CoIoT readings into channel values.

For each (sensor descriptor, reading) pair the mapper picks the channel
group/name from the device profile (relay count, roller mode, light type,
battery sensor, ...), converts the value into its canonical unit and
compares it with the cached value. Only changes are emitted.

Channel groups use a 1-based index suffix when the device has more than
one unit of a kind: relay1/relay2, meter1/meter2, light1..light4.
"""

import logging
import re

from coiot.models import (
    OFF,
    ON,
    ChannelValue,
    DateTimeValue,
    DecimalValue,
    DeviceSchema,
    QuantityValue,
    SensorDescriptor,
    SensorKind,
    SensorReading,
    State,
    sort_key,
)

from .channel_cache import ChannelCache
from .profile import BTN_DETACHED, BTN_MOMENTARY, DeviceProfile

logger = logging.getLogger("coiotd.mapper")

# Channel groups
GROUP_RELAY = "relay"
GROUP_ROLLER = "roller"
GROUP_METER = "meter"
GROUP_SENSOR = "sensor"
GROUP_BATTERY = "battery"
GROUP_DEVICE = "device"
GROUP_LIGHT = "light"
GROUP_COLOR = "color"
GROUP_WHITE = "white"

# Channels
CH_OUTPUT = "output"
CH_INPUT = "input"
CH_LIGHT_POWER = "power"
CH_BRIGHTNESS = "brightness"
CH_POWER = "power"
CH_LAST_UPDATE = "lastUpdate"
CH_LAST_POWER = "lastPower"
CH_TOTAL_KWH = "totalKWH"
CH_VOLTAGE = "voltage"
CH_CURRENT = "current"
CH_POWER_FACTOR = "powerFactor"
CH_ROL_CONTROL = "control"
CH_ROL_POSITION = "position"
CH_TEMPERATURE = "temperature"
CH_INTERNAL_TEMP = "internalTemp"
CH_HUMIDITY = "humidity"
CH_MOTION = "motion"
CH_LUX = "lux"
CH_FLOOD = "flood"
CH_CHARGER = "charger"
CH_STATE = "state"
CH_BATTERY_LEVEL = "batteryLevel"
CH_COLOR_TEMP = "temperature"

# Events raised to the owner (no channel)
EVENT_OVERTEMP = "OVERTEMP"
EVENT_SHORT_PUSH = "SHORT_PUSH"
EVENT_LONG_PUSH = "LONG_PUSH"

UNIT_PERCENT = "%"
UNIT_CELSIUS = "°C"
UNIT_WATT = "W"
UNIT_KWH = "kWh"
UNIT_VOLT = "V"
UNIT_AMPERE = "A"
UNIT_LUX = "lx"

MIN_ROLLER_POS = 0
MAX_ROLLER_POS = 100
MIN_GAIN = 0
MAX_GAIN = 100
MAX_COLOR = 255
DEFAULT_BRIGHTNESS = 50

_ENERGY_MINUTE = re.compile(r"^(?:energy counter|e cnt) ([0-2]) \[w-min\]$")
_ENERGY_TOTAL = re.compile(r"^(?:energy counter|e cnt) total \[w-(min|h)\]$")
_TRAILING_DIGITS = re.compile(r"(\d+)$")


def fahrenheit_to_celsius(value: float) -> float:
    return (value - 32.0) * 5.0 / 9.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def to_percent(value: float, low: float = 0, high: float = MAX_COLOR) -> float:
    """Scale value from [low, high] to a 0..100 percentage."""
    if high <= low:
        return 0.0
    return round(clamp((value - low) * 100.0 / (high - low), 0.0, 100.0), 1)


class MappingResult:
    """Output of one mapped status batch."""

    def __init__(self):
        self._updates: dict[str, ChannelValue] = {}
        self.events: list[tuple[str, str]] = []  # (group, event type)
        self.brightness: dict[str, float] = {}  # block link → brightness seen in batch

    def add(self, value: ChannelValue):
        self._updates[value.channel_id] = value

    @property
    def updates(self) -> list[ChannelValue]:
        return [self._updates[k] for k in sorted(self._updates)]


class ChannelMapper:
    """Maps readings of one device onto channels, emitting only changes."""

    def __init__(self, device_id: str, profile: DeviceProfile, cache: ChannelCache):
        self.device_id = device_id
        self.profile = profile
        self.cache = cache

    def map(self, schema: DeviceSchema, pairs: list) -> MappingResult:
        """Map resolved [(SensorDescriptor, SensorReading), ...] pairs."""
        result = MappingResult()

        # Brightness is only remembered; the state reading publishes it
        for sen, reading in pairs:
            if sen.kind == SensorKind.GENERIC and sen.label.lower() == "brightness":
                result.brightness[sen.block_link] = reading.raw_value

        for i, (sen, reading) in enumerate(pairs):
            try:
                self._map_reading(schema, sen, reading, result)
            except (ValueError, KeyError, IndexError, TypeError) as e:
                logger.debug(
                    "%s: unable to map sensor[%d] %s=%s: %s",
                    self.device_id,
                    i,
                    sen.id,
                    reading.raw_value,
                    e,
                )
        return result

    # ------------------------------------------------------------------
    # Index helpers
    # ------------------------------------------------------------------

    def block_index(self, schema: DeviceSchema, block_id: str) -> int:
        """1-based unit index of a block (Relay0 → 1, Relay1 → 2)."""
        block = schema.get_block(block_id)
        if block:
            m = _TRAILING_DIGITS.search(block.label)
            if m:
                return int(m.group(1)) + 1
        if block_id.isdigit():
            return int(block_id) + 1
        ids = sorted(schema.blocks, key=sort_key)
        return ids.index(block_id) + 1 if block_id in ids else 1

    @staticmethod
    def sensor_number(schema: DeviceSchema, label: str, sensor_id: str) -> int:
        """Position of sensor_id among sensors with this label (1-based, 0 if absent)."""
        idx = 0
        for sen in schema.sensors.values():
            if sen.label.lower() == label:
                idx += 1
            if sen.id == sensor_id:
                return idx
        return 0

    def relay_group(self, idx: int) -> str:
        return GROUP_RELAY if self.profile.num_relays <= 1 else f"{GROUP_RELAY}{idx}"

    def meter_group(self, idx: int) -> str:
        return GROUP_METER if self.profile.num_meters <= 1 else f"{GROUP_METER}{idx}"

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _update(self, result: MappingResult, group: str, channel: str, value: State) -> bool:
        if not self.cache.update(group, channel, value):
            return False
        result.add(ChannelValue(group, channel, value))
        return True

    # ------------------------------------------------------------------
    # Per-kind mapping
    # ------------------------------------------------------------------

    def _map_reading(
        self,
        schema: DeviceSchema,
        sen: SensorDescriptor,
        reading: SensorReading,
        result: MappingResult,
    ):
        value = reading.raw_value
        idx = self.block_index(schema, sen.block_link)
        kind = sen.kind
        profile = self.profile

        if kind == SensorKind.BATTERY:
            self._update(
                result,
                GROUP_BATTERY,
                CH_BATTERY_LEVEL,
                QuantityValue(round(clamp(value, 0, 100)), UNIT_PERCENT),
            )
        elif kind == SensorKind.TEMPERATURE:
            self._map_temperature(schema, sen, value, result)
        elif kind == SensorKind.HUMIDITY:
            self._update(
                result,
                GROUP_SENSOR,
                CH_HUMIDITY,
                QuantityValue(round(clamp(value, 0, 100), 1), UNIT_PERCENT),
            )
        elif kind == SensorKind.MOTION:
            self._update(result, GROUP_SENSOR, CH_MOTION, ON if value == 1 else OFF)
        elif kind == SensorKind.LUMINOSITY:
            self._update(result, GROUP_SENSOR, CH_LUX, QuantityValue(round(value), UNIT_LUX))
        elif kind == SensorKind.POWER:
            group = self.meter_group(idx)
            self._update(result, group, CH_POWER, QuantityValue(round(value, 2), UNIT_WATT))
            if profile.is_emeter:
                self._update(result, group, CH_LAST_UPDATE, DateTimeValue())
        elif kind == SensorKind.VOLTAGE:
            self._update(
                result, self.meter_group(idx), CH_VOLTAGE, QuantityValue(round(value, 1), UNIT_VOLT)
            )
        elif kind == SensorKind.CURRENT:
            self._update(
                result, self.meter_group(idx), CH_CURRENT, QuantityValue(round(value, 2), UNIT_AMPERE)
            )
        elif kind == SensorKind.POWER_FACTOR:
            self._update(result, self.meter_group(idx), CH_POWER_FACTOR, DecimalValue(round(value, 2)))
        elif kind == SensorKind.ENERGY:
            self._update_total(result, self.meter_group(idx), value, watt_hours=False)
        else:
            self._map_generic(schema, sen, value, idx, result)

    def _map_temperature(self, schema, sen: SensorDescriptor, value: float, result: MappingResult):
        label = sen.label.lower()
        if label == "temperature":
            if self.profile.temperature_units == "F":
                value = fahrenheit_to_celsius(value)
            group, channel = GROUP_SENSOR, CH_TEMPERATURE
        elif label == "external_temperature":
            # Shelly 1/1PM add-on sensors: temperature1..3
            n = self.sensor_number(schema, "external_temperature", sen.id)
            if n <= 0:
                return
            group, channel = GROUP_SENSOR, f"{CH_TEMPERATURE}{n}"
        elif label == "temperature f":
            value = fahrenheit_to_celsius(value)
            group, channel = GROUP_DEVICE, CH_INTERNAL_TEMP
        elif label == "temperature c":
            group, channel = GROUP_DEVICE, CH_INTERNAL_TEMP
        else:
            # Regular sensor temperature (H&T)
            group, channel = GROUP_SENSOR, CH_TEMPERATURE
        self._update(result, group, channel, QuantityValue(round(value, 1), UNIT_CELSIUS))

    def _update_total(self, result: MappingResult, group: str, value: float, watt_hours: bool):
        if watt_hours or self.profile.is_emeter:
            kwh = value / 1000.0
        else:
            kwh = value / 60.0 / 1000.0  # W-min
        self._update(result, group, CH_TOTAL_KWH, QuantityValue(round(kwh, 3), UNIT_KWH))

    def _map_generic(self, schema, sen: SensorDescriptor, value: float, idx: int, result):
        label = sen.label.lower()
        profile = self.profile

        if label in ("state", "output"):
            self._update_power(sen, value, idx, result)
        elif label == "brightness":
            self._update_power(sen, value, idx, result)
        elif label == "overtemp":
            if value == 1:
                result.events.append((GROUP_DEVICE, EVENT_OVERTEMP))
        elif label == "position":
            # Roller reports 101% instead of max 100
            pos = clamp(value, MIN_ROLLER_POS, MAX_ROLLER_POS)
            self._update(
                result, GROUP_ROLLER, CH_ROL_CONTROL, QuantityValue(MAX_ROLLER_POS - pos, UNIT_PERCENT)
            )
            self._update(result, GROUP_ROLLER, CH_ROL_POSITION, QuantityValue(pos, UNIT_PERCENT))
        elif label == "input":
            self._update_input(schema, sen, value, result)
        elif label == "flood":
            self._update(result, GROUP_SENSOR, CH_FLOOD, ON if value == 1 else OFF)
        elif label == "charger":
            self._update(result, GROUP_SENSOR, CH_CHARGER, ON if value == 1 else OFF)
        elif label in ("red", "green", "blue", "white"):
            self._update(result, GROUP_COLOR, label, QuantityValue(to_percent(value), UNIT_PERCENT))
        elif label == "gain":
            self._update(
                result, GROUP_COLOR, "gain", QuantityValue(to_percent(value, MIN_GAIN, MAX_GAIN), UNIT_PERCENT)
            )
        elif label in ("temp", "colortemperature"):
            group = GROUP_COLOR if profile.in_color else GROUP_WHITE
            self._update(
                result,
                group,
                CH_COLOR_TEMP,
                QuantityValue(to_percent(value, profile.min_temp, profile.max_temp), UNIT_PERCENT),
            )
        else:
            m = _ENERGY_MINUTE.match(label)
            if m:
                self._update(
                    result,
                    self.meter_group(idx),
                    f"{CH_LAST_POWER}{int(m.group(1)) + 1}",
                    QuantityValue(round(value, 2), UNIT_WATT),
                )
                return
            m = _ENERGY_TOTAL.match(label)
            if m:
                self._update_total(result, self.meter_group(idx), value, watt_hours=m.group(1) == "h")
                return
            logger.debug(
                "%s: update for unknown sensor %s (%s/%s) skipped", self.device_id, sen.id, sen.type, sen.label
            )

    def _update_power(self, sen: SensorDescriptor, value: float, idx: int, result: MappingResult):
        profile = self.profile
        if profile.is_light or profile.is_dimmer:
            if profile.is_bulb or profile.in_color:
                group = GROUP_LIGHT
            elif profile.is_duo:
                group = GROUP_WHITE
            elif profile.is_dimmer:
                group = GROUP_RELAY
            else:
                group = f"{GROUP_LIGHT}{idx}"  # RGBW2 white mode: one group per channel

            if sen.label.lower() == "brightness":
                return  # published together with the state

            on = value == 1
            self._update(result, group, CH_LIGHT_POWER, ON if on else OFF)
            brightness = result.brightness.get(sen.block_link)
            if brightness is None:
                cached = self.cache.get(group, CH_BRIGHTNESS)
                if isinstance(cached, QuantityValue) and cached.value > 0:
                    brightness = cached.value
                else:
                    brightness = DEFAULT_BRIGHTNESS
            self._update(
                result,
                group,
                CH_BRIGHTNESS,
                QuantityValue(clamp(brightness, 0, 100) if on else 0, UNIT_PERCENT),
            )
        elif profile.is_sensor:
            self._update(result, GROUP_SENSOR, CH_STATE, ON if value == 1 else OFF)
        else:
            self._update(result, self.relay_group(idx), CH_OUTPUT, ON if value == 1 else OFF)

    def _update_input(self, schema, sen: SensorDescriptor, value: float, result: MappingResult):
        idx = self.sensor_number(schema, "input", sen.id)
        block = schema.get_block(sen.block_link)
        if block and block.label.lower().startswith("relay"):
            m = _TRAILING_DIGITS.search(block.label)
            if m:
                idx = int(m.group(1)) + 1
        if idx <= 0:
            return

        profile = self.profile
        if profile.is_dimmer or profile.is_roller:
            # Dimmer and roller have two inputs on one unit
            group, channel = GROUP_RELAY, f"{CH_INPUT}{idx}"
        else:
            group, channel = self.relay_group(idx), CH_INPUT

        if value != 0 and profile.button_type(idx) in (BTN_MOMENTARY, BTN_DETACHED):
            result.events.append((group, EVENT_SHORT_PUSH if value == 1 else EVENT_LONG_PUSH))
        self._update(result, group, channel, OFF if value == 0 else ON)
