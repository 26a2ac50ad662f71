"""Tests for the channel mapper."""

from __future__ import annotations

import pytest

from coiot.description import decode_description
from coiot.models import OFF, ON, DeviceSchema, QuantityValue, SensorReading
from core.channel_cache import ChannelCache
from core.mapper import EVENT_LONG_PUSH, EVENT_OVERTEMP, EVENT_SHORT_PUSH, ChannelMapper
from core.profile import DeviceProfile
from samples import SHELLY1_DESCRIPTION, SHELLY25_DESCRIPTION, SHELLYHT_DESCRIPTION


def _schema(payload: str) -> DeviceSchema:
    schema = DeviceSchema()
    schema.replace(*decode_description(payload))
    return schema


def _map(mapper, schema, *values):
    pairs = [(schema.get_sensor(str(sid)), SensorReading(str(sid), float(v))) for sid, v in values]
    return mapper.map(schema, pairs)


def _by_id(result) -> dict:
    return {u.channel_id: u.value for u in result.updates}


@pytest.fixture
def shelly1():
    return ChannelMapper("shelly1", DeviceProfile(num_relays=1), ChannelCache()), _schema(SHELLY1_DESCRIPTION)


def test_single_relay_output_and_power(shelly1):
    mapper, schema = shelly1
    result = _map(mapper, schema, (112, 1), (111, 42.5))

    assert [str(u) for u in result.updates] == ["meter#power=42.5 W", "relay#output=ON"]


def test_unchanged_values_are_not_emitted(shelly1):
    mapper, schema = shelly1
    _map(mapper, schema, (112, 1), (111, 42.5))
    assert _map(mapper, schema, (112, 1), (111, 42.5)).updates == []

    result = _map(mapper, schema, (112, 0), (111, 42.5))
    assert _by_id(result) == {"relay#output": OFF}


def test_mapper_writes_through_the_shared_cache():
    cache = ChannelCache("shelly1")
    cache.update("relay", "output", ON)
    mapper = ChannelMapper("shelly1", DeviceProfile(num_relays=1), cache)
    schema = _schema(SHELLY1_DESCRIPTION)

    result = _map(mapper, schema, (112, 1), (111, 10))

    assert _by_id(result) == {"meter#power": QuantityValue(10.0, "W")}
    assert cache.get("meter", "power") == QuantityValue(10.0, "W")


def test_multi_relay_device_uses_indexed_groups():
    profile = DeviceProfile(num_relays=2)
    mapper = ChannelMapper("shelly25", profile, ChannelCache())
    schema = _schema(SHELLY25_DESCRIPTION)

    result = _map(mapper, schema, (111, 10), (121, 20), (112, 1), (122, 0))

    assert [u.channel_id for u in result.updates] == [
        "meter1#power",
        "meter2#power",
        "relay1#output",
        "relay2#output",
    ]
    values = _by_id(result)
    assert values["meter1#power"] == QuantityValue(10, "W")
    assert values["meter2#power"] == QuantityValue(20, "W")
    assert values["relay1#output"] == ON
    assert values["relay2#output"] == OFF


def test_roller_position_is_clamped():
    profile = DeviceProfile(num_relays=2, mode="roller")
    mapper = ChannelMapper("shelly25", profile, ChannelCache())
    schema = _schema(SHELLY25_DESCRIPTION)

    values = _by_id(_map(mapper, schema, (113, 101)))
    assert values == {
        "roller#control": QuantityValue(0, "%"),
        "roller#position": QuantityValue(100, "%"),
    }

    values = _by_id(_map(mapper, schema, (113, 30)))
    assert values["roller#control"] == QuantityValue(70, "%")
    assert values["roller#position"] == QuantityValue(30, "%")


def test_roller_inputs_are_numbered_by_relay_block():
    profile = DeviceProfile(num_relays=2, mode="roller")
    mapper = ChannelMapper("shelly25", profile, ChannelCache())
    schema = _schema(SHELLY25_DESCRIPTION)

    values = _by_id(_map(mapper, schema, (118, 1), (128, 0)))
    assert values == {"relay#input1": ON, "relay#input2": OFF}


def test_device_temperatures_and_overtemp_event():
    profile = DeviceProfile(num_relays=2)
    mapper = ChannelMapper("shelly25", profile, ChannelCache())
    schema = _schema(SHELLY25_DESCRIPTION)

    result = _map(mapper, schema, (211, 45.26), (213, 1))
    assert _by_id(result) == {"device#internalTemp": QuantityValue(45.3, "°C")}
    assert result.events == [("device", EVENT_OVERTEMP)]

    # 212 reports the same temperature in °F
    result = _map(mapper, schema, (212, 212))
    assert _by_id(result) == {"device#internalTemp": QuantityValue(100.0, "°C")}


def test_sensor_temperature_in_fahrenheit_is_converted():
    profile = DeviceProfile(num_relays=0, is_sensor=True, temperature_units="F")
    mapper = ChannelMapper("ht", profile, ChannelCache())
    schema = _schema(SHELLYHT_DESCRIPTION)

    values = _by_id(_map(mapper, schema, (33, 77), (44, 55.44), (77, 120)))
    assert values == {
        "battery#batteryLevel": QuantityValue(100, "%"),
        "sensor#humidity": QuantityValue(55.4, "%"),
        "sensor#temperature": QuantityValue(25.0, "°C"),
    }


def test_celsius_temperature_is_rounded():
    profile = DeviceProfile(num_relays=0, is_sensor=True)
    mapper = ChannelMapper("ht", profile, ChannelCache())
    schema = _schema(SHELLYHT_DESCRIPTION)

    values = _by_id(_map(mapper, schema, (33, 21.449)))
    assert values["sensor#temperature"] == QuantityValue(21.4, "°C")


def test_external_temperature_sensors_are_numbered():
    payload = (
        '{"blk":[{"I":0,"D":"Relay0"},{"I":3,"D":"sensor_0"},{"I":4,"D":"sensor_1"}],'
        '"sen":[{"I":3101,"T":"T","D":"External_temperature","L":3},'
        '{"I":3201,"T":"T","D":"External_temperature","L":4}]}'
    )
    mapper = ChannelMapper("shelly1", DeviceProfile(), ChannelCache())
    values = _by_id(_map(mapper, _schema(payload), (3101, 20.1), (3201, 22.7)))

    assert values == {
        "sensor#temperature1": QuantityValue(20.1, "°C"),
        "sensor#temperature2": QuantityValue(22.7, "°C"),
    }


def test_sensor_device_state_goes_to_sensor_group():
    payload = '{"blk":[{"I":1,"D":"sensors"}],"sen":[{"I":55,"T":"S","D":"State","L":1}]}'
    profile = DeviceProfile(num_relays=0, is_sensor=True)
    mapper = ChannelMapper("door", profile, ChannelCache())

    assert _by_id(_map(mapper, _schema(payload), (55, 1))) == {"sensor#state": ON}


def test_dimmer_brightness_follows_state():
    payload = (
        '{"blk":[{"I":0,"D":"Light0"}],'
        '"sen":[{"I":111,"T":"P","D":"Power","L":0},'
        '{"I":121,"T":"S","D":"Output","L":0},'
        '{"I":122,"T":"S","D":"Brightness","L":0}]}'
    )
    mapper = ChannelMapper("dimmer", DeviceProfile(is_dimmer=True), ChannelCache())
    schema = _schema(payload)

    # State listed before brightness: brightness of the same batch still applies
    values = _by_id(_map(mapper, schema, (121, 1), (122, 80)))
    assert values == {"relay#power": ON, "relay#brightness": QuantityValue(80, "%")}

    values = _by_id(_map(mapper, schema, (121, 0), (122, 80)))
    assert values == {"relay#power": OFF, "relay#brightness": QuantityValue(0, "%")}


def test_light_without_brightness_uses_default():
    payload = '{"blk":[{"I":0,"D":"Light0"}],"sen":[{"I":121,"T":"S","D":"Output","L":0}]}'
    mapper = ChannelMapper("bulb", DeviceProfile(is_bulb=True), ChannelCache())

    values = _by_id(_map(mapper, _schema(payload), (121, 1)))
    assert values == {"light#power": ON, "light#brightness": QuantityValue(50, "%")}


def test_color_channels_are_scaled_to_percent():
    payload = (
        '{"blk":[{"I":0,"D":"Light0"}],'
        '"sen":[{"I":111,"T":"Red","L":0},{"I":112,"T":"Green","L":0},'
        '{"I":115,"T":"Gain","L":0},{"I":116,"T":"Temp","L":0}]}'
    )
    mapper = ChannelMapper("bulb", DeviceProfile(is_bulb=True, mode="color"), ChannelCache())

    values = _by_id(_map(mapper, _schema(payload), (111, 255), (112, 0), (115, 50), (116, 4750)))
    assert values == {
        "color#red": QuantityValue(100.0, "%"),
        "color#green": QuantityValue(0.0, "%"),
        "color#gain": QuantityValue(50.0, "%"),
        "color#temperature": QuantityValue(50.0, "%"),
    }


def test_momentary_button_events():
    payload = '{"blk":[{"I":0,"D":"Relay0"}],"sen":[{"I":118,"T":"S","D":"Input","L":0}]}'
    profile = DeviceProfile(num_relays=1, button_types=["momentary"])
    mapper = ChannelMapper("shelly1", profile, ChannelCache())
    schema = _schema(payload)

    result = _map(mapper, schema, (118, 1))
    assert _by_id(result) == {"relay#input": ON}
    assert result.events == [("relay", EVENT_SHORT_PUSH)]

    result = _map(mapper, schema, (118, 2))
    assert result.updates == []
    assert result.events == [("relay", EVENT_LONG_PUSH)]


def test_toggle_button_raises_no_event():
    payload = '{"blk":[{"I":0,"D":"Relay0"}],"sen":[{"I":118,"T":"S","D":"Input","L":0}]}'
    profile = DeviceProfile(num_relays=1, button_types=["toggle"])
    mapper = ChannelMapper("shelly1", profile, ChannelCache())

    assert _map(mapper, _schema(payload), (118, 1)).events == []


def test_energy_counters():
    payload = (
        '{"blk":[{"I":0,"D":"Relay0"}],'
        '"sen":[{"I":211,"T":"S","D":"Energy counter 0 [W-min]","L":0},'
        '{"I":214,"T":"S","D":"Energy counter total [W-min]","L":0}]}'
    )
    mapper = ChannelMapper("shelly1pm", DeviceProfile(num_relays=1), ChannelCache())

    values = _by_id(_map(mapper, _schema(payload), (211, 12.5), (214, 6000)))
    assert values == {
        "meter#lastPower1": QuantityValue(12.5, "W"),
        "meter#totalKWH": QuantityValue(0.1, "kWh"),
    }


def test_emeter_values():
    payload = (
        '{"blk":[{"I":0,"D":"Relay0"},{"I":1,"D":"Emeter0"}],'
        '"sen":[{"I":111,"T":"P","D":"Power","L":1},'
        '{"I":116,"T":"S","D":"Voltage","L":1},'
        '{"I":117,"T":"S","D":"Current","L":1},'
        '{"I":118,"T":"S","D":"pf","L":1}]}'
    )
    profile = DeviceProfile(num_relays=1, is_emeter=True)
    mapper = ChannelMapper("em", profile, ChannelCache())

    values = _by_id(_map(mapper, _schema(payload), (111, 230.55), (116, 229.87), (117, 1.005), (118, 0.95)))
    assert values["meter#power"] == QuantityValue(230.55, "W")
    assert values["meter#voltage"] == QuantityValue(229.9, "V")
    assert values["meter#current"] == QuantityValue(1.0, "A")
    assert str(values["meter#powerFactor"]) == "0.95"
    assert "meter#lastUpdate" in values


def test_unlabelled_generic_sensor_is_skipped():
    payload = '{"blk":[{"I":0,"D":"Relay0"}],"sen":[{"I":9,"T":"XYZ","L":0},{"I":112,"T":"Switch","L":0}]}'
    mapper = ChannelMapper("shelly1", DeviceProfile(), ChannelCache())

    assert _by_id(_map(mapper, _schema(payload), (9, 1), (112, 1))) == {"relay#output": ON}


def test_flood_and_motion():
    payload = (
        '{"blk":[{"I":1,"D":"sensors"}],'
        '"sen":[{"I":23,"T":"S","D":"flood","L":1},{"I":6,"T":"S","D":"motion","L":1},'
        '{"I":66,"T":"L","D":"Luminosity","L":1}]}'
    )
    profile = DeviceProfile(num_relays=0, is_sensor=True)
    mapper = ChannelMapper("flood", profile, ChannelCache())

    values = _by_id(_map(mapper, _schema(payload), (23, 1), (6, 0), (66, 123.4)))
    assert values == {
        "sensor#flood": ON,
        "sensor#lux": QuantityValue(123, "lx"),
        "sensor#motion": OFF,
    }
