"""Tests for the status decoder and the duplicate-serial rule."""

from __future__ import annotations

import pytest

from coiot.errors import MalformedMessage
from coiot.models import DeviceSchema
from coiot.status import decode_status, is_duplicate, is_status


def test_decode_status():
    readings, skipped = decode_status('{"G":[[0,112,1],[0,111,42.5]]}')

    assert skipped == 0
    assert [(r.sensor_id, r.raw_value) for r in readings] == [("112", 1.0), ("111", 42.5)]


def test_malformed_entries_are_isolated():
    payload = '{"G":[[0,112,1],[0,113],"x",[0,114,"abc"],[0,115,true],[0,116,null],[0,117,"3.5"]]}'
    readings, skipped = decode_status(payload)

    assert [(r.sensor_id, r.raw_value) for r in readings] == [("112", 1.0), ("117", 3.5)]
    assert skipped == 5


def test_empty_generic_list():
    assert decode_status('{"G":[]}') == ([], 0)


@pytest.mark.parametrize("payload", ["", "garbage", '{"X":[]}', '{"G":5}', "[]"])
def test_malformed_status(payload):
    with pytest.raises(MalformedMessage):
        decode_status(payload)


def test_duplicate_serial_rule():
    schema = DeviceSchema()
    payload = '{"G":[[0,112,1]]}'
    assert not is_duplicate(schema, 5, payload)

    schema.last_serial = 5
    schema.last_payload = payload
    assert is_duplicate(schema, 5, payload)
    # Same serial, new payload: processed anyway
    assert not is_duplicate(schema, 5, '{"G":[[0,112,0]]}')
    assert not is_duplicate(schema, 6, payload)


def test_duplicate_without_stored_payload():
    schema = DeviceSchema()
    schema.last_serial = 5
    assert is_duplicate(schema, 5, '{"G":[[0,112,1]]}')


def test_reset_serial_forgets_last_status():
    schema = DeviceSchema()
    schema.last_serial = 5
    schema.last_payload = "x"
    schema.reset_serial()
    assert not is_duplicate(schema, 5, "x")


def test_is_status():
    assert is_status("/cit/s", "")
    assert not is_status("/cit/d", '{"G":[]}')
    assert is_status("", '{"G":[[0,1,1]]}')
    assert not is_status("", '{"blk":[]}')
