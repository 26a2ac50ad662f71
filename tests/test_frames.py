"""Tests for CoAP framing and the CoIoT message view."""

from __future__ import annotations

import pytest

from coiotip import constants as C
from coiotip import frames


def test_get_request_carries_uri_path_and_empty_token():
    data = frames.encode_get_request("/cit/d", 0x1234, confirmable=True)
    msg = frames.decode_message(data)

    assert msg["type"] == C.TYPE_CON
    assert msg["code"] == C.CODE_GET
    assert msg["message_id"] == 0x1234
    assert msg["token"] == b""
    assert msg["payload"] == b""
    assert frames.uri_path(msg) == "/cit/d"


def test_non_status_request_header_bytes():
    data = frames.encode_get_request("/cit/s", 1, confirmable=False)
    # ver=1, type=NON, tkl=0 → 0x50; code GET; mid 0x0001
    assert data[:4] == bytes([0x50, 0x01, 0x00, 0x01])
    # Uri-Path "cit" (delta 11, len 3), then "s" (delta 0, len 1)
    assert data[4:] == bytes([0xB3]) + b"cit" + bytes([0x01]) + b"s"


def test_status_publish_vendor_options():
    data = frames.encode_coiot_status("SHSW-1#A4CF12#2", 7, '{"G":[[0,112,1]]}', message_id=9, validity=38400)
    msg = frames.decode_message(data)
    coiot = frames.decode_coiot(msg)

    assert msg["type"] == C.TYPE_NON
    assert msg["code"] == C.CODE_COIOT_STATUS
    assert coiot == {
        "uri": "/cit/s",
        "device_id": "SHSW-1#A4CF12#2",
        "serial": 7,
        "validity": 38400,
        "payload": '{"G":[[0,112,1]]}',
    }


def test_large_option_delta_uses_16bit_extension():
    encoded = frames.encode_options([(C.OPTION_GLOBAL_DEVID, b"x")])
    # 3332 - 269 = 3063 = 0x0BF7
    assert encoded == bytes([0xE1, 0x0B, 0xF7]) + b"x"
    options, payload_offset = frames.decode_options(encoded, 0)
    assert options == [(C.OPTION_GLOBAL_DEVID, b"x")]
    assert payload_offset is None


def test_option_length_uses_8bit_extension():
    value = b"a" * 20
    encoded = frames.encode_options([(C.OPTION_URI_PATH, value)])
    assert encoded[0] == 0xBD
    assert encoded[1] == 20 - 13
    assert frames.decode_options(encoded, 0)[0] == [(C.OPTION_URI_PATH, value)]


def test_missing_serial_decodes_as_none():
    msg = frames.decode_message(
        frames.encode_message(C.TYPE_ACK, C.CODE_CONTENT, 5, payload=b'{"blk":[]}')
    )
    coiot = frames.decode_coiot(msg)
    assert coiot["serial"] is None
    assert coiot["uri"] == ""
    assert coiot["payload"] == '{"blk":[]}'


def test_uint_encoding_is_minimal():
    assert frames.encode_uint(0) == b""
    assert frames.encode_uint(255) == b"\xff"
    assert frames.encode_uint(256) == b"\x01\x00"
    assert frames.decode_uint(b"") == 0
    assert frames.decode_uint(b"\x01\x00") == 256


def test_format_code():
    assert frames.format_code(C.CODE_CONTENT) == "2.05"
    assert frames.format_code(C.CODE_NOT_FOUND) == "4.04"
    assert frames.format_code(C.CODE_COIOT_STATUS) == "0.30"


@pytest.mark.parametrize(
    "data",
    [
        b"\x50\x01",  # shorter than header
        b"\x90\x01\x00\x01",  # version 2
        b"\x59\x01\x00\x01",  # token length 9
        b"\x52\x01\x00\x01\xaa",  # token truncated
        b"\x50\x01\x00\x01\xff",  # marker without payload
        b"\x50\x01\x00\x01\xb5cit",  # option overruns frame
        b"\x50\x01\x00\x01\xf0",  # reserved delta nibble
    ],
)
def test_bad_frames_raise_value_error(data):
    with pytest.raises(ValueError):
        frames.decode_message(data)


def test_token_too_long_rejected():
    with pytest.raises(ValueError):
        frames.encode_message(C.TYPE_CON, C.CODE_GET, 1, token=b"123456789")
