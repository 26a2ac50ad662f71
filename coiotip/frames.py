"""CoAP message encoding and decoding (RFC 7252) with CoIoT helpers.

Every message starts with a 4-byte header:
  [ver:2|type:2|tkl:4] [code: 1B] [message_id: 2B]

followed by the token (0-8 bytes), a sequence of delta-encoded options,
and optionally the payload marker 0xFF and the payload. CoIoT devices put
JSON in the payload and carry their serial and device id in vendor options.
"""

import struct

from . import constants as C

# ---------------------------------------------------------------------------
# Code helpers
# ---------------------------------------------------------------------------


def format_code(code: int) -> str:
    """Format 0x45 → "2.05"."""
    return f"{code >> 5}.{code & 0x1F:02d}"


def encode_uint(value: int) -> bytes:
    """Encode an unsigned option value with the minimum number of bytes."""
    if value < 0:
        raise ValueError(f"Negative option value: {value}")
    length = (value.bit_length() + 7) // 8
    return value.to_bytes(length, "big")


def decode_uint(data: bytes) -> int:
    """Decode an unsigned option value (empty → 0)."""
    return int.from_bytes(data, "big") if data else 0


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def _encode_nibble(value: int):
    """Split a delta/length into (nibble, extension bytes)."""
    if value < 13:
        return value, b""
    if value < 269:
        return C.OPTION_EXT_8BIT, bytes([value - 13])
    if value < 65805:
        return C.OPTION_EXT_16BIT, struct.pack("!H", value - 269)
    raise ValueError(f"Option delta/length too large: {value}")


def encode_options(options: list) -> bytes:
    """Encode [(number, value_bytes), ...] in ascending option order."""
    out = b""
    last = 0
    for number, value in sorted(options, key=lambda o: o[0]):
        delta_nibble, delta_ext = _encode_nibble(number - last)
        len_nibble, len_ext = _encode_nibble(len(value))
        out += bytes([(delta_nibble << 4) | len_nibble]) + delta_ext + len_ext + value
        last = number
    return out


def _read_extended(nibble: int, data: bytes, offset: int):
    """Resolve a delta/length nibble → (value, new_offset)."""
    if nibble < 13:
        return nibble, offset
    if nibble == C.OPTION_EXT_8BIT:
        if offset >= len(data):
            raise ValueError("Truncated option extension")
        return data[offset] + 13, offset + 1
    if nibble == C.OPTION_EXT_16BIT:
        if offset + 2 > len(data):
            raise ValueError("Truncated option extension")
        return struct.unpack_from("!H", data, offset)[0] + 269, offset + 2
    raise ValueError("Reserved option nibble 15")


def decode_options(data: bytes, offset: int):
    """Decode options starting at offset → (options, payload_offset).

    payload_offset is None when the message carries no payload.
    """
    options = []
    number = 0
    while offset < len(data):
        byte = data[offset]
        if byte == C.PAYLOAD_MARKER:
            if offset + 1 >= len(data):
                raise ValueError("Payload marker without payload")
            return options, offset + 1
        offset += 1
        delta, offset = _read_extended(byte >> 4, data, offset)
        length, offset = _read_extended(byte & 0x0F, data, offset)
        if offset + length > len(data):
            raise ValueError(f"Option {number + delta} overruns frame")
        number += delta
        options.append((number, bytes(data[offset : offset + length])))
        offset += length
    return options, None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def encode_message(
    msg_type: int,
    code: int,
    message_id: int,
    token: bytes = b"",
    options: list | None = None,
    payload: bytes = b"",
) -> bytes:
    """Encode a complete CoAP message."""
    if len(token) > C.MAX_TOKEN_LENGTH:
        raise ValueError(f"Token too long: {len(token)} bytes")
    first = (C.VERSION << 6) | ((msg_type & 0x03) << 4) | len(token)
    frame = struct.pack("!BBH", first, code, message_id & 0xFFFF) + token
    frame += encode_options(options or [])
    if payload:
        frame += bytes([C.PAYLOAD_MARKER]) + payload
    return frame


def decode_message(data: bytes) -> dict:
    """Decode a CoAP message → dict. Raises ValueError on a bad frame."""
    if len(data) < C.HEADER_SIZE:
        raise ValueError(f"Frame too short: {len(data)} bytes")
    first, code, message_id = struct.unpack_from("!BBH", data, 0)
    version = first >> 6
    if version != C.VERSION:
        raise ValueError(f"Bad CoAP version: {version}")
    tkl = first & 0x0F
    if tkl > C.MAX_TOKEN_LENGTH:
        raise ValueError(f"Bad token length: {tkl}")
    if C.HEADER_SIZE + tkl > len(data):
        raise ValueError("Truncated token")

    token = bytes(data[C.HEADER_SIZE : C.HEADER_SIZE + tkl])
    options, payload_offset = decode_options(data, C.HEADER_SIZE + tkl)
    payload = bytes(data[payload_offset:]) if payload_offset is not None else b""

    return {
        "type": (first >> 4) & 0x03,
        "code": code,
        "message_id": message_id,
        "token": token,
        "options": options,
        "payload": payload,
    }


def encode_get_request(uri: str, message_id: int, confirmable: bool = True) -> bytes:
    """Encode a GET for a CoIoT resource ("/cit/d" or "/cit/s") with empty token."""
    options = [
        (C.OPTION_URI_PATH, segment.encode("utf-8"))
        for segment in uri.strip("/").split("/")
        if segment
    ]
    return encode_message(
        C.TYPE_CON if confirmable else C.TYPE_NON,
        C.CODE_GET,
        message_id,
        options=options,
    )


def encode_empty_ack(message_id: int) -> bytes:
    """Encode an empty ACK for a confirmable message."""
    return encode_message(C.TYPE_ACK, C.CODE_EMPTY, message_id)


# ---------------------------------------------------------------------------
# CoIoT view of a message
# ---------------------------------------------------------------------------


def get_option(message: dict, number: int):
    """Return the first value of an option, or None."""
    for num, value in message["options"]:
        if num == number:
            return value
    return None


def uri_path(message: dict) -> str:
    """Join Uri-Path options → "/cit/s" (empty string when absent)."""
    segments = [
        value.decode("utf-8", errors="replace")
        for num, value in message["options"]
        if num == C.OPTION_URI_PATH
    ]
    return "/" + "/".join(segments) if segments else ""


def decode_coiot(message: dict) -> dict:
    """Extract CoIoT fields: uri, device id, serial, validity, text payload."""
    devid = get_option(message, C.OPTION_GLOBAL_DEVID)
    serial = get_option(message, C.OPTION_STATUS_SERIAL)
    validity = get_option(message, C.OPTION_STATUS_VALIDITY)
    return {
        "uri": uri_path(message),
        "device_id": devid.decode("utf-8", errors="replace") if devid else "",
        "serial": decode_uint(serial) if serial is not None else None,
        "validity": decode_uint(validity) if validity is not None else None,
        "payload": message["payload"].decode("utf-8", errors="replace"),
    }


def encode_coiot_status(
    device_id: str, serial: int, payload: str, message_id: int = 0, validity: int = 0
) -> bytes:
    """Encode an unsolicited CoIoT status publish as a device would send it."""
    options = [
        (C.OPTION_URI_PATH, b"cit"),
        (C.OPTION_URI_PATH, b"s"),
        (C.OPTION_GLOBAL_DEVID, device_id.encode("utf-8")),
        (C.OPTION_STATUS_VALIDITY, encode_uint(validity)),
        (C.OPTION_STATUS_SERIAL, encode_uint(serial)),
    ]
    return encode_message(
        C.TYPE_NON,
        C.CODE_COIOT_STATUS,
        message_id,
        options=options,
        payload=payload.encode("utf-8"),
    )
