"""CoIoT status decoder (/cit/s) and duplicate-serial rule.

Status payload: {"G":[[channel, sensor_id, value], ...]}
The serial travels in CoAP option 3420, not in the payload.
"""

import logging
import math

from coiotip import constants as C

from .description import load_json
from .errors import MalformedMessage
from .models import DeviceSchema, SensorReading

logger = logging.getLogger("coiotd.status")


def is_status(uri: str, payload: str) -> bool:
    """Classify a message as status update (by URI, else by payload)."""
    if uri:
        return uri.lower() == C.URI_DEVSTATUS
    return C.TAG_GENERIC in payload


def decode_status(payload: str):
    """Decode a status payload → (readings, skipped_count).

    Raises MalformedMessage when the payload is not JSON or has no "G" list.
    Malformed entries are skipped without aborting the batch.
    """
    data = load_json(payload)
    entries = data.get("G")
    if not isinstance(entries, list):
        raise MalformedMessage("Status without generic sensor list")

    readings: list[SensorReading] = []
    skipped = 0
    for i, entry in enumerate(entries):
        try:
            readings.append(_decode_entry(entry))
        except (TypeError, ValueError, IndexError) as e:
            skipped += 1
            logger.debug("  skip malformed reading[%d] %r: %s", i, entry, e)
    return readings, skipped


def _decode_entry(entry) -> SensorReading:
    if not isinstance(entry, list) or len(entry) < 3:
        raise ValueError("expected [channel, id, value]")
    sensor_id, value = entry[1], entry[2]
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise TypeError(f"unsupported value type {type(value).__name__}")
    raw_value = float(value)
    if math.isnan(raw_value) or math.isinf(raw_value):
        raise ValueError(f"not a finite number: {value}")
    return SensorReading(sensor_id=str(sensor_id), raw_value=raw_value)


def is_duplicate(schema: DeviceSchema, serial: int, payload: str) -> bool:
    """Same serial and same payload as last time → already processed.

    The serial alone is not trusted: Shelly HT and 4Pro were seen to send a
    new payload under an unchanged serial.
    """
    if serial != schema.last_serial:
        return False
    if schema.last_payload and schema.last_payload != payload:
        logger.debug("Duplicate serial %d processed, payload changed", serial)
        return False
    return True
