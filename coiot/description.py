"""CoIoT device description decoder (/cit/d).

Builds the block table and the sensor table a status update is resolved
against. Sensor entries pass through fix_description() on the way in.
"""

import json
import logging

from pydantic import ValidationError

from coiotip import constants as C

from .dto import CoIoTBlock, CoIoTSensor
from .errors import MalformedMessage
from .models import Block, SensorDescriptor
from .normalize import fix_description

logger = logging.getLogger("coiotd.description")


def is_description(uri: str, payload: str) -> bool:
    """Classify a message as device description (by URI, else by payload)."""
    if uri:
        return uri.lower() == C.URI_DEVDESC
    return C.TAG_BLOCKS in payload


def load_json(payload: str) -> dict:
    """Parse a CoIoT JSON payload. Raises MalformedMessage."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"Payload is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedMessage(f"Payload is not an object: {type(data).__name__}")
    return data


def decode_description(payload: str):
    """Decode a description payload → (blocks, sensors).

    Raises MalformedMessage if the payload is not JSON or has no block list.
    Individual bad entries are logged and skipped.
    """
    data = load_json(payload)
    raw_blocks = data.get("blk")
    if not isinstance(raw_blocks, list):
        raise MalformedMessage("Description without block list")
    raw_sensors = data.get("sen") or []
    if not isinstance(raw_sensors, list):
        raise MalformedMessage("Description sensor list is not a list")

    blocks: dict[str, Block] = {}
    sensors: dict[str, SensorDescriptor] = {}

    for entry in raw_blocks:
        try:
            blk = CoIoTBlock.model_validate(entry)
        except ValidationError as e:
            logger.debug("  skip bad block entry %s: %s", entry, e.errors()[0]["msg"])
            continue
        logger.debug("  block id=%s: %s", blk.id, blk.desc)
        blocks[blk.id] = Block(
            id=blk.id,
            label=blk.desc or "",
            raw_type=blk.type,
            range=blk.range,
            links=blk.links,
        )
        if blk.type:
            # Sensor metadata leaked into the block list: register it as a sensor too
            logger.debug("  auto-create sensor definition for block %s/%s", blk.id, blk.desc)
            sensors[blk.id] = fix_description(
                SensorDescriptor(
                    id=blk.id,
                    type=blk.type,
                    label=blk.desc or "",
                    range=blk.range,
                    block_link=blk.links or blk.id,
                )
            )

    for entry in raw_sensors:
        try:
            sen = CoIoTSensor.model_validate(entry)
        except ValidationError as e:
            logger.debug("  skip bad sensor entry %s: %s", entry, e.errors()[0]["msg"])
            continue
        fixed = fix_description(
            SensorDescriptor(
                id=sen.id,
                type=sen.type,
                label=sen.desc or "",
                range=sen.range,
                block_link=sen.links or "",
            )
        )
        logger.debug(
            "  sensor id=%s: %s, Type=%s, Range=%s, Link=%s",
            fixed.id,
            fixed.label,
            fixed.type,
            fixed.range,
            fixed.block_link,
        )
        sensors[fixed.id] = fixed

    return blocks, sensors
