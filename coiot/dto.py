"""Pydantic models for the CoIoT JSON payloads.

Device description (/cit/d):
    {"blk":[{"I":0,"D":"Relay0"}],
     "sen":[{"I":112,"T":"Switch","R":"0/1","L":0}]}

Ids and links arrive as ints or strings depending on the firmware, some
releases send "L" as a list. Everything is coerced to strings here so the
rest of the code only deals with one representation.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _first_as_str(value: Any):
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return None
    return str(value)


def _join_as_str(value: Any):
    if isinstance(value, list):
        return ",".join(str(v) for v in value)
    if value is None:
        return None
    return str(value)


class _CoIoTEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., alias="I")
    desc: str | None = Field(default=None, alias="D")
    range: str | None = Field(default=None, alias="R")
    links: str | None = Field(default=None, alias="L")

    @field_validator("id", "links", mode="before")
    @classmethod
    def _coerce_ids(cls, value):
        return _first_as_str(value)

    @field_validator("range", mode="before")
    @classmethod
    def _coerce_range(cls, value):
        return _join_as_str(value)


class CoIoTBlock(_CoIoTEntry):
    """Entry of the "blk" list - a physical unit of the device."""

    # Some firmware leaks sensor fields into blocks
    type: str | None = Field(default=None, alias="T")


class CoIoTSensor(_CoIoTEntry):
    """Entry of the "sen" list - a logical measurement point."""

    type: str = Field(default="", alias="T")

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value):
        return "" if value is None else str(value)
