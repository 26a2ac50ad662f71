"""Device profile - the static facts the channel mapper depends on.

Profiles come from the device configuration (config.yaml or the store),
not from CoIoT itself: relay count, roller vs. relay mode, light type,
sensor device flag, temperature unit setting and so on.
"""

import logging

logger = logging.getLogger("coiotd.profile")

BTN_MOMENTARY = "momentary"
BTN_DETACHED = "detached"
BTN_TOGGLE = "toggle"

MIN_COLOR_TEMP_BULB = 3000
MAX_COLOR_TEMP_BULB = 6500
MIN_COLOR_TEMP_DUO = 2700
MAX_COLOR_TEMP_DUO = 6500


class DeviceProfile:
    """Read-only profile facts for one device."""

    FIELDS = (
        "device_type",
        "mode",
        "num_relays",
        "num_meters",
        "is_dimmer",
        "is_light",
        "is_bulb",
        "is_duo",
        "is_rgbw2",
        "is_sensor",
        "is_emeter",
        "temperature_units",
        "min_temp",
        "max_temp",
        "button_types",
        "supplementary_poll",
    )

    def __init__(
        self,
        device_type: str = "",
        mode: str = "",
        num_relays: int = 1,
        num_meters: int | None = None,
        is_dimmer: bool = False,
        is_light: bool = False,
        is_bulb: bool = False,
        is_duo: bool = False,
        is_rgbw2: bool = False,
        is_sensor: bool = False,
        is_emeter: bool = False,
        temperature_units: str = "C",
        min_temp: int = 0,
        max_temp: int = 0,
        button_types: list[str] | None = None,
        supplementary_poll: bool = True,
    ):
        self.device_type = device_type
        self.mode = (mode or "").lower()
        self.num_relays = int(num_relays)
        # Meter count defaults to one per relay
        self.num_meters = int(num_meters) if num_meters is not None else self.num_relays
        self.is_dimmer = bool(is_dimmer)
        self.is_bulb = bool(is_bulb)
        self.is_duo = bool(is_duo)
        self.is_rgbw2 = bool(is_rgbw2)
        self.is_light = bool(is_light) or self.is_bulb or self.is_duo or self.is_rgbw2
        self.is_sensor = bool(is_sensor)
        self.is_emeter = bool(is_emeter)
        self.temperature_units = (temperature_units or "C").upper()
        self.button_types = [b.lower() for b in (button_types or [])]
        self.supplementary_poll = bool(supplementary_poll)

        if self.is_bulb and not (min_temp or max_temp):
            min_temp, max_temp = MIN_COLOR_TEMP_BULB, MAX_COLOR_TEMP_BULB
        if self.is_duo and not (min_temp or max_temp):
            min_temp, max_temp = MIN_COLOR_TEMP_DUO, MAX_COLOR_TEMP_DUO
        self.min_temp = int(min_temp)
        self.max_temp = int(max_temp)

    @property
    def is_roller(self) -> bool:
        return self.mode == "roller"

    @property
    def in_color(self) -> bool:
        return self.is_light and self.mode == "color"

    def button_type(self, relay_index: int) -> str:
        """Button type of relay N (1-based), empty when unknown."""
        if 1 <= relay_index <= len(self.button_types):
            return self.button_types[relay_index - 1]
        return ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "DeviceProfile":
        """Build a profile from a config mapping; unknown keys are ignored."""
        data = data or {}
        unknown = set(data) - set(cls.FIELDS)
        if unknown:
            logger.warning("Ignoring unknown profile keys: %s", ", ".join(sorted(unknown)))
        return cls(**{k: v for k, v in data.items() if k in cls.FIELDS})

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.FIELDS}
