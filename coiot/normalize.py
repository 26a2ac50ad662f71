"""Normalization pass for CoIoT sensor descriptions.

Firmware releases do not agree on how a sensor is described:
  - Shelly1 reports type "Switch" without description
  - Shelly1PM reports type "Overtemp" / legacy "W" without description
  - Shelly Sense reports battery with type "H" and motion with desc "motion"
  - Shelly Bulb codes colors as type "Red", "Green", ... without description
  - Shelly Dimmer omits descriptions for its catch-all sensors

fix_description() rewrites such (type, label) pairs into one vocabulary.
The rules are ordered data tables; a new quirk is a new row. The function
is pure and its output is a fixed point (normalizing twice changes nothing).
"""

from dataclasses import replace
from typing import Optional

from .models import SensorDescriptor

# (matching values, canonical type, canonical label)
# A label of None means "use the raw type code as label".
Rule = tuple[tuple[str, ...], str, Optional[str]]

# Step 1 - by raw type code
TYPE_RULES: tuple[Rule, ...] = (
    (("w",), "P", "Power"),  # old firmware uses W, new P
    (("tc",), "T", "Temperature C"),
    (("tf",), "T", "Temperature F"),
    (("overtemp",), "S", "Overtemp"),
    (("relay0", "switch", "vswitch"), "S", "State"),
)

# Step 2 - by label, overrides step 1
LABEL_RULES: tuple[Rule, ...] = (
    (("motion",), "M", "Motion"),
    (("battery",), "B", "Battery"),  # Sense: reported with type H
    (("overtemp",), "S", "Overtemp"),
    (("relay0", "switch", "vswitch"), "S", "State"),
    (("voltage",), "V", "Voltage"),
    (("current",), "I", "Current"),
    (("pf",), "PF", "PF"),
)

# Step 3 - label still empty: derive it from the type
EMPTY_LABEL_RULES: tuple[Rule, ...] = (
    (("p",), "P", "Power"),
    (("t",), "T", "Temperature"),
    (("input",), "S", "Input"),
    (("output",), "S", "Output"),
    (("brightness",), "S", "Brightness"),
    (("red", "green", "blue", "white", "gain", "temp"), "S", None),
    (("vswitch",), "S", None),  # T carries the description, D is missing
)


def _match(rules: tuple[Rule, ...], value: str) -> Optional[Rule]:
    value = value.lower()
    for rule in rules:
        if value in rule[0]:
            return rule
    return None


def fix_description(sen: SensorDescriptor) -> SensorDescriptor:
    """Return the canonical form of a sensor description."""
    type_code = sen.type or ""
    label = sen.label or ""

    rule = _match(TYPE_RULES, type_code)
    if rule:
        _, type_code, label = rule

    rule = _match(LABEL_RULES, label)
    if rule:
        _, type_code, label = rule

    if not label:
        rule = _match(EMPTY_LABEL_RULES, type_code)
        if rule:
            _, new_type, new_label = rule
            label = new_label if new_label is not None else type_code
            type_code = new_type
        # Unknown catch-all types keep an empty label and get skipped by the mapper

    if type_code == sen.type and label == sen.label:
        return sen
    return replace(sen, type=type_code, label=label)
