"""
defaults.py - Default value extraction

Reads machine geometry and homing layout out of a parsed document so the
settings form can start from what the document already says.
"""

import logging
import re
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from ..wizard.settings import KINEMATICS, kinematics_for_keyword
from .sections import Section, SectionModel

logger = logging.getLogger(__name__)

NUMBER_RE = re.compile(r"^[-+]?\d+(?:\.\d+)?")
Z_STEPPER_RE = re.compile(r"^stepper_z\d*$")
PROBE_SECTIONS = ("probe", "bltouch")


def parse_number(value: Optional[str]) -> Optional[float]:
    """Leading numeric token of a config value, or None."""
    if value is None:
        return None
    match = NUMBER_RE.match(value.strip())
    return float(match.group(0)) if match else None


def is_virtual_pin(pin: str) -> bool:
    """Driver stall-detection endstop; the probe's z_virtual_endstop does not count."""
    return "virtual_endstop" in pin and not is_probe_pin(pin)


def is_probe_pin(pin: str) -> bool:
    return "probe:" in pin


def has_physical_endstop(section: Optional[Section]) -> bool:
    """True iff the section has a live endstop_pin that is neither virtual nor the probe."""
    if section is None:
        return False
    pin = section.get("endstop_pin")
    if not pin:
        return False
    return not is_virtual_pin(pin) and not is_probe_pin(pin)


def endstop_side(section: Optional[Section]) -> Optional[str]:
    """'max' iff position_endstop equals a non-zero position_max."""
    if section is None:
        return None
    position_endstop = parse_number(section.get("position_endstop"))
    if position_endstop is None:
        return None
    position_max = parse_number(section.get("position_max"))
    if position_max and position_endstop == position_max:
        return "max"
    return "min"


@dataclass(frozen=True)
class Defaults:
    """Read-only values derived from one document; unset fields stay None."""

    kinematics: Optional[str] = None
    # Keyword as written in the document, also when the table does not know it
    kinematics_keyword: Optional[str] = None
    has_physical_endstop_x: bool = False
    has_physical_endstop_y: bool = False
    has_physical_endstop_z: bool = False
    bed_x: Optional[float] = None
    bed_y: Optional[float] = None
    bed_z: Optional[float] = None
    delta_radius: Optional[float] = None
    delta_height: Optional[float] = None
    delta_arm_length: Optional[float] = None
    probe_offset_x: Optional[float] = None
    probe_offset_y: Optional[float] = None
    endstop_x: Optional[str] = None
    endstop_y: Optional[str] = None
    z_endstop: Optional[str] = None
    sensorless_xy: Optional[bool] = None
    z_motor_count: Optional[int] = None
    z_leveling_type: Optional[str] = None

    # Defaults field -> settings form key
    FORM_KEYS = {
        "kinematics": "printer.kinematics",
        "bed_x": "printer.bed_x",
        "bed_y": "printer.bed_y",
        "bed_z": "printer.bed_z",
        "delta_radius": "delta.radius",
        "delta_height": "delta.height",
        "delta_arm_length": "delta.arm_length",
        "z_motor_count": "z.motor_count",
        "z_leveling_type": "z.leveling_type",
        "endstop_x": "endstops.x",
        "endstop_y": "endstops.y",
        "z_endstop": "endstops.z",
        "probe_offset_x": "probe.x_offset",
        "probe_offset_y": "probe.y_offset",
        "sensorless_xy": "homing.sensorless_xy",
    }

    def to_form(self) -> Dict[str, Any]:
        """Flat form values for every field that was found in the document."""
        form = {}
        for attr, form_key in self.FORM_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                form[form_key] = value
        if self.kinematics is None and self.kinematics_keyword:
            form["printer.kinematics"] = self.kinematics_keyword
        return form

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def missing_xy_endstops(self):
        missing = []
        if not self.has_physical_endstop_x:
            missing.append("X")
        if not self.has_physical_endstop_y:
            missing.append("Y")
        return missing


def extract_default_values(model: SectionModel) -> Defaults:
    """Derive Defaults from the section model; missing sections leave fields unset."""
    values: Dict[str, Any] = {}

    printer = model.find("printer")
    stepper_x = model.find("stepper_x")
    stepper_y = model.find("stepper_y")
    stepper_z = model.find("stepper_z")

    kinematics_key = None
    if printer is not None:
        keyword = printer.get("kinematics")
        if keyword:
            keyword = keyword.split()[0].lower()
            values["kinematics_keyword"] = keyword
            kinematics_key = kinematics_for_keyword(keyword)
            if kinematics_key is None:
                logger.warning("Unknown kinematics '%s' in document, keeping it as written", keyword)
            else:
                values["kinematics"] = kinematics_key

    values["has_physical_endstop_x"] = has_physical_endstop(stepper_x)
    values["has_physical_endstop_y"] = has_physical_endstop(stepper_y)
    values["has_physical_endstop_z"] = has_physical_endstop(stepper_z)

    uses_delta = bool(kinematics_key and KINEMATICS[kinematics_key]["uses_delta"])
    if uses_delta:
        stepper_a = model.find("stepper_a")
        if stepper_a is not None:
            values["delta_arm_length"] = parse_number(stepper_a.get("arm_length"))
            values["delta_height"] = parse_number(stepper_a.get("position_endstop"))
        if printer is not None:
            values["delta_radius"] = parse_number(printer.get("print_radius"))
    else:
        for axis, section in (("x", stepper_x), ("y", stepper_y), ("z", stepper_z)):
            if section is not None:
                values[f"bed_{axis}"] = parse_number(section.get("position_max"))
        values["endstop_x"] = endstop_side(stepper_x)
        values["endstop_y"] = endstop_side(stepper_y)

    probe = next((s for s in model if s.key in PROBE_SECTIONS), None)
    if probe is not None:
        values["probe_offset_x"] = parse_number(probe.get("x_offset"))
        values["probe_offset_y"] = parse_number(probe.get("y_offset"))

    if stepper_z is not None:
        z_pin = stepper_z.get("endstop_pin") or ""
        values["z_endstop"] = "probe" if is_probe_pin(z_pin) else endstop_side(stepper_z)

    xy_pins = [s.get("endstop_pin") or "" for s in (stepper_x, stepper_y) if s is not None]
    if xy_pins:
        values["sensorless_xy"] = any(is_virtual_pin(pin) for pin in xy_pins)

    z_steppers = [s for s in model if s.enabled and Z_STEPPER_RE.match(s.key)]
    if z_steppers:
        values["z_motor_count"] = len(z_steppers)

    for leveling in ("quad_gantry_level", "z_tilt"):
        section = model.find(leveling)
        if section is not None and section.enabled:
            values["z_leveling_type"] = leveling
            break

    defaults = Defaults(**values)
    logger.debug("Extracted defaults: %s", defaults.to_form())
    return defaults
