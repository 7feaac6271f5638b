"""
rules.py - Line modification rules for selected sections

Each rule looks at one (already uncommented) line of a selected section and
returns it rewritten or unchanged. Sensorless endstop pairing needs more than
one line and lives in sensorless.py.
"""

import re
from typing import Optional, Union

from ..wizard.settings import Settings, format_number
from .defaults import parse_number
from .sections import is_commented, uncomment
from .sensorless import TMC_HORIZONTAL_RE

SHADOW_TAG = "  # (overridden in SAVE_CONFIG)"
SENSORLESS_OFF_TAG = "  # (sensorless homing disabled)"

DELTA_TOWERS = ("stepper_a", "stepper_b", "stepper_c")
PROBE_SECTIONS = ("probe", "bltouch")
SENSORLESS_COMPANION_KEYS = ("diag_pin", "driver_sgthrs")

LIVE_KEY_RE = re.compile(r"^\s*([A-Za-z0-9_]+)\s*[:=]")
COMMENTED_KEY_RE = re.compile(r"^\s*#+\s*([A-Za-z0-9_]+)\s*[:=]")


def live_key(line: str) -> Optional[str]:
    """Lower-cased key of a live assignment line."""
    if is_commented(line):
        return None
    match = LIVE_KEY_RE.match(line)
    return match.group(1).lower() if match else None


def commented_key(line: str) -> Optional[str]:
    match = COMMENTED_KEY_RE.match(line)
    return match.group(1).lower() if match else None


def shadow_line(line: str) -> str:
    return "#" + line + SHADOW_TAG


def replace_value(line: str, key: str, value: Union[str, float]) -> str:
    """
    Replace the first value token of ``key`` keeping everything around it.

    Numbers are compared numerically, so '200.0' is left alone when the new
    value is 200.
    """
    pattern = re.compile(r"^(\s*" + re.escape(key) + r"\s*[:=]\s*)([^\s#;]+)(.*)$", re.IGNORECASE)
    match = pattern.match(line)
    if not match:
        return line
    current = match.group(2)

    if isinstance(value, str):
        if current.lower() == value.lower():
            return line
        token = value
    else:
        if parse_number(current) == float(value):
            return line
        token = format_number(value)
    return match.group(1) + token + match.group(3)


def _toggle_companion(line: str, enable: bool) -> str:
    """diag_pin / driver_SGTHRS follow the sensorless setting."""
    if enable:
        if commented_key(line) in SENSORLESS_COMPANION_KEYS:
            if line.endswith(SENSORLESS_OFF_TAG):
                line = line[: -len(SENSORLESS_OFF_TAG)]
            return uncomment(line)
        return line
    if live_key(line) in SENSORLESS_COMPANION_KEYS:
        return "#" + line + SENSORLESS_OFF_TAG
    return line


class LineRules:
    """Single-line rewrites for one settings snapshot."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _geometry_targets(self, section_key: str) -> dict:
        """Key -> new value for the geometry keys of a section."""
        s = self.settings
        if s.uses_delta:
            if section_key in DELTA_TOWERS:
                return {
                    "position_max": s.delta_height,
                    "position_endstop": s.delta_height,
                    "arm_length": s.delta_arm_length,
                }
            if section_key == "printer":
                return {"print_radius": s.delta_radius}
            return {}

        if section_key == "stepper_x":
            return {
                "position_max": s.bed_x,
                "position_endstop": s.bed_x if s.endstop_x == "max" else 0,
            }
        if section_key == "stepper_y":
            return {
                "position_max": s.bed_y,
                "position_endstop": s.bed_y if s.endstop_y == "max" else 0,
            }
        if section_key == "stepper_z":
            targets = {"position_max": s.bed_z}
            if s.z_endstop == "max":
                targets["position_endstop"] = s.bed_z
            return targets
        return {}

    def apply(self, section_key: str, line: str) -> str:
        """Apply kinematics, driver companion, geometry and probe rules in order."""
        key = live_key(line)
        s = self.settings

        if section_key == "printer" and key == "kinematics" and s.klipper_kinematics:
            line = replace_value(line, "kinematics", s.klipper_kinematics)

        if TMC_HORIZONTAL_RE.match(section_key):
            line = _toggle_companion(line, s.sensorless_xy)
            key = live_key(line)

        if key is not None:
            targets = self._geometry_targets(section_key)
            if key in targets:
                line = replace_value(line, key, targets[key])

        if section_key in PROBE_SECTIONS:
            if key == "x_offset":
                line = replace_value(line, "x_offset", s.probe_offset_x)
            elif key == "y_offset":
                line = replace_value(line, "y_offset", s.probe_offset_y)

        return line
