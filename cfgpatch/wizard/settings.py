"""
settings.py - Kinematics table and the settings snapshot

The settings snapshot is captured once per generation run from the form
values the user edited (pre-populated from the document defaults). Every
field has a fallback so a blank or garbled form value never fails a run.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional


# Kinematics definitions
KINEMATICS: Dict[str, Dict[str, Any]] = {
    "cartesian": {
        "name": "Cartesian (Bed Slinger)",
        "hint": "Y axis moves the bed, X axis moves the toolhead",
        "uses_xy_endstops": True,
        "uses_delta": False,
        "klipper_name": "cartesian",
    },
    "cartesian_xy": {
        "name": "Cartesian (Flying Gantry)",
        "hint": "Bed is stationary, X/Y axes move the toolhead",
        "uses_xy_endstops": True,
        "uses_delta": False,
        "klipper_name": "cartesian",
    },
    "corexy": {
        "name": "CoreXY",
        "hint": "Bed moves on Z only, X/Y are belt-driven together",
        "uses_xy_endstops": True,
        "uses_delta": False,
        "klipper_name": "corexy",
    },
    "corexz": {
        "name": "CoreXZ",
        "hint": "Y moves bed, X/Z are belt-driven together",
        "uses_xy_endstops": True,
        "uses_delta": False,
        "klipper_name": "corexz",
    },
    "delta": {
        "name": "Delta",
        "hint": "Three towers, uses print radius instead of X/Y dimensions",
        "uses_xy_endstops": False,
        "uses_delta": True,
        "klipper_name": "delta",
    },
    "deltesian": {
        "name": "Deltesian",
        "hint": "Hybrid delta/cartesian - two towers for X/Z, linear Y",
        "uses_xy_endstops": True,
        "uses_delta": False,
        "klipper_name": "deltesian",
    },
    "polar": {
        "name": "Polar",
        "hint": "Rotating bed with radial arm",
        "uses_xy_endstops": False,
        "uses_delta": True,
        "klipper_name": "polar",
    },
    "winch": {
        "name": "Cable Winch",
        "hint": "Experimental - cable-suspended toolhead",
        "uses_xy_endstops": False,
        "uses_delta": False,
        "klipper_name": "winch",
    },
}

DEFAULT_KINEMATICS = "cartesian"

# Form field -> fallback used when the value is missing or unparsable
FORM_FALLBACKS: Dict[str, Any] = {
    "printer.kinematics": DEFAULT_KINEMATICS,
    "printer.bed_x": 235,
    "printer.bed_y": 235,
    "printer.bed_z": 250,
    "delta.radius": 140,
    "delta.height": 300,
    "delta.arm_length": 270,
    "z.motor_count": 1,
    "z.leveling_type": "none",
    "endstops.x": "min",
    "endstops.y": "min",
    "endstops.z": "min",
    "probe.x_offset": -40,
    "probe.y_offset": -10,
    "homing.sensorless_xy": False,
}

LEVELING_TYPES = ("none", "z_tilt", "quad_gantry_level")
ENDSTOP_SIDES = ("min", "max")
Z_ENDSTOP_TYPES = ("min", "max", "probe")
MAX_Z_MOTORS = 4


def kinematics_for_keyword(keyword: Optional[str]) -> Optional[str]:
    """First table key whose Klipper keyword matches (e.g. 'cartesian')."""
    if not keyword:
        return None
    keyword = keyword.strip().lower()
    if keyword in KINEMATICS:
        return keyword
    for key, info in KINEMATICS.items():
        if info["klipper_name"] == keyword:
            return key
    return None


def format_number(value: float) -> str:
    """235.0 -> '235', 22.5 -> '22.5'."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _coerce_number(value: Any, fallback: float) -> float:
    if isinstance(value, bool):
        return float(fallback)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return float(fallback)


def _coerce_choice(value: Any, choices, fallback: str) -> str:
    text = str(value).strip().lower() if value is not None else ""
    return text if text in choices else fallback


def _coerce_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return fallback
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    return fallback


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the user's choices for one generation run."""

    # None keeps the document's own kinematics keyword (one the table does not know)
    kinematics: Optional[str] = DEFAULT_KINEMATICS
    bed_x: float = 235
    bed_y: float = 235
    bed_z: float = 250
    delta_radius: float = 140
    delta_height: float = 300
    delta_arm_length: float = 270
    z_motor_count: int = 1
    z_leveling_type: str = "none"
    endstop_x: str = "min"
    endstop_y: str = "min"
    z_endstop: str = "min"
    probe_offset_x: float = -40
    probe_offset_y: float = -10
    sensorless_xy: bool = False

    @property
    def kinematics_info(self) -> Dict[str, Any]:
        return KINEMATICS.get(self.kinematics, KINEMATICS[DEFAULT_KINEMATICS])

    @property
    def klipper_kinematics(self) -> Optional[str]:
        if self.kinematics is None:
            return None
        return self.kinematics_info["klipper_name"]

    @property
    def uses_delta(self) -> bool:
        """Three-tower family (radius/height geometry)."""
        return bool(self.kinematics_info["uses_delta"])

    @property
    def uses_xy_endstops(self) -> bool:
        return bool(self.kinematics_info["uses_xy_endstops"])

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["klipper_kinematics"] = self.klipper_kinematics
        data["uses_delta"] = self.uses_delta
        return data


def build_settings(form: Optional[Mapping[str, Any]] = None,
                   defaults: Optional[Mapping[str, Any]] = None) -> Settings:
    """
    Build a Settings snapshot from flat dot-notation form values.

    Precedence per field: form value, then document default, then the fixed
    fallback in FORM_FALLBACKS.
    """
    form = form or {}
    defaults = defaults or {}

    def _pick(key: str) -> Any:
        value = form.get(key)
        if _is_blank(value):
            value = defaults.get(key)
        if _is_blank(value):
            value = FORM_FALLBACKS[key]
        return value

    # An unknown keyword from the document stays as written; one typed into
    # the form falls back like any other garbled value
    kinematics = kinematics_for_keyword(str(_pick("printer.kinematics")))
    if kinematics is None and not _is_blank(form.get("printer.kinematics")):
        kinematics = DEFAULT_KINEMATICS

    z_count = int(_coerce_number(_pick("z.motor_count"), FORM_FALLBACKS["z.motor_count"]))
    z_count = max(1, min(MAX_Z_MOTORS, z_count))

    leveling = _coerce_choice(_pick("z.leveling_type"), LEVELING_TYPES, "none")
    if leveling == "quad_gantry_level" and z_count != 4:
        leveling = "z_tilt"

    z_endstop = str(_pick("endstops.z")).strip().lower()
    z_endstop = {"switch_min": "min", "switch_max": "max"}.get(z_endstop, z_endstop)
    z_endstop = _coerce_choice(z_endstop, Z_ENDSTOP_TYPES, "min")

    def _num(key: str) -> float:
        return _coerce_number(_pick(key), FORM_FALLBACKS[key])

    return Settings(
        kinematics=kinematics,
        bed_x=_num("printer.bed_x"),
        bed_y=_num("printer.bed_y"),
        bed_z=_num("printer.bed_z"),
        delta_radius=_num("delta.radius"),
        delta_height=_num("delta.height"),
        delta_arm_length=_num("delta.arm_length"),
        z_motor_count=z_count,
        z_leveling_type=leveling,
        endstop_x=_coerce_choice(_pick("endstops.x"), ENDSTOP_SIDES, "min"),
        endstop_y=_coerce_choice(_pick("endstops.y"), ENDSTOP_SIDES, "min"),
        z_endstop=z_endstop,
        probe_offset_x=_num("probe.x_offset"),
        probe_offset_y=_num("probe.y_offset"),
        sensorless_xy=_coerce_bool(_pick("homing.sensorless_xy"), False),
    )
