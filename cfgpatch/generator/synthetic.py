"""
synthetic.py - Sections generated from settings

Extra Z motors (and their driver sections) plus the matching leveling
section, for linear machines with more than one Z motor.
"""

import logging
import math
import re
from typing import Collection, Dict, List, Optional, Tuple

from ..wizard.settings import Settings
from .sections import Section, SectionModel
from .templates import TemplateRenderer

logger = logging.getLogger(__name__)

TMC_Z_RE = re.compile(r"^(tmc\d+)\s+stepper_z$", re.IGNORECASE)

FALLBACK_MICROSTEPS = "16"
FALLBACK_ROTATION_DISTANCE = "8"
FALLBACK_RUN_CURRENT = "0.580"

# Offsets (mm) of the Z motors / gantry corners outside the bed edge and of
# the probe points inside it
MOTOR_OUTSET = 50
GANTRY_OUTSET = 60
GANTRY_FRONT_OUTSET = 10
POINT_INSET = 30

LEVELING_PARAMS = {
    "speed": 150,
    "horizontal_move_z": 5,
    "retries": 5,
    "retry_tolerance": 0.0075,
    "max_adjust": 10,
}

Point = Tuple[float, float]


def _half(value: float) -> int:
    """Half of value rounded half-up (117.5 -> 118)."""
    return int(math.floor(value / 2 + 0.5))


def _first_token(section: Optional[Section], key: str, fallback: str) -> str:
    if section is None:
        return fallback
    value = section.get(key)
    if not value:
        return fallback
    return value.split()[0]


def z_tilt_positions(settings: Settings) -> Tuple[List[Point], List[Point]]:
    """(z_positions, probe points) for a z_tilt with 2, 3 or 4 motors."""
    x, y = settings.bed_x, settings.bed_y
    count = settings.z_motor_count
    if count == 2:
        z_positions = [(-MOTOR_OUTSET, _half(y)), (x + MOTOR_OUTSET, _half(y))]
    elif count == 3:
        z_positions = [
            (_half(x), -MOTOR_OUTSET),
            (-MOTOR_OUTSET, y + MOTOR_OUTSET),
            (x + MOTOR_OUTSET, y + MOTOR_OUTSET),
        ]
    elif count == 4:
        z_positions = [
            (-MOTOR_OUTSET, -MOTOR_OUTSET),
            (-MOTOR_OUTSET, y + MOTOR_OUTSET),
            (x + MOTOR_OUTSET, y + MOTOR_OUTSET),
            (x + MOTOR_OUTSET, -MOTOR_OUTSET),
        ]
    else:
        z_positions = []
    points = [(POINT_INSET, _half(y)), (x - POINT_INSET, _half(y))]
    return z_positions, points


def quad_gantry_positions(settings: Settings) -> Tuple[List[Point], List[Point]]:
    """(gantry_corners, probe points) for quad_gantry_level."""
    x, y = settings.bed_x, settings.bed_y
    corners = [(-GANTRY_OUTSET, -GANTRY_FRONT_OUTSET), (x + GANTRY_OUTSET, y + GANTRY_OUTSET)]
    points = [
        (POINT_INSET, POINT_INSET),
        (POINT_INSET, y - POINT_INSET),
        (x - POINT_INSET, y - POINT_INSET),
        (x - POINT_INSET, POINT_INSET),
    ]
    return corners, points


class SyntheticSectionGenerator:
    """Builds the additional Z motor and leveling sections."""

    def __init__(self, renderer: TemplateRenderer):
        self.renderer = renderer

    def leveling_context(self, settings: Settings) -> Dict:
        context = dict(LEVELING_PARAMS, leveling=settings.z_leveling_type)
        if settings.z_leveling_type == "z_tilt":
            context["z_positions"], context["points"] = z_tilt_positions(settings)
        elif settings.z_leveling_type == "quad_gantry_level":
            context["gantry_corners"], context["points"] = quad_gantry_positions(settings)
        return context

    def render_leveling(self, settings: Settings) -> Optional[str]:
        if settings.z_leveling_type not in ("z_tilt", "quad_gantry_level"):
            return None
        return self.renderer.render_section(
            "leveling", settings.z_leveling_type, context=self.leveling_context(settings)
        )

    def generate(self, settings: Settings, model: SectionModel,
                 selected_names: Collection[str] = (),
                 handled_elsewhere: Collection[str] = ()) -> str:
        """
        Text of the generated sections, or '' when nothing applies.

        ``selected_names`` are lower-cased names of sections that stay live in
        the patched document; a generated section with the same name is not
        emitted again. ``handled_elsewhere`` lists Z steppers a secondary MCU
        already provides.
        """
        if settings.uses_delta or settings.z_motor_count <= 1:
            return ""

        selected = {name.lower() for name in selected_names}
        handled = {name.lower() for name in handled_elsewhere}

        to_generate = [
            f"stepper_z{i}" for i in range(1, settings.z_motor_count)
            if f"stepper_z{i}" not in handled and f"stepper_z{i}" not in selected
        ]

        blocks: List[str] = []
        leveling = None
        if settings.z_leveling_type not in selected:
            leveling = self.render_leveling(settings)

        if to_generate:
            blocks.append(self.renderer.render_section(
                "banner", context={"title": "ADDITIONAL Z MOTORS (Generated)"}))

            stepper_z = model.find("stepper_z")
            stepper_context = {
                "microsteps": _first_token(stepper_z, "microsteps", FALLBACK_MICROSTEPS),
                "rotation_distance": _first_token(stepper_z, "rotation_distance", FALLBACK_ROTATION_DISTANCE),
            }
            for name in to_generate:
                blocks.append(self.renderer.render_section(
                    "additional_z", "stepper", context=dict(stepper_context, section_name=name)))

            tmc_z = next((s for s in model if TMC_Z_RE.match(s.key)), None)
            if tmc_z is not None:
                tmc_context = {
                    "tmc_type": TMC_Z_RE.match(tmc_z.key).group(1),
                    "run_current": _first_token(tmc_z, "run_current", FALLBACK_RUN_CURRENT),
                }
                for name in to_generate:
                    blocks.append(self.renderer.render_section(
                        "additional_z", "tmc", context=dict(tmc_context, section_name=name)))
        elif leveling:
            blocks.append(self.renderer.render_section(
                "banner", context={"title": "Z LEVELING CONFIGURATION"}))

        if leveling:
            blocks.append(leveling)

        blocks = [b for b in blocks if b]
        if blocks:
            logger.info(
                "Generated %d additional Z motor(s)%s",
                len(to_generate),
                f" and [{settings.z_leveling_type}]" if leveling else "",
            )
        return "\n".join(blocks)
