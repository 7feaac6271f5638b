"""
sensorless.py - Sensorless homing toggle for X/Y stepper sections

Each horizontal stepper section is in one of three states:

    PHYSICAL_ACTIVE           live physical endstop_pin, no live virtual pin
    PHYSICAL_DISABLED_PAIRED  physical pin commented out by us (tagged) and
                              followed by its live virtual twin
    VIRTUAL_ACTIVE            live virtual pin that we did not produce

Enabling moves PHYSICAL_ACTIVE to PHYSICAL_DISABLED_PAIRED; disabling moves
either virtual state back to PHYSICAL_ACTIVE. A tagged pin that came back to
life (a disabled section selected again) still counts as ours, and enabling
comments it out again. Every other combination is a no-op. The tag written on the commented physical line is what identifies a
pair, so nothing depends on what the neighbouring output line looks like.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .defaults import is_probe_pin, is_virtual_pin
from .sections import is_commented, split_eol, uncomment

logger = logging.getLogger(__name__)

HORIZONTAL_STEPPER_RE = re.compile(r"^stepper_[xy]\d*$")
TMC_HORIZONTAL_RE = re.compile(r"^(tmc\d+)\s+(stepper_[xy]\d*)$")

ENDSTOP_PIN_RE = re.compile(r"^(\s*)endstop_pin\s*[:=]\s*(.*)$")
COMMENTED_ENDSTOP_PIN_RE = re.compile(r"^\s*#\s*endstop_pin\s*[:=]\s*(.*)$")
RETRACT_RE = re.compile(r"^(\s*homing_retract_dist\s*[:=]\s*)([-+]?\d+(?:\.\d+)?)(.*)$")

PHYSICAL_DISABLED_TAG = "  # Physical endstop (disabled for sensorless)"
VIRTUAL_DISABLED_TAG = "  # Sensorless disabled - configure physical endstop_pin"
VIRTUAL_ENDSTOP_TEMPLATE = "endstop_pin: {driver}_{stepper}:virtual_endstop"

DEFAULT_DRIVER = "tmc2209"
RESTORED_RETRACT_DIST = "5"


class EndstopState(Enum):
    NONE = "none"
    PHYSICAL_ACTIVE = "physical-active"
    PHYSICAL_DISABLED_PAIRED = "physical-disabled-paired"
    VIRTUAL_ACTIVE = "virtual-active"


def is_horizontal_stepper(section_key: str) -> bool:
    return bool(HORIZONTAL_STEPPER_RE.match(section_key))


def virtual_endstop_line(driver: str, stepper: str, indent: str = "") -> str:
    return indent + VIRTUAL_ENDSTOP_TEMPLATE.format(driver=driver.lower(), stepper=stepper.lower())


def _live_pin(line: str) -> Optional[str]:
    if is_commented(line):
        return None
    match = ENDSTOP_PIN_RE.match(line)
    return match.group(2) if match else None


def _commented_physical(line: str) -> bool:
    match = COMMENTED_ENDSTOP_PIN_RE.match(line)
    if not match:
        return False
    pin = match.group(1)
    return not is_virtual_pin(pin) and not is_probe_pin(pin)


@dataclass
class EndstopLines:
    """Offsets (within the section) of the lines the state machine cares about."""

    physical: Optional[int] = None
    commented_physical: Optional[int] = None
    tagged_physical: Optional[int] = None
    tagged_live: bool = False
    virtual: Optional[int] = None
    retract: Optional[int] = None

    @property
    def state(self) -> EndstopState:
        if self.virtual is not None:
            if self.tagged_physical is not None:
                return EndstopState.PHYSICAL_DISABLED_PAIRED
            return EndstopState.VIRTUAL_ACTIVE
        if self.physical is not None or self.tagged_live:
            return EndstopState.PHYSICAL_ACTIVE
        return EndstopState.NONE


def _is_tagged(line: str) -> bool:
    return line.rstrip().endswith(PHYSICAL_DISABLED_TAG.strip())


def scan_endstop_lines(lines: List[str]) -> EndstopLines:
    found = EndstopLines()
    for offset, line in enumerate(lines):
        pin = _live_pin(line)
        if pin is not None:
            if is_virtual_pin(pin):
                if found.virtual is None:
                    found.virtual = offset
            elif is_probe_pin(pin):
                pass
            elif _is_tagged(line):
                # Our own commented pin, uncommented again by re-selecting
                # a disabled section
                if found.tagged_physical is None:
                    found.tagged_physical = offset
                    found.tagged_live = True
            elif found.physical is None:
                found.physical = offset
        elif _commented_physical(line):
            if _is_tagged(line):
                if found.tagged_physical is None:
                    found.tagged_physical = offset
            elif found.commented_physical is None:
                found.commented_physical = offset

        if found.retract is None and not is_commented(line) and RETRACT_RE.match(line):
            found.retract = offset
    return found


def _set_retract(line: str, value: str) -> str:
    return RETRACT_RE.sub(lambda m: m.group(1) + value + m.group(3), line, count=1)


def _restore_physical(line: str) -> str:
    if line.endswith(PHYSICAL_DISABLED_TAG) and line.startswith("#"):
        return line[1:-len(PHYSICAL_DISABLED_TAG)]
    if _is_tagged(line):
        line = line.rstrip()[: -len(PHYSICAL_DISABLED_TAG.strip())].rstrip()
    return uncomment(line)


def _disable_physical(line: str) -> str:
    return "#" + _restore_physical(line) + PHYSICAL_DISABLED_TAG


def _plan(lines: List[str], stepper: str, enable: bool, driver: str) -> Dict[int, List[str]]:
    found = scan_endstop_lines(lines)
    state = found.state
    plan: Dict[int, List[str]] = {}

    if enable:
        if state is EndstopState.PHYSICAL_ACTIVE:
            offset = found.physical if found.physical is not None else found.tagged_physical
            physical = _restore_physical(lines[offset])
            indent = ENDSTOP_PIN_RE.match(physical).group(1)
            plan[offset] = [
                _disable_physical(physical),
                virtual_endstop_line(driver, stepper, indent),
            ]
        elif state is EndstopState.PHYSICAL_DISABLED_PAIRED and found.tagged_live:
            plan[found.tagged_physical] = [_disable_physical(lines[found.tagged_physical])]
        if state is not EndstopState.PHYSICAL_ACTIVE and found.physical is not None:
            # A live physical pin next to a live virtual one
            plan[found.physical] = [_disable_physical(lines[found.physical])]
        if found.retract is not None:
            plan[found.retract] = [_set_retract(lines[found.retract], "0")]
    else:
        if state is EndstopState.PHYSICAL_DISABLED_PAIRED:
            plan[found.tagged_physical] = [_restore_physical(lines[found.tagged_physical])]
            plan[found.virtual] = []
        elif state is EndstopState.VIRTUAL_ACTIVE:
            if found.commented_physical is not None and found.physical is None:
                plan[found.commented_physical] = [uncomment(lines[found.commented_physical])]
            plan[found.virtual] = ["#" + lines[found.virtual] + VIRTUAL_DISABLED_TAG]
        elif state is EndstopState.PHYSICAL_ACTIVE and found.tagged_live:
            plan[found.tagged_physical] = [_restore_physical(lines[found.tagged_physical])]
        if found.retract is not None:
            retract = RETRACT_RE.match(lines[found.retract])
            if float(retract.group(2)) == 0:
                plan[found.retract] = [_set_retract(lines[found.retract], RESTORED_RETRACT_DIST)]

    if plan:
        logger.debug(
            "Sensorless %s for %s (%s): %d line(s) touched",
            "enable" if enable else "disable", stepper, state.value, len(plan),
        )
    return plan


def plan_sensorless(lines: List[str], stepper: str, enable: bool,
                    driver: str = DEFAULT_DRIVER) -> Dict[int, List[str]]:
    """
    Plan the sensorless transition for one horizontal stepper section.

    ``lines`` are the section's effective lines (header first). The result
    maps a line offset to its replacement lines: one line for a rewrite, two
    for the commented physical pin plus its inserted virtual twin, none to
    drop a line. Replacement lines keep the line ending of the line they
    replace.
    """
    split = [split_eol(line) for line in lines]
    plan = _plan([body for body, _ in split], stepper, enable, driver)
    return {
        offset: [new + split[offset][1] for new in replacement]
        for offset, replacement in plan.items()
    }
