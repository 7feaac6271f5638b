"""
drivers.py - Stepper driver slot estimation

Guesses how many stepper drivers the target board offers, from the document
text alone, and compares it against what the chosen machine layout needs.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Set

from ..wizard.settings import Settings
from .sections import split_lines

logger = logging.getLogger(__name__)

FALLBACK_DRIVER_COUNT = 4
BOARD_HINT_LINES = 50

TMC_SECTION_RE = re.compile(
    r"^#*\s*\[(tmc\d+)\s+(stepper_[xyzabc]\d*|extruder\d*)\]", re.IGNORECASE
)
STEPPER_SECTION_RE = re.compile(
    r"^#*\s*\[(stepper_[xyzabc]\d*|extruder\d*)\]", re.IGNORECASE
)

# (board name pattern, driver count); first match wins
BOARD_DRIVER_COUNTS = [
    (re.compile(r"skr.*mini.*e3", re.IGNORECASE), 4),
    (re.compile(r"skr.*1\.3", re.IGNORECASE), 5),
    (re.compile(r"skr.*1\.4", re.IGNORECASE), 5),
    (re.compile(r"skr.*2", re.IGNORECASE), 5),
    (re.compile(r"skr.*pro", re.IGNORECASE), 6),
    (re.compile(r"skr.*octopus", re.IGNORECASE), 8),
    (re.compile(r"spider", re.IGNORECASE), 8),
    (re.compile(r"manta.*m8p", re.IGNORECASE), 8),
    (re.compile(r"manta.*m5p", re.IGNORECASE), 5),
    (re.compile(r"fysetc.*s6", re.IGNORECASE), 6),
    (re.compile(r"fysetc.*spider", re.IGNORECASE), 8),
    (re.compile(r"ender.*3", re.IGNORECASE), 4),
    (re.compile(r"ender.*5", re.IGNORECASE), 5),
    (re.compile(r"ramps", re.IGNORECASE), 5),
    (re.compile(r"mega.*2560", re.IGNORECASE), 5),
    (re.compile(r"rumba", re.IGNORECASE), 6),
    (re.compile(r"duet.*2", re.IGNORECASE), 5),
    (re.compile(r"duet.*3", re.IGNORECASE), 6),
]


def _collect(lines: List[str], pattern: "re.Pattern", group: int) -> Set[str]:
    found: Set[str] = set()
    for line in lines:
        match = pattern.match(line.strip())
        if match:
            found.add(match.group(group).lower())
    return found


def count_stepper_drivers(config_text: str) -> int:
    """
    Estimate available stepper driver slots.

    Methods, first hit wins:
      1. distinct steppers named by [tmcXXXX <stepper>] headers
      2. board name hint within the first 50 lines
      3. distinct [stepper_*] / [extruder*] headers, commented or not
      4. a fixed fallback of 4

    An empty document yields 0.
    """
    if not config_text:
        return 0

    lines = split_lines(config_text)

    tmc_steppers = _collect(lines, TMC_SECTION_RE, 2)
    if tmc_steppers:
        logger.debug("Driver count from TMC sections: %s", sorted(tmc_steppers))
        return len(tmc_steppers)

    header_text = "\n".join(lines[:BOARD_HINT_LINES])
    for pattern, drivers in BOARD_DRIVER_COUNTS:
        if pattern.search(header_text):
            logger.debug("Driver count from board hint %r: %d", pattern.pattern, drivers)
            return drivers

    steppers = _collect(lines, STEPPER_SECTION_RE, 1)
    if steppers:
        logger.debug("Driver count from stepper sections: %s", sorted(steppers))
        return len(steppers)

    return FALLBACK_DRIVER_COUNT


def required_drivers(settings: Settings) -> int:
    """Motion drivers for the layout plus one extruder."""
    if settings.uses_delta:
        required = 3
    else:
        required = 2 + settings.z_motor_count
    return required + 1


@dataclass(frozen=True)
class DriverReport:
    available: int
    required: int

    @property
    def remaining(self) -> int:
        return self.available - self.required

    @property
    def insufficient(self) -> bool:
        """Only meaningful once a document with a known count is loaded."""
        return self.available > 0 and self.required > self.available

    def message(self) -> str:
        if self.insufficient:
            return (
                f"Board has {self.available} drivers but {self.required} are needed "
                f"({self.required - self.available} short). Consider a secondary MCU."
            )
        return f"{self.available} drivers available, {self.required} needed"


def driver_report(config_text: str, settings: Settings) -> DriverReport:
    report = DriverReport(
        available=count_stepper_drivers(config_text),
        required=required_drivers(settings),
    )
    if report.insufficient:
        logger.warning(report.message())
    return report
