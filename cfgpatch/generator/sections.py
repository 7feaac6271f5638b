"""
sections.py - Section model builder

Splits a Klipper config document into an ordered list of sections. Scanning
stops at the SAVE_CONFIG marker; everything from the marker on belongs to the
SAVE_CONFIG block and is never assigned to a section.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

COMMENT_MARKER = "#"
SAVE_CONFIG_MARKER = "#*# <---------------------- SAVE_CONFIG ---------------------->"

# Optional single comment marker, then [name]. "##[x]" is not a header.
SECTION_RE = re.compile(r"^(\s*#\s*)?\[([^\]]+)\]")
INCLUDE_RE = re.compile(r"^(\s*#\s*)?\[include\s+([^\]]+)\]", re.IGNORECASE)
KEY_VALUE_RE = re.compile(r"^\s*([A-Za-z0-9_]+)\s*[:=]\s*(.*)$")
INLINE_COMMENT_RE = re.compile(r"\s+[#;].*$")
UNCOMMENT_RE = re.compile(r"^(\s*)#\s?")


def split_lines(text: str) -> List[str]:
    """Split on newlines only, so joining with '\\n' restores the text."""
    return text.split("\n")


def split_eol(line: str) -> Tuple[str, str]:
    """'pid_Kp: 22.2\\r' -> ('pid_Kp: 22.2', '\\r'), for CRLF documents."""
    if line.endswith("\r"):
        return line[:-1], "\r"
    return line, ""


def is_commented(line: str) -> bool:
    return line.strip().startswith(COMMENT_MARKER)


def is_blank(line: str) -> bool:
    return line.strip() == ""


def comment_out(line: str) -> str:
    return COMMENT_MARKER + line


def uncomment(line: str) -> str:
    """Remove exactly one leading comment marker and at most one space after it."""
    return UNCOMMENT_RE.sub(r"\1", line, count=1)


def strip_inline_comment(value: str) -> str:
    return INLINE_COMMENT_RE.sub("", value).strip()


def parse_assignment(line: str) -> Optional[Tuple[str, str]]:
    """
    Parse a live ``key: value`` / ``key = value`` line.

    Returns (lower-cased key, value without inline comment) or None for
    comments, blanks, headers and continuation lines.
    """
    if is_commented(line) or is_blank(line):
        return None
    match = KEY_VALUE_RE.match(line)
    if not match:
        return None
    return match.group(1).lower(), strip_inline_comment(match.group(2))


def find_save_config_line(lines: List[str]) -> Optional[int]:
    """Index of the SAVE_CONFIG marker line, or None."""
    for i, line in enumerate(lines):
        if SAVE_CONFIG_MARKER in line:
            return i
    return None


@dataclass(frozen=True)
class Section:
    """One bracketed section of the original document."""

    name: str
    enabled: bool
    start_line: int
    end_line: int
    content: str
    originally_disabled: bool

    @property
    def key(self) -> str:
        """Lower-cased name used for all comparisons."""
        return self.name.lower()

    @property
    def line_range(self) -> Tuple[int, int]:
        return self.start_line, self.end_line

    def lines(self) -> List[str]:
        return split_lines(self.content)

    def effective_lines(self) -> List[str]:
        """
        Lines as they read once the section is enabled.

        A section whose header was commented out has one comment level
        stripped from each commented line, the same transformation the patch
        engine applies when such a section is selected.
        """
        if not self.originally_disabled:
            return self.lines()
        return [uncomment(ln) if is_commented(ln) else ln for ln in self.lines()]

    def values(self) -> Dict[str, str]:
        """First live value per key, in effective form."""
        result: Dict[str, str] = {}
        for line in self.effective_lines()[1:]:
            parsed = parse_assignment(line)
            if parsed and parsed[0] not in result:
                result[parsed[0]] = parsed[1]
        return result

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values().get(key.lower(), default)


@dataclass(frozen=True)
class SectionModel:
    """Ordered sections plus the SAVE_CONFIG marker position."""

    sections: Tuple[Section, ...]
    save_config_line: Optional[int]

    def __len__(self) -> int:
        return len(self.sections)

    def __iter__(self) -> Iterator[Section]:
        return iter(self.sections)

    def __getitem__(self, index: int) -> Section:
        return self.sections[index]

    @property
    def has_save_config(self) -> bool:
        return self.save_config_line is not None

    def find(self, name: str) -> Optional[Section]:
        """First section with this name (case-insensitive)."""
        name = name.lower()
        for section in self.sections:
            if section.key == name:
                return section
        return None

    def find_matching(self, pattern: str) -> Optional[Section]:
        regex = re.compile(pattern, re.IGNORECASE)
        for section in self.sections:
            if regex.match(section.key):
                return section
        return None

    def index_by_start_line(self) -> Dict[int, int]:
        return {s.start_line: i for i, s in enumerate(self.sections)}

    def enabled_indices(self) -> List[int]:
        return [i for i, s in enumerate(self.sections) if s.enabled]

    def names(self) -> List[str]:
        return [s.name for s in self.sections]


def extract_section_content(lines: List[str], start_line: int, end_line: int) -> Tuple[str, int]:
    """Return (content, trimmed end line) with trailing blank lines removed."""
    while end_line > start_line and is_blank(lines[end_line]):
        end_line -= 1
    return "\n".join(lines[start_line:end_line + 1]), end_line


def parse_config_sections(text: str) -> SectionModel:
    """
    Build the section model for a document.

    [include ...] lines are not sections; they close the open section.
    A document without headers yields an empty model.
    """
    lines = split_lines(text)
    save_config_line = find_save_config_line(lines)
    parse_until = save_config_line if save_config_line is not None else len(lines)

    sections: List[Section] = []
    current: Optional[dict] = None

    def _close(end_line: int) -> None:
        content, end = extract_section_content(lines, current["start_line"], end_line)
        sections.append(Section(end_line=end, content=content, **current))

    for i in range(parse_until):
        match = SECTION_RE.match(lines[i])
        if not match:
            continue

        if current is not None:
            _close(i - 1)
            current = None

        if INCLUDE_RE.match(lines[i]):
            continue

        is_disabled = bool(match.group(1))
        current = {
            "name": match.group(2).strip(),
            "enabled": not is_disabled,
            "start_line": i,
            "originally_disabled": is_disabled,
        }

    if current is not None:
        _close(parse_until - 1)

    logger.debug(
        "Parsed %d sections (SAVE_CONFIG at %s)",
        len(sections),
        save_config_line if save_config_line is not None else "none",
    )
    return SectionModel(sections=tuple(sections), save_config_line=save_config_line)


# Display categories, checked in order.
_CATEGORY_RULES = [
    ("Steppers", lambda n: n.startswith("stepper_")),
    ("TMC Drivers", lambda n: n.startswith(("tmc2209", "tmc2130", "tmc5160", "tmc2208"))),
    ("Extruders", lambda n: "extruder" in n),
    ("Fans", lambda n: "fan" in n),
    ("Heaters", lambda n: "heater" in n),
    ("Probing", lambda n: "probe" in n or n in ("bltouch", "safe_z_home", "bed_mesh")),
    ("Sensors", lambda n: "sensor" in n or n == "adxl345" or "resonance" in n),
    ("Lighting", lambda n: "neopixel" in n or "led" in n or "dotstar" in n),
    ("MCU", lambda n: n == "mcu" or n.startswith("mcu ")),
    ("Core", lambda n: n in ("printer", "board_pins", "virtual_sdcard", "display")),
    ("Pins", lambda n: "pin" in n),
    ("Macros", lambda n: "macro" in n),
    ("Menu", lambda n: "menu" in n),
]

CATEGORY_ORDER = [
    "Core", "MCU", "Steppers", "TMC Drivers", "Extruders", "Heaters", "Fans",
    "Probing", "Sensors", "Lighting", "Pins", "Macros", "Menu", "Other",
]


def categorize_section(name: str) -> str:
    """Display category used by the settings UI to group section toggles."""
    name = name.lower()
    for category, rule in _CATEGORY_RULES:
        if rule(name):
            return category
    return "Other"
