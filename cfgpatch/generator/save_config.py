"""
save_config.py - SAVE_CONFIG block extraction

Klipper appends values it learned at runtime (PID tuning, probe z_offset,
bed mesh, ...) after a fixed marker at the end of printer.cfg. Those values
override the same keys earlier in the file.
"""

import re
from typing import Dict

from .sections import SAVE_CONFIG_MARKER, split_lines

SAVED_SECTION_RE = re.compile(r"^#\*#\s*\[([^\]]+)\]")
SAVED_VALUE_RE = re.compile(r"^#\*#\s*([A-Za-z0-9_]+)\s*=(.*)$")


def extract_save_config(config_text: str) -> str:
    """Verbatim text from the marker line to the end, or '' if absent."""
    lines = split_lines(config_text)
    for i, line in enumerate(lines):
        if SAVE_CONFIG_MARKER in line:
            return "\n".join(lines[i:])
    return ""


def parse_saved_values(save_config_block: str) -> Dict[str, str]:
    """
    Flatten the SAVE_CONFIG block to {"section.key": value}.

    Section and key names are lower-cased; a repeated key keeps the last value.
    Multi-line values (bed_mesh points) only record what follows '=' on the
    key line, which is enough to know the key is overridden.
    """
    saved: Dict[str, str] = {}
    if not save_config_block:
        return saved

    current_section = None
    for line in split_lines(save_config_block):
        section_match = SAVED_SECTION_RE.match(line)
        if section_match:
            current_section = section_match.group(1).strip().lower()
            continue

        value_match = SAVED_VALUE_RE.match(line)
        if value_match and current_section:
            key = f"{current_section}.{value_match.group(1).lower()}"
            saved[key] = value_match.group(2).strip()

    return saved


def is_overridden(saved_values: Dict[str, str], section_name: str, key: str) -> bool:
    return f"{section_name.lower()}.{key.lower()}" in saved_values
