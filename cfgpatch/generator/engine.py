"""
engine.py - Line-level patch engine

Replays the original document line by line and emits a patched copy. Only
lines a rule targets change; an empty section model, or a selection that
keeps every section as it is, returns the input byte for byte.

The SAVE_CONFIG block is copied verbatim. Its values shadow the matching
live keys earlier in the document, which get commented out with a note.
"""

import logging
import re
from typing import Collection, Dict, Iterable, List, Optional

from ..wizard.settings import Settings
from .rules import LineRules, live_key, shadow_line
from .save_config import is_overridden
from .secondary_mcu import handling_mcu
from .sections import (
    INCLUDE_RE,
    SAVE_CONFIG_MARKER,
    Section,
    SectionModel,
    comment_out,
    is_blank,
    is_commented,
    split_eol,
    split_lines,
    uncomment,
)
from .sensorless import DEFAULT_DRIVER, is_horizontal_stepper, plan_sensorless

logger = logging.getLogger(__name__)

MOVED_TAG = "  # MOVED TO SECONDARY MCU: {mcu}"


def _driver_for(model: SectionModel, stepper: str) -> str:
    """Driver chip of the [tmcXXXX <stepper>] section, if any."""
    section = model.find_matching(r"^tmc\d+\s+" + re.escape(stepper) + r"$")
    if section is None:
        return DEFAULT_DRIVER
    return section.key.split()[0]


def disable_line(line: str) -> str:
    """Comment out a live line; blank and commented lines are left alone."""
    if is_blank(line) or is_commented(line):
        return line
    return comment_out(line)


def move_to_mcu_line(line: str, is_header: bool, mcu_name: str) -> str:
    if is_blank(line) or is_commented(line):
        return line
    if is_header:
        return "# " + line + MOVED_TAG.format(mcu=mcu_name)
    return "# " + line


class _SectionPatcher:
    """Per-run state for the selected sections: rules plus sensorless plans."""

    def __init__(self, model: SectionModel, saved_values: Dict[str, str], settings: Settings):
        self.model = model
        self.saved_values = saved_values
        self.settings = settings
        self.rules = LineRules(settings)
        self._plans: Dict[int, Dict[int, List[str]]] = {}

    def _plan(self, index: int) -> Dict[int, List[str]]:
        """Sensorless plan of a section keyed by absolute line number."""
        if index not in self._plans:
            section = self.model[index]
            plan: Dict[int, List[str]] = {}
            if is_horizontal_stepper(section.key):
                relative = plan_sensorless(
                    [split_eol(ln)[0] for ln in section.effective_lines()],
                    section.key,
                    enable=self.settings.sensorless_xy,
                    driver=_driver_for(self.model, section.key),
                )
                plan = {section.start_line + offset: lines for offset, lines in relative.items()}
            self._plans[index] = plan
        return self._plans[index]

    def _shadowed(self, section: Section, line: str) -> Optional[str]:
        key = live_key(line)
        if key and is_overridden(self.saved_values, section.name, key):
            logger.debug("[%s] %s shadowed by SAVE_CONFIG", section.name, key)
            return shadow_line(line)
        return None

    def selected(self, index: int, section: Section, line_no: int, line: str) -> List[str]:
        if section.originally_disabled and is_commented(line):
            line = uncomment(line)

        shadowed = self._shadowed(section, line)
        if shadowed is not None:
            return [shadowed]

        plan = self._plan(index)
        if line_no in plan:
            return plan[line_no]

        return [self.rules.apply(section.key, line)]

    def unselected(self, section: Section, line: str) -> str:
        shadowed = self._shadowed(section, line)
        return shadowed if shadowed is not None else disable_line(line)

    def moved(self, section: Section, line: str, is_header: bool, mcu_name: str) -> str:
        shadowed = self._shadowed(section, line)
        return shadowed if shadowed is not None else move_to_mcu_line(line, is_header, mcu_name)


def patch_document(
    text: str,
    model: SectionModel,
    saved_values: Dict[str, str],
    settings: Settings,
    selection: Iterable[int],
    handled_sections: Optional[Dict[str, str]] = None,
    strip_includes: bool = False,
) -> str:
    """
    Patch ``text`` against one settings snapshot.

    Args:
        text: the original document
        model: section model built from that same text
        saved_values: flattened SAVE_CONFIG values
        settings: settings snapshot for this run
        selection: indices of the sections to keep enabled
        handled_sections: sections taken over by secondary MCUs
            ({section name: mcu name})
        strip_includes: drop [include ...] lines (they are re-emitted
            as a block by the caller)

    Returns:
        The patched document. Lines are joined with '\\n' exactly as split.
    """
    if len(model) == 0 and not strip_includes:
        return text

    lines = split_lines(text)
    selected = set(selection)
    handled = handled_sections or {}
    headers = model.index_by_start_line()
    patcher = _SectionPatcher(model, saved_values, settings)
    save_line = model.save_config_line

    out: List[str] = []
    owner: Optional[int] = None

    for line_no, line in enumerate(lines):
        if save_line is not None and line_no >= save_line:
            out.append(line)
            continue

        if INCLUDE_RE.match(line):
            owner = None
            if not strip_includes:
                out.append(line)
            continue

        if line_no in headers:
            owner = headers[line_no]

        if owner is None:
            out.append(line)
            continue

        section = model[owner]
        mcu_name = handling_mcu(section.name, handled) if handled else None
        # Rules see the line without its '\r'; every line produced from it gets it back
        body, eol = split_eol(line)
        if mcu_name:
            produced = [patcher.moved(section, body, line_no == section.start_line, mcu_name)]
        elif owner in selected:
            produced = patcher.selected(owner, section, line_no, body)
        else:
            produced = [patcher.unselected(section, body)]
        out.extend(new + eol for new in produced)

    logger.info(
        "Patched document: %d sections (%d selected), %d -> %d lines",
        len(model), len(selected & set(range(len(model)))), len(lines), len(out),
    )
    return "\n".join(out)


def insert_before_save_config(text: str, block: str) -> str:
    """Insert a block of new sections before the SAVE_CONFIG marker (or at the end)."""
    if not block:
        return text
    block = block.rstrip("\n") + "\n"

    marker = text.find(SAVE_CONFIG_MARKER)
    if marker == -1:
        return text.rstrip("\n") + "\n\n" + block

    line_start = text.rfind("\n", 0, marker) + 1
    return text[:line_start] + "\n" + block + "\n" + text[line_start:]


def generate(
    text: str,
    model: SectionModel,
    saved_values: Dict[str, str],
    settings: Settings,
    selection: Iterable[int],
    extra_blocks: Collection[str] = (),
    **patch_options,
) -> str:
    """Patch the document, then insert generated blocks before SAVE_CONFIG."""
    output = patch_document(text, model, saved_values, settings, selection, **patch_options)
    for block in extra_blocks:
        output = insert_before_save_config(output, block)
    return output
