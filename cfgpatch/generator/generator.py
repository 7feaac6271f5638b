"""
generator.py - Main config generator

Orchestrates loading a document, building the settings snapshot from the
saved session state, patching, and writing the result.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from ..wizard.settings import Settings, build_settings
from ..wizard.state import WizardState, get_default_state_dir
from .defaults import Defaults, extract_default_values
from .drivers import DriverReport, count_stepper_drivers, required_drivers
from .engine import generate as generate_text
from .includes import IncludeFile, IncludeList, extract_includes
from .save_config import extract_save_config, parse_saved_values
from .secondary_mcu import SecondaryMcu, SecondaryMcuGenerator, handled_sections
from .sections import SAVE_CONFIG_MARKER, SectionModel, parse_config_sections, split_lines
from .synthetic import SyntheticSectionGenerator
from .templates import TemplateRenderer, has_render_errors

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "printer.cfg"
HEADER_MARKER = "Generated by cfgpatch"
BANNER_RULE = "#=====================================#"
GENERATED_BANNER_TITLES = (
    "#         INCLUDE FILES               #",
    "# ADDITIONAL Z MOTORS (Generated)",
    "# Z LEVELING CONFIGURATION",
    "# SECONDARY MCU CONFIGS",
)


def strip_generated_blocks(text: str) -> str:
    """
    Remove the header and banners a previous run added.

    Only the part before SAVE_CONFIG is touched. Regenerating a generated
    file therefore does not stack headers or banners.
    """
    lines = split_lines(text)
    save_idx = next((i for i, ln in enumerate(lines) if SAVE_CONFIG_MARKER in ln), len(lines))
    pre, save_block = lines[:save_idx], lines[save_idx:]

    # Old header block: border, marker line, ..., border, optional source line
    if pre and pre[0].startswith("#####") and any(HEADER_MARKER in ln for ln in pre[:10]):
        marker_idx = next(i for i, ln in enumerate(pre[:10]) if HEADER_MARKER in ln)
        end = next(
            (i for i in range(marker_idx + 1, len(pre)) if pre[i].startswith("#####")),
            marker_idx,
        )
        end += 1
        if end < len(pre) and pre[end].startswith("# Source:"):
            end += 1
        while end < len(pre) and pre[end].strip() == "":
            end += 1
        pre = pre[end:]

    kept: List[str] = []
    i = 0
    while i < len(pre):
        if (
            pre[i] == BANNER_RULE
            and i + 2 < len(pre)
            and pre[i + 1].rstrip() in GENERATED_BANNER_TITLES
            and pre[i + 2] == BANNER_RULE
        ):
            i += 3
            if i < len(pre) and pre[i].strip() == "":
                i += 1
            continue
        kept.append(pre[i])
        i += 1

    return "\n".join(kept + save_block)


@dataclass(frozen=True)
class ConfigDocument:
    """Everything derived from one loaded document; rebuilt on every load."""

    raw: str
    file_name: str
    model: SectionModel
    save_config_block: str
    saved_values: Dict[str, str]
    defaults: Defaults
    driver_count: int
    includes: List[IncludeFile] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str, file_name: str = OUTPUT_FILENAME) -> "ConfigDocument":
        text = strip_generated_blocks(text)
        model = parse_config_sections(text)
        save_block = extract_save_config(text)
        document = cls(
            raw=text,
            file_name=file_name,
            model=model,
            save_config_block=save_block,
            saved_values=parse_saved_values(save_block),
            defaults=extract_default_values(model),
            driver_count=count_stepper_drivers(text),
            includes=extract_includes(text),
        )
        logger.info(
            "Loaded %s: %d sections, %d SAVE_CONFIG values, %d includes, ~%d drivers",
            file_name, len(model), len(document.saved_values),
            len(document.includes), document.driver_count,
        )
        return document

    @property
    def is_empty(self) -> bool:
        return len(self.model) == 0

    def default_selection(self) -> List[int]:
        """Sections enabled in the document itself."""
        return self.model.enabled_indices()


@dataclass
class GenerationResult:
    text: str
    settings: Settings
    selection: List[int]
    warnings: List[str]
    driver_report: DriverReport
    file_name: str = OUTPUT_FILENAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "settings": self.settings.to_dict(),
            "selection": self.selection,
            "warnings": self.warnings,
            "drivers": {
                "available": self.driver_report.available,
                "required": self.driver_report.required,
                "remaining": self.driver_report.remaining,
                "insufficient": self.driver_report.insufficient,
            },
            "file_name": self.file_name,
        }


class ConfigGenerator:
    """Generates a patched Klipper config from a document and the session state."""

    def __init__(
        self,
        document: ConfigDocument,
        state: WizardState = None,
        output_dir: Path = None,
        renderer: TemplateRenderer = None,
    ):
        self.document = document
        self.state = state or WizardState()
        self.output_dir = Path(output_dir) if output_dir else get_default_state_dir()
        self.renderer = renderer or TemplateRenderer()
        self.synthetic = SyntheticSectionGenerator(self.renderer)
        self.mcu_generator = SecondaryMcuGenerator(self.renderer)

    def get_settings(self) -> Settings:
        return build_settings(self.state.form_values(), self.document.defaults.to_form())

    def get_selection(self) -> List[int]:
        selection = self.state.get_selection()
        if selection is None:
            return self.document.default_selection()
        return [i for i in selection if 0 <= i < len(self.document.model)]

    def get_includes(self) -> IncludeList:
        stored = self.state.get_includes()
        if stored is None:
            return IncludeList(self.document.includes)
        return IncludeList.from_dicts(stored)

    def get_secondary_mcus(self) -> List[SecondaryMcu]:
        return [SecondaryMcu.from_dict(m) for m in self.state.get_secondary_mcus()]

    def driver_report(self, settings: Settings) -> DriverReport:
        return DriverReport(available=self.document.driver_count, required=required_drivers(settings))

    def check(self, settings: Settings, report: DriverReport) -> List[str]:
        """Warning-level conditions; generation proceeds regardless."""
        warnings = []
        if report.insufficient:
            warnings.append(report.message())

        missing = self.document.defaults.missing_xy_endstops
        if not settings.sensorless_xy and settings.uses_xy_endstops and missing and not self.document.is_empty:
            warnings.append(
                f"No physical endstop found for {', '.join(missing)}. "
                "Enable sensorless homing or configure endstop_pin."
            )

        for message in warnings:
            logger.warning(message)
        return warnings

    def _render_header(self) -> str:
        header = self.renderer.render_section(
            "header", context={"source_name": self.document.file_name}) or ""
        includes = self.get_includes()
        block = self.renderer.render_section(
            "include_block", context={"includes": includes.to_list()}) or ""
        if block:
            return header + "\n" + block + "\n"
        return header + "\n"

    def generate(self) -> GenerationResult:
        """
        Generate the patched config.

        Raises:
            ValueError: if a generated section failed to render
        """
        doc = self.document
        settings = self.get_settings()
        selection = self.get_selection()
        mcus = self.get_secondary_mcus()
        handled = handled_sections(mcus)

        selected_names = [doc.model[i].key for i in selection if i < len(doc.model)]
        z_block = self.synthetic.generate(
            settings, doc.model, selected_names=selected_names, handled_elsewhere=handled.keys())
        mcu_block = self.mcu_generator.generate(mcus, doc.model, bed_z=settings.bed_z)

        header = self._render_header()
        failed = [
            name for name, block in (("header", header), ("additional_z", z_block),
                                     ("secondary_mcu", mcu_block))
            if has_render_errors(block)
        ]
        if failed:
            raise ValueError("Failed to render sections:\n" + "\n".join(f"- {name}" for name in failed))

        body = generate_text(
            doc.raw,
            doc.model,
            doc.saved_values,
            settings,
            selection,
            extra_blocks=[b for b in (z_block, mcu_block) if b],
            handled_sections=handled,
            strip_includes=True,
        )
        text = header + body

        report = self.driver_report(settings)
        return GenerationResult(
            text=text,
            settings=settings,
            selection=selection,
            warnings=self.check(settings, report),
            driver_report=report,
        )

    def write(self, result: GenerationResult = None, path: Path = None) -> Path:
        """Write the generated config (printer.cfg in the output dir by default)."""
        if result is None:
            result = self.generate()
        path = Path(path) if path else self.output_dir / result.file_name
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            f.write(result.text)
        logger.info("Wrote %s", path)
        return path

    def preview(self) -> str:
        """Generate a preview of the config with its warnings."""
        result = self.generate()

        lines = ["=" * 60]
        lines.append("CONFIGURATION PREVIEW")
        lines.append("=" * 60)
        for warning in result.warnings:
            lines.append(f"WARNING: {warning}")
        lines.append("")
        lines.append(result.text)

        return "\n".join(lines)
