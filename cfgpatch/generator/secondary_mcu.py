"""
secondary_mcu.py - Secondary MCU (toolhead / expansion / host) support

A secondary MCU takes over some functions of the main board. The sections
it takes over are commented out in the main document and new sections with
pins on the secondary MCU are generated, pins scavenged from the MCU's own
sample config where one is available.
"""

import copy
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Set

from .sections import SectionModel, split_lines
from .templates import TemplateRenderer

logger = logging.getLogger(__name__)

DEFAULT_SERIAL = "/dev/serial/by-id/usb-Klipper_CHANGE_ME"
HOST_SERIAL = "/tmp/klipper_host_mcu"
CONNECTION_TYPES = ("usb", "canbus", "linux")
TMC_DRIVERS = ("tmc2209", "tmc2208", "tmc2130", "tmc5160")

# Function categories, in output order, with their display labels
FUNCTION_CATEGORIES = {
    "steppers": "Steppers",
    "heaters": "Heaters",
    "fans": "Fans",
    "sensors": "Temperature Sensors",
    "probing": "Probing",
    "leds": "LEDs",
    "accelerometer": "Accelerometer",
    "filament": "Filament Sensors",
    "gpio": "GPIO",
}

FUNCTION_OPTIONS = {
    "steppers": ["stepper_x", "stepper_y", "stepper_z", "stepper_z1", "stepper_z2",
                 "stepper_z3", "extruder", "extruder1"],
    "heaters": ["hotend", "heater_bed", "heater_chamber"],
    "fans": ["part_fan", "hotend_fan", "controller_fan", "exhaust_fan", "filter_fan"],
    "sensors": ["hotend_temp", "bed_temp", "chamber_temp", "mcu_temp"],
    "probing": ["probe", "bltouch", "tap", "endstops"],
    "leds": ["toolhead_leds", "case_leds", "status_led"],
    "accelerometer": ["adxl345", "lis2dw"],
    "filament": ["filament_switch", "filament_motion"],
    "gpio": ["relay", "button", "power_control"],
}

SECONDARY_MCU_PRESETS: Dict[str, Dict[str, Any]] = {
    "ebb36-v1.2": {
        "name": "BTT EBB36 v1.2",
        "mcu_name": "EBBCan",
        "type": "toolhead",
        "connection_type": "canbus",
        "description": "BigTreeTech EBB36 CAN toolhead board",
        "config_file": "sample-bigtreetech-ebb-canbus-v1.2.cfg",
        "functions": {
            "steppers": ["extruder"],
            "heaters": ["hotend"],
            "fans": ["part_fan", "hotend_fan"],
            "sensors": ["hotend_temp"],
            "probing": ["probe"],
            "accelerometer": ["adxl345"],
        },
    },
    "ebb42-v1.2": {
        "name": "BTT EBB42 v1.2",
        "mcu_name": "EBBCan",
        "type": "toolhead",
        "connection_type": "canbus",
        "description": "BigTreeTech EBB42 CAN toolhead board",
        "config_file": "sample-bigtreetech-ebb-canbus-v1.2.cfg",
        "functions": {
            "steppers": ["extruder"],
            "heaters": ["hotend"],
            "fans": ["part_fan", "hotend_fan"],
            "sensors": ["hotend_temp"],
            "probing": ["probe"],
            "accelerometer": ["adxl345"],
        },
    },
    "ebb36-v1.1": {
        "name": "BTT EBB36 v1.1",
        "mcu_name": "EBBCan",
        "type": "toolhead",
        "connection_type": "canbus",
        "description": "BigTreeTech EBB36 v1.1 CAN toolhead",
        "config_file": "sample-bigtreetech-ebb-canbus-v1.1.cfg",
        "functions": {
            "steppers": ["extruder"],
            "heaters": ["hotend"],
            "fans": ["part_fan", "hotend_fan"],
            "sensors": ["hotend_temp"],
            "probing": ["probe"],
        },
    },
    "ebb36-v1.0": {
        "name": "BTT EBB36 v1.0",
        "mcu_name": "EBBCan",
        "type": "toolhead",
        "connection_type": "canbus",
        "description": "BigTreeTech EBB36 v1.0 CAN toolhead",
        "config_file": "sample-bigtreetech-ebb-canbus-v1.0.cfg",
        "functions": {
            "steppers": ["extruder"],
            "heaters": ["hotend"],
            "fans": ["part_fan", "hotend_fan"],
            "sensors": ["hotend_temp"],
        },
    },
    "sht36": {
        "name": "Mellow SHT36/42",
        "mcu_name": "sht",
        "type": "toolhead",
        "connection_type": "canbus",
        "description": "Mellow FLY-SHT36/42 CAN toolhead",
        "config_file": None,
        "functions": {
            "steppers": ["extruder"],
            "heaters": ["hotend"],
            "fans": ["part_fan", "hotend_fan"],
            "sensors": ["hotend_temp"],
            "probing": ["probe"],
            "accelerometer": ["adxl345"],
        },
    },
    "rpi": {
        "name": "Raspberry Pi",
        "mcu_name": "host",
        "type": "host",
        "connection_type": "linux",
        "description": "Raspberry Pi as secondary MCU for GPIO/sensors",
        "config_file": "sample-raspberry-pi.cfg",
        "functions": {
            "accelerometer": ["adxl345"],
            "sensors": ["chamber_temp"],
            "gpio": ["power_control"],
        },
    },
    "expansion": {
        "name": "Expansion Board",
        "mcu_name": "mcu2",
        "type": "expansion",
        "connection_type": "usb",
        "description": "Additional printer board for more motors",
        "config_file": None,
        "functions": {
            "steppers": ["stepper_z1", "stepper_z2"],
            "fans": ["controller_fan"],
        },
    },
    "mmu": {
        "name": "MMU/ERCF Board",
        "mcu_name": "mmboard",
        "type": "mmu",
        "connection_type": "usb",
        "description": "Multi-material unit control board",
        "config_file": "sample-mmu2s-diy.cfg",
        "functions": {
            "steppers": ["extruder1"],
            "filament": ["filament_motion"],
        },
    },
    "duet-1lc": {
        "name": "Duet3 1LC",
        "mcu_name": "toolboard",
        "type": "toolhead",
        "connection_type": "canbus",
        "description": "Duet3 1LC CAN toolboard",
        "config_file": "sample-duet3-1lc.cfg",
        "functions": {
            "steppers": ["extruder"],
            "heaters": ["hotend"],
            "fans": ["part_fan", "hotend_fan"],
            "sensors": ["hotend_temp"],
        },
    },
}

# Pins scavenged from a board's sample config
PIN_KEYS = (
    "step_pin", "dir_pin", "enable_pin", "uart_pin", "cs_pin", "heater_pin",
    "sensor_pin", "pin", "control_pin", "diag_pin", "endstop_pin",
    "spi_software_sclk_pin", "spi_software_mosi_pin", "spi_software_miso_pin",
)
PIN_LINE_RE = re.compile(r"^#*\s*(" + "|".join(PIN_KEYS) + r"):\s*([^\s#]+)")
BOARD_SECTION_RE = re.compile(r"^#*\s*\[([^\]]+)\]")
MCU_NAME_RE = re.compile(r"\[mcu\s+(\w+)\]")

# Stepper slots on the secondary board, tried in order after the exact name
STEPPER_SLOT_PRIORITY = (
    "extruder", "extruder1", "stepper_z", "stepper_z1", "stepper_z2", "stepper_z3",
    "stepper_x", "stepper_y", "stepper_e", "stepper_e0", "stepper_e1",
)


def normalize_mcu_name(name: str) -> str:
    return re.sub(r"\s+", "_", (name or "").strip()).lower()


def extract_pins(content: str) -> Dict[str, str]:
    """Pin assignments of one section, commented or not, MCU prefix removed."""
    pins: Dict[str, str] = {}
    for line in split_lines(content):
        match = PIN_LINE_RE.match(line)
        if match:
            value = match.group(2)
            if ":" in value:
                bare = value.lstrip("!^~")
                value = value[: len(value) - len(bare)] + bare.split(":", 1)[1]
            pins[match.group(1)] = value
    return pins


@dataclass
class BoardSection:
    name: str
    content: str
    pins: Dict[str, str]


def parse_board_sections(config_text: str) -> Dict[str, BoardSection]:
    """Sections of a secondary board's sample config, keyed by lower-cased name."""
    sections: Dict[str, BoardSection] = {}
    if not config_text:
        return sections

    current_name = None
    current_lines: List[str] = []

    def _save():
        content = "\n".join(current_lines)
        sections[current_name.lower()] = BoardSection(current_name, content, extract_pins(content))

    for line in split_lines(config_text):
        match = BOARD_SECTION_RE.match(line)
        if match:
            if current_name:
                _save()
            current_name = match.group(1).strip()
            current_lines = [line]
        elif current_name:
            current_lines.append(line)

    if current_name:
        _save()
    return sections


@dataclass
class SecondaryMcu:
    """One secondary controller and the functions it takes over."""

    name: str
    display_name: str = ""
    type: str = "custom"
    connection_type: str = "usb"
    serial: str = DEFAULT_SERIAL
    canbus_uuid: Optional[str] = None
    description: str = ""
    config_file: Optional[str] = None
    config_data: Optional[str] = None
    enabled: bool = True
    preset_key: Optional[str] = None
    functions: Dict[str, List[str]] = field(default_factory=dict)

    def __post_init__(self):
        self.name = normalize_mcu_name(self.name) or "mcu2"
        if self.connection_type not in CONNECTION_TYPES:
            self.connection_type = "usb"

    @classmethod
    def from_preset(cls, preset_key: str, config_data: Optional[str] = None) -> "SecondaryMcu":
        preset = SECONDARY_MCU_PRESETS.get(preset_key)
        if preset is None:
            raise KeyError(f"Unknown MCU preset: {preset_key}")
        canbus = preset["connection_type"] == "canbus"
        return cls(
            name=preset["mcu_name"],
            display_name=preset["name"],
            type=preset["type"],
            connection_type=preset["connection_type"],
            serial="" if canbus else (HOST_SERIAL if preset["connection_type"] == "linux" else DEFAULT_SERIAL),
            canbus_uuid="" if canbus else None,
            description=preset["description"],
            config_file=preset.get("config_file"),
            config_data=config_data,
            preset_key=preset_key,
            functions=copy.deepcopy(preset["functions"]),
        )

    @classmethod
    def from_upload(cls, file_name: str, config_text: str) -> "SecondaryMcu":
        """Custom MCU from an uploaded board config; functions start empty."""
        match = MCU_NAME_RE.search(config_text)
        name = match.group(1) if match else "mcu2"

        if "canbus_uuid" in config_text:
            connection_type = "canbus"
        elif HOST_SERIAL in config_text:
            connection_type = "linux"
        else:
            connection_type = "usb"

        if "extruder" in config_text and ("heater_fan" in config_text or "fan_generic" in config_text):
            mcu_type = "toolhead"
        elif HOST_SERIAL in config_text:
            mcu_type = "host"
        elif "stepper_" in config_text:
            mcu_type = "expansion"
        else:
            mcu_type = "custom"

        return cls(
            name=name,
            display_name=file_name,
            type=mcu_type,
            connection_type=connection_type,
            serial="" if connection_type == "canbus" else DEFAULT_SERIAL,
            canbus_uuid="" if connection_type == "canbus" else None,
            description=f"Uploaded config: {file_name}",
            config_file=file_name,
            config_data=config_text,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecondaryMcu":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def set_connection_type(self, connection_type: str) -> None:
        self.connection_type = connection_type if connection_type in CONNECTION_TYPES else "usb"
        if self.connection_type == "canbus":
            self.canbus_uuid = ""
            self.serial = ""
        elif self.connection_type == "linux":
            self.serial = HOST_SERIAL
            self.canbus_uuid = None
        else:
            self.serial = DEFAULT_SERIAL
            self.canbus_uuid = None

    def set_function(self, category: str, option: str, enabled: bool) -> None:
        options = self.functions.setdefault(category, [])
        if enabled and option not in options:
            options.append(option)
        elif not enabled and option in options:
            options.remove(option)
        if not options:
            del self.functions[category]

    def uses(self, category: str, option: str) -> bool:
        return option in self.functions.get(category, [])

    @property
    def board_sections(self) -> Dict[str, BoardSection]:
        return parse_board_sections(self.config_data or "")


def handled_sections(mcus: List[SecondaryMcu]) -> Dict[str, str]:
    """
    Main-document section names taken over by enabled MCUs.

    Returns {lower-cased section name: mcu name}; the first MCU claiming a
    section owns it.
    """
    handled: Dict[str, str] = {}

    def _claim(section: str, mcu: SecondaryMcu) -> None:
        handled.setdefault(section, mcu.name)

    for mcu in mcus:
        if not mcu.enabled:
            continue
        for stepper in mcu.functions.get("steppers", []):
            _claim(stepper, mcu)
            for driver in TMC_DRIVERS:
                _claim(f"{driver} {stepper}", mcu)
        for heater in mcu.functions.get("heaters", []):
            if heater == "hotend":
                _claim("extruder", mcu)
                _claim("tmc2209 extruder", mcu)
                _claim("tmc2208 extruder", mcu)
            elif heater == "heater_bed":
                _claim("heater_bed", mcu)
        for fan in mcu.functions.get("fans", []):
            if fan == "part_fan":
                _claim("fan", mcu)
            elif fan == "hotend_fan":
                for name in ("heater_fan hotend_fan", "heater_fan my_nozzle_fan", "heater_fan extruder_fan"):
                    _claim(name, mcu)
        for probe in mcu.functions.get("probing", []):
            if probe in ("probe", "tap"):
                _claim("probe", mcu)
            elif probe == "bltouch":
                _claim("bltouch", mcu)
        for accel in mcu.functions.get("accelerometer", []):
            _claim(accel, mcu)
        for sensor in mcu.functions.get("filament", []):
            if sensor == "filament_switch":
                _claim("filament_switch_sensor", mcu)
            elif sensor == "filament_motion":
                _claim("filament_motion_sensor", mcu)
    return handled


_PREFIX_FAMILIES = ("heater_fan", "filament_switch_sensor", "filament_motion_sensor")


def handling_mcu(section_name: str, handled: Dict[str, str]) -> Optional[str]:
    """Name of the MCU that took over this section, or None."""
    name = section_name.lower()
    if name in handled:
        return handled[name]
    # Any heater_fan / filament sensor instance belongs to the MCU that took
    # over that family
    for family in _PREFIX_FAMILIES:
        if name.startswith(family):
            for claimed, mcu_name in handled.items():
                if claimed.startswith(family):
                    return mcu_name
    return None


class SlotAllocator:
    """Hands out stepper slots of one MCU's board config, each slot once per run."""

    def __init__(self, mcu: SecondaryMcu):
        self.sections = mcu.board_sections
        self.used: Set[str] = set()

    def allocate(self, requested: str) -> Optional[Dict[str, Any]]:
        exact = "stepper_" + requested.replace("stepper_", "")
        for slot in (exact,) + STEPPER_SLOT_PRIORITY:
            section = self.sections.get(slot)
            if section is None or slot in self.used or not section.pins.get("step_pin"):
                continue
            self.used.add(slot)
            suffix = slot.replace("stepper_", "")
            tmc_pins = next(
                (s.pins for key, s in self.sections.items() if key.startswith("tmc") and suffix in key),
                None,
            )
            return {"stepper_pins": section.pins, "tmc_pins": tmc_pins, "source_slot": slot}
        return None


class SecondaryMcuGenerator:
    """Renders the [mcu name] blocks and function sections of enabled MCUs."""

    def __init__(self, renderer: TemplateRenderer):
        self.renderer = renderer

    def _pin(self, mcu: SecondaryMcu, pin: Optional[str]) -> str:
        return f"{mcu.name}:{pin or 'CHANGE_ME'}"

    def _stepper_context(self, stepper: str, mcu: SecondaryMcu, allocator: SlotAllocator,
                         model: SectionModel, bed_z: float) -> Dict[str, Any]:
        rotation_distance, microsteps, run_current = "40", "16", "0.800"
        if stepper.startswith("stepper_z"):
            main_z = model.find("stepper_z")
            if main_z is not None:
                rotation_distance = (main_z.get("rotation_distance") or rotation_distance).split()[0]
                microsteps = (main_z.get("microsteps") or microsteps).split()[0]
            main_tmc = next((s for s in model if "tmc" in s.key and "stepper_z" in s.key), None)
            if main_tmc is not None:
                run_current = (main_tmc.get("run_current") or run_current).split()[0]

        is_extruder = stepper in ("extruder", "extruder1")
        if is_extruder:
            run_current = "0.650"

        slot = allocator.allocate(stepper)
        if slot:
            pins = slot["stepper_pins"]
            enable = pins.get("enable_pin") or "CHANGE_ME"
            # Pin modifiers go in front of the MCU prefix; enable is usually inverted
            pin = enable.lstrip("!^~")
            modifiers = enable[: len(enable) - len(pin)] or "!"
            enable_pin = f"{modifiers}{mcu.name}:{pin}"
            tmc_pins = slot["tmc_pins"] or {}
            step_pin = self._pin(mcu, pins.get("step_pin"))
            dir_pin = self._pin(mcu, pins.get("dir_pin"))
            uart_pin = self._pin(mcu, tmc_pins.get("uart_pin"))
        else:
            step_pin = dir_pin = uart_pin = self._pin(mcu, None)
            enable_pin = f"!{mcu.name}:CHANGE_ME"

        return {
            "section_name": stepper,
            "step_pin": step_pin,
            "dir_pin": dir_pin,
            "enable_pin": enable_pin,
            "uart_pin": uart_pin,
            "microsteps": microsteps,
            "rotation_distance": rotation_distance,
            "run_current": run_current,
            "is_extruder": is_extruder,
            "bed_z": bed_z,
            "source_slot": slot["source_slot"] if slot else None,
        }

    def _function_context(self, category: str, option: str, mcu: SecondaryMcu,
                          board: Dict[str, BoardSection]) -> Dict[str, Any]:
        def pins_of(section: str) -> Dict[str, str]:
            return board[section].pins if section in board else {}

        context: Dict[str, Any] = {}
        if category == "heaters":
            source = {"hotend": "extruder", "heater_bed": "heater_bed"}.get(option)
            pins = pins_of(source) if source else {}
            context["heater_pin"] = self._pin(mcu, pins.get("heater_pin"))
            context["sensor_pin"] = self._pin(mcu, pins.get("sensor_pin"))
        elif category == "fans":
            if option == "part_fan":
                pins = pins_of("fan")
            elif option == "hotend_fan":
                pins = pins_of("heater_fan hotend_fan")
            else:
                pins = pins_of("fan_generic")
            context["fan_pin"] = self._pin(mcu, pins.get("pin"))
        elif category == "probing":
            probe_pin = self._pin(mcu, pins_of("probe").get("pin"))
            control_pin = self._pin(mcu, None)
            bltouch = pins_of("bltouch")
            if bltouch.get("sensor_pin"):
                probe_pin = "^" + self._pin(mcu, bltouch["sensor_pin"].replace("^", ""))
            if bltouch.get("control_pin"):
                control_pin = self._pin(mcu, bltouch["control_pin"])
            context.update(probe_pin=probe_pin, control_pin=control_pin)
        elif category == "accelerometer":
            pins = pins_of("adxl345")
            context.update(
                cs_pin=self._pin(mcu, pins.get("cs_pin")),
                sclk_pin=self._pin(mcu, pins.get("spi_software_sclk_pin")),
                mosi_pin=self._pin(mcu, pins.get("spi_software_mosi_pin")),
                miso_pin=self._pin(mcu, pins.get("spi_software_miso_pin")),
            )
        return context

    def render_mcu(self, mcu: SecondaryMcu, model: SectionModel, bed_z: float = 250) -> str:
        base = {"mcu": mcu.to_dict()}
        parts = [self.renderer.render_section("secondary_mcu", "mcu", context=base), "\n"]

        board = mcu.board_sections
        allocator = SlotAllocator(mcu)
        for category, label in FUNCTION_CATEGORIES.items():
            options = mcu.functions.get(category) or []
            if not options:
                continue
            parts.append(self.renderer.render_section(
                "secondary_mcu", "category_banner", context=dict(base, label=label)))
            for option in options:
                if category == "steppers":
                    context = self._stepper_context(option, mcu, allocator, model, bed_z)
                    rendered = self.renderer.render_section(
                        "secondary_mcu", "steppers", "stepper", context=dict(base, **context))
                else:
                    context = self._function_context(category, option, mcu, board)
                    rendered = self.renderer.render_section(
                        "secondary_mcu", category, option, context=dict(base, **context))
                if rendered:
                    parts.append(rendered + "\n")
        return "".join(p for p in parts if p)

    def generate(self, mcus: List[SecondaryMcu], model: SectionModel, bed_z: float = 250) -> str:
        enabled = [m for m in mcus if m.enabled]
        if not enabled:
            return ""
        output = [self.renderer.render_section(
            "banner", context={"title": "SECONDARY MCU CONFIGS"}), "\n"]
        for mcu in enabled:
            output.append(self.render_mcu(mcu, model, bed_z))
            logger.info("Added secondary MCU '%s' (%s)", mcu.name, mcu.connection_type)
        return "".join(output)
