"""Shared fixtures and helpers for the cfgpatch tests."""

from typing import Any, Dict, Iterable, Optional

import pytest

from cfgpatch.generator.defaults import extract_default_values
from cfgpatch.generator.engine import patch_document
from cfgpatch.generator.save_config import extract_save_config, parse_saved_values
from cfgpatch.generator.sections import parse_config_sections
from cfgpatch.generator.templates import TemplateRenderer
from cfgpatch.wizard.settings import build_settings

SAMPLE_CONFIG = """\
# Sample printer config
[mcu]
serial: /dev/serial/by-id/usb-Klipper_stm32f446xx_12345-if00

[printer]
kinematics: cartesian
max_velocity: 300
max_accel: 3000

[stepper_x]
step_pin: PF13
dir_pin: PF12
enable_pin: !PF14
microsteps: 16
rotation_distance: 40
endstop_pin: PG6
position_endstop: 0
position_max: 200
homing_speed: 50
homing_retract_dist: 5

[tmc2209 stepper_x]
uart_pin: PC4
run_current: 0.800
#diag_pin: PG6

[stepper_y]
step_pin: PG0
dir_pin: PG1
enable_pin: !PF15
microsteps: 16
rotation_distance: 40
endstop_pin: PG9
position_endstop: 210
position_max: 210
homing_speed: 50
homing_retract_dist: 5

[tmc2209 stepper_y]
uart_pin: PD11
run_current: 0.800

[stepper_z]
step_pin: PF11
dir_pin: PG3
enable_pin: !PG5
microsteps: 16
rotation_distance: 8
endstop_pin: probe:z_virtual_endstop
position_max: 250
position_min: -5

[tmc2209 stepper_z]
uart_pin: PC6
run_current: 0.650

[extruder]
step_pin: PF9
dir_pin: PF10
enable_pin: !PG2
microsteps: 16
rotation_distance: 33.5
nozzle_diameter: 0.400
filament_diameter: 1.750
heater_pin: PA2
sensor_type: EPCOS 100K B57560G104F
sensor_pin: PF4
control: pid
pid_Kp: 22.2
pid_Ki: 1.08
pid_Kd: 114
min_temp: 0
max_temp: 250

[heater_bed]
heater_pin: PA1
sensor_type: Generic 3950
sensor_pin: PF3
min_temp: 0
max_temp: 130

[probe]
pin: PB7
x_offset: -40
y_offset: -10

#[neopixel my_led]
#pin: PB0
#chain_count: 1

#*# <---------------------- SAVE_CONFIG ---------------------->
#*# DO NOT EDIT THIS BLOCK OR BELOW. The contents are auto-generated.
#*#
#*# [extruder]
#*# control = pid
#*# pid_kp = 26.213
#*# pid_ki = 1.304
#*# pid_kd = 131.721
#*#
#*# [probe]
#*# z_offset = 1.725
"""


def patch(text: str, form: Optional[Dict[str, Any]] = None,
          selection: Optional[Iterable[int]] = None, **options) -> str:
    """Patch ``text`` with settings from its own defaults plus ``form``."""
    model = parse_config_sections(text)
    saved = parse_saved_values(extract_save_config(text))
    settings = build_settings(form or {}, extract_default_values(model).to_form())
    if selection is None:
        selection = model.enabled_indices()
    return patch_document(text, model, saved, settings, selection, **options)


def section_text(text: str, name: str) -> str:
    section = parse_config_sections(text).find(name)
    assert section is not None, f"[{name}] not found"
    return section.content


@pytest.fixture
def sample_config() -> str:
    return SAMPLE_CONFIG


@pytest.fixture(scope="session")
def renderer() -> TemplateRenderer:
    return TemplateRenderer()


@pytest.fixture
def state_dir(tmp_path, monkeypatch):
    """Isolated state directory, also used as the default."""
    monkeypatch.setenv("CFGPATCH_STATE_DIR", str(tmp_path))
    return tmp_path
