"""Sensorless homing transitions."""

import pytest
from conftest import patch, section_text

from cfgpatch.generator.sensorless import (
    PHYSICAL_DISABLED_TAG,
    VIRTUAL_DISABLED_TAG,
    EndstopState,
    plan_sensorless,
    scan_endstop_lines,
    virtual_endstop_line,
)

PHYSICAL_XY = """\
[stepper_x]
endstop_pin: PG6
position_endstop: 0
position_max: 200
homing_retract_dist: 5

[tmc2209 stepper_x]
uart_pin: PC4
#diag_pin: PG6
#driver_SGTHRS: 100

[stepper_y]
endstop_pin: ^PG9
position_endstop: 0
position_max: 200
homing_retract_dist: 5

[tmc5160 stepper_y]
cs_pin: PC5
"""

VIRTUAL_X = """\
[stepper_x]
#endstop_pin: PG6
endstop_pin: tmc2209_stepper_x:virtual_endstop
position_endstop: 0
position_max: 200
homing_retract_dist: 0
"""

ON = {"homing.sensorless_xy": True}
OFF = {"homing.sensorless_xy": False}


@pytest.mark.parametrize("driver, stepper, expected", [
    ("tmc2209", "stepper_x", "endstop_pin: tmc2209_stepper_x:virtual_endstop"),
    ("tmc2209", "stepper_y", "endstop_pin: tmc2209_stepper_y:virtual_endstop"),
    ("TMC5160", "stepper_y", "endstop_pin: tmc5160_stepper_y:virtual_endstop"),
    ("tmc2130", "stepper_x1", "endstop_pin: tmc2130_stepper_x1:virtual_endstop"),
])
def test_virtual_endstop_name_per_axis(driver, stepper, expected):
    assert virtual_endstop_line(driver, stepper) == expected


def test_states():
    assert scan_endstop_lines(PHYSICAL_XY.split("\n")[:5]).state is EndstopState.PHYSICAL_ACTIVE
    assert scan_endstop_lines(VIRTUAL_X.split("\n")).state is EndstopState.VIRTUAL_ACTIVE
    paired = ["[stepper_x]", "#endstop_pin: PG6" + PHYSICAL_DISABLED_TAG,
              "endstop_pin: tmc2209_stepper_x:virtual_endstop"]
    assert scan_endstop_lines(paired).state is EndstopState.PHYSICAL_DISABLED_PAIRED
    assert scan_endstop_lines(["[stepper_x]", "endstop_pin: probe:z_virtual_endstop"]).state is EndstopState.NONE


def test_enable_inserts_one_line_per_axis():
    out = patch(PHYSICAL_XY, ON)

    assert len(out.split("\n")) == len(PHYSICAL_XY.split("\n")) + 2
    assert section_text(out, "stepper_x").split("\n") == [
        "[stepper_x]",
        "#endstop_pin: PG6" + PHYSICAL_DISABLED_TAG,
        "endstop_pin: tmc2209_stepper_x:virtual_endstop",
        "position_endstop: 0",
        "position_max: 200",
        "homing_retract_dist: 0",
    ]
    assert "endstop_pin: tmc5160_stepper_y:virtual_endstop" in section_text(out, "stepper_y")


def test_enable_uncomments_driver_companions():
    tmc = section_text(patch(PHYSICAL_XY, ON), "tmc2209 stepper_x").split("\n")

    assert "diag_pin: PG6" in tmc
    assert "driver_SGTHRS: 100" in tmc


def test_enable_then_disable_restores_stepper_sections():
    enabled = patch(PHYSICAL_XY, ON)
    disabled = patch(enabled, OFF)

    for name in ("stepper_x", "stepper_y"):
        assert section_text(disabled, name) == section_text(PHYSICAL_XY, name)
    assert len(disabled.split("\n")) == len(PHYSICAL_XY.split("\n"))


def test_disable_comments_driver_companions():
    tmc = section_text(patch(patch(PHYSICAL_XY, ON), OFF), "tmc2209 stepper_x").split("\n")
    assert "#diag_pin: PG6  # (sensorless homing disabled)" in tmc


def test_enable_is_stable():
    enabled = patch(PHYSICAL_XY, ON)
    assert patch(enabled, ON) == enabled


def test_disable_untagged_virtual_endstop():
    out = section_text(patch(VIRTUAL_X, OFF), "stepper_x").split("\n")

    assert out == [
        "[stepper_x]",
        "endstop_pin: PG6",
        "#endstop_pin: tmc2209_stepper_x:virtual_endstop" + VIRTUAL_DISABLED_TAG,
        "position_endstop: 0",
        "position_max: 200",
        "homing_retract_dist: 5",
    ]


def test_plan_without_endstop_lines_is_empty():
    assert plan_sensorless(["[stepper_x]", "position_max: 200"], "stepper_x", enable=True) == {}
    assert plan_sensorless(["[stepper_x]", "position_max: 200"], "stepper_x", enable=False) == {}


def test_plan_keeps_indentation():
    plan = plan_sensorless(["[stepper_x]", "  endstop_pin: PG6"], "stepper_x", enable=True, driver="tmc2209")
    assert plan == {1: [
        "#  endstop_pin: PG6" + PHYSICAL_DISABLED_TAG,
        "  endstop_pin: tmc2209_stepper_x:virtual_endstop",
    ]}


def test_reselected_stepper_keeps_one_live_endstop():
    enabled = patch(PHYSICAL_XY, ON)
    unselected = patch(enabled, ON, selection=[1, 2, 3])
    assert "#[stepper_x]" in unselected.split("\n")

    reselected = patch(unselected, ON, selection=[0, 1, 2, 3])

    assert section_text(reselected, "stepper_x") == section_text(enabled, "stepper_x")
    assert reselected == enabled


def test_live_tagged_pin_next_to_virtual_is_paired():
    lines = ["[stepper_x]", "endstop_pin: PG6" + PHYSICAL_DISABLED_TAG,
             "endstop_pin: tmc2209_stepper_x:virtual_endstop"]

    assert scan_endstop_lines(lines).state is EndstopState.PHYSICAL_DISABLED_PAIRED
    assert plan_sensorless(lines, "stepper_x", enable=True) == {1: ["#endstop_pin: PG6" + PHYSICAL_DISABLED_TAG]}
    assert plan_sensorless(lines, "stepper_x", enable=False) == {1: ["endstop_pin: PG6"], 2: []}


def test_enable_comments_live_physical_next_to_virtual():
    lines = ["[stepper_x]", "endstop_pin: tmc2209_stepper_x:virtual_endstop", "endstop_pin: PG6"]
    assert plan_sensorless(lines, "stepper_x", enable=True) == {2: ["#endstop_pin: PG6" + PHYSICAL_DISABLED_TAG]}


def test_crlf_document_keeps_its_line_endings():
    crlf = PHYSICAL_XY.replace("\n", "\r\n")
    out = patch(crlf, ON).split("\n")

    assert out[-1] == ""
    assert all(line.endswith("\r") for line in out[:-1])
    assert "#endstop_pin: PG6" + PHYSICAL_DISABLED_TAG + "\r" in out
    assert "endstop_pin: tmc2209_stepper_x:virtual_endstop\r" in out
    disabled = patch(patch(crlf, ON), OFF)
    assert section_text(disabled, "stepper_x") == section_text(crlf, "stepper_x")


def test_plan_carries_carriage_return():
    plan = plan_sensorless(["[stepper_x]\r", "endstop_pin: PG6\r"], "stepper_x", enable=True)
    assert plan == {1: [
        "#endstop_pin: PG6" + PHYSICAL_DISABLED_TAG + "\r",
        "endstop_pin: tmc2209_stepper_x:virtual_endstop\r",
    ]}
