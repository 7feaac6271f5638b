"""Command line entry point."""

import argparse
import json

import pytest
from conftest import SAMPLE_CONFIG

from cfgpatch.generator.sources import BoardEntry
from cfgpatch.tools import generate_from_file
from cfgpatch.tools.generate_from_file import main, parse_override


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "octopus.cfg"
    path.write_text(SAMPLE_CONFIG)
    return path


def test_parse_override():
    assert parse_override("printer.bed_x=300") == ("printer.bed_x", 300)
    assert parse_override("homing.sensorless_xy=true") == ("homing.sensorless_xy", True)
    assert parse_override("printer.kinematics=corexy") == ("printer.kinematics", "corexy")
    for bad in ("printer.bed_x", "nope=1"):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_override(bad)


def test_stdout(config_file, state_dir, capsys):
    assert main([str(config_file), "--stdout", "--set", "printer.bed_x=300"]) == 0
    out, err = capsys.readouterr()

    assert "# Source: octopus.cfg" in out
    assert "position_max: 300" in out.split("[stepper_y]")[0]
    assert "Board has 3 drivers" in err


def test_writes_file_and_saves_overrides(config_file, state_dir, capsys):
    out_path = state_dir / "out" / "printer.cfg"
    code = main([str(config_file), "--state-dir", str(state_dir), "--out", str(out_path),
                 "--set", "z.motor_count=2", "--save-state"])

    assert code == 0
    assert capsys.readouterr().out.strip() == f"WROTE {out_path}"
    assert "[stepper_z1]" in out_path.read_text()

    saved = json.loads((state_dir / ".cfgpatch_state.json").read_text())
    assert saved["config"]["z"]["motor_count"] == 2
    assert saved["config"]["session"]["file_name"] == "octopus.cfg"


def test_preview(config_file, state_dir, capsys):
    assert main([str(config_file), "--preview"]) == 0
    assert "CONFIGURATION PREVIEW" in capsys.readouterr().out
    assert not (state_dir / "printer.cfg").exists()


def test_missing_file(tmp_path, state_dir, capsys):
    assert main([str(tmp_path / "missing.cfg")]) == 2
    assert capsys.readouterr().err.startswith("ERROR:")


def test_list_boards(monkeypatch, capsys):
    class Source:
        def list_boards(self):
            return [BoardEntry("generic-mks-robin.cfg", "MKS ROBIN"),
                    BoardEntry("generic-bigtreetech-octopus.cfg", "BIGTREETECH OCTOPUS")]

    monkeypatch.setattr(generate_from_file, "GitHubConfigSource", Source)

    assert main(["--list-boards", "robin"]) == 0
    out = capsys.readouterr().out.strip().split("\n")
    assert len(out) == 1
    assert out[0].startswith("generic-mks-robin.cfg")
