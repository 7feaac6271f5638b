"""Persisted session state."""

import json

from cfgpatch.wizard.state import WizardState, get_default_state_dir


def test_default_dir_from_environment(state_dir):
    assert get_default_state_dir() == state_dir
    assert WizardState().state_file == state_dir / WizardState.STATE_FILENAME


def test_dot_notation(state_dir):
    state = WizardState(state_dir)
    state.set("printer.bed_x", 300)
    state.set("printer.bed_y", 310)

    assert state.get("printer") == {"bed_x": 300, "bed_y": 310}
    assert state.get("printer.bed_z") is None
    assert state.get("printer.bed_x.deeper", "fallback") == "fallback"

    # A scalar in the way is replaced by a table
    state.set("printer.bed_x.deeper", 1)
    assert state.get("printer.bed_x") == {"deeper": 1}

    assert state.delete("printer.bed_y")
    assert not state.delete("printer.bed_y")
    assert not state.delete("nothing.here")


def test_save_and_reload(state_dir):
    state = WizardState(state_dir)
    state.set("printer.kinematics", "corexy")
    state.save()

    data = json.loads(state.state_file.read_text())
    assert data["config"] == {"printer": {"kinematics": "corexy"}}
    assert data["wizard"]["version"] == WizardState.VERSION

    assert WizardState(state_dir).get("printer.kinematics") == "corexy"


def test_unreadable_file_starts_empty(state_dir):
    (state_dir / WizardState.STATE_FILENAME).write_text("{ not json")
    assert WizardState(state_dir).get_all() == {}

    (state_dir / WizardState.STATE_FILENAME).write_text("[1, 2]")
    assert WizardState(state_dir).get_all() == {}


def test_form_values_only_known_fields(state_dir):
    state = WizardState(state_dir)
    state.update_form({"printer.bed_x": 250, "not.a_field": 1})

    assert state.form_values() == {"printer.bed_x": 250}
    assert state.get("not.a_field") is None


def test_selection_and_document_switch(state_dir):
    state = WizardState(state_dir)
    assert state.get_selection() is None

    state.set_selection([4, 1, 4, 0])
    state.set_includes([{"file_name": "macros.cfg", "enabled": True}])
    state.set_secondary_mcus([{"name": "ebbcan"}, "junk"])
    assert state.get_selection() == [0, 1, 4]
    assert state.get_secondary_mcus() == [{"name": "ebbcan"}]

    state.start_document("octopus.cfg")
    assert state.get_selection() is None
    assert state.get_includes() is None
    assert state.get("session.file_name") == "octopus.cfg"
    assert state.get_secondary_mcus() == [{"name": "ebbcan"}]


def test_clear_keeps_metadata(state_dir):
    state = WizardState(state_dir)
    created = state.get_metadata()["created"]
    state.set("printer.bed_x", 200)
    state.clear()

    assert state.get_all() == {}
    assert state.get_metadata()["created"] == created


def test_export_for_generator(state_dir):
    state = WizardState(state_dir)
    state.update_form({"printer.kinematics": "corexy"})
    exported = state.export_for_generator()

    assert exported["form"] == {"printer.kinematics": "corexy"}
    assert exported["selection"] is None
    assert exported["secondary_mcus"] == []
