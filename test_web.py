"""HTTP API."""

import pytest
from conftest import SAMPLE_CONFIG
from fastapi.testclient import TestClient

from cfgpatch.generator.sources import BoardEntry, DocumentSourceError
from cfgpatch.web.app import create_app
from cfgpatch.web.session import clear_documents, get_source


class FakeSource:
    def __init__(self, fail=False):
        self.fail = fail
        self.fetched = []

    def list_boards(self):
        if self.fail:
            raise DocumentSourceError("HTTP 503")
        return [
            BoardEntry("generic-bigtreetech-octopus.cfg", "BIGTREETECH OCTOPUS"),
            BoardEntry("generic-mks-robin.cfg", "MKS ROBIN"),
        ]

    def fetch(self, file_name):
        if self.fail:
            raise DocumentSourceError("HTTP 404")
        self.fetched.append(file_name)
        return SAMPLE_CONFIG

    def fetch_optional(self, file_name):
        return None


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def client(state_dir, source):
    clear_documents()
    app = create_app()
    app.dependency_overrides[get_source] = lambda: source
    yield TestClient(app)
    clear_documents()


@pytest.fixture
def loaded(client):
    response = client.post("/api/documents/upload", json={"file_name": "octopus.cfg", "text": SAMPLE_CONFIG})
    assert response.status_code == 200
    return response.json()


def test_root(client):
    assert client.get("/").json()["status"] == "ok"


def test_no_document_yet(client):
    assert client.get("/api/documents/current").status_code == 404
    assert client.get("/api/documents/generate").status_code == 404


def test_upload_requires_cfg(client):
    response = client.post("/api/documents/upload", json={"file_name": "notes.txt", "text": ""})
    assert response.status_code == 400


def test_upload_describes_document(loaded):
    names = [s["name"] for s in loaded["sections"]]

    assert loaded["file_name"] == "octopus.cfg"
    assert len(names) == 12
    assert names[-1] == "neopixel my_led"
    assert loaded["sections"][-1]["selected"] is False
    assert all(s["selected"] for s in loaded["sections"][:-1])
    assert loaded["has_save_config"] is True
    assert loaded["saved_values"] == 5
    assert loaded["defaults"]["kinematics"] == "cartesian"
    assert loaded["drivers"]["available"] == 3
    assert loaded["drivers"]["insufficient"] is True


def test_selection(client, loaded):
    assert client.put("/api/documents/selection", json={"indices": [0, 99]}).status_code == 400

    picked = client.put("/api/documents/selection", json={"indices": [1, 0]}).json()
    assert [s["index"] for s in picked["sections"] if s["selected"]] == [0, 1]

    reset = client.delete("/api/documents/selection").json()
    assert sum(s["selected"] for s in reset["sections"]) == 11


def test_board_listing_and_loading(client, source):
    boards = client.get("/api/boards", params={"query": "octo"}).json()
    assert boards == [{"file_name": "generic-bigtreetech-octopus.cfg", "display_name": "BIGTREETECH OCTOPUS"}]

    loaded = client.post("/api/documents/board/generic-bigtreetech-octopus.cfg").json()
    assert loaded["file_name"] == "generic-bigtreetech-octopus.cfg"
    assert source.fetched == ["generic-bigtreetech-octopus.cfg"]


def test_source_failures_are_bad_gateway(client, source):
    source.fail = True
    assert client.get("/api/boards").status_code == 502
    assert client.post("/api/documents/board/x.cfg").status_code == 502
    assert client.get("/api/documents/current").status_code == 404


def test_settings_without_document(client):
    settings = client.put("/api/settings", json={"values": {"printer.bed_x": 300}}).json()
    assert settings["bed_x"] == 300
    assert settings["kinematics"] == "cartesian"


def test_settings_use_document_defaults(client, loaded):
    settings = client.put("/api/settings", json={"values": {"z.motor_count": 2}}).json()
    assert settings["z_motor_count"] == 2
    assert settings["bed_y"] == 210


def test_includes(client, loaded):
    assert client.get("/api/includes").json() == []

    added = client.post("/api/includes", json={"file_name": "macros.cfg"}).json()
    assert added == [{"file_name": "macros.cfg", "enabled": True}]
    assert client.post("/api/includes", json={"file_name": "MACROS.cfg"}).status_code == 409

    toggled = client.post("/api/includes/0/toggle").json()
    assert toggled[0]["enabled"] is False
    assert client.put("/api/includes", json={"enabled": True}).json()[0]["enabled"] is True

    assert client.delete("/api/includes/5").status_code == 404
    assert client.delete("/api/includes/0").json() == []


def test_generate_and_download(client, loaded):
    client.post("/api/includes", json={"file_name": "macros.cfg"})

    generated = client.get("/api/documents/generate").json()
    assert "[include macros.cfg]" in generated["text"].split("\n")
    assert generated["drivers"]["required"] == 4
    assert generated["warnings"]

    download = client.get("/api/documents/download")
    assert download.headers["content-disposition"] == "attachment; filename=printer.cfg"
    assert download.text == generated["text"]


def test_secondary_mcus(client):
    assert "ebb36-v1.2" in client.get("/api/mcus/presets").json()["presets"]
    assert client.post("/api/mcus/preset/nope").status_code == 404

    mcus = client.post("/api/mcus/preset/ebb36-v1.2").json()
    assert mcus[0]["name"] == "ebbcan"
    assert mcus[0]["has_config"] is False
    assert "config_data" not in mcus[0]

    assert client.post("/api/mcus/upload", json={"file_name": "ebb.txt", "text": ""}).status_code == 400
    mcus = client.post("/api/mcus/upload", json={
        "file_name": "octopus.cfg", "text": "[stepper_z]\nstep_pin: PB13\n"}).json()
    assert mcus[1]["type"] == "expansion"
    assert mcus[1]["has_config"] is True

    updated = client.put("/api/mcus/1", json={"name": "Z Board", "enabled": False}).json()
    assert (updated[1]["name"], updated[1]["enabled"]) == ("z_board", False)
    assert client.put("/api/mcus/7", json={"enabled": True}).status_code == 404

    bad = client.put("/api/mcus/0/functions", json={"category": "fans", "option": "laser", "enabled": True})
    assert bad.status_code == 400
    fans = client.put("/api/mcus/0/functions", json={"category": "fans", "option": "exhaust_fan", "enabled": True})
    assert "exhaust_fan" in fans.json()[0]["functions"]["fans"]

    assert len(client.delete("/api/mcus/0").json()) == 1
    assert client.get("/api/mcus").json()[0]["name"] == "z_board"


def test_state_save_backup_and_restore(client, state_dir):
    assert client.get("/api/state").json()["metadata"]["source"] == "new"

    client.post("/api/state", json={"state": {"printer.bed_x": 300}})
    client.post("/api/state", json={"state": {"printer.bed_x": 250}})
    assert client.get("/api/state").json()["state"] == {"printer.bed_x": 250}

    backups = client.get("/api/state/backups").json()["backups"]
    assert len(backups) == 1

    restored = client.post(f"/api/state/restore/{backups[0]['filename']}")
    assert restored.status_code == 200
    assert client.get("/api/state").json()["state"] == {"printer.bed_x": 300}

    assert client.post("/api/state/restore/.cfgpatch_state.json").status_code == 404

    cleared = client.delete("/api/state").json()
    assert "State cleared" in cleared["message"]
    assert client.get("/api/state").json()["state"] == {}


def test_invalid_state_file(client, state_dir):
    (state_dir / ".cfgpatch_state.json").write_text("not json")
    assert client.get("/api/state").status_code == 500
