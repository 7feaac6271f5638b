"""Board listing helpers and local document loading."""

import json
import urllib.error

import pytest

from cfgpatch.generator import sources
from cfgpatch.generator.sources import (
    BoardEntry,
    DocumentSourceError,
    GitHubConfigSource,
    board_display_name,
    check_config_name,
    filter_boards,
    load_file,
)


class FakeResponse:
    def __init__(self, data: bytes):
        self.data = data

    def read(self):
        return self.data

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_board_display_name():
    assert board_display_name("generic-bigtreetech-octopus.cfg") == "BIGTREETECH OCTOPUS"
    assert board_display_name("printer-voron-2.cfg") == "PRINTER VORON 2"


def test_filter_boards():
    boards = [
        BoardEntry("generic-bigtreetech-octopus.cfg", "BIGTREETECH OCTOPUS"),
        BoardEntry("generic-mks-robin.cfg", "MKS ROBIN"),
    ]
    assert filter_boards(boards, "") == boards
    assert filter_boards(boards, "Octo") == boards[:1]
    assert filter_boards(boards, "mks robin") == boards[1:]
    assert filter_boards(boards, "duet") == []


def test_check_config_name():
    check_config_name("printer.CFG")
    for name in ("", "printer.txt", "printer.cfg.bak"):
        with pytest.raises(DocumentSourceError):
            check_config_name(name)


def test_load_file(tmp_path):
    path = tmp_path / "printer.cfg"
    path.write_text("[printer]\nkinematics: corexy\n", encoding="utf-8")
    assert load_file(path) == "[printer]\nkinematics: corexy\n"

    with pytest.raises(DocumentSourceError):
        load_file(tmp_path / "missing.cfg")

    bad = tmp_path / "bad.cfg"
    bad.write_bytes(b"\xff\xfe\x00")
    with pytest.raises(DocumentSourceError, match="UTF-8"):
        load_file(bad)


def test_list_boards_keeps_cfg_files(monkeypatch):
    listing = [
        {"name": "generic-bigtreetech-octopus.cfg", "type": "file"},
        {"name": "README.md", "type": "file"},
    ]
    monkeypatch.setattr(sources.urllib.request, "urlopen",
                        lambda request, timeout: FakeResponse(json.dumps(listing).encode()))

    boards = GitHubConfigSource(owner="o", repo="r", folder="configs").list_boards()
    assert boards == [BoardEntry("generic-bigtreetech-octopus.cfg", "BIGTREETECH OCTOPUS")]


def test_fetch_errors_become_source_errors(monkeypatch):
    def fail(request, timeout):
        raise urllib.error.URLError("offline")

    monkeypatch.setattr(sources.urllib.request, "urlopen", fail)
    source = GitHubConfigSource(owner="o", repo="r", folder="configs", branch="main")

    with pytest.raises(DocumentSourceError, match="offline"):
        source.fetch("board.cfg")
    assert source.fetch_optional("board.cfg") is None
    assert source.fetch_optional(None) is None


def test_file_url_quotes_names():
    source = GitHubConfigSource(owner="o", repo="r", folder="/configs/", branch="dev")
    assert source.file_url("my board.cfg") == \
        "https://raw.githubusercontent.com/o/r/dev/configs/my%20board.cfg"
