"""Include extraction and the editable include list."""

from cfgpatch.generator.includes import IncludeFile, IncludeList, extract_includes

TEXT = """\
[include mainsail.cfg]
#[include timelapse.cfg]
# [include KAMP_Settings.cfg]
[printer]
kinematics: corexy
"""


def test_extract_includes():
    assert extract_includes(TEXT) == [
        IncludeFile("mainsail.cfg", True),
        IncludeFile("timelapse.cfg", False),
        IncludeFile("KAMP_Settings.cfg", False),
    ]
    assert extract_includes("[printer]\n") == []


def test_add_rejects_blank_and_duplicates():
    includes = IncludeList.from_text(TEXT)

    assert not includes.add("MAINSAIL.CFG")
    assert not includes.add("   ")
    assert includes.add("macros.cfg")
    assert len(includes) == 4
    assert includes[3].file_name == "macros.cfg"


def test_duplicates_in_document_collapse():
    includes = IncludeList.from_text("[include a.cfg]\n#[include A.cfg]\n")
    assert includes.to_list() == [{"file_name": "a.cfg", "enabled": True}]


def test_toggle_remove_and_set_all():
    includes = IncludeList.from_text(TEXT)

    assert includes.toggle(1) is True
    assert includes.enabled_count == 2
    removed = includes.remove(0)
    assert removed.file_name == "mainsail.cfg"

    includes.set_all(False)
    assert includes.enabled_count == 0
    includes.set_all(True)
    assert [inc.enabled for inc in includes] == [True, True]


def test_dict_round_trip():
    includes = IncludeList.from_text(TEXT)
    restored = IncludeList.from_dicts(includes.to_list())

    assert restored.to_list() == includes.to_list()
    assert restored.contains("kamp_settings.cfg")
