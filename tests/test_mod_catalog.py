"""
Tests for scan_mods: leaf classification, grouping and the depth limit.
"""

from collections import Counter
from pathlib import Path

import mod_catalog
from mod_catalog import ROOT_GROUP, scan_mods
from tests.conftest import make_mod


def test_group_with_leaf_and_empty_subfolder(mods_dir):
    make_mod(mods_dir / "Ayaka" / "Skin1", image=True)
    (mods_dir / "Ayaka" / "Skin2").mkdir()

    result = scan_mods(mods_dir)

    assert [m.id for m in result.mods] == ["Ayaka/Skin1"]
    skin1 = result.mods[0]
    assert skin1.name == "Skin1"
    assert skin1.group == "Ayaka"
    assert skin1.enabled is True
    assert skin1.relative_path == "Ayaka/Skin1"
    assert skin1.path == str(mods_dir / "Ayaka" / "Skin1")
    assert result.groups == ["Ayaka"]


def test_disabled_mod_in_group(mods_dir):
    make_mod(mods_dir / "Raiden" / "DISABLED_Kimono", ini=True)

    mod = scan_mods(mods_dir).find("Raiden/DISABLED_Kimono")

    assert mod is not None
    assert mod.name == "Kimono"
    assert mod.enabled is False
    assert mod.group == "Raiden"


def test_root_level_mods_are_not_groups(mods_dir):
    make_mod(mods_dir / "Solo", ini=True)
    make_mod(mods_dir / "DISABLED_Other", image=True)
    (mods_dir / "EmptyGroup").mkdir()

    result = scan_mods(mods_dir)

    assert {m.id for m in result.mods_in_group(ROOT_GROUP)} == {"Solo", "DISABLED_Other"}
    assert result.groups == ["EmptyGroup"]


def test_nested_containers_report_top_level_group(mods_dir):
    make_mod(mods_dir / "Characters" / "Ayaka" / "Skin", ini=True)

    result = scan_mods(mods_dir)

    assert [(m.id, m.group) for m in result.mods] == [("Characters/Ayaka/Skin", "Characters")]
    assert result.groups == ["Characters"]


def test_depth_limit(mods_dir):
    make_mod(mods_dir / "A" / "B" / "C", ini=True)
    make_mod(mods_dir / "X" / "Y" / "Z" / "TooDeep", ini=True)

    ids = [m.id for m in scan_mods(mods_dir).mods]

    assert ids == ["A/B/C"]


def test_leaf_detection_is_case_insensitive(mods_dir):
    leaf = mods_dir / "Group" / "Loud"
    leaf.mkdir(parents=True)
    (leaf / "PREVIEW.PNG").write_bytes(b"png")
    (leaf / "notes.txt").write_text("x", encoding="utf-8")
    other = mods_dir / "Group" / "Quiet"
    other.mkdir()
    (other / "Merged.INI").write_text("[A]\n", encoding="utf-8")

    result = scan_mods(mods_dir)

    assert sorted(m.id for m in result.mods) == ["Group/Loud", "Group/Quiet"]
    loud = result.find("Group/Loud")
    assert loud.preview_images == [str(leaf / "PREVIEW.PNG")]
    assert result.find("Group/Quiet").preview_images == []


def test_preview_images_sorted(mods_dir):
    leaf = mods_dir / "Group" / "Mod"
    leaf.mkdir(parents=True)
    for name in ("b.jpg", "a.webp", "c.txt"):
        (leaf / name).write_bytes(b"x")

    mod = scan_mods(mods_dir).find("Group/Mod")

    assert mod.preview_images == [str(leaf / "a.webp"), str(leaf / "b.jpg")]


def test_files_at_root_are_ignored(mods_dir):
    (mods_dir / "stray.ini").write_text("[A]\n", encoding="utf-8")
    (mods_dir / "cover.png").write_bytes(b"png")

    result = scan_mods(mods_dir)

    assert result.mods == []
    assert result.groups == []


def test_missing_root_scans_empty(tmp_path):
    result = scan_mods(tmp_path / "nope")
    assert result.mods == []
    assert result.groups == []


def test_to_dict_uses_camel_case(mods_dir):
    make_mod(mods_dir / "Ayaka" / "Skin1", image=True)

    data = scan_mods(mods_dir).to_dict()

    assert data["groups"] == ["Ayaka"]
    mod = data["mods"][0]
    assert mod["relativePath"] == "Ayaka/Skin1"
    assert mod["isDir"] is True
    assert mod["previewImages"] == [str(mods_dir / "Ayaka" / "Skin1" / "preview.png")]
    assert mod["group"] == "Ayaka"


# ── unreadable directories ───────────────────────────────────────────────────

def deny_listing(monkeypatch, *denied: Path):
    real_list_dir = mod_catalog._list_dir

    def list_dir(path):
        if Path(path) in denied:
            raise PermissionError(13, "Permission denied", str(path))
        return real_list_dir(path)

    monkeypatch.setattr(mod_catalog, "_list_dir", list_dir)


def test_unreadable_group_keeps_siblings(mods_dir, monkeypatch):
    make_mod(mods_dir / "Ayaka" / "Skin1", image=True)
    make_mod(mods_dir / "Locked" / "Skin", ini=True)
    make_mod(mods_dir / "Solo", ini=True)
    deny_listing(monkeypatch, mods_dir / "Locked")

    result = scan_mods(mods_dir)

    assert {m.id for m in result.mods} == {"Ayaka/Skin1", "Solo"}
    assert result.groups == ["Ayaka", "Locked"]


def test_unreadable_mod_inside_group_is_dropped(mods_dir, monkeypatch):
    make_mod(mods_dir / "Ayaka" / "Skin1", image=True)
    make_mod(mods_dir / "Ayaka" / "Skin2", image=True)
    deny_listing(monkeypatch, mods_dir / "Ayaka" / "Skin2")

    result = scan_mods(mods_dir)

    assert [m.id for m in result.mods] == ["Ayaka/Skin1"]
    assert result.groups == ["Ayaka"]


def test_each_directory_listed_once(mods_dir, monkeypatch):
    make_mod(mods_dir / "Ayaka" / "Skin1", image=True)
    make_mod(mods_dir / "Ayaka" / "Nested" / "Skin2", ini=True)
    make_mod(mods_dir / "Solo", ini=True)
    calls = Counter()
    real_list_dir = mod_catalog._list_dir

    def counting_list_dir(path):
        calls[Path(path)] += 1
        return real_list_dir(path)

    monkeypatch.setattr(mod_catalog, "_list_dir", counting_list_dir)

    result = scan_mods(mods_dir)

    assert {m.id for m in result.mods} == {"Ayaka/Skin1", "Ayaka/Nested/Skin2", "Solo"}
    # The mods root is listed a second time to collect group names
    assert calls.pop(mods_dir) == 2
    assert set(calls.values()) == {1}
