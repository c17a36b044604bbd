"""
Tests for projecting launch settings into d3dx.ini.
"""

import pytest

from errors import NotFoundError
from game_config import MigotoSettings
from ini_patcher import IniDocument
from migoto_ini import (
    ANALYSE_OPTIONS,
    ANALYSE_OPTIONS_SYMLINK,
    apply_launch_settings,
    is_migoto_installed,
    patch_d3dx_ini,
    set_symlink_dumping,
)

D3DX = """; 3DMigoto configuration
[Loader]
target = old.exe
launch = OldLauncher.exe
launch_args = -old
inject_dll = old.dll

[Logging]
show_warnings = 1

[Hunting]
hunting = 0
"""


@pytest.fixture
def migoto_dir(tmp_path):
    d = tmp_path / "GIMI"
    d.mkdir()
    (d / "d3dx.ini").write_text(D3DX, encoding="utf-8")
    return d


def test_patch_d3dx_ini(migoto_dir):
    settings = MigotoSettings(
        target_exe_path="D:/Game/Game.exe",
        launcher_exe_path="D:/Game/Launcher.exe",
        delay=100,
        auto_exit_seconds=5,
        auto_set_analyse_options=True,
    )

    path = patch_d3dx_ini(migoto_dir, settings)
    doc = IniDocument.load(path)

    assert doc.lines[0] == "; 3DMigoto configuration"
    assert doc.get("Loader", "target") == "D:/Game/Game.exe"
    assert doc.get("Loader", "launch") == "D:/Game/Launcher.exe"
    assert doc.get("Loader", "launch_args") is None
    assert doc.get("Loader", "inject_dll") is None
    assert doc.get("Loader", "delay") == "5"
    assert doc.get("Logging", "show_warnings") == "0"
    assert doc.get("System", "dll_initialization_delay") == "100"
    assert doc.get("Hunting", "hunting") == "2"
    assert doc.get("Hunting", "marking_actions") == "clipboard asm hlsl"
    assert doc.get("Hunting", "analyse_options") == ANALYSE_OPTIONS


def test_patch_is_idempotent(migoto_dir):
    settings = MigotoSettings(target_exe_path="D:/Game/Game.exe", extra_dll="D:/extra.dll")
    path = patch_d3dx_ini(migoto_dir, settings)
    first = path.read_bytes()
    patch_d3dx_ini(migoto_dir, settings)
    assert path.read_bytes() == first


def test_shell_launch_clears_loader_launch():
    doc = IniDocument.from_text(D3DX)
    apply_launch_settings(
        doc,
        MigotoSettings(use_shell=True, launcher_exe_path="ignored.exe", launch_args="-x"),
    )
    assert doc.get("Loader", "launch") is None
    assert doc.get("Loader", "launch_args") is None
    # no target configured: the existing one stays
    assert doc.get("Loader", "target") == "old.exe"


def test_optional_keys_left_alone_when_unset():
    doc = IniDocument.from_text(D3DX)
    apply_launch_settings(doc, MigotoSettings(show_error_popup=True))
    assert doc.get("Logging", "show_warnings") == "1"
    assert not doc.has_section("System")
    assert doc.get("Loader", "delay") is None
    assert doc.get("Hunting", "analyse_options") is None


def test_set_symlink_dumping(migoto_dir):
    set_symlink_dumping(migoto_dir, True)
    assert IniDocument.load(migoto_dir / "d3dx.ini").get("Hunting", "analyse_options") == ANALYSE_OPTIONS_SYMLINK
    set_symlink_dumping(migoto_dir, False)
    assert IniDocument.load(migoto_dir / "d3dx.ini").get("Hunting", "analyse_options") == ANALYSE_OPTIONS


def test_missing_d3dx_ini(tmp_path):
    with pytest.raises(NotFoundError):
        patch_d3dx_ini(tmp_path, MigotoSettings())


def test_is_migoto_installed(migoto_dir):
    assert not is_migoto_installed(migoto_dir)
    (migoto_dir / "d3d11.dll").write_bytes(b"MZ")
    assert is_migoto_installed(migoto_dir)
