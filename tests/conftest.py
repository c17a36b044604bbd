"""
Shared fixtures and helpers for the mod library test suite.
"""

import zipfile
from pathlib import Path

import py7zr
import pytest


def make_zip(path: Path, members: dict) -> Path:
    """Write ``members`` (name -> bytes/str, or None for a directory entry) to a zip."""
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            if data is None:
                zf.writestr(zipfile.ZipInfo(member.rstrip("/") + "/"), b"")
            else:
                zf.writestr(member, data)
    return path


def make_7z(path: Path, members: dict, work_dir: Path) -> Path:
    """Write ``members`` (name -> bytes/str) to a 7z via files staged in work_dir."""
    work_dir.mkdir(parents=True, exist_ok=True)
    with py7zr.SevenZipFile(path, "w") as sz:
        for member, data in members.items():
            src = work_dir / member
            src.parent.mkdir(parents=True, exist_ok=True)
            src.write_bytes(data.encode() if isinstance(data, str) else data)
            sz.write(src, arcname=member)
    return path


def make_mod(directory: Path, *, image: bool = False, ini: bool = False) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    if image:
        (directory / "preview.png").write_bytes(b"\x89PNG")
    if ini:
        (directory / "mod.ini").write_text("[TextureOverrideBody]\nhash = 1234\n", encoding="utf-8")
    return directory


@pytest.fixture
def mods_dir(tmp_path):
    """Return a fresh, empty mods root."""
    mods = tmp_path / "Mods"
    mods.mkdir()
    return mods


@pytest.fixture
def archives_dir(tmp_path):
    d = tmp_path / "archives"
    d.mkdir()
    return d
