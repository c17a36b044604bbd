"""
Mod catalog: discovers mods and groups from the layout of the mods root.

    <mods_root>/<Group>/<[DISABLED_]ModName>/...
    <mods_root>/<[DISABLED_]ModName>/...          (ungrouped, group "Root")

A directory is a mod ("leaf") when it directly contains at least one
preview image or ``.ini`` file; anything else is a container that is
searched further, down to ``MAX_SCAN_DEPTH``.  Nothing is cached: the
filesystem is the store and every call rescans it.

Known ambiguity: a group folder holding a stray image or ``.ini`` is
classified as a mod.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from path_codec import decode

_log = logging.getLogger(__name__)

ROOT_GROUP = "Root"
MAX_SCAN_DEPTH = 2  # children of the mods root are depth 0

PREVIEW_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"}
CONFIG_EXTENSIONS = {".ini"}


@dataclass
class ModEntry:
    id: str  # path relative to the mods root, forward slashes
    name: str  # directory name without the disable marker
    enabled: bool
    path: str  # absolute
    relative_path: str
    group: str = ROOT_GROUP
    preview_images: list[str] = field(default_factory=list)
    is_dir: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "path": self.path,
            "relativePath": self.relative_path,
            "previewImages": list(self.preview_images),
            "group": self.group,
            "isDir": self.is_dir,
        }


@dataclass
class ScanResult:
    mods: list[ModEntry] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "mods": [m.to_dict() for m in self.mods],
            "groups": list(self.groups),
        }

    def find(self, mod_id: str) -> ModEntry | None:
        return next((m for m in self.mods if m.id == mod_id), None)

    def mods_in_group(self, group: str) -> list[ModEntry]:
        return [m for m in self.mods if m.group == group]


def _list_dir(path: Path) -> list[os.DirEntry]:
    with os.scandir(path) as it:
        return list(it)


def _is_file(entry: os.DirEntry) -> bool:
    try:
        return entry.is_file()
    except OSError:
        return False


def _is_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir()
    except OSError:
        return False


def _preview_images(children: list[os.DirEntry]) -> list[str]:
    """Absolute paths of the image files in a directory listing, sorted."""
    return sorted(
        c.path
        for c in children
        if _is_file(c) and os.path.splitext(c.name)[1].lower() in PREVIEW_IMAGE_EXTENSIONS
    )


def _has_config_file(children: list[os.DirEntry]) -> bool:
    return any(
        _is_file(c) and os.path.splitext(c.name)[1].lower() in CONFIG_EXTENSIONS
        for c in children
    )


class _CatalogVisitor:
    """Depth-limited walk that collects leaf mods and drops unreadable nodes.

    Each directory is listed once; the listing taken to classify a child
    is reused when the child turns out to be a container.
    """

    def __init__(self, mods_root: Path):
        self.mods_root = mods_root
        self.mods: list[ModEntry] = []
        self.skipped: list[Path] = []

    def _read(self, directory: Path) -> list[os.DirEntry] | None:
        try:
            return _list_dir(directory)
        except OSError as exc:
            _log.debug("Skipping unreadable directory %s: %s", directory, exc)
            self.skipped.append(directory)
            return None

    def visit(
        self,
        directory: Path,
        group: str,
        depth: int,
        children: list[os.DirEntry] | None = None,
    ):
        if depth > MAX_SCAN_DEPTH:
            return
        if children is None:
            children = self._read(directory)
            if children is None:
                return

        for child in children:
            if not _is_dir(child):
                continue
            self._visit_child(Path(child.path), child.name, group, depth)

    def _visit_child(self, path: Path, dir_name: str, group: str, depth: int):
        grandchildren = self._read(path)
        if grandchildren is None:
            return

        display_name, enabled = decode(dir_name)
        images = _preview_images(grandchildren)

        if images or _has_config_file(grandchildren):
            rel = path.relative_to(self.mods_root).as_posix()
            self.mods.append(
                ModEntry(
                    id=rel,
                    name=display_name,
                    enabled=enabled,
                    path=str(path),
                    relative_path=rel,
                    group=group,
                    preview_images=images,
                )
            )
            return

        # A container: at depth 0 it names the group for everything below
        next_group = display_name if depth == 0 else group
        self.visit(path, next_group, depth + 1, grandchildren)


def scan_mods(mods_root: str | Path) -> ScanResult:
    """Scan ``mods_root`` and return its mods and groups.

    Best effort: directories that cannot be read contribute nothing.
    ``mods`` is in traversal order; ``groups`` is sorted.
    """
    mods_root = Path(mods_root)
    if not mods_root.is_dir():
        _log.info("Mods directory does not exist: %s", mods_root)
        return ScanResult()

    visitor = _CatalogVisitor(mods_root)
    visitor.visit(mods_root, ROOT_GROUP, 0)

    root_mod_ids = {m.id for m in visitor.mods if m.group == ROOT_GROUP}
    groups: set[str] = set()
    try:
        for child in _list_dir(mods_root):
            if _is_dir(child) and child.name not in root_mod_ids:
                groups.add(child.name)
    except OSError as exc:
        _log.debug("Could not list %s for groups: %s", mods_root, exc)

    groups.update(m.group for m in visitor.mods if m.group != ROOT_GROUP)

    _log.debug(
        "Scanned %s: %d mod(s), %d group(s), %d unreadable",
        mods_root, len(visitor.mods), len(groups), len(visitor.skipped),
    )
    return ScanResult(mods=visitor.mods, groups=sorted(groups))
