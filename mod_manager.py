"""
3DMigoto Mod Library - Core Logic

Handles catalog scanning, enable/disable, grouping, and archive installs.
All state lives in the directory tree under the mods root:

    Mods/
    ├── Ayaka/                    <- group
    │   ├── Skin1/                <- enabled mod
    │   └── DISABLED_Skin2/       <- disabled mod
    └── Default/                  <- fallback group for "no group"

Every operation re-reads the tree; nothing is cached between calls.
Operations on the same mod or group must be serialized by the caller.
"""

from __future__ import annotations

import logging
import os
import shutil
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from send2trash import send2trash

from archive_reader import SUPPORTED_EXTENSIONS, open_archive
from errors import (
    AlreadyExistsError,
    ModIOError,
    NotFoundError,
    SecurityError,
    UnsupportedFormatError,
)
from game_config import game_config_path, load_game_config, resolve_mods_dir
from mod_catalog import ROOT_GROUP, ScanResult, scan_mods
from mod_watcher import ModWatcher
from path_codec import encode
from smart_extract import ArchivePreview, check_entries, extract_archive, preview_archive

_log = logging.getLogger(__name__)

DEFAULT_GROUP = "Default"


class ModManager:
    """
    Main mod library controller.

    Workflow:
        1. scan() to build the catalog for display
        2. install_archive() to add a mod from a .zip/.7z/.rar
        3. toggle_mod() / move_mod() / *_group() to reorganize
        4. scan() again (or start_watch() and rescan on change)
    """

    def __init__(
        self,
        mods_dir: str | Path,
        log_callback: Optional[Callable[[str], None]] = None,
        max_workers: int = 1,
    ):
        self.mods_dir = Path(mods_dir)
        self._log_cb = log_callback or _log.info
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="modlib"
        )
        self._watcher: ModWatcher | None = None

    @classmethod
    def for_game(
        cls,
        games_dir: str | Path,
        game_name: str,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> ModManager:
        """Build a manager for the Mods folder configured in the game's Config.json."""
        config = load_game_config(game_config_path(games_dir, game_name))
        mods_dir = resolve_mods_dir(config)
        try:
            mods_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ModIOError(f"Failed to create Mods directory at {mods_dir}: {exc}") from exc
        return cls(mods_dir, log_callback=log_callback)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.stop_watch()
        self._executor.shutdown(wait=True)

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    # ── Path helpers ──────────────────────────────────────────────────

    def _resolve(self, relative: str) -> Path:
        """Join a user-supplied id/name onto the mods root, refusing escapes."""
        parts = [p for p in relative.replace("\\", "/").split("/") if p]
        if not parts or any(p in (".", "..") for p in parts) or ":" in parts[0]:
            raise SecurityError(f"Invalid path inside the mods directory: {relative!r}")
        return self.mods_dir.joinpath(*parts)

    def _relative_id(self, path: Path) -> str:
        return path.relative_to(self.mods_dir).as_posix()

    @staticmethod
    def _group_or_default(group: str | None) -> str:
        if not group or group == ROOT_GROUP:
            return DEFAULT_GROUP
        return group

    @staticmethod
    def _rename(src: Path, dst: Path, what: str):
        try:
            os.rename(src, dst)
        except OSError as exc:
            raise ModIOError(f"Failed to rename {what}: {exc}") from exc

    # ── Catalog ───────────────────────────────────────────────────────

    def scan(self) -> ScanResult:
        result = scan_mods(self.mods_dir)
        self.log(f"Scan complete: {len(result.mods)} mod(s) in {len(result.groups)} group(s)")
        return result

    # ── Enable / Disable ──────────────────────────────────────────────

    def toggle_mod(self, mod_id: str, enable: bool) -> str:
        """Enable or disable a mod by renaming its folder. Returns the new id."""
        current = self._resolve(mod_id)
        if not current.exists():
            raise NotFoundError(f"Mod directory not found: {mod_id}")

        new_name = encode(current.name, enable)
        if new_name == current.name:
            return self._relative_id(current)

        target = current.with_name(new_name)
        if target.exists():
            raise AlreadyExistsError(
                f"Cannot {'enable' if enable else 'disable'} {mod_id}: {new_name} already exists"
            )
        self._rename(current, target, "mod folder")
        self.log(f"{'Enabled' if enable else 'Disabled'} {self._relative_id(target)}")
        return self._relative_id(target)

    # ── Groups ────────────────────────────────────────────────────────

    def create_group(self, name: str) -> Path:
        group_dir = self._resolve(name)
        if group_dir.exists():
            raise AlreadyExistsError(f"Group already exists: {name}")
        try:
            group_dir.mkdir(parents=True)
        except OSError as exc:
            raise ModIOError(f"Failed to create group {name}: {exc}") from exc
        self.log(f"Created group {name}")
        return group_dir

    def rename_group(self, old: str, new: str) -> Path:
        old_dir = self._resolve(old)
        new_dir = self._resolve(new)
        if not old_dir.exists():
            raise NotFoundError(f"Group does not exist: {old}")
        if new_dir.exists():
            raise AlreadyExistsError(f"Group name already taken: {new}")
        self._rename(old_dir, new_dir, "group")
        self.log(f"Renamed group {old} -> {new}")
        return new_dir

    def delete_group(self, name: str, use_trash: bool = True):
        """Delete a group and every mod in it, via the recycle bin when possible."""
        group_dir = self._resolve(name)
        if not group_dir.exists():
            raise NotFoundError(f"Group does not exist: {name}")

        if use_trash:
            try:
                send2trash(str(group_dir))
                self.log(f"Moved group {name} to the recycle bin")
                return
            except Exception as exc:
                _log.warning("Recycle bin unavailable for %s (%s), deleting permanently", group_dir, exc)

        try:
            shutil.rmtree(group_dir)
        except OSError as exc:
            raise ModIOError(f"Failed to delete group {name}: {exc}") from exc
        self.log(f"Deleted group {name}")

    def move_mod(self, mod_id: str, target_group: str | None) -> str:
        """Move a mod into ``target_group`` (Default for no group). Returns the new id."""
        src = self._resolve(mod_id)
        if not src.exists():
            raise NotFoundError(f"Mod not found: {mod_id}")

        group = self._group_or_default(target_group)
        dest_parent = self._resolve(group)
        dest = dest_parent / src.name
        if dest.exists():
            raise AlreadyExistsError(
                f"A mod named {src.name} already exists in group {group}"
            )
        try:
            dest_parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ModIOError(f"Failed to create group {group}: {exc}") from exc

        # Same-volume rename only; the mods root is expected to live on one drive
        self._rename(src, dest, "mod")
        new_id = self._relative_id(dest)
        self.log(f"Moved {mod_id} -> {new_id}")
        return new_id

    # ── Archives ──────────────────────────────────────────────────────

    def preview_archive(self, archive_path: str | Path) -> ArchivePreview:
        return preview_archive(archive_path)

    def install_destination(self, target_name: str, target_group: str | None = ROOT_GROUP) -> Path:
        group = self._group_or_default(target_group)
        return self._resolve(f"{group}/{target_name}")

    def install_archive(
        self,
        archive_path: str | Path,
        target_name: str,
        target_group: str | None = ROOT_GROUP,
    ) -> Path:
        """Install an archive as ``<mods>/<group>/<target_name>``.

        The destination must not exist yet and is only created once the
        archive has been opened and its entries validated.  A failure while
        writing can still leave a partially written destination behind;
        installing to the same name again is then rejected until the
        caller cleans it up.
        """
        archive_path = Path(archive_path)
        if archive_path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            raise UnsupportedFormatError(f"Unsupported archive format: {archive_path.name}")
        if not archive_path.is_file():
            raise NotFoundError(f"Archive not found: {archive_path}")

        dest = self.install_destination(target_name, target_group)
        if dest.exists():
            raise AlreadyExistsError(f"Destination directory already exists: {dest}")

        self.log(f"Installing {archive_path.name} -> {self._relative_id(dest)}")
        with open_archive(archive_path) as reader:
            # Unreadable or escaping archives fail here, before dest exists
            check_entries(reader.entries())
            try:
                dest.mkdir(parents=True)
            except OSError as exc:
                raise ModIOError(f"Failed to create destination {dest}: {exc}") from exc
            written = extract_archive(reader, dest)
        self.log(f"  Installed {written} file(s) into {self._relative_id(dest)}")
        return dest

    # ── Background work ───────────────────────────────────────────────

    def submit(self, func: Callable, *args, **kwargs) -> Future:
        """Run a blocking operation (e.g. ``self.install_archive``) off the caller's thread."""
        return self._executor.submit(func, *args, **kwargs)

    def install_archive_async(
        self,
        archive_path: str | Path,
        target_name: str,
        target_group: str | None = ROOT_GROUP,
    ) -> Future:
        return self.submit(self.install_archive, archive_path, target_name, target_group)

    # ── Filesystem watch ──────────────────────────────────────────────

    def start_watch(self, on_change: Callable[[], None]):
        self.stop_watch()
        watcher = ModWatcher(on_change)
        watcher.start(self.mods_dir)
        self._watcher = watcher

    def stop_watch(self):
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    # ── Validation ────────────────────────────────────────────────────

    def validate_paths(self) -> list[str]:
        issues = []
        if not self.mods_dir.exists():
            issues.append(f"Mods directory does not exist: {self.mods_dir}")
        elif not self.mods_dir.is_dir():
            issues.append(f"Mods path is not a directory: {self.mods_dir}")
        return issues
