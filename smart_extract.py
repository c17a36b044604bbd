"""
Smart extraction of mod archives into a destination directory.

Community mod packages often wrap their payload in a single top-level
folder (``PackageRoot/...``).  Extraction is done in two steps:

1. ``plan_extraction`` looks at every entry once, decides whether a
   single common root folder can be stripped, and maps each entry to its
   destination-relative path (rejecting any ``..`` traversal).
2. ``extract_archive`` writes the planned entries under the destination.

Archives with several top-level folders (or loose files at the top
level) are written verbatim.  Formats that can only be unpacked as a
whole (rar) are extracted into a staging directory first and the same
decision is made afterwards by ``finalize_staged``.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from archive_reader import (
    JUNK_DIRS,
    JUNK_NAMES,
    ArchiveEntry,
    ArchiveReader,
    open_archive,
)
from errors import ArchiveCorruptError, ModIOError, SecurityError

_log = logging.getLogger(__name__)

CONFIG_SUFFIX = ".ini"


@dataclass
class ExtractionPlan:
    strip_prefix: str | None
    items: list[tuple[ArchiveEntry, str]] = field(default_factory=list)
    # items: (entry, destination-relative posix path)


@dataclass
class ArchivePreview:
    root_dirs: list[str]
    file_count: int
    has_ini: bool
    format: str


# ── Planning ──────────────────────────────────────────────────────────


def _check_parts(entry: ArchiveEntry, parts: list[str]):
    if any(p == ".." for p in parts):
        raise SecurityError(f"Archive entry escapes the destination: {entry.path}")
    if parts and (":" in parts[0] or entry.path.startswith(("/", "\\"))):
        raise SecurityError(f"Archive entry uses an absolute path: {entry.path}")


def find_common_root(entries: Iterable[ArchiveEntry]) -> str | None:
    """Return the single top-level folder shared by every entry, if any.

    A regular file sitting at the top level rules stripping out: the root
    has to be a folder.
    """
    common_root: str | None = None
    for entry in entries:
        parts = entry.parts
        if not parts:
            continue
        if entry.is_file and len(parts) == 1:
            return None
        if common_root is None:
            common_root = parts[0]
        elif parts[0] != common_root:
            return None
    return common_root


def target_path(entry: ArchiveEntry, strip_prefix: str | None) -> str | None:
    """Destination-relative path for ``entry``, or None when it is skipped."""
    parts = entry.parts
    _check_parts(entry, parts)
    if strip_prefix is not None and parts and parts[0] == strip_prefix:
        parts = parts[1:]
    if not parts:
        # The stripped root folder itself
        return None
    return "/".join(parts)


def plan_extraction(entries: Iterable[ArchiveEntry]) -> ExtractionPlan:
    entries = list(entries)
    strip_prefix = find_common_root(entries)
    plan = ExtractionPlan(strip_prefix=strip_prefix)
    for entry in entries:
        rel = target_path(entry, strip_prefix)
        if rel is not None:
            plan.items.append((entry, rel))
    return plan


def check_entries(entries: Iterable[ArchiveEntry]) -> int:
    """Reject any entry that would escape the destination; return the file count."""
    file_count = 0
    for entry in entries:
        _check_parts(entry, entry.parts)
        file_count += entry.is_file
    return file_count


def _ensure_inside(root: Path, candidate: Path):
    root_resolved = root.resolve()
    resolved = candidate.resolve()
    if resolved != root_resolved and root_resolved not in resolved.parents:
        raise SecurityError(f"Refusing to write outside {root}: {candidate}")


# ── Extraction ────────────────────────────────────────────────────────


def _write_plan(reader: ArchiveReader, plan: ExtractionPlan, dest: Path) -> int:
    written = 0
    for entry, rel in plan.items:
        out = dest.joinpath(*rel.split("/"))
        _ensure_inside(dest, out)
        try:
            if entry.is_dir:
                out.mkdir(parents=True, exist_ok=True)
                continue
            out.parent.mkdir(parents=True, exist_ok=True)
            with reader.open_entry(entry) as src, open(out, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except reader.read_errors as exc:
            raise ArchiveCorruptError(f"Damaged data in {entry.path}: {exc}") from exc
        except OSError as exc:
            raise ModIOError(f"Failed to write {out}: {exc}") from exc
        written += 1
    return written


def _purge_junk(root: Path):
    for path in sorted(root.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if path.name in JUNK_DIRS and path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
        elif path.name in JUNK_NAMES and path.is_file():
            path.unlink()


def _replace(src: Path, target: Path):
    if target.is_dir() and not target.is_symlink():
        shutil.rmtree(target)
    elif target.exists():
        target.unlink()
    shutil.move(str(src), str(target))


def finalize_staged(staging: Path, dest: Path) -> list[str]:
    """Move a staged extraction into ``dest``.

    If the staging root holds exactly one entry and it is a directory,
    that directory's contents move up into ``dest``; otherwise every
    staged top-level entry moves as is.  Returns the moved names.
    """
    items = sorted(staging.iterdir())
    if len(items) == 1 and items[0].is_dir():
        _log.debug("Stripping single staged root folder %s", items[0].name)
        items = sorted(items[0].iterdir())
    moved = []
    try:
        for item in items:
            _replace(item, dest / item.name)
            moved.append(item.name)
    except OSError as exc:
        raise ModIOError(f"Failed to move extracted files into {dest}: {exc}") from exc
    return moved


def _extract_staged(reader: ArchiveReader, dest: Path):
    with tempfile.TemporaryDirectory(prefix="_temp_extract_", dir=dest) as tmp:
        staging = Path(tmp)
        reader.extract_all(staging)
        _purge_junk(staging)
        finalize_staged(staging, dest)


def extract_archive(reader: ArchiveReader, dest: str | Path) -> int:
    """Extract every non-junk entry of ``reader`` under ``dest``.

    Every entry is validated before ``dest`` is created, so an archive
    with an escaping path leaves nothing behind.  Returns the number of
    regular files written.  A failure part-way through the writes leaves
    whatever was already written in place.
    """
    dest = Path(dest)
    if reader.staged_extraction:
        # The external tool never sees an archive that failed validation
        file_count = check_entries(reader.entries())
        plan = None
    else:
        plan = plan_extraction(reader.entries())

    try:
        dest.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ModIOError(f"Failed to create {dest}: {exc}") from exc

    if plan is None:
        _extract_staged(reader, dest)
        return file_count

    if plan.strip_prefix:
        _log.info("Stripping common root folder '%s'", plan.strip_prefix)
    return _write_plan(reader, plan, dest)


def extract_to(archive_path: str | Path, dest: str | Path) -> int:
    with open_archive(archive_path) as reader:
        return extract_archive(reader, dest)


# ── Preview ───────────────────────────────────────────────────────────


def preview_archive(archive_path: str | Path) -> ArchivePreview:
    """Summarize an archive from its listing alone (nothing is extracted)."""
    root_dirs: set[str] = set()
    file_count = 0
    has_ini = False
    with open_archive(archive_path) as reader:
        for entry in reader.entries():
            parts = entry.parts
            if not parts:
                continue
            if entry.is_dir:
                root_dirs.add(parts[0])
                continue
            file_count += 1
            if parts[-1].lower().endswith(CONFIG_SUFFIX):
                has_ini = True
            if len(parts) > 1:
                root_dirs.add(parts[0])
        fmt = reader.format_name
    return ArchivePreview(
        root_dirs=sorted(root_dirs),
        file_count=file_count,
        has_ini=has_ini,
        format=fmt,
    )
