"""
Uniform read access to mod archives.

One reader class per container format, picked by file extension in
``open_archive``:

    .zip  -> ZipArchiveReader        (stdlib zipfile)
    .7z   -> SevenZipArchiveReader   (py7zr)
    .rar  -> RarArchiveReader        (rarfile + external unrar tool)

Every reader yields ``ArchiveEntry`` records with forward-slash paths and
skips OS metadata junk (``__MACOSX/``, ``.DS_Store``, ``Thumbs.db``).
Readers do not validate paths; ``smart_extract`` rejects traversal before
anything is written.
"""

from __future__ import annotations

import logging
import lzma
import os
import shutil
import sys
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator

import py7zr
import rarfile

from errors import (
    ArchiveCorruptError,
    ExternalToolMissingError,
    ModIOError,
    NotFoundError,
    UnsupportedFormatError,
)

_log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".zip", ".7z", ".rar"}

JUNK_DIRS = {"__MACOSX"}
JUNK_NAMES = {".DS_Store", "Thumbs.db"}

# Zip entry names without the UTF-8 flag that are not valid UTF-8 either
# are decoded with this codepage (archives made on Chinese-locale Windows).
LEGACY_NAME_ENCODING = "gbk"

UNRAR_ENV_VAR = "MODLIB_UNRAR"
_UNRAR_NAMES = ("unrar", "UnRAR.exe", "unrar.exe")

# Everything py7zr lets escape on damaged input; lzma and EOF errors come
# straight from the decompressor and are not ArchiveError subclasses.
_SEVENZIP_ERRORS = (
    py7zr.exceptions.ArchiveError,
    py7zr.exceptions.DecompressionError,
    py7zr.exceptions.PasswordRequired,
    lzma.LZMAError,
    EOFError,
)


@dataclass(frozen=True)
class ArchiveEntry:
    path: str  # forward-slash separated, archive-internal
    is_dir: bool
    size: int = 0  # uncompressed bytes, regular entries only

    @property
    def parts(self) -> list[str]:
        return [p for p in self.path.split("/") if p and p != "."]

    @property
    def is_file(self) -> bool:
        return not self.is_dir


def normalize_entry_path(name: str) -> str:
    return name.replace("\\", "/")


def is_junk(path: str) -> bool:
    parts = [p for p in normalize_entry_path(path).split("/") if p]
    if not parts:
        return False
    return any(p in JUNK_DIRS for p in parts) or parts[-1] in JUNK_NAMES


def decode_zip_name(info: zipfile.ZipInfo) -> str:
    """Recover an entry name whose bytes were not flagged as UTF-8.

    zipfile decodes unflagged names as cp437; re-encoding gives back the
    raw bytes, which are tried as UTF-8 first and the legacy codepage
    second.
    """
    if info.flag_bits & 0x800:
        return info.filename
    try:
        raw = info.filename.encode("cp437")
    except UnicodeEncodeError:
        return info.filename
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode(LEGACY_NAME_ENCODING, errors="replace")


# ── unrar discovery ───────────────────────────────────────────────────


def _unrar_candidates() -> list[Path]:
    candidates = []
    override = os.environ.get(UNRAR_ENV_VAR)
    if override:
        candidates.append(Path(override))
    # Bundled copy: frozen exe uses _MEIPASS, dev uses assets/
    if getattr(sys, "frozen", False):
        candidates.append(Path(sys._MEIPASS) / "UnRAR.exe")
    here = Path(__file__).parent
    candidates.append(here / "assets" / "UnRAR.exe")
    candidates.append(here / "assets" / "unrar")
    for env in ("ProgramFiles", "ProgramFiles(x86)"):
        base = os.environ.get(env)
        if base:
            candidates.append(Path(base) / "WinRAR" / "UnRAR.exe")
    return candidates


def find_unrar_tool() -> str | None:
    """Locate an unrar executable: env override, bundled copy, WinRAR, then PATH."""
    for candidate in _unrar_candidates():
        if candidate.is_file():
            return str(candidate)
    for name in _UNRAR_NAMES:
        found = shutil.which(name)
        if found:
            return found
    return None


# ── Readers ───────────────────────────────────────────────────────────


class ArchiveReader:
    """Base class: sequential entry listing plus per-entry byte streams.

    ``staged_extraction`` is True for formats that can only be unpacked
    as a whole by an external tool; ``smart_extract`` then extracts to a
    staging directory and strips the root afterwards.

    ``read_errors`` lists the exceptions a stream from ``open_entry`` can
    raise mid-read on damaged data.
    """

    format_name = ""
    staged_extraction = False
    read_errors: tuple[type[BaseException], ...] = ()

    def __init__(self, path: Path):
        self.path = path

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        pass

    def _raw_entries(self) -> Iterator[ArchiveEntry]:
        raise NotImplementedError

    def entries(self) -> Iterator[ArchiveEntry]:
        for entry in self._raw_entries():
            if is_junk(entry.path):
                continue
            yield entry

    def open_entry(self, entry: ArchiveEntry) -> BinaryIO:
        raise NotImplementedError

    def extract_all(self, dest: Path):
        raise NotImplementedError


class ZipArchiveReader(ArchiveReader):
    format_name = "zip"
    # Bad CRC-32 and truncated deflate streams surface only while reading
    read_errors = (zipfile.BadZipFile, zlib.error, EOFError)

    def __init__(self, path: Path):
        super().__init__(path)
        try:
            self._zf = zipfile.ZipFile(path, "r")
        except zipfile.BadZipFile as exc:
            raise ArchiveCorruptError(f"Not a readable zip archive: {path.name}: {exc}") from exc
        self._infos: dict[str, zipfile.ZipInfo] = {}

    def close(self):
        self._zf.close()

    def _raw_entries(self) -> Iterator[ArchiveEntry]:
        for info in self._zf.infolist():
            name = normalize_entry_path(decode_zip_name(info))
            self._infos[name] = info
            is_dir = info.is_dir() or name.endswith("/")
            yield ArchiveEntry(path=name, is_dir=is_dir, size=0 if is_dir else info.file_size)

    def open_entry(self, entry: ArchiveEntry) -> BinaryIO:
        info = self._infos.get(entry.path)
        if info is None:
            raise NotFoundError(f"Entry not in archive: {entry.path}")
        try:
            return self._zf.open(info, "r")
        except (zipfile.BadZipFile, RuntimeError, NotImplementedError) as exc:
            # RuntimeError: encrypted entry; NotImplementedError: unknown compression
            raise ArchiveCorruptError(f"Cannot read {entry.path}: {exc}") from exc


class SevenZipArchiveReader(ArchiveReader):
    """7z reader.

    py7zr decompresses solid blocks as a unit, so the first ``open_entry``
    unpacks the whole archive into a private temp directory and later
    calls read from there.
    """

    format_name = "7z"
    read_errors = _SEVENZIP_ERRORS

    def __init__(self, path: Path):
        super().__init__(path)
        self._staging: Path | None = None
        try:
            with py7zr.SevenZipFile(path, "r") as sz:
                self._files = sz.list()
        except _SEVENZIP_ERRORS as exc:
            raise ArchiveCorruptError(f"Not a readable 7z archive: {path.name}: {exc}") from exc

    def close(self):
        if self._staging is not None:
            shutil.rmtree(self._staging, ignore_errors=True)
            self._staging = None

    def _raw_entries(self) -> Iterator[ArchiveEntry]:
        for info in self._files:
            name = normalize_entry_path(info.filename)
            is_dir = bool(info.is_directory)
            size = 0 if is_dir else int(info.uncompressed or 0)
            yield ArchiveEntry(path=name, is_dir=is_dir, size=size)

    def _ensure_staged(self) -> Path:
        if self._staging is None:
            staging = Path(tempfile.mkdtemp(prefix="modlib_7z_"))
            try:
                self.extract_all(staging)
            except BaseException:
                shutil.rmtree(staging, ignore_errors=True)
                raise
            self._staging = staging
        return self._staging

    def open_entry(self, entry: ArchiveEntry) -> BinaryIO:
        src = self._ensure_staged() / Path(*entry.parts)
        try:
            return open(src, "rb")
        except FileNotFoundError as exc:
            raise ArchiveCorruptError(f"Entry missing after 7z decode: {entry.path}") from exc

    def extract_all(self, dest: Path):
        try:
            with py7zr.SevenZipFile(self.path, "r") as sz:
                sz.extractall(path=dest)
        except _SEVENZIP_ERRORS as exc:
            raise ArchiveCorruptError(f"7z extraction failed for {self.path.name}: {exc}") from exc


class RarArchiveReader(ArchiveReader):
    """RAR reader.

    Headers are parsed natively by rarfile, so listing works without any
    helper.  Decompression shells out to unrar, located by
    ``find_unrar_tool``.
    """

    format_name = "rar"
    staged_extraction = True
    read_errors = (rarfile.Error,)

    def __init__(self, path: Path):
        super().__init__(path)
        try:
            self._rf = rarfile.RarFile(path, "r")
        except (rarfile.NotRarFile, rarfile.BadRarFile) as exc:
            raise ArchiveCorruptError(f"Not a readable rar archive: {path.name}: {exc}") from exc
        except rarfile.Error as exc:
            raise ArchiveCorruptError(f"Failed to open {path.name}: {exc}") from exc

    def close(self):
        self._rf.close()

    def _raw_entries(self) -> Iterator[ArchiveEntry]:
        for info in self._rf.infolist():
            name = normalize_entry_path(info.filename)
            is_dir = info.is_dir()
            yield ArchiveEntry(path=name, is_dir=is_dir, size=0 if is_dir else info.file_size)

    @staticmethod
    def _setup_tool():
        tool = find_unrar_tool()
        if tool is None:
            raise ExternalToolMissingError(
                "unrar was not found. Install UnRAR (or WinRAR) or set "
                f"{UNRAR_ENV_VAR} to the unrar executable."
            )
        if rarfile.UNRAR_TOOL != tool:
            rarfile.UNRAR_TOOL = tool
            try:
                rarfile.tool_setup(force=True)
            except rarfile.RarCannotExec as exc:
                raise ExternalToolMissingError(f"unrar at {tool} is not usable: {exc}") from exc
        return tool

    def open_entry(self, entry: ArchiveEntry) -> BinaryIO:
        self._setup_tool()
        try:
            return self._rf.open(entry.path)
        except rarfile.RarCannotExec as exc:
            raise ExternalToolMissingError(f"unrar could not be executed: {exc}") from exc
        except rarfile.Error as exc:
            raise ArchiveCorruptError(f"Cannot read {entry.path}: {exc}") from exc

    def extract_all(self, dest: Path):
        tool = self._setup_tool()
        _log.debug("Extracting %s with %s into %s", self.path.name, tool, dest)
        try:
            self._rf.extractall(path=str(dest))
        except rarfile.RarCannotExec as exc:
            raise ExternalToolMissingError(f"unrar could not be executed: {exc}") from exc
        except rarfile.Error as exc:
            raise ArchiveCorruptError(f"RAR extraction failed for {self.path.name}: {exc}") from exc
        except OSError as exc:
            raise ModIOError(f"RAR extraction failed for {self.path.name}: {exc}") from exc


_READERS: dict[str, type[ArchiveReader]] = {
    ".zip": ZipArchiveReader,
    ".7z": SevenZipArchiveReader,
    ".rar": RarArchiveReader,
}


def open_archive(path: str | Path) -> ArchiveReader:
    """Open ``path`` with the reader matching its extension."""
    path = Path(path)
    reader_cls = _READERS.get(path.suffix.lower())
    if reader_cls is None:
        raise UnsupportedFormatError(
            f"Unsupported archive format: {path.suffix or path.name} (expected .zip, .7z or .rar)"
        )
    if not path.is_file():
        raise NotFoundError(f"Archive not found: {path}")
    try:
        return reader_cls(path)
    except OSError as exc:
        raise ModIOError(f"Failed to open {path}: {exc}") from exc
