"""
Structure-preserving patcher for line-oriented ``[section]`` / ``key = value``
text files such as 3DMigoto's ``d3dx.ini``.

The document is held as a list of raw lines.  Only the lines touched by
``upsert``/``remove`` change; comments, blank lines, spacing and the
spelling of untouched keys survive byte for byte.  Section and key
matching is case-insensitive.  Multi-line values and escaping are not
supported.

Typical use::

    with IniDocument.edit(path) as ini:
        ini.upsert("Loader", "target", "C:/Game/Game.exe")
        ini.remove("Loader", "launch")
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from errors import ModIOError, NotFoundError

_log = logging.getLogger(__name__)

_SECTION_RE = re.compile(r"^\s*\[([^\]]*)\]\s*(;.*)?$")
_BOM = "\ufeff"


@dataclass(frozen=True)
class SectionSpan:
    """Line range of one section: header at ``header``, body up to ``end`` (exclusive)."""

    name: str  # lowercased
    header: int
    end: int

    @property
    def body(self) -> range:
        return range(self.header + 1, self.end)


def _section_name(line: str) -> str | None:
    match = _SECTION_RE.match(line)
    if not match:
        return None
    return match.group(1).strip().lower()


def _key_of(line: str) -> str | None:
    stripped = line.strip()
    if not stripped or stripped[0] in ";#":
        return None
    eq = line.find("=")
    if eq == -1:
        return None
    return line[:eq].strip()


class IniDocument:
    def __init__(
        self,
        lines: list[str] | None = None,
        *,
        newline: str = "\n",
        trailing_newline: bool = True,
        bom: bool = False,
        path: Path | None = None,
    ):
        self.lines: list[str] = list(lines or [])
        self.newline = newline
        self.trailing_newline = trailing_newline
        self.bom = bom
        self.path = path

    # ── Loading / Saving ──────────────────────────────────────────────

    @classmethod
    def from_text(cls, text: str, path: Path | None = None) -> IniDocument:
        bom = text.startswith(_BOM)
        if bom:
            text = text[1:]
        newline = "\r\n" if "\r\n" in text else "\n"
        body = text.replace("\r\n", "\n")
        trailing = body.endswith("\n")
        if trailing:
            body = body[:-1]
        lines = body.split("\n") if body or trailing else []
        return cls(
            lines, newline=newline, trailing_newline=trailing, bom=bom, path=path
        )

    @classmethod
    def load(cls, path: str | Path) -> IniDocument:
        path = Path(path)
        _log.debug("Loading ini from %s", path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Config file not found: {path}") from exc
        except OSError as exc:
            raise ModIOError(f"Failed to read {path}: {exc}") from exc
        # surrogateescape keeps non-UTF-8 bytes intact through a save
        return cls.from_text(raw.decode("utf-8", errors="surrogateescape"), path)

    def to_text(self) -> str:
        text = self.newline.join(self.lines)
        if self.trailing_newline and self.lines:
            text += self.newline
        if self.bom:
            text = _BOM + text
        return text

    def save(self, path: str | Path | None = None):
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("IniDocument has no path to save to")
        data = self.to_text().encode("utf-8", errors="surrogateescape")
        try:
            target.write_bytes(data)
        except OSError as exc:
            raise ModIOError(f"Failed to write {target}: {exc}") from exc
        _log.debug("Saved ini to %s (%d bytes)", target, len(data))

    @classmethod
    @contextmanager
    def edit(cls, path: str | Path) -> Iterator[IniDocument]:
        """Load ``path``, yield the document, save it if the block exits cleanly."""
        doc = cls.load(path)
        yield doc
        doc.save()

    # ── Section index ─────────────────────────────────────────────────

    def sections(self) -> list[SectionSpan]:
        """Compute section spans from the current lines (never cached)."""
        headers = [
            (i, name)
            for i, name in ((i, _section_name(line)) for i, line in enumerate(self.lines))
            if name is not None
        ]
        spans = []
        for n, (start, name) in enumerate(headers):
            end = headers[n + 1][0] if n + 1 < len(headers) else len(self.lines)
            spans.append(SectionSpan(name=name, header=start, end=end))
        return spans

    def _spans_for(self, section: str) -> list[SectionSpan]:
        wanted = section.strip().lower()
        return [s for s in self.sections() if s.name == wanted]

    def _key_lines(self, section: str, key: str) -> list[int]:
        wanted = key.strip().lower()
        return [
            i
            for span in self._spans_for(section)
            for i in span.body
            if (_key_of(self.lines[i]) or "").lower() == wanted
        ]

    # ── Queries ───────────────────────────────────────────────────────

    def has_section(self, section: str) -> bool:
        return bool(self._spans_for(section))

    def get(self, section: str, key: str) -> str | None:
        found = self._key_lines(section, key)
        if not found:
            return None
        line = self.lines[found[0]]
        return line[line.find("=") + 1:].strip()

    # ── Mutations ─────────────────────────────────────────────────────

    def upsert(self, section: str, key: str, value: str):
        """Set ``[section] key = value``, creating the key or section when missing.

        The first matching key line keeps whatever precedes ``=`` (key
        spelling and indentation); any later duplicates of the key in the
        same section are dropped so a single value survives.
        """
        found = self._key_lines(section, key)
        if found:
            first, duplicates = found[0], found[1:]
            line = self.lines[first]
            self.lines[first] = f"{line[:line.find('=')].rstrip()} = {value}"
            for i in reversed(duplicates):
                del self.lines[i]
            _log.debug("Updated [%s] %s = %s", section, key, value)
            return

        spans = self._spans_for(section)
        if spans:
            # New keys go right before the next section header, or at EOF
            self.lines.insert(spans[0].end, f"{key} = {value}")
            _log.debug("Inserted [%s] %s = %s at line %d", section, key, value, spans[0].end)
            return

        if self.lines:
            self.lines.append("")
        self.lines.append(f"[{section}]")
        self.lines.append(f"{key} = {value}")
        _log.debug("Created section [%s] with %s = %s", section, key, value)

    def remove(self, section: str, key: str) -> bool:
        """Delete ``key`` from ``section``. Missing section/key is a no-op."""
        found = self._key_lines(section, key)
        for i in reversed(found):
            del self.lines[i]
        if found:
            _log.debug("Removed [%s] %s", section, key)
        return bool(found)
