"""
Directory-name codec for the enabled/disabled state of a mod.

A mod is disabled by prefixing its directory base name with
``DISABLED_``.  These helpers only ever look at base names, never full
paths, and do no I/O.
"""

from __future__ import annotations

DISABLED_PREFIX = "DISABLED_"


def is_disabled(name: str) -> bool:
    return name.startswith(DISABLED_PREFIX)


def encode_disabled(name: str) -> str:
    """Return ``name`` with the disable marker, adding it only once."""
    if is_disabled(name):
        return name
    return DISABLED_PREFIX + name


def encode_enabled(name: str) -> str:
    """Return ``name`` with the disable marker removed (if present)."""
    if is_disabled(name):
        return name[len(DISABLED_PREFIX):]
    return name


def encode(name: str, enabled: bool) -> str:
    return encode_enabled(name) if enabled else encode_disabled(name)


def decode(name: str) -> tuple[str, bool]:
    """Split a directory base name into ``(display_name, enabled)``."""
    if is_disabled(name):
        return name[len(DISABLED_PREFIX):], False
    return name, True
