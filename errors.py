"""
Error kinds raised by the mod library.

Catalog scans are best-effort and never raise for a single unreadable
directory; every other operation fails fast with one of these.
"""

from __future__ import annotations


class ModLibraryError(Exception):
    """Base class for all mod library failures."""


class NotFoundError(ModLibraryError):
    """A path, mod, group, or config file required by the operation is absent."""


class AlreadyExistsError(ModLibraryError):
    """The create/move/install target is already taken."""


class UnsupportedFormatError(ModLibraryError):
    """The archive extension is not one of .zip, .7z, .rar."""


class ArchiveCorruptError(ModLibraryError):
    """The archive container or one of its entries could not be read."""


class ExternalToolMissingError(ModLibraryError):
    """The unrar helper needed for .rar extraction could not be located."""


class SecurityError(ModLibraryError):
    """A path would escape the directory it is supposed to stay inside."""


class ModIOError(ModLibraryError):
    """Generic read/write/permission failure. The OSError is kept as __cause__."""


class ConfigError(ModLibraryError):
    """A game configuration file exists but cannot be parsed or validated."""
