"""
Filesystem watch on the mods root.

Any create/modify/move/delete below the watched directory is forwarded as
a payload-free ``on_change()`` call.  Consumers should treat it as
"something changed, rescan" and debounce on their side.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from errors import NotFoundError

_log = logging.getLogger(__name__)


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, on_change: Callable[[], None]):
        super().__init__()
        self._on_change = on_change

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        try:
            self._on_change()
        except Exception:
            _log.exception("Mod watch callback failed")


class ModWatcher:
    def __init__(self, on_change: Callable[[], None]):
        self._on_change = on_change
        self._observer: Observer | None = None
        self._lock = threading.Lock()
        self.path: Path | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, path: str | Path):
        """Watch ``path`` recursively, replacing any watch already running."""
        path = Path(path)
        if not path.is_dir():
            raise NotFoundError(f"Mods directory not found at: {path}")
        with self._lock:
            self._stop_locked()
            observer = Observer()
            observer.schedule(_ChangeHandler(self._on_change), str(path), recursive=True)
            observer.daemon = True
            observer.start()
            self._observer = observer
            self.path = path
        _log.info("Started watching %s", path)

    def stop(self):
        with self._lock:
            self._stop_locked()

    def _stop_locked(self):
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        _log.info("Stopped watching %s", self.path)
        self._observer = None
        self.path = None
