"""A cache of the regular-file names in one directory."""

from __future__ import annotations

import errno
import logging
import stat
import threading
from typing import Optional

from .filesystem import FileSystem

_log = logging.getLogger(__name__)


def new_dirname_map(fs: FileSystem, directory: str) -> Optional[set[str]]:
    """Names of the regular files in ``directory``.

    A missing directory gives an empty set; any other failure gives None,
    so that callers keep retrying until a read succeeds.
    """
    try:
        stream = fs.open_dir(directory)
    except OSError as exc:
        if exc.errno == errno.ENOENT:
            return set()
        return None
    return {e.name for e in stream if e.mode & stat.S_IFREG}


class DirCache:
    """Remembers the names in a directory for ``ttl`` seconds.

    Missing contents are read afresh in the background.
    """

    def __init__(self, fs: FileSystem, directory: str, ttl: float) -> None:
        self.fs = fs
        self.directory = directory
        self.ttl = ttl
        self._lock = threading.Lock()
        self._names: Optional[set[str]] = None
        self._update_running = False

    def _set_map(self, names: Optional[set[str]]) -> None:
        with self._lock:
            self._names = names
            self._update_running = False
        timer = threading.Timer(self.ttl, self.drop_cache)
        timer.daemon = True
        timer.start()

    def _refresh(self) -> None:
        try:
            names = new_dirname_map(self.fs, self.directory)
        except Exception:
            _log.exception("reading %s failed", self.directory)
            names = None
        self._set_map(names)

    def _start_refresh_locked(self) -> None:
        if self._update_running:
            return
        self._update_running = True
        threading.Thread(target=self._refresh, daemon=True).start()

    def drop_cache(self) -> None:
        """Forget the names; the next lookup schedules a reload."""
        with self._lock:
            self._names = None

    def maybe_refresh(self) -> None:
        """Start a background reload unless one is already running."""
        with self._lock:
            self._start_refresh_locked()

    def remove_entry(self, name: str) -> None:
        with self._lock:
            if self._names is None:
                self._start_refresh_locked()
                return
            self._names.discard(name)

    def add_entry(self, name: str) -> None:
        with self._lock:
            if self._names is None:
                self._start_refresh_locked()
                return
            self._names.add(name)

    def has_entry(self, name: str) -> tuple[bool, bool]:
        """Return (names are loaded, ``name`` is among them)."""
        with self._lock:
            if self._names is None:
                self._start_refresh_locked()
                return False, False
            return True, name in self._names