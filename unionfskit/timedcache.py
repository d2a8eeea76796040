"""A thread-safe cache whose entries expire after a fixed time."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Tuple

Fetcher = Callable[[str], Tuple[Any, bool]]
"""Computes the value for a key and says whether it may be cached."""


@dataclass
class _Entry:
    data: Any
    expiry: float


class TimedCache:
    """Caches the results of a fetch function for ``ttl`` seconds.

    A ``ttl`` of zero or less caches indefinitely. Fetches run outside the
    lock, so concurrent lookups of one key may fetch more than once.
    """

    def __init__(self, fetch: Fetcher, ttl: float) -> None:
        self._fetch = fetch
        self.ttl = ttl
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def get(self, name: str) -> Any:
        """Return the cached value for ``name``, fetching it if needed."""
        with self._lock:
            entry = self._entries.get(name)
        if entry is not None and (self.ttl <= 0 or entry.expiry > time.monotonic()):
            return entry.data
        return self.get_fresh(name)

    def set(self, name: str, value: Any) -> None:
        """Store ``value`` for ``name``, starting a new lifetime."""
        with self._lock:
            self._entries[name] = _Entry(value, time.monotonic() + self.ttl)

    def drop_entry(self, name: str) -> None:
        """Forget the value for ``name``."""
        with self._lock:
            self._entries.pop(name, None)

    def get_fresh(self, name: str) -> Any:
        """Fetch ``name`` anew, caching the result when it is cacheable."""
        data, cacheable = self._fetch(name)
        if cacheable:
            self.set(name, data)
        return data

    def purge(self) -> None:
        """Drop every expired entry."""
        now = time.monotonic()
        with self._lock:
            expired = [k for k, v in self._entries.items() if now > v.expiry]
            for key in expired:
                del self._entries[key]

    def drop_all(self, names: Optional[Iterable[str]]) -> None:
        """Drop the given names, or everything when ``names`` is None."""
        with self._lock:
            if names is None:
                self._entries = {}
            else:
                for name in names:
                    self._entries.pop(name, None)