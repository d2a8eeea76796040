"""A pool of reusable pipe pairs."""

from __future__ import annotations

import threading

from .pipepair import Pair, new_splice_pair


class PairPool:
    """Hands out pipe pairs and keeps returned ones for reuse."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._unused: list[Pair] = []
        self._used_count = 0

    def get(self) -> Pair:
        """Take a pair from the pool, creating one when none is free."""
        with self._lock:
            self._used_count += 1
            if self._unused:
                return self._unused.pop()
            try:
                return new_splice_pair()
            except Exception:
                self._used_count -= 1
                raise

    def done(self, pair: Pair) -> None:
        """Empty ``pair`` and return it to the pool."""
        pair.discard()
        with self._lock:
            self._used_count -= 1
            self._unused.append(pair)

    def drop(self, pair: Pair) -> None:
        """Close ``pair`` instead of returning it."""
        pair.close()
        with self._lock:
            self._used_count -= 1

    def clear(self) -> None:
        """Close every pair waiting in the pool."""
        with self._lock:
            for pair in self._unused:
                try:
                    pair.close()
                except OSError:
                    pass
            self._unused.clear()

    def total(self) -> int:
        """Pairs in use plus pairs waiting in the pool."""
        with self._lock:
            return self._used_count + len(self._unused)

    def used(self) -> int:
        """Pairs currently handed out."""
        with self._lock:
            return self._used_count


_POOL = PairPool()


def clear_splice_pool() -> None:
    """Close the idle pairs of the shared pool."""
    _POOL.clear()


def get() -> Pair:
    """Take a pair from the shared pool."""
    return _POOL.get()


def total() -> int:
    """Size of the shared pool, in use or idle."""
    return _POOL.total()


def used() -> int:
    """Pairs of the shared pool currently in use."""
    return _POOL.used()


def done(pair: Pair) -> None:
    """Return a pair to the shared pool."""
    _POOL.done(pair)


def drop(pair: Pair) -> None:
    """Close a pair taken from the shared pool."""
    _POOL.drop(pair)