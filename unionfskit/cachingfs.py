"""A file system wrapper that caches metadata lookups."""

from __future__ import annotations

import logging
import os
import stat
from typing import Any, Callable, Optional

from .filesystem import O_ANYWRITE, Attr, DirEntry, FileHandle, FileSystem
from .timedcache import TimedCache

DROP_CACHE = ".drop_cache"
"""Writing to this name drops cached state."""

_XATTR_SEP = "@XATTR@"

_log = logging.getLogger(__name__)


def _outcome_fetcher(func: Callable[[str], Any]):
    """Wrap ``func`` so that failures are returned, and never cached."""

    def fetch(key: str):
        try:
            return (func(key), None), True
        except OSError as exc:
            return (None, exc), False

    return fetch


def _unwrap(outcome):
    value, exc = outcome
    if exc is not None:
        raise exc
    return value


class CachingFileSystem(FileSystem):
    """Caches attributes, listings, links and extended attributes of ``fs``."""

    def __init__(self, fs: FileSystem, ttl: float) -> None:
        self.inner = fs
        self._attributes = TimedCache(_outcome_fetcher(fs.get_attr), ttl)
        self._dirs = TimedCache(_outcome_fetcher(fs.open_dir), ttl)
        self._links = TimedCache(_outcome_fetcher(fs.readlink), ttl)
        self._xattr = TimedCache(_outcome_fetcher(self._fetch_xattr), ttl)

    def _fetch_xattr(self, key: str) -> bytes:
        name, attr = key.split(_XATTR_SEP, 1)
        return self.inner.get_xattr(name, attr)

    def drop_cache(self) -> None:
        """Forget everything cached."""
        for cache in (self._attributes, self._dirs, self._links, self._xattr):
            cache.drop_all(None)

    def get_attr(self, name: str) -> Attr:
        if name == DROP_CACHE:
            return Attr(mode=stat.S_IFREG | 0o777)
        attr = _unwrap(self._attributes.get(name))
        return Attr(**vars(attr))

    def get_xattr(self, name: str, attr: str) -> bytes:
        return _unwrap(self._xattr.get(name + _XATTR_SEP + attr))

    def readlink(self, name: str) -> str:
        return _unwrap(self._links.get(name))

    def open_dir(self, name: str) -> list[DirEntry]:
        return list(_unwrap(self._dirs.get(name)))

    def open(self, name: str, flags: int) -> FileHandle:
        if flags & O_ANYWRITE and name == DROP_CACHE:
            _log.info("Dropping cache for %s", self)
            self.drop_cache()
        return self.inner.open(name, flags)

    def mkdir(self, name: str, mode: int) -> None:
        self.inner.mkdir(name, mode)

    def rmdir(self, name: str) -> None:
        self.inner.rmdir(name)

    def unlink(self, name: str) -> None:
        self.inner.unlink(name)

    def symlink(self, pointed_to: str, link_name: str) -> None:
        self.inner.symlink(pointed_to, link_name)

    def link(self, orig: str, new_name: str) -> None:
        self.inner.link(orig, new_name)

    def rename(self, src: str, dst: str) -> None:
        self.inner.rename(src, dst)

    def chmod(self, name: str, mode: int) -> None:
        self.inner.chmod(name, mode)

    def chown(self, name: str, uid: int, gid: int) -> None:
        self.inner.chown(name, uid, gid)

    def utimens(self, name: str, atime: Optional[float],
                mtime: Optional[float]) -> None:
        self.inner.utimens(name, atime, mtime)

    def truncate(self, name: str, size: int) -> None:
        self.inner.truncate(name, size)

    def access(self, name: str, mode: int) -> None:
        self.inner.access(name, mode)

    def create(self, name: str, flags: int, mode: int) -> FileHandle:
        return self.inner.create(name, flags, mode)

    def statfs(self, name: str) -> Optional[os.statvfs_result]:
        return self.inner.statfs(name)

    def __str__(self) -> str:
        return f"CachingFileSystem({self.inner})"