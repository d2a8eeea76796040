"""Branch lookup, deletion markers and promotion for a union file system.

The first branch is writable; the others are read-only. Deleting a file
that lives in a read-only branch leaves a marker named after a hash of the
full path in the deletion directory of the writable branch.
"""

from __future__ import annotations

import dataclasses
import errno
import hashlib
import logging
import os
import posixpath
import threading
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .dircache import DirCache
from .filesystem import Attr, FileHandle, FileSystem, copy_file, fs_error
from .timedcache import TimedCache

_log = logging.getLogger(__name__)


def _split(path: str) -> tuple[str, str]:
    """Split after the last slash; the directory part keeps its slash."""
    i = path.rfind("/")
    return path[:i + 1], path[i + 1:]


def file_path_hash(path: str) -> str:
    """Name of the deletion marker for ``path``."""
    directory, base = _split(path)
    digest = hashlib.md5(directory.encode()).digest()[:8]
    return f"{digest.hex()}-{base}"


def strip_slash(fn: str) -> str:
    """Remove trailing slashes."""
    return fn.rstrip("/")


@dataclass
class UnionFsOptions:
    """Settings of a union file system; times are in seconds."""

    branch_cache_ttl: float = 0.0
    deletion_cache_ttl: float = 0.0
    deletion_dir_name: str = ""
    hidden_files: list[str] = field(default_factory=list)


@dataclass
class BranchResult:
    """Where a path was found: its attributes, an errno (0 for success) and
    the branch index, or -1 when it exists nowhere."""

    attr: Optional[Attr]
    code: int
    branch: int

    def valid(self) -> bool:
        return ((self.branch >= 0 and self.attr is not None and self.code == 0)
                or (self.branch < 0 and self.attr is None and self.code != 0))

    def __str__(self) -> str:
        return f"{{{self.attr} {self.code} branch {self.branch}}}"


class UnionFsFile(FileHandle):
    """An open file of the union, remembering which branch it came from."""

    def __init__(self, file: FileHandle, ufs: "UnionFsBase", path: str,
                 layer: int) -> None:
        self.file = file
        self.ufs = ufs
        self.path = path
        self.layer = layer
        self.open_flags = os.O_RDONLY
        ufs._register_file(self)

    def read(self, size: int, offset: int) -> bytes:
        return self.file.read(size, offset)

    def write(self, data: bytes, offset: int) -> int:
        return self.file.write(data, offset)

    def flush(self) -> None:
        """Flush the file and refresh the cached branch of its path."""
        self.file.flush()
        self.ufs.branch_cache.get_fresh(self.path)

    def release(self) -> None:
        self.ufs._unregister_file(self)
        self.file.release()

    def get_attr(self) -> Attr:
        attr = self.file.get_attr()
        attr.mode |= 0o200
        return attr

    def __str__(self) -> str:
        return f"unionFsFile({self.file})"


class UnionFsBase(FileSystem):
    """Branch and deletion bookkeeping shared by the union operations."""

    def __init__(self, file_systems: Sequence[FileSystem],
                 options: UnionFsOptions) -> None:
        if not file_systems:
            raise ValueError("a union needs at least one file system")
        self.file_systems = list(file_systems)
        self.options = options
        try:
            self.create_deletion_store()
        except OSError as exc:
            raise OSError(
                exc.errno,
                f"could not create deletion path "
                f"{options.deletion_dir_name}: {exc.strerror}") from exc

        writable = self.file_systems[0]
        self.deletion_cache = DirCache(writable, options.deletion_dir_name,
                                       options.deletion_cache_ttl)
        self.branch_cache = TimedCache(
            lambda n: (self.get_branch_attr_no_cache(n), True),
            options.branch_cache_ttl)
        self.hidden_files = set(options.hidden_files)
        self._files_lock = threading.Lock()
        self._files: dict[str, list[UnionFsFile]] = {}

    # Open-file registry.

    def _register_file(self, uf: UnionFsFile) -> None:
        with self._files_lock:
            self._files.setdefault(uf.path, []).append(uf)

    def _unregister_file(self, uf: UnionFsFile) -> None:
        with self._files_lock:
            files = self._files.get(uf.path, [])
            if uf in files:
                files.remove(uf)
            if not files:
                self._files.pop(uf.path, None)

    def open_files(self, name: str) -> list[UnionFsFile]:
        """Files currently open under ``name``."""
        with self._files_lock:
            return list(self._files.get(name, []))

    # Caches.

    def is_deleted(self, name: str) -> bool:
        """Whether ``name`` has a deletion marker.

        Raises EROFS when the deletion store cannot be read.
        """
        marker = self.deletion_path(name)
        have_cache, found = self.deletion_cache.has_entry(
            posixpath.basename(marker))
        if have_cache:
            return found
        try:
            self.file_systems[0].get_attr(marker)
            return True
        except OSError as exc:
            if exc.errno == errno.ENOENT:
                return False
            _log.warning("error accessing deletion marker %s: %s", marker, exc)
            raise fs_error(errno.EROFS, name) from exc

    def create_deletion_store(self) -> None:
        """Make sure the deletion directory exists; raise EROFS otherwise."""
        writable = self.file_systems[0]
        dir_name = self.options.deletion_dir_name
        try:
            try:
                attr = writable.get_attr(dir_name)
            except OSError as exc:
                if exc.errno != errno.ENOENT:
                    raise
                writable.mkdir(dir_name, 0o755)
                attr = writable.get_attr(dir_name)
        except OSError as exc:
            raise fs_error(errno.EROFS, dir_name) from exc
        if not attr.is_dir():
            raise fs_error(errno.EROFS, dir_name)

    def get_branch(self, name: str) -> BranchResult:
        """Cached branch lookup; the result may be changed freely."""
        result = self.branch_cache.get(strip_slash(name))
        return dataclasses.replace(result)

    def set_branch(self, name: str, result: BranchResult) -> None:
        if not result.valid():
            raise ValueError(
                f"entry {name!r} setting illegal branch result {result}")
        self.branch_cache.set(name, result)

    def get_branch_attr_no_cache(self, name: str) -> BranchResult:
        """Find the first branch holding ``name``, starting at its parent's."""
        name = strip_slash(name)
        parent, base = _split(name)
        parent = strip_slash(parent)

        parent_branch = 0
        if base:
            parent_branch = self.get_branch(parent).branch
        for i, fs in enumerate(self.file_systems):
            if i < parent_branch:
                continue
            try:
                attr = fs.get_attr(name)
            except OSError as exc:
                if exc.errno != errno.ENOENT:
                    _log.warning("getattr: %s: got error %s from branch %d",
                                 name, exc, i)
                continue
            if i > 0:
                # Needed to make hard links work.
                attr.ino = 0
            return BranchResult(attr, 0, i)
        return BranchResult(None, errno.ENOENT, -1)

    # Deletion.

    def deletion_path(self, name: str) -> str:
        return posixpath.join(self.options.deletion_dir_name,
                              file_path_hash(name))

    def remove_deletion(self, name: str) -> None:
        """Remove the deletion marker of ``name``, if any."""
        marker = self.deletion_path(name)
        try:
            self.file_systems[0].unlink(marker)
        except OSError as exc:
            if exc.errno != errno.ENOENT:
                _log.warning("error unlinking %s: %s", marker, exc)
        # Update the memory cache last, so no state older than the store is cached.
        self.deletion_cache.remove_entry(posixpath.basename(marker))

    def put_deletion(self, name: str) -> None:
        """Write a deletion marker holding ``name``."""
        self.create_deletion_store()
        marker = self.deletion_path(name)
        content = name.encode()
        writable = self.file_systems[0]

        try:
            attr = writable.get_attr(marker)
            code = 0
        except OSError as exc:
            attr, code = None, exc.errno
        if attr is not None and attr.size == len(content):
            return

        try:
            if code == errno.ENOENT:
                handle = writable.create(marker, os.O_TRUNC | os.O_WRONLY,
                                         0o644)
            else:
                with suppress(OSError):
                    writable.chmod(marker, 0o644)
                handle = writable.open(marker, os.O_TRUNC | os.O_WRONLY)
        except OSError as exc:
            _log.warning("could not create deletion file %s: %s", marker, exc)
            raise fs_error(errno.EPERM, name) from exc

        try:
            written = handle.write(content, 0)
            if written != len(content):
                raise fs_error(errno.EIO, marker)
            handle.flush()
        finally:
            handle.release()

        self.deletion_cache.add_entry(posixpath.basename(marker))

    # Promotion.

    def promote(self, name: str, src_result: BranchResult) -> None:
        """Copy ``name`` from its read-only branch into the writable one."""
        writable = self.file_systems[0]
        source = self.file_systems[src_result.branch]
        attr = src_result.attr

        with suppress(OSError):
            self.promote_dirs_to(name)

        try:
            if attr.is_regular():
                copy_file(source, writable, name, name)
                writable.chmod(name, attr.mode & 0o7777 | 0o200)
                writable.utimens(name, attr.atime, attr.mtime)
                for uf in self.open_files(name):
                    if uf.layer > 0:
                        old = uf.file
                        uf.file = writable.open(name, uf.open_flags)
                        uf.layer = 0
                        old.flush()
                        old.release()
            elif attr.is_symlink():
                try:
                    link = source.readlink(name)
                except OSError:
                    _log.warning("can't read link in source fs %s", name)
                    raise
                writable.symlink(link, name)
            elif attr.is_dir():
                writable.mkdir(name, attr.mode & 0o7777 | 0o200)
            else:
                _log.warning("Unknown file type: %s", attr)
                raise fs_error(errno.ENOSYS, name)
        except OSError as exc:
            if exc.errno != errno.ENOSYS:
                self.branch_cache.get_fresh(name)
            raise

        result = self.get_branch(name)
        result.branch = 0
        self.set_branch(name, result)

    def promote_dirs_to(self, filename: str) -> None:
        """Create in the writable branch every directory leading to ``filename``."""
        dir_name = strip_slash(_split(filename)[0])
        todo: list[tuple[str, BranchResult]] = []
        while dir_name:
            result = self.get_branch(dir_name)
            if result.code:
                _log.info("path component does not exist: %s %s",
                          filename, dir_name)
            if result.attr is None or not result.attr.is_dir():
                _log.info("path component is not a directory: %s %s",
                          dir_name, result)
                raise fs_error(errno.EPERM, dir_name)
            if result.branch == 0:
                break
            todo.append((dir_name, result))
            dir_name = strip_slash(_split(dir_name)[0])

        writable = self.file_systems[0]
        for directory, result in reversed(todo):
            try:
                writable.mkdir(directory, result.attr.mode & 0o7777 | 0o200)
            except OSError as exc:
                _log.warning("Error creating dir leading to path %s: %s",
                             directory, exc)
                raise fs_error(errno.EPERM, directory) from exc
            with suppress(OSError):
                writable.utimens(directory, result.attr.atime,
                                 result.attr.mtime)
            self.set_branch(directory, dataclasses.replace(result, branch=0))

    def __str__(self) -> str:
        return f"UnionFs({[str(fs) for fs in self.file_systems]})"