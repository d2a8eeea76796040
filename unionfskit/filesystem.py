"""Path-based file system interface, in-memory files and a loopback file system."""

from __future__ import annotations

import errno
import os
import stat
from dataclasses import dataclass
from typing import Optional

O_ANYWRITE = os.O_WRONLY | os.O_RDWR | os.O_APPEND | os.O_CREAT | os.O_TRUNC
"""Open flags that mean the caller may write."""

_COPY_CHUNK = 128 * 1024


def fs_error(code: int, name: Optional[str] = None) -> OSError:
    """Build the OSError (or matching subclass) for errno ``code``."""
    return OSError(code, os.strerror(code), name)


@dataclass
class Attr:
    """Attributes of a file; times are seconds since the epoch."""

    mode: int = 0
    size: int = 0
    ino: int = 0
    nlink: int = 0
    uid: int = 0
    gid: int = 0
    atime: float = 0.0
    mtime: float = 0.0
    ctime: float = 0.0

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "Attr":
        return cls(
            mode=st.st_mode,
            size=st.st_size,
            ino=st.st_ino,
            nlink=st.st_nlink,
            uid=st.st_uid,
            gid=st.st_gid,
            atime=st.st_atime,
            mtime=st.st_mtime,
            ctime=st.st_ctime,
        )

    def is_dir(self) -> bool:
        return stat.S_IFMT(self.mode) == stat.S_IFDIR

    def is_regular(self) -> bool:
        return stat.S_IFMT(self.mode) == stat.S_IFREG

    def is_symlink(self) -> bool:
        return stat.S_IFMT(self.mode) == stat.S_IFLNK

    def set_times(self, atime: Optional[float], mtime: Optional[float],
                  ctime: Optional[float]) -> None:
        """Set each given timestamp, leaving the others alone."""
        if atime is not None:
            self.atime = atime
        if mtime is not None:
            self.mtime = mtime
        if ctime is not None:
            self.ctime = ctime


@dataclass
class DirEntry:
    """One name in a directory listing, with its mode."""

    name: str
    mode: int


class FileHandle:
    """An open file. Unsupported operations raise ENOSYS."""

    def read(self, size: int, offset: int) -> bytes:
        raise fs_error(errno.ENOSYS)

    def write(self, data: bytes, offset: int) -> int:
        raise fs_error(errno.ENOSYS)

    def flush(self) -> None:
        """Push pending data out; nothing to do by default."""

    def release(self) -> None:
        """Free the handle; nothing to do by default."""

    def get_attr(self) -> Attr:
        raise fs_error(errno.ENOSYS)

    def __str__(self) -> str:
        return type(self).__name__


class DataFile(FileHandle):
    """A read-only file backed by a byte string."""

    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)

    def read(self, size: int, offset: int) -> bytes:
        return self.data[offset:offset + size]

    def get_attr(self) -> Attr:
        return Attr(mode=stat.S_IFREG | 0o644, size=len(self.data))

    def __str__(self) -> str:
        return f"DataFile({len(self.data)} bytes)"


class DevNullFile(FileHandle):
    """A file that reads as empty and swallows writes."""

    def read(self, size: int, offset: int) -> bytes:
        return b""

    def write(self, data: bytes, offset: int) -> int:
        return len(data)

    def get_attr(self) -> Attr:
        return Attr(mode=stat.S_IFREG | 0o644)


class _LoopbackFile(FileHandle):
    """An open descriptor of a real file."""

    def __init__(self, fd: int, path: str) -> None:
        self.fd = fd
        self.path = path
        self._released = False

    def read(self, size: int, offset: int) -> bytes:
        return os.pread(self.fd, size, offset)

    def write(self, data: bytes, offset: int) -> int:
        return os.pwrite(self.fd, data, offset)

    def flush(self) -> None:
        # Closing a duplicate reports delayed write errors without closing fd.
        os.close(os.dup(self.fd))

    def release(self) -> None:
        if not self._released:
            self._released = True
            os.close(self.fd)

    def get_attr(self) -> Attr:
        return Attr.from_stat(os.fstat(self.fd))

    def __str__(self) -> str:
        return f"LoopbackFile({self.path}, fd={self.fd})"


class FileSystem:
    """A file system addressed by slash-separated relative paths.

    Every operation raises ENOSYS unless a subclass provides it; failures
    are reported as OSError carrying the errno.
    """

    def get_attr(self, name: str) -> Attr:
        raise fs_error(errno.ENOSYS, name)

    def open_dir(self, name: str) -> list[DirEntry]:
        raise fs_error(errno.ENOSYS, name)

    def readlink(self, name: str) -> str:
        raise fs_error(errno.ENOSYS, name)

    def get_xattr(self, name: str, attr: str) -> bytes:
        raise fs_error(errno.ENODATA, name)

    def mkdir(self, name: str, mode: int) -> None:
        raise fs_error(errno.ENOSYS, name)

    def rmdir(self, name: str) -> None:
        raise fs_error(errno.ENOSYS, name)

    def unlink(self, name: str) -> None:
        raise fs_error(errno.ENOSYS, name)

    def symlink(self, pointed_to: str, link_name: str) -> None:
        raise fs_error(errno.ENOSYS, link_name)

    def link(self, orig: str, new_name: str) -> None:
        raise fs_error(errno.ENOSYS, new_name)

    def rename(self, src: str, dst: str) -> None:
        raise fs_error(errno.ENOSYS, src)

    def chmod(self, name: str, mode: int) -> None:
        raise fs_error(errno.ENOSYS, name)

    def chown(self, name: str, uid: int, gid: int) -> None:
        raise fs_error(errno.ENOSYS, name)

    def utimens(self, name: str, atime: Optional[float],
                mtime: Optional[float]) -> None:
        raise fs_error(errno.ENOSYS, name)

    def truncate(self, name: str, size: int) -> None:
        raise fs_error(errno.ENOSYS, name)

    def access(self, name: str, mode: int) -> None:
        raise fs_error(errno.ENOSYS, name)

    def open(self, name: str, flags: int) -> FileHandle:
        raise fs_error(errno.ENOSYS, name)

    def create(self, name: str, flags: int, mode: int) -> FileHandle:
        raise fs_error(errno.ENOSYS, name)

    def statfs(self, name: str) -> Optional[os.statvfs_result]:
        return None

    def __str__(self) -> str:
        return type(self).__name__


class LoopbackFileSystem(FileSystem):
    """Exposes a directory of the host file system."""

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)

    def _path(self, name: str) -> str:
        return os.path.join(self.root, name) if name else self.root

    def get_attr(self, name: str) -> Attr:
        path = self._path(name)
        st = os.stat(path) if name == "" else os.lstat(path)
        return Attr.from_stat(st)

    def open_dir(self, name: str) -> list[DirEntry]:
        entries = []
        with os.scandir(self._path(name)) as it:
            for entry in it:
                try:
                    mode = entry.stat(follow_symlinks=False).st_mode
                except OSError:
                    mode = stat.S_IFREG
                entries.append(DirEntry(entry.name, mode))
        return entries

    def readlink(self, name: str) -> str:
        return os.readlink(self._path(name))

    def get_xattr(self, name: str, attr: str) -> bytes:
        return os.getxattr(self._path(name), attr)

    def mkdir(self, name: str, mode: int) -> None:
        os.mkdir(self._path(name), mode)

    def rmdir(self, name: str) -> None:
        os.rmdir(self._path(name))

    def unlink(self, name: str) -> None:
        os.unlink(self._path(name))

    def symlink(self, pointed_to: str, link_name: str) -> None:
        os.symlink(pointed_to, self._path(link_name))

    def link(self, orig: str, new_name: str) -> None:
        os.link(self._path(orig), self._path(new_name))

    def rename(self, src: str, dst: str) -> None:
        os.rename(self._path(src), self._path(dst))

    def chmod(self, name: str, mode: int) -> None:
        os.chmod(self._path(name), mode)

    def chown(self, name: str, uid: int, gid: int) -> None:
        os.chown(self._path(name), uid, gid)

    def utimens(self, name: str, atime: Optional[float],
                mtime: Optional[float]) -> None:
        path = self._path(name)
        if atime is None or mtime is None:
            st = os.stat(path)
            atime = st.st_atime if atime is None else atime
            mtime = st.st_mtime if mtime is None else mtime
        os.utime(path, ns=(round(atime * 1e9), round(mtime * 1e9)))

    def truncate(self, name: str, size: int) -> None:
        os.truncate(self._path(name), size)

    def access(self, name: str, mode: int) -> None:
        path = self._path(name)
        if not os.access(path, mode):
            os.lstat(path)
            raise fs_error(errno.EACCES, name)

    def open(self, name: str, flags: int) -> FileHandle:
        path = self._path(name)
        return _LoopbackFile(os.open(path, flags), path)

    def create(self, name: str, flags: int, mode: int) -> FileHandle:
        path = self._path(name)
        return _LoopbackFile(os.open(path, flags | os.O_CREAT, mode), path)

    def statfs(self, name: str) -> os.statvfs_result:
        return os.statvfs(self._path(name))

    def __str__(self) -> str:
        return f"LoopbackFileSystem({self.root})"


def copy_file(src_fs: FileSystem, dst_fs: FileSystem, src_name: str,
              dst_name: str) -> None:
    """Copy one file between file systems, keeping its permission bits."""
    src = src_fs.open(src_name, os.O_RDONLY)
    try:
        attr = src_fs.get_attr(src_name)
        dst = dst_fs.create(dst_name, os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                            attr.mode & 0o7777)
        try:
            offset = 0
            while True:
                data = src.read(_COPY_CHUNK, offset)
                if not data:
                    break
                if dst.write(data, offset) != len(data):
                    raise fs_error(errno.EIO, dst_name)
                offset += len(data)
            dst.flush()
        finally:
            dst.release()
    finally:
        src.release()