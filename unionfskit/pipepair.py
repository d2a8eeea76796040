"""Pipe pairs used to move data between descriptors with splice(2)."""

from __future__ import annotations

import errno
import fcntl
import functools
import os
from typing import IO, Union

DEFAULT_PIPE_SIZE = 16 * 4096
"""Pipe capacity assumed when the kernel cannot report it."""

F_SETPIPE_SZ = 1031
F_GETPIPE_SZ = 1032

_PIPE_MAX_SIZE_PATH = "/proc/sys/fs/pipe-max-size"

FileLike = Union[int, IO]


class SpliceError(Exception):
    """Raised when a pipe pair cannot be created, resized or filled."""


def _fileno(fd: FileLike) -> int:
    return fd if isinstance(fd, int) else fd.fileno()


@functools.lru_cache(maxsize=None)
def _probe() -> tuple[int, bool]:
    """Read the system pipe size limit and test whether pipes can be resized."""
    try:
        with open(_PIPE_MAX_SIZE_PATH, encoding="ascii") as fh:
            max_size = int(fh.read().split()[0])
    except (OSError, ValueError, IndexError):
        max_size = DEFAULT_PIPE_SIZE

    r, w = os.pipe()
    try:
        try:
            size = fcntl.fcntl(r, F_GETPIPE_SZ)
            fcntl.fcntl(r, F_SETPIPE_SZ, 2 * size)
            can_resize = True
        except OSError:
            can_resize = False
    finally:
        os.close(r)
        os.close(w)
    return max_size, can_resize


@functools.lru_cache(maxsize=None)
def _dev_null_fd() -> int:
    """Descriptor of /dev/null, used to empty pipes."""
    return os.open(os.devnull, os.O_WRONLY)


def resizable() -> bool:
    """Whether pipe capacity can be changed on this system."""
    return _probe()[1]


def max_pipe_size() -> int:
    """The largest pipe capacity the system allows."""
    return _probe()[0]


class Pair:
    """The two ends of a non-blocking pipe, with its current capacity."""

    def __init__(self, r: int, w: int, size: int) -> None:
        self.r = r
        self.w = w
        self.size = size

    def __repr__(self) -> str:
        return f"Pair(r={self.r}, w={self.w}, size={self.size})"

    def __enter__(self) -> "Pair":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def max_grow(self) -> None:
        """Double the capacity until the system refuses."""
        while True:
            try:
                self.grow(2 * self.size)
            except SpliceError:
                return

    def grow(self, n: int) -> None:
        """Raise the capacity to at least ``n`` bytes."""
        if n <= self.size:
            return
        if not resizable():
            raise SpliceError(f"splice: want {n} bytes, but not resizable")
        limit = max_pipe_size()
        if n > limit:
            raise SpliceError(f"splice: want {n} bytes, max pipe size {limit}")
        try:
            self.size = fcntl.fcntl(self.r, F_SETPIPE_SZ, n)
        except OSError as exc:
            raise SpliceError(f"splice: fcntl returned {exc}") from exc

    def cap(self) -> int:
        """Current capacity in bytes."""
        return self.size

    def close(self) -> None:
        """Close both ends; the first failure is raised after trying both."""
        errors = []
        for fd in (self.r, self.w):
            try:
                os.close(fd)
            except OSError as exc:
                errors.append(exc)
        if errors:
            raise errors[0]

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes from the pipe."""
        return os.read(self.r, size)

    def write(self, data: bytes) -> int:
        """Write ``data`` into the pipe."""
        return os.write(self.w, data)

    def load_from_at(self, fd: FileLike, size: int, offset: int) -> int:
        """Splice ``size`` bytes at ``offset`` of ``fd`` into the pipe."""
        return os.splice(_fileno(fd), self.w, size, offset_src=offset)

    def load_from(self, fd: FileLike, size: int) -> int:
        """Splice up to ``size`` bytes from ``fd`` into the pipe."""
        if size > self.size:
            raise SpliceError(
                f"LoadFrom: not enough space {size}, {self.size}")
        return os.splice(_fileno(fd), self.w, size)

    def write_to(self, fd: FileLike, n: int) -> int:
        """Splice up to ``n`` bytes from the pipe into ``fd``."""
        return os.splice(self.r, _fileno(fd), n)

    def discard(self) -> None:
        """Drop whatever is buffered in the pipe."""
        try:
            os.splice(self.r, _dev_null_fd(), self.size,
                      flags=os.SPLICE_F_NONBLOCK)
        except BlockingIOError:
            return
        except OSError as exc:
            close_errors = []
            for fd in (self.r, self.w):
                try:
                    os.close(fd)
                    close_errors.append(None)
                except OSError as close_exc:
                    close_errors.append(close_exc)
            # Happens when something closed our descriptors, e.g. a double close.
            raise RuntimeError(
                f"splicing into /dev/null: {exc} "
                f"(close R {self.r} '{close_errors[0]}', "
                f"close W {self.w} '{close_errors[1]}')") from exc


def new_splice_pair() -> Pair:
    """Create a non-blocking pipe pair and read its capacity."""
    r, w = os.pipe2(os.O_NONBLOCK)
    pair = Pair(r, w, 0)
    try:
        pair.size = fcntl.fcntl(r, F_GETPIPE_SZ)
    except OSError as exc:
        if exc.errno == errno.EINVAL:
            pair.size = DEFAULT_PIPE_SIZE
            return pair
        pair.close()
        raise SpliceError(f"fcntl getsize: {exc}") from exc
    return pair