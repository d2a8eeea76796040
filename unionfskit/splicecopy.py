"""File copying through pipe pairs, falling back to plain reads and writes."""

from __future__ import annotations

import os

from . import pipepool
from .pipepair import FileLike, Pair, SpliceError, _fileno

_COPY_PIPE_SIZE = 256 * 1024
_FALLBACK_CHUNK = 64 * 1024


def splice_copy(dst: FileLike, src: FileLike, pair: Pair) -> int:
    """Copy ``src`` to ``dst`` through ``pair``; return the bytes written."""
    src_fd = _fileno(src)
    dst_fd = _fileno(dst)
    total = 0
    while True:
        n = pair.load_from(src_fd, pair.size)
        if n == 0:
            break
        m = pair.write_to(dst_fd, n)
        total += m
        if m < n:
            return total
        if n < pair.size:
            break
    return total


def _plain_copy(dst_fd: int, src_fd: int) -> None:
    while True:
        chunk = os.read(src_fd, _FALLBACK_CHUNK)
        if not chunk:
            return
        view = memoryview(chunk)
        while view:
            written = os.write(dst_fd, view)
            view = view[written:]


def copy_file(dst_name: str, src_name: str, mode: int) -> None:
    """Copy the file ``src_name`` to ``dst_name``, created with ``mode``."""
    with open(src_name, "rb") as src:
        dst_fd = os.open(dst_name, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with open(dst_fd, "wb", closefd=True) as dst:
            copy_fds(dst, src)


def copy_fds(dst: FileLike, src: FileLike) -> None:
    """Copy everything readable from ``src`` into ``dst``."""
    src_fd = _fileno(src)
    dst_fd = _fileno(dst)
    try:
        pair = pipepool.get()
    except (SpliceError, OSError):
        _plain_copy(dst_fd, src_fd)
        return

    try:
        try:
            pair.grow(_COPY_PIPE_SIZE)
        except SpliceError:
            pass
        splice_copy(dst_fd, src_fd, pair)
    finally:
        pipepool.done(pair)