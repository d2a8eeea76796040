"""Read-only in-memory trees built from zip and tar archives."""

from __future__ import annotations

import bz2
import calendar
import dataclasses
import errno
import gzip
import logging
import posixpath
import stat
import struct
import tarfile
import threading
import zipfile
import zlib
from typing import BinaryIO, Optional

from .filesystem import Attr, DataFile, FileHandle, fs_error

_log = logging.getLogger(__name__)

_EXT_TIMESTAMP_TAG = 0x5455
_UNIX_CREATORS = (3, 19)
_MSDOS_CREATORS = (0, 11, 14)


class Node:
    """One entry of an archive tree: a directory, file, symlink or device.

    ``mode`` holds only the file type bits; the permission bits come from
    ``attr``.
    """

    def __init__(self, mode: int = stat.S_IFDIR, attr: Optional[Attr] = None,
                 data: Optional[bytes] = None,
                 link: Optional[str] = None) -> None:
        self.mode = stat.S_IFMT(mode)
        if attr is None:
            attr = Attr(mode=0o755 if stat.S_ISDIR(self.mode) else 0o644)
        self.attr = attr
        self.data = data
        self.link = link
        self.children: dict[str, Node] = {}
        self._lock = threading.Lock()

    def get_child(self, name: str) -> Optional["Node"]:
        with self._lock:
            return self.children.get(name)

    def add_child(self, name: str, node: "Node") -> bool:
        """Add ``node`` as ``name``; an existing child is kept and False returned."""
        with self._lock:
            if name in self.children:
                return False
            self.children[name] = node
            return True

    def _set_child(self, name: str, node: "Node") -> None:
        with self._lock:
            self.children[name] = node

    def remove_child(self, name: str) -> Optional["Node"]:
        """Remove and return the child ``name``, or None if there is none."""
        with self._lock:
            return self.children.pop(name, None)

    def lookup(self, path: str) -> "Node":
        """The node at the slash-separated ``path`` below this one."""
        node = self
        for comp in path.split("/"):
            if not comp:
                continue
            if not stat.S_ISDIR(node.mode):
                raise fs_error(errno.ENOTDIR, path)
            child = node.get_child(comp)
            if child is None:
                raise fs_error(errno.ENOENT, path)
            node = child
        return node

    def _check_readable(self) -> None:
        if stat.S_ISDIR(self.mode):
            raise fs_error(errno.EISDIR)
        if stat.S_ISLNK(self.mode):
            raise fs_error(errno.ELOOP)

    def open(self) -> FileHandle:
        """Open the contents for reading."""
        self._check_readable()
        return DataFile(self.data or b"")

    def read(self, size: int, offset: int) -> bytes:
        self._check_readable()
        data = self.data or b""
        return data[offset:offset + size]

    def get_attr(self) -> Attr:
        attr = dataclasses.replace(self.attr)
        attr.mode = self.mode | (attr.mode & 0o7777)
        if self.link is not None:
            attr.size = len(self.link.encode())
        elif self.data is not None:
            attr.size = len(self.data)
        return attr


def _zip_mode(info: zipfile.ZipInfo) -> int:
    mode = 0
    if info.create_system in _UNIX_CREATORS:
        mode = info.external_attr >> 16
    elif info.create_system in _MSDOS_CREATORS:
        dos = info.external_attr & 0xFF
        mode = 0o777 if dos & 0x10 else 0o666
        if dos & 0x01:
            mode &= ~0o222
    return mode & 0o7777


def _zip_mtime(info: zipfile.ZipInfo) -> float:
    extra = info.extra
    while len(extra) >= 4:
        tag, size = struct.unpack("<HH", extra[:4])
        body = extra[4:4 + size]
        if tag == _EXT_TIMESTAMP_TAG and len(body) >= 5 and body[0] & 1:
            return float(struct.unpack("<i", body[1:5])[0])
        extra = extra[4 + size:]
    return float(calendar.timegm(info.date_time))


class _ZipFileNode(Node):
    """A file of a zip archive, unpacked on first use."""

    def __init__(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> None:
        mtime = _zip_mtime(info)
        attr = Attr(mode=_zip_mode(info), size=info.file_size, nlink=1,
                    atime=mtime, mtime=mtime, ctime=mtime)
        super().__init__(stat.S_IFREG, attr)
        self._archive = archive
        self._info = info
        self._load_lock = threading.Lock()

    def _load(self) -> bytes:
        with self._load_lock:
            if self.data is None:
                try:
                    self.data = self._archive.read(self._info)
                except (OSError, zipfile.BadZipFile, zlib.error, RuntimeError,
                        NotImplementedError) as exc:
                    raise fs_error(errno.EIO, self._info.filename) from exc
            return self.data

    def open(self) -> FileHandle:
        return DataFile(self._load())

    def read(self, size: int, offset: int) -> bytes:
        return self._load()[offset:offset + size]


def _parent_for(root: Node, directory: str) -> Node:
    parent = root
    for comp in directory.split("/"):
        if not comp:
            continue
        child = parent.get_child(comp)
        if child is None:
            child = Node(stat.S_IFDIR)
            parent.add_child(comp, child)
        parent = child
    return parent


def new_zip_tree(name: str) -> Node:
    """Tree of the zip archive ``name``; file contents are read lazily."""
    archive = zipfile.ZipFile(name)
    root = Node(stat.S_IFDIR)
    for info in archive.infolist():
        if info.is_dir():
            continue
        directory, base = posixpath.split(posixpath.normpath(info.filename))
        parent = _parent_for(root, directory)
        parent._set_child(base, _ZipFileNode(archive, info))
    return root


def header_to_attr(info: tarfile.TarInfo) -> Attr:
    """Attributes of a tar member; missing access and change times use mtime."""
    pax = info.pax_headers
    mtime = float(info.mtime)
    return Attr(
        mode=info.mode,
        size=info.size,
        uid=info.uid,
        gid=info.gid,
        atime=float(pax.get("atime", mtime)),
        mtime=mtime,
        ctime=float(pax.get("ctime", mtime)),
    )


def _add_tar_member(root: Node, archive: tarfile.TarFile,
                    info: tarfile.TarInfo) -> None:
    directory, base = posixpath.split(posixpath.normpath(info.name))
    parent = _parent_for(root, directory)
    attr = header_to_attr(info)

    if info.issym():
        node = Node(stat.S_IFLNK, attr, link=info.linkname)
    elif info.islnk():
        _log.warning("don't know how to handle hard link %s", info.name)
        return
    elif info.ischr():
        node = Node(stat.S_IFCHR, attr, data=b"")
    elif info.isblk():
        node = Node(stat.S_IFBLK, attr, data=b"")
    elif info.isdir():
        node = Node(stat.S_IFDIR, attr, data=b"")
    elif info.isfifo():
        node = Node(stat.S_IFIFO, attr, data=b"")
    elif info.isreg():
        member = archive.extractfile(info)
        data = member.read() if member is not None else b""
        node = Node(stat.S_IFREG, attr, data=data)
    else:
        _log.warning("entry %r: unsupported type %r", info.name, info.type)
        return
    parent.add_child(base, node)


def build_tar_tree(stream: BinaryIO) -> Node:
    """Tree of the tar archive read from ``stream``.

    A read error stops the scan; whatever was read so far is kept.
    """
    root = Node(stat.S_IFDIR)
    try:
        archive = tarfile.open(fileobj=stream, mode="r|")
    except (tarfile.TarError, OSError, EOFError) as exc:
        _log.warning("Add: %s", exc)
        return root
    with archive:
        try:
            for info in archive:
                _add_tar_member(root, archive, info)
        except (tarfile.TarError, OSError, EOFError) as exc:
            _log.warning("Add: %s", exc)
    return root


def new_tar_compressed_tree(name: str, fmt: str) -> Node:
    """Tree of a compressed tar archive; ``fmt`` is "gz" or "bz2"."""
    if fmt == "gz":
        opener = gzip.open
    elif fmt == "bz2":
        opener = bz2.open
    else:
        raise ValueError(f"unknown compression format {fmt!r}")
    with opener(name, "rb") as stream:
        return build_tar_tree(stream)


def new_archive_file_system(name: str) -> Node:
    """Tree of the archive ``name``, chosen by its file name suffix."""
    if name.endswith(".zip"):
        return new_zip_tree(name)
    if name.endswith(".tar.gz"):
        return new_tar_compressed_tree(name, "gz")
    if name.endswith(".tar.bz2"):
        return new_tar_compressed_tree(name, "bz2")
    if name.endswith(".tar"):
        with open(name, "rb") as stream:
            return build_tar_tree(stream)
    raise ValueError(f"unknown archive format {name!r}")