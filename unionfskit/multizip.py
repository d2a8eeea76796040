"""A tree that mounts archives named by symlinks in its config directory.

Symlinking an archive to config/<name> makes its contents appear at
/<name>; removing the link removes the mount again.
"""

from __future__ import annotations

import errno
import logging
import stat
import tarfile
import zipfile

from .archivefs import Node, new_archive_file_system
from .filesystem import fs_error

CONFIG = "config"

_log = logging.getLogger(__name__)


class MultiZipFs:
    """Root of a tree of mounted archives."""

    def __init__(self) -> None:
        self.root = Node(stat.S_IFDIR)
        self.config = Node(stat.S_IFDIR)
        self.root.add_child(CONFIG, self.config)

    def symlink(self, target: str, base: str) -> Node:
        """Mount the archive ``target`` as ``base``; return the config link."""
        try:
            archive = new_archive_file_system(target)
        except (OSError, ValueError, zipfile.BadZipFile,
                tarfile.TarError) as exc:
            _log.warning("opening archive %s failed: %s", target, exc)
            raise fs_error(errno.EINVAL, base) from exc

        self.root.add_child(base, archive)
        link = Node(stat.S_IFLNK, link=target)
        self.config.add_child(base, link)
        return link

    def unlink(self, basename: str) -> None:
        """Unmount the archive configured as ``basename``."""
        if self.config.get_child(basename) is None:
            raise fs_error(errno.ENOENT, basename)
        if self.root.get_child(basename) is None:
            raise fs_error(errno.ENOENT, basename)
        if self.root.remove_child(basename) is None:
            raise fs_error(errno.EIO, basename)
        self.config.remove_child(basename)

    def lookup(self, path: str) -> Node:
        return self.root.lookup(path)

    def readlink(self, path: str) -> str:
        node = self.lookup(path)
        if node.link is None:
            raise fs_error(errno.EINVAL, path)
        return node.link

    def list_dir(self, path: str) -> list[str]:
        """Sorted names in the directory at ``path``."""
        node = self.lookup(path)
        if not stat.S_ISDIR(node.mode):
            raise fs_error(errno.ENOTDIR, path)
        return sorted(node.children)