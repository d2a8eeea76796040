"""A union file system: one writable branch over any number of read-only ones."""

from __future__ import annotations

import dataclasses
import errno
import logging
import os
import posixpath
import stat
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from typing import Optional, Sequence

from .branches import (BranchResult, UnionFsBase, UnionFsFile, UnionFsOptions,
                       file_path_hash, strip_slash)
from .cachingfs import DROP_CACHE, CachingFileSystem
from .dircache import new_dirname_map
from .filesystem import (O_ANYWRITE, Attr, DevNullFile, DirEntry, FileHandle,
                         FileSystem, LoopbackFileSystem, fs_error)

_log = logging.getLogger(__name__)


def _list_branch(fs: FileSystem, directory: str) -> Optional[dict[str, int]]:
    """Names and modes of ``directory`` in one branch, or None on failure."""
    try:
        return {e.name: e.mode for e in fs.open_dir(directory)}
    except OSError:
        return None


class UnionFs(UnionFsBase):
    """Overlays a writable file system with read-only ones.

    Changes to files of read-only branches first copy them ("promote") into
    the writable branch; deletions are recorded as marker files.
    """

    def link(self, orig: str, new_name: str) -> None:
        orig_result = self.get_branch(orig)
        if orig_result.code:
            raise fs_error(orig_result.code, orig)
        if orig_result.branch > 0:
            self.promote(orig, orig_result)
            # Refresh so the inode number of the promoted copy is known.
            self.branch_cache.get_fresh(orig)
        self.promote_dirs_to(new_name)
        self.file_systems[0].link(orig, new_name)
        self.remove_deletion(new_name)
        self.branch_cache.get_fresh(new_name)

    def rmdir(self, path: str) -> None:
        result = self.get_branch(path)
        if result.code:
            raise fs_error(result.code, path)
        if not result.attr.is_dir():
            raise fs_error(errno.ENOTDIR, path)

        try:
            stream = self.open_dir(path)
        except OSError:
            stream = []
        if stream:
            raise fs_error(errno.ENOTEMPTY, path)

        if result.branch > 0:
            self.put_deletion(path)
            return
        self.file_systems[0].rmdir(path)

        result = self.branch_cache.get_fresh(path)
        if result.branch > 0:
            self.put_deletion(path)

    def mkdir(self, path: str, mode: int) -> None:
        if not self.is_deleted(path):
            if self.get_branch(path).code != errno.ENOENT:
                raise fs_error(errno.EEXIST, path)

        self.promote_dirs_to(path)
        self.file_systems[0].mkdir(path, mode)
        self.remove_deletion(path)
        self.set_branch(path, BranchResult(Attr(mode=stat.S_IFDIR | mode), 0, 0))

        # Entries of read-only branches must not show through the new directory.
        for entry in self.open_dir(path):
            self.put_deletion(posixpath.join(path, entry.name))

    def symlink(self, pointed_to: str, link_name: str) -> None:
        self.promote_dirs_to(link_name)
        self.file_systems[0].symlink(pointed_to, link_name)
        self.remove_deletion(link_name)
        self.branch_cache.get_fresh(link_name)

    def truncate(self, path: str, size: int) -> None:
        if path == DROP_CACHE:
            return
        result = self.get_branch(path)
        if result.branch > 0:
            self.promote(path, result)
            result.branch = 0
        self.file_systems[0].truncate(path, size)
        if result.attr is None:
            self.branch_cache.get_fresh(path)
            return
        result.attr = dataclasses.replace(result.attr, size=size)
        now = time.time()
        result.attr.set_times(None, now, now)
        self.set_branch(path, result)

    def utimens(self, name: str, atime: Optional[float],
                mtime: Optional[float]) -> None:
        name = strip_slash(name)
        result = self.get_branch(name)
        if result.code:
            raise fs_error(result.code, name)
        if result.branch > 0:
            self.promote(name, result)
            result.branch = 0
        self.file_systems[0].utimens(name, atime, mtime)
        result.attr = dataclasses.replace(result.attr)
        result.attr.set_times(atime, mtime, time.time())
        self.set_branch(name, result)

    def chown(self, name: str, uid: int, gid: int) -> None:
        name = strip_slash(name)
        result = self.get_branch(name)
        if result.attr is None or result.code:
            raise fs_error(result.code or errno.ENOENT, name)
        result.attr = dataclasses.replace(result.attr)

        if os.geteuid() != 0:
            raise fs_error(errno.EPERM, name)

        if result.attr.uid != uid or result.attr.gid != gid:
            if result.branch > 0:
                self.promote(name, result)
                result.branch = 0
            with suppress(OSError):
                self.file_systems[0].chown(name, uid, gid)
        result.attr.uid = uid
        result.attr.gid = gid
        result.attr.set_times(None, None, time.time())
        self.set_branch(name, result)

    def chmod(self, name: str, mode: int) -> None:
        name = strip_slash(name)
        result = self.get_branch(name)
        if result.attr is None or result.code:
            raise fs_error(result.code or errno.ENOENT, name)
        result.attr = dataclasses.replace(result.attr)

        perm_mask = 0o7777
        if result.attr.mode & perm_mask != mode:
            if result.branch > 0:
                self.promote(name, result)
                result.branch = 0
            with suppress(OSError):
                self.file_systems[0].chmod(name, mode)
        result.attr.mode = (result.attr.mode & ~perm_mask) | mode
        result.attr.set_times(None, None, time.time())
        self.set_branch(name, result)

    def access(self, name: str, mode: int) -> None:
        # Writing is always allowed.
        mode &= ~os.W_OK
        if name in ("", DROP_CACHE):
            return
        result = self.get_branch(name)
        if result.branch >= 0:
            self.file_systems[result.branch].access(name, mode)
            return
        raise fs_error(errno.ENOENT, name)

    def unlink(self, name: str) -> None:
        result = self.get_branch(name)
        if result.branch == 0:
            self.file_systems[0].unlink(name)
            result = self.branch_cache.get_fresh(name)
        if result.branch > 0:
            self.put_deletion(name)

    def readlink(self, name: str) -> str:
        result = self.get_branch(name)
        if result.branch >= 0:
            return self.file_systems[result.branch].readlink(name)
        raise fs_error(errno.ENOENT, name)

    def create(self, name: str, flags: int, mode: int) -> FileHandle:
        self.promote_dirs_to(name)
        handle = self.file_systems[0].create(name, flags, mode)
        union_file = UnionFsFile(handle, self, name, 0)
        union_file.open_flags = flags
        self.remove_deletion(name)

        now = time.time()
        attr = Attr(mode=stat.S_IFREG | mode)
        attr.set_times(None, now, now)
        self.set_branch(name, BranchResult(attr, 0, 0))
        return union_file

    def get_attr(self, name: str) -> Attr:
        if name in self.hidden_files:
            raise fs_error(errno.ENOENT, name)
        if name == DROP_CACHE:
            return Attr(mode=stat.S_IFREG | 0o777)
        if name == self.options.deletion_dir_name:
            raise fs_error(errno.ENOENT, name)
        if self.is_deleted(name):
            raise fs_error(errno.ENOENT, name)
        result = self.get_branch(name)
        if result.branch < 0:
            raise fs_error(errno.ENOENT, name)
        attr = dataclasses.replace(result.attr)
        # Make everything appear writable.
        attr.mode |= 0o200
        return attr

    def get_xattr(self, name: str, attr: str) -> bytes:
        if name == DROP_CACHE:
            raise fs_error(errno.ENODATA, name)
        result = self.get_branch(name)
        if result.branch >= 0:
            return self.file_systems[result.branch].get_xattr(name, attr)
        raise fs_error(errno.ENOENT, name)

    def open_dir(self, directory: str) -> list[DirEntry]:
        dir_branch = self.get_branch(directory)
        if dir_branch.branch < 0:
            raise fs_error(errno.ENOENT, directory)

        writable = self.file_systems[0]
        with ThreadPoolExecutor(max_workers=len(self.file_systems) + 1) as pool:
            deletions_future = pool.submit(new_dirname_map, writable,
                                           self.options.deletion_dir_name)
            futures = {
                i: pool.submit(_list_branch, fs, directory)
                for i, fs in enumerate(self.file_systems)
                if i >= dir_branch.branch
            }
            deletions = deletions_future.result()
            listings = {i: f.result() for i, f in futures.items()}

        if deletions is None:
            try:
                writable.get_attr(self.options.deletion_dir_name)
            except OSError as exc:
                if exc.errno != errno.ENOENT:
                    raise fs_error(errno.EROFS, directory) from exc
                deletions = set()
            else:
                raise fs_error(errno.EROFS, directory)

        results = dict(listings.get(0) or {})
        for i in sorted(listings):
            entries = listings[i]
            # The writable branch has no deleted files to filter.
            if i == 0 or entries is None:
                continue
            for name, mode in entries.items():
                if name in results:
                    continue
                marker = file_path_hash(posixpath.join(directory, name))
                if marker not in deletions:
                    results[name] = mode

        if directory == "":
            results.pop(self.options.deletion_dir_name, None)
            for hidden in self.hidden_files:
                results.pop(hidden, None)

        return [DirEntry(name, mode) for name, mode in results.items()]

    def recursive_promote(self, path: str,
                          path_result: BranchResult) -> list[str]:
        """Promote ``path`` and everything below it; return every promoted path."""
        if path_result.branch > 0:
            self.promote(path, path_result)
        names = [path]
        if path_result.attr is not None and path_result.attr.is_dir():
            for entry in self.open_dir(path):
                child = posixpath.join(path, entry.name)
                names.extend(self.recursive_promote(child, self.get_branch(child)))
        return names

    def _rename_directory(self, src_result: BranchResult, src_dir: str,
                          dst_dir: str) -> None:
        names = self.recursive_promote(src_dir, src_result)
        self.promote_dirs_to(dst_dir)
        self.file_systems[0].rename(src_dir, dst_dir)

        for src_name in names:
            relative = src_name[len(src_dir):].lstrip("/")
            dst = posixpath.join(dst_dir, relative) if relative else dst_dir
            self.remove_deletion(dst)

            moved = self.get_branch(src_name)
            if moved.attr is not None:
                moved.branch = 0
                moved.code = 0
                self.set_branch(dst, moved)
            else:
                self.branch_cache.drop_entry(dst)

            if self.branch_cache.get_fresh(src_name).branch > 0:
                self.put_deletion(src_name)

    def rename(self, src: str, dst: str) -> None:
        src_result = self.get_branch(src)
        if src_result.code:
            raise fs_error(src_result.code, src)

        if src_result.attr.is_dir():
            self._rename_directory(src_result, src, dst)
            return

        if src_result.branch > 0:
            self.promote(src, src_result)
        self.promote_dirs_to(dst)
        self.file_systems[0].rename(src, dst)

        self.remove_deletion(dst)
        # Renames race with files being flushed; let the next lookup decide.
        self.branch_cache.drop_entry(dst)

        if self.branch_cache.get_fresh(src).branch > 0:
            self.put_deletion(src)

    def drop_branch_cache(self, names) -> None:
        self.branch_cache.drop_all(names)

    def drop_deletion_cache(self) -> None:
        self.deletion_cache.drop_cache()

    def drop_sub_fs_caches(self) -> None:
        """Ask every branch that supports it to drop its caches."""
        for fs in self.file_systems:
            try:
                attr = fs.get_attr(DROP_CACHE)
            except OSError:
                continue
            if not attr.is_regular():
                continue
            try:
                handle = fs.open(DROP_CACHE, os.O_WRONLY)
            except OSError:
                continue
            handle.flush()
            handle.release()

    def open(self, name: str, flags: int) -> FileHandle:
        if name == DROP_CACHE:
            if flags & O_ANYWRITE:
                _log.info("Forced cache drop on %s", self)
                self.drop_branch_cache(None)
                self.drop_deletion_cache()
                self.drop_sub_fs_caches()
            return DevNullFile()

        result = self.get_branch(name)
        if result.branch < 0:
            _log.warning("open of non-existent file: %s", name)
            raise fs_error(errno.ENOENT, name)
        if flags & O_ANYWRITE and result.branch > 0:
            self.promote(name, result)
            result.branch = 0
            result.attr = dataclasses.replace(result.attr)
            result.attr.set_times(None, time.time(), None)
            self.set_branch(name, result)

        handle = self.file_systems[result.branch].open(name, flags)
        union_file = UnionFsFile(handle, self, name, result.branch)
        union_file.open_flags = flags
        return union_file

    def statfs(self, name: str) -> Optional[os.statvfs_result]:
        return self.file_systems[0].statfs("")


def new_union_fs_from_roots(roots: Sequence[str], options: UnionFsOptions,
                            ro_caching: bool) -> UnionFs:
    """Build a union of directories; the first one is writable.

    With ``ro_caching`` the read-only branches cache their metadata.
    """
    fses: list[FileSystem] = []
    for i, root in enumerate(roots):
        if not stat.S_ISDIR(os.stat(root).st_mode):
            raise fs_error(errno.ENOTDIR, root)
        fs: FileSystem = LoopbackFileSystem(root)
        if i > 0 and ro_caching:
            fs = CachingFileSystem(fs, 0)
        fses.append(fs)
    return UnionFs(fses, dataclasses.replace(options))