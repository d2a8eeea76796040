import errno
import os
import stat
import time

import pytest

from unionfskit.branches import (
    BranchResult,
    UnionFsBase,
    UnionFsFile,
    UnionFsOptions,
    file_path_hash,
    strip_slash,
)
from unionfskit.cachingfs import CachingFileSystem
from unionfskit.filesystem import Attr, LoopbackFileSystem


def _options(branch_ttl=0.1):
    return UnionFsOptions(
        branch_cache_ttl=branch_ttl,
        deletion_cache_ttl=0.1,
        deletion_dir_name="DELETIONS",
        hidden_files=["hidden"],
    )


@pytest.fixture
def dirs(tmp_path):
    rw = tmp_path / "rw"
    ro = tmp_path / "ro"
    rw.mkdir()
    ro.mkdir()
    return rw, ro


def _make(rw, ro, branch_ttl=0.1):
    return UnionFsBase(
        [LoopbackFileSystem(str(rw)),
         CachingFileSystem(LoopbackFileSystem(str(ro)), 0)],
        _options(branch_ttl),
    )


def test_file_path_hash():
    assert file_path_hash("xyz/abc") == "34d52a6371ee5c79-abc"


def test_file_path_hash_without_directory():
    assert file_path_hash("abc") == "d41d8cd98f00b204-abc"


def test_strip_slash():
    assert strip_slash("a/b//") == "a/b"
    assert strip_slash("") == ""


def test_branch_result_valid():
    assert BranchResult(Attr(mode=stat.S_IFREG), 0, 0).valid()
    assert BranchResult(None, errno.ENOENT, -1).valid()
    assert not BranchResult(None, 0, 0).valid()
    assert not BranchResult(Attr(), errno.ENOENT, -1).valid()


def test_creates_deletion_dir(dirs):
    rw, ro = dirs
    _make(rw, ro)
    assert (rw / "DELETIONS").is_dir()


def test_deletion_dir_not_a_directory(dirs):
    rw, ro = dirs
    (rw / "DELETIONS").write_text("x")
    with pytest.raises(OSError) as info:
        _make(rw, ro)
    assert info.value.errno == errno.EROFS


def test_get_branch_locations(dirs):
    rw, ro = dirs
    (rw / "a").write_text("a")
    (ro / "b").write_text("b")
    base = _make(rw, ro)
    a = base.get_branch("a")
    assert a.branch == 0 and a.code == 0
    b = base.get_branch("b")
    assert b.branch == 1
    assert b.attr.ino == 0
    missing = base.get_branch("missing")
    assert (missing.branch, missing.code, missing.attr) == (-1, errno.ENOENT, None)


def test_get_branch_is_cached(dirs):
    rw, ro = dirs
    base = _make(rw, ro, branch_ttl=100)
    assert base.get_branch("f").branch == -1
    (rw / "f").write_text("x")
    assert base.get_branch("f").branch == -1
    assert base.branch_cache.get_fresh("f").branch == 0
    assert base.get_branch("f").branch == 0


def test_set_branch_rejects_invalid(dirs):
    rw, ro = dirs
    base = _make(rw, ro)
    with pytest.raises(ValueError):
        base.set_branch("x", BranchResult(None, 0, 2))


def test_put_deletion_writes_marker(dirs):
    rw, ro = dirs
    (ro / "file").write_text("a")
    base = _make(rw, ro)
    base.put_deletion("file")
    names = os.listdir(rw / "DELETIONS")
    assert names == [file_path_hash("file")]
    assert (rw / "DELETIONS" / names[0]).read_text() == "file"
    assert base.is_deleted("file") is True
    base.put_deletion("file")
    assert len(os.listdir(rw / "DELETIONS")) == 1


def test_remove_deletion(dirs):
    rw, ro = dirs
    base = _make(rw, ro)
    base.put_deletion("file")
    base.remove_deletion("file")
    assert os.listdir(rw / "DELETIONS") == []
    time.sleep(0.3)
    assert base.is_deleted("file") is False


def test_is_deleted_unreadable_store(dirs):
    rw, ro = dirs

    class Broken(LoopbackFileSystem):
        def get_attr(self, name):
            if name.startswith("DELETIONS/"):
                raise OSError(errno.EIO, "broken")
            return super().get_attr(name)

        def open_dir(self, name):
            if name == "DELETIONS":
                raise OSError(errno.EIO, "broken")
            return super().open_dir(name)

    base = UnionFsBase([Broken(str(rw)), LoopbackFileSystem(str(ro))],
                       _options())
    with pytest.raises(OSError) as info:
        base.is_deleted("file")
    assert info.value.errno == errno.EROFS


def test_promote_regular_file(dirs):
    rw, ro = dirs
    (ro / "file").write_text("content")
    os.chmod(ro / "file", 0o444)
    base = _make(rw, ro)
    base.promote("file", base.get_branch("file"))
    assert (rw / "file").read_text() == "content"
    assert os.stat(rw / "file").st_mode & 0o7777 == 0o644
    assert base.get_branch("file").branch == 0


def test_promote_symlink(dirs):
    rw, ro = dirs
    os.symlink("linktarget", ro / "link")
    base = _make(rw, ro)
    base.promote("link", base.get_branch("link"))
    assert os.readlink(rw / "link") == "linktarget"
    assert base.get_branch("link").branch == 0


def test_promote_directory(dirs):
    rw, ro = dirs
    (ro / "subdir").mkdir(mode=0o555)
    os.chmod(ro / "subdir", 0o555)
    base = _make(rw, ro)
    base.promote("subdir", base.get_branch("subdir"))
    assert (rw / "subdir").is_dir()
    assert os.stat(rw / "subdir").st_mode & 0o7777 == 0o755


def test_promote_dirs_to(dirs):
    rw, ro = dirs
    (ro / "subdir" / "sub2").mkdir(parents=True)
    base = _make(rw, ro)
    base.promote_dirs_to("subdir/sub2/file")
    assert (rw / "subdir" / "sub2").is_dir()
    assert base.get_branch("subdir").branch == 0
    assert base.get_branch("subdir/sub2").branch == 0


def test_promote_dirs_to_through_file(dirs):
    rw, ro = dirs
    (ro / "plain").write_text("x")
    base = _make(rw, ro)
    with pytest.raises(OSError) as info:
        base.promote_dirs_to("plain/child")
    assert info.value.errno == errno.EPERM


def test_promote_reopens_open_files(dirs):
    rw, ro = dirs
    (ro / "file").write_text("blablabla")
    base = _make(rw, ro)
    handle = base.file_systems[1].open("file", os.O_RDONLY)
    uf = UnionFsFile(handle, base, "file", 1)
    assert base.open_files("file") == [uf]
    base.promote("file", base.get_branch("file"))
    assert uf.layer == 0
    (rw / "file").write_text("hello")
    assert uf.read(100, 0) == b"hello"
    uf.release()
    assert base.open_files("file") == []


def test_union_file_get_attr_writable(dirs):
    rw, ro = dirs
    (ro / "file").write_text("abc")
    os.chmod(ro / "file", 0o444)
    base = _make(rw, ro)
    uf = UnionFsFile(base.file_systems[1].open("file", os.O_RDONLY), base,
                     "file", 1)
    try:
        attr = uf.get_attr()
        assert attr.mode & 0o7777 == 0o644
        assert attr.size == 3
    finally:
        uf.release()


def test_union_file_flush_refreshes_branch(dirs):
    rw, ro = dirs
    base = _make(rw, ro, branch_ttl=100)
    assert base.get_branch("new").branch == -1
    handle = base.file_systems[0].create("new", os.O_WRONLY, 0o644)
    uf = UnionFsFile(handle, base, "new", 0)
    assert uf.write(b"hello", 0) == 5
    uf.flush()
    uf.release()
    result = base.get_branch("new")
    assert result.branch == 0
    assert result.attr.size == 5