import errno
import os
import stat

import pytest

from unionfskit.filesystem import (
    Attr,
    DataFile,
    DevNullFile,
    DirEntry,
    FileHandle,
    FileSystem,
    LoopbackFileSystem,
    copy_file,
    fs_error,
)


@pytest.fixture
def loop(tmp_path):
    return LoopbackFileSystem(str(tmp_path))


def test_fs_error_maps_errno():
    err = fs_error(errno.ENOENT, "x")
    assert isinstance(err, FileNotFoundError)
    assert err.errno == errno.ENOENT
    assert err.filename == "x"


def test_attr_type_predicates():
    assert Attr(mode=stat.S_IFDIR | 0o755).is_dir()
    assert Attr(mode=stat.S_IFREG | 0o644).is_regular()
    assert Attr(mode=stat.S_IFLNK | 0o777).is_symlink()
    assert not Attr(mode=stat.S_IFLNK | 0o777).is_regular()


def test_attr_set_times_only_given():
    a = Attr(atime=1.0, mtime=2.0, ctime=3.0)
    a.set_times(None, 5.0, None)
    assert (a.atime, a.mtime, a.ctime) == (1.0, 5.0, 3.0)


def test_data_file_reads_slices():
    f = DataFile(b"hello world")
    assert f.read(5, 0) == b"hello"
    assert f.read(100, 6) == b"world"
    assert f.get_attr().size == len(b"hello world")
    with pytest.raises(OSError) as info:
        f.write(b"x", 0)
    assert info.value.errno == errno.ENOSYS


def test_dev_null_file():
    f = DevNullFile()
    assert f.write(b"abc", 0) == 3
    assert f.read(10, 0) == b""


def test_default_file_handle_read_unsupported():
    with pytest.raises(OSError) as info:
        FileHandle().read(1, 0)
    assert info.value.errno == errno.ENOSYS


def test_default_file_system_unsupported():
    fs = FileSystem()
    with pytest.raises(OSError) as info:
        fs.get_attr("a")
    assert info.value.errno == errno.ENOSYS
    with pytest.raises(OSError) as info:
        fs.get_xattr("a", "user.x")
    assert info.value.errno == errno.ENODATA
    assert fs.statfs("") is None


def test_loopback_mkdir_and_listing(loop, tmp_path):
    loop.mkdir("sub", 0o755)
    assert loop.get_attr("sub").is_dir()
    assert loop.get_attr("").is_dir()
    (tmp_path / "f").write_bytes(b"x")
    names = {e.name: stat.S_IFMT(e.mode) for e in loop.open_dir("")}
    assert names == {"sub": stat.S_IFDIR, "f": stat.S_IFREG}


def test_loopback_create_write_read(loop, tmp_path):
    f = loop.create("file", os.O_WRONLY, 0o644)
    assert f.write(b"content", 0) == 7
    f.flush()
    f.release()
    assert (tmp_path / "file").read_bytes() == b"content"
    g = loop.open("file", os.O_RDONLY)
    try:
        assert g.read(100, 0) == b"content"
        assert g.get_attr().size == 7
    finally:
        g.release()


def test_loopback_missing_raises(loop):
    with pytest.raises(FileNotFoundError):
        loop.get_attr("nothing")
    with pytest.raises(FileNotFoundError):
        loop.open_dir("nothing")


def test_loopback_symlink_and_readlink(loop):
    loop.symlink("target", "link")
    assert loop.readlink("link") == "target"
    assert loop.get_attr("link").is_symlink()


def test_loopback_rename_and_unlink(loop, tmp_path):
    (tmp_path / "a").write_bytes(b"1")
    loop.rename("a", "b")
    assert (tmp_path / "b").read_bytes() == b"1"
    loop.unlink("b")
    with pytest.raises(FileNotFoundError):
        loop.get_attr("b")


def test_loopback_link(loop, tmp_path):
    (tmp_path / "a").write_bytes(b"1")
    loop.link("a", "b")
    assert loop.get_attr("a").ino == loop.get_attr("b").ino


def test_loopback_chmod_truncate_utimens(loop, tmp_path):
    (tmp_path / "f").write_bytes(b"hello")
    loop.chmod("f", 0o640)
    loop.truncate("f", 2)
    loop.utimens("f", 42, 43)
    attr = loop.get_attr("f")
    assert attr.mode & 0o7777 == 0o640
    assert attr.size == 2
    assert attr.atime == 42
    assert attr.mtime == 43
    loop.utimens("f", None, 50)
    attr = loop.get_attr("f")
    assert (attr.atime, attr.mtime) == (42, 50)


def test_loopback_rmdir(loop, tmp_path):
    (tmp_path / "d").mkdir()
    assert [e.name for e in loop.open_dir("")] == ["d"]
    loop.rmdir("d")
    assert loop.open_dir("") == []
    with pytest.raises(FileNotFoundError):
        loop.get_attr("d")


def test_loopback_access_missing(loop):
    with pytest.raises(FileNotFoundError):
        loop.access("nothing", os.F_OK)


def test_loopback_statfs(loop):
    assert loop.statfs("").f_bsize > 0


def test_copy_file_between_loopbacks(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    data = bytes(range(256)) * 1000
    (tmp_path / "a" / "f").write_bytes(data)
    os.chmod(tmp_path / "a" / "f", 0o604)
    copy_file(LoopbackFileSystem(str(tmp_path / "a")),
              LoopbackFileSystem(str(tmp_path / "b")), "f", "g")
    assert (tmp_path / "b" / "g").read_bytes() == data


def test_dir_entry_fields():
    e = DirEntry("n", stat.S_IFREG)
    assert (e.name, e.mode) == ("n", stat.S_IFREG)