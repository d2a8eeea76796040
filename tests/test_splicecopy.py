import os

import pytest

from unionfskit.pipepair import max_pipe_size
from unionfskit.pipepool import PairPool
from unionfskit.splicecopy import copy_fds, copy_file, splice_copy


def test_copy_file(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.write_bytes(b"hello")
    dst.write_bytes(b"")
    copy_file(str(dst), str(src), 0o755)
    assert dst.read_bytes() == b"hello"


def test_splice_copy(tmp_path):
    data = bytes(range(256)) * (2 * 1024 * 1024 // 256)
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.write_bytes(data)

    size = max_pipe_size()
    assert size % 4096 == 0 and size >= 4096

    pool = PairPool()
    pair = pool.get()
    try:
        pair.max_grow()
        with open(src, "rb") as fin, open(dst, "wb") as fout:
            copied = splice_copy(fout, fin, pair)
    finally:
        pair.close()
    assert copied == len(data)
    assert dst.read_bytes() == data


def test_copy_file_creates_with_mode(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "new"
    src.write_bytes(b"abc")
    copy_file(str(dst), str(src), 0o600)
    assert os.stat(dst).st_mode & 0o777 == 0o600
    assert dst.read_bytes() == b"abc"


def test_copy_file_truncates_destination(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.write_bytes(b"short")
    dst.write_bytes(b"a much longer existing content")
    copy_file(str(dst), str(src), 0o644)
    assert dst.read_bytes() == b"short"


def test_copy_file_missing_source(tmp_path):
    with pytest.raises(FileNotFoundError):
        copy_file(str(tmp_path / "dst"), str(tmp_path / "absent"), 0o644)
    assert not (tmp_path / "dst").exists()


def test_copy_fds_empty_source(tmp_path):
    src = tmp_path / "empty"
    dst = tmp_path / "dst"
    src.write_bytes(b"")
    with open(src, "rb") as fin, open(dst, "wb") as fout:
        copy_fds(fout, fin)
    assert dst.read_bytes() == b""


def test_copy_fds_with_raw_descriptors(tmp_path):
    data = os.urandom(300 * 1024)
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.write_bytes(data)
    src_fd = os.open(src, os.O_RDONLY)
    dst_fd = os.open(dst, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        copy_fds(dst_fd, src_fd)
    finally:
        os.close(src_fd)
        os.close(dst_fd)
    assert dst.read_bytes() == data