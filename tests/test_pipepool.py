import os

import pytest

from unionfskit import pipepool
from unionfskit.pipepool import PairPool


@pytest.fixture
def pool():
    p = PairPool()
    yield p
    p.clear()


def test_get_counts_as_used(pool):
    pair = pool.get()
    assert pool.used() == 1
    assert pool.total() == 1
    pool.done(pair)
    assert pool.used() == 0
    assert pool.total() == 1


def test_done_pair_is_reused(pool):
    pair = pool.get()
    pool.done(pair)
    again = pool.get()
    assert again is pair
    pool.done(again)


def test_done_discards_buffered_data(pool):
    pair = pool.get()
    pair.write(b"hello")
    pool.done(pair)
    again = pool.get()
    with pytest.raises(BlockingIOError):
        again.read(1)
    pool.done(again)


def test_drop_closes_and_forgets(pool):
    pair = pool.get()
    r = pair.r
    pool.drop(pair)
    assert pool.used() == 0
    assert pool.total() == 0
    with pytest.raises(OSError):
        os.fstat(r)


def test_clear_closes_idle_pairs(pool):
    first = pool.get()
    second = pool.get()
    pool.done(first)
    pool.done(second)
    assert pool.total() == 2
    pool.clear()
    assert pool.total() == pool.used()
    with pytest.raises(OSError):
        os.fstat(first.r)


def test_clear_keeps_pairs_in_use(pool):
    pair = pool.get()
    pool.clear()
    assert pool.used() == pool.total()
    pair.write(b"x")
    assert pair.read(1) == b"x"
    pool.drop(pair)


def test_distinct_pairs_while_in_use(pool):
    first = pool.get()
    second = pool.get()
    assert first is not second
    assert {first.r, first.w}.isdisjoint({second.r, second.w})
    pool.done(first)
    pool.done(second)


def test_shared_pool_functions():
    used_before = pipepool.used()
    pair = pipepool.get()
    assert pipepool.used() == used_before + 1
    pipepool.done(pair)
    assert pipepool.used() == used_before
    total_before = pipepool.total()
    pair = pipepool.get()
    pipepool.drop(pair)
    assert pipepool.total() == total_before - 1
    pipepool.clear_splice_pool()
    assert pipepool.total() == pipepool.used()