import copy

import pytest

from blockrange.ring_buffer import RingBuffer


def test_zero_capacity_should_ignore_elements():
    buf = RingBuffer(0)
    buf.push(1)
    assert len(buf) == 0
    assert buf.back() is None


def test_limited_capacity_evicts_oldest():
    buf = RingBuffer(3)
    for item in range(1, 6):
        buf.push(item)
    assert list(buf) == [3, 4, 5]


def test_unbounded_keeps_everything():
    buf = RingBuffer()
    for item in range(100):
        buf.push(item)
    assert len(buf) == 100
    assert buf.back() == 99


def test_pop_back_returns_newest_first():
    buf = RingBuffer(5)
    buf.push("a")
    buf.push("b")
    assert buf.pop_back() == "b"
    assert buf.pop_back() == "a"
    assert buf.pop_back() is None


def test_back_does_not_remove():
    buf = RingBuffer(2)
    buf.push(10)
    assert buf.back() == 10
    assert len(buf) == 1


def test_clear_empties_buffer():
    buf = RingBuffer(4)
    buf.push(1)
    buf.push(2)
    buf.clear()
    assert list(buf) == []
    assert buf.back() is None


def test_negative_capacity_rejected():
    with pytest.raises(ValueError):
        RingBuffer(-1)


def test_copy_is_independent():
    buf = RingBuffer(3)
    buf.push(1)
    clone = copy.copy(buf)
    clone.push(2)
    assert list(buf) == [1]
    assert list(clone) == [1, 2]
    assert clone.capacity == buf.capacity