import pytest

from tapstack.cbuf import CircularBuffer


def test_one_byte_buffer():
    cbuf = CircularBuffer(1)
    for _ in range(10000):
        assert cbuf.write(b"h") == 1
        assert cbuf.read(1) == b"h"
        assert cbuf.read(1) == b""


def test_sixteen_bytes_and_wrap():
    cbuf = CircularBuffer(16)
    assert cbuf.write(b"0123456789abcdefXYZ") == 16
    data = cbuf.read(16)
    assert len(data) == 16
    assert data == b"0123456789abcdefXYZ"[:16]
    assert cbuf.head == 0 and cbuf.tail == 0
    assert cbuf.write(b"XXXXXXXX") == 8
    assert cbuf.read(4) == b"XXXX"
    assert cbuf.write(b"0123456789abcdefXYZ") == 12
    data = cbuf.read(16)
    assert len(data) == 16
    assert data == b"XXXX0123456789abcdefXYZ"[:16]


def test_large_buffer_many_rounds():
    cbuf = CircularBuffer(9999)
    for i in range(10, 0, -1):
        payload = bytes((i + j) % 256 for j in range(i * 7))
        for _ in range(200):
            assert cbuf.write(payload) == i * 7
            assert cbuf.read(i * 7) == payload
    assert cbuf.used() == 0


def test_used_and_free_invariant():
    cbuf = CircularBuffer(10)
    cbuf.write(b"abcd")
    assert cbuf.used() == 4
    assert cbuf.used() + cbuf.free() == cbuf.size
    assert len(cbuf) == cbuf.used()


def test_full_buffer_rejects_more():
    cbuf = CircularBuffer(4)
    assert cbuf.write(b"abcd") == 4
    assert cbuf.write(b"e") == 0
    assert cbuf.read(10) == b"abcd"


def test_zero_size_buffer():
    cbuf = CircularBuffer(0)
    assert cbuf.write(b"abc") == 0
    assert cbuf.read(3) == b""


def test_negative_size():
    with pytest.raises(ValueError):
        CircularBuffer(-1)