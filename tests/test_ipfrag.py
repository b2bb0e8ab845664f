import pytest

from tapstack.checksum import ip_checksum
from tapstack.ipfrag import Fragment, Reassembler, fragment_packet
from tapstack.packet import (
    ETH_HEADER_LEN,
    IP_FRAG_MF,
    IPv4Header,
    PacketPool,
)


def make_packet(pool, payload, ident=7):
    h = IPv4Header(total_length=20 + len(payload), ident=ident, ttl=64, proto=17,
                   src=0x0A000002, dst=0x0A000001)
    h.checksum = ip_checksum(h.pack())
    pkb = pool.allocate(ETH_HEADER_LEN + 20 + len(payload))
    pkb.data[ETH_HEADER_LEN:] = h.pack() + payload
    return pkb


def header(pkb):
    return IPv4Header.parse(pkb.data[ETH_HEADER_LEN:])


PAYLOAD = bytes(range(256)) * 12


def test_fragments_have_valid_headers_and_cover_payload():
    pool = PacketPool()
    pkb = make_packet(pool, PAYLOAD)
    frags = fragment_packet(pkb, 1500, pool)
    assert len(frags) > 1
    for f in frags[:-1]:
        assert header(f).frag_off & IP_FRAG_MF
    assert not header(frags[-1]).frag_off & IP_FRAG_MF
    assert all(ip_checksum(bytes(f.data[ETH_HEADER_LEN:ETH_HEADER_LEN + 20])) == 0 for f in frags)
    assert sum(header(f).total_length - 20 for f in frags) == len(PAYLOAD)


@pytest.mark.parametrize("order", [1, -1])
def test_reassembly_round_trip(order):
    pool = PacketPool()
    pkb = make_packet(pool, PAYLOAD)
    frags = fragment_packet(pkb, 576, pool)
    pool.release(pkb)
    r = Reassembler(pool)
    results = [r.reassemble(f) for f in frags[::order]]
    whole = results[-1]
    assert all(x is None for x in results[:-1])
    h = header(whole)
    assert h.frag_off == 0
    assert h.total_length == 20 + len(PAYLOAD)
    assert bytes(whole.data[ETH_HEADER_LEN + 20:]) == PAYLOAD
    assert len(r) == 0
    pool.release(whole)
    assert pool.in_use() == 0


def test_duplicate_fragment_dropped():
    pool = PacketPool()
    pkb = make_packet(pool, PAYLOAD)
    frags = fragment_packet(pkb, 576, pool)
    r = Reassembler(pool)
    dup = frags[0].copy()
    pool.allocated += 1
    assert r.reassemble(frags[0]) is None
    before = pool.freed
    assert r.reassemble(dup) is None
    assert pool.freed == before + 1


def test_fragment_insert_flags():
    pool = PacketPool()
    pkb = make_packet(pool, PAYLOAD)
    first, *rest = fragment_packet(pkb, 1500, pool)
    h = header(first)
    frag = Fragment(h.ident, h.src, h.dst, h.proto)
    assert frag.insert(first)
    assert not frag.is_full()
    for f in rest:
        assert frag.insert(f)
    assert frag.is_full()
    assert frag.complete
    assert frag.insert(rest[-1]) is False


def test_timer_expires_and_reports_first_fragment():
    pool = PacketPool()
    pkb = make_packet(pool, PAYLOAD)
    frags = fragment_packet(pkb, 576, pool)
    pool.release(pkb)
    r = Reassembler(pool, ttl=3)
    r.reassemble(frags[0])
    seen = []
    r.timer(2, seen.append)
    assert seen == []
    r.timer(1, seen.append)
    assert seen == [frags[0]]
    assert r.lookup(header(frags[0])) is None
    for f in frags[1:]:
        pool.release(f)
    assert pool.in_use() == 0


def test_tiny_mtu_rejected():
    pool = PacketPool()
    with pytest.raises(ValueError):
        fragment_packet(make_packet(pool, b"abc"), 24, pool)