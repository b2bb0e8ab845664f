import struct

from tapstack.addr import str2ip
from tapstack.checksum import (
    icmp_checksum,
    internet_checksum,
    ip_checksum,
    pseudo_header_sum,
    tcp_checksum,
    udp_checksum,
)

HEADER = bytes.fromhex("450000730000400040110000c0a80001c0a800c7")


def test_known_ip_header():
    assert ip_checksum(HEADER) == 0xB861


def test_header_with_checksum_verifies():
    cksum = ip_checksum(HEADER)
    filled = HEADER[:10] + struct.pack("!H", cksum) + HEADER[12:]
    assert ip_checksum(filled) == 0


def test_zero_data():
    assert internet_checksum(bytes(8)) == 0xFFFF


def test_odd_length_pads_with_zero():
    assert internet_checksum(b"\x01\x02\x03") == internet_checksum(b"\x01\x02\x03\x00")


def test_icmp_matches_ip():
    data = b"\x08\x00\x00\x00\x00\x01\x00\x01xxxx"
    assert icmp_checksum(data) == ip_checksum(data)


def _pseudo(src, dst, proto, length):
    return struct.pack("!IIBBH", src, dst, 0, proto, length)


def test_tcp_checksum_matches_explicit_pseudo_header():
    src, dst = str2ip("10.0.0.1"), str2ip("10.0.0.2")
    segment = bytes(range(25))
    expected = internet_checksum(_pseudo(src, dst, 6, len(segment)) + segment)
    assert tcp_checksum(src, dst, segment) == expected


def test_udp_checksum_verifies_after_insertion():
    src, dst = str2ip("192.168.0.1"), str2ip("192.168.0.9")
    datagram = bytearray(struct.pack("!HHHH", 1000, 2000, 13, 0) + b"hello")
    cksum = udp_checksum(src, dst, bytes(datagram))
    datagram[6:8] = struct.pack("!H", cksum)
    assert udp_checksum(src, dst, bytes(datagram)) == 0


def test_pseudo_header_sum_symmetry():
    a, b = str2ip("1.2.3.4"), str2ip("5.6.7.8")
    assert pseudo_header_sum(a, b, 17, 30) == pseudo_header_sum(b, a, 17, 30)