"""Internet checksums for IP, ICMP, TCP and UDP."""

from __future__ import annotations

IP_PROTO_TCP = 6
IP_PROTO_UDP = 17


def _sum_words(data: bytes, total: int) -> int:
    for index in range(0, len(data) - 1, 2):
        total += (data[index] << 8) | data[index + 1]
    if len(data) % 2:
        total += data[-1] << 8
    return total


def internet_checksum(data: bytes, initial: int = 0) -> int:
    """Ones' complement checksum of ``data`` added onto ``initial``."""
    total = _sum_words(bytes(data), initial)
    total = (total & 0xFFFF) + (total >> 16)
    total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def ip_checksum(data: bytes) -> int:
    """Checksum of an IP header; 0 when a header's checksum is valid."""
    return internet_checksum(data)


def icmp_checksum(data: bytes) -> int:
    """Checksum of an ICMP message; 0 when the message is valid."""
    return internet_checksum(data)


def pseudo_header_sum(src: int, dst: int, proto: int, length: int) -> int:
    """Unfolded sum of the TCP/UDP pseudo header."""
    return (
        (src >> 16) + (src & 0xFFFF)
        + (dst >> 16) + (dst & 0xFFFF)
        + proto + length
    )


def tcp_checksum(src: int, dst: int, data: bytes) -> int:
    """Checksum of a TCP segment including its pseudo header."""
    return internet_checksum(
        data, pseudo_header_sum(src, dst, IP_PROTO_TCP, len(data))
    )


def udp_checksum(src: int, dst: int, data: bytes) -> int:
    """Checksum of a UDP datagram including its pseudo header.

    The raw value is returned; a sender stores 0xffff in place of 0,
    since 0 on the wire means no checksum.
    """
    return internet_checksum(
        data, pseudo_header_sum(src, dst, IP_PROTO_UDP, len(data))
    )