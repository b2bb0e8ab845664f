"""IPv4 and hardware address parsing and formatting.

IPv4 addresses are plain integers in natural order: ``a.b.c.d`` is
``a << 24 | b << 16 | c << 8 | d``.
"""

from __future__ import annotations

import re

_IP_RE = re.compile(r"\s*(\d+)\.(\d+)\.(\d+)\.(\d+)")
_INT_RE = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    """Leading integer of ``text``, or 0 when there is none."""
    match = _INT_RE.match(text)
    return int(match.group(1)) if match else 0


def str2ip(text: str) -> int:
    """Parse dotted-quad text into an address; trailing text is ignored."""
    match = _IP_RE.match(text)
    if match is None:
        raise ValueError(f"bad ip address {text!r}")
    octets = [int(part) for part in match.groups()]
    if any(octet > 255 for octet in octets):
        raise ValueError(f"bad ip address {text!r}")
    a, b, c, d = octets
    return (a << 24) | (b << 16) | (c << 8) | d


def parse_ip_port(text: str) -> tuple[int, int]:
    """Parse ``addr[:port]`` into ``(address, port)``; port defaults to 0."""
    host, sep, port = text.partition(":")
    port_number = _atoi(port) & 0xFFFF if sep else 0
    return str2ip(host), port_number


def ip_str(addr: int) -> str:
    """Format an address as dotted-quad text."""
    if not 0 <= addr <= 0xFFFFFFFF:
        raise ValueError(f"address out of range: {addr}")
    return ".".join(str((addr >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def mac_str(hwaddr: bytes) -> str:
    """Format a six byte hardware address as colon separated hex."""
    if len(hwaddr) != 6:
        raise ValueError("hardware address must be 6 bytes")
    return ":".join(f"{octet:02x}" for octet in hwaddr)