"""Packet buffers, the pool that accounts for them, and L2/L3 headers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

ETH_ALEN = 6
ETH_HEADER_LEN = 14
BROADCAST_HWADDR = b"\xff" * ETH_ALEN

IP_HEADER_LEN = 20
IP_VERSION_4 = 4
IP_FRAG_RS = 0x8000
IP_FRAG_DF = 0x4000
IP_FRAG_MF = 0x2000
IP_FRAG_OFF = 0x1FFF

IP_PROTO_ICMP = 1
IP_PROTO_TCP = 6
IP_PROTO_UDP = 17

MAX_PKBS = 200

_ETH_FORMAT = "!6s6sH"
_IP_FORMAT = "!BBHHHBBHII"


class EtherType(IntEnum):
    IP = 0x0800
    ARP = 0x0806
    RARP = 0x8035


class PacketType(IntEnum):
    NONE = 0
    LOCALHOST = 1
    OTHERHOST = 2
    MULTICAST = 3
    BROADCAST = 4


@dataclass
class EthernetHeader:
    dst: bytes
    src: bytes
    proto: int

    @classmethod
    def parse(cls, data: bytes) -> "EthernetHeader":
        if len(data) < ETH_HEADER_LEN:
            raise ValueError("frame is shorter than an ethernet header")
        dst, src, proto = struct.unpack_from(_ETH_FORMAT, data)
        return cls(dst, src, proto)

    def pack(self) -> bytes:
        return struct.pack(_ETH_FORMAT, bytes(self.dst), bytes(self.src), self.proto)


@dataclass
class IPv4Header:
    version: int = IP_VERSION_4
    ihl: int = IP_HEADER_LEN // 4
    tos: int = 0
    total_length: int = IP_HEADER_LEN
    ident: int = 0
    frag_off: int = 0
    ttl: int = 0
    proto: int = 0
    checksum: int = 0
    src: int = 0
    dst: int = 0
    options: bytes = b""

    @classmethod
    def parse(cls, data: bytes) -> "IPv4Header":
        if len(data) < IP_HEADER_LEN:
            raise ValueError("data is shorter than an ip header")
        (vihl, tos, total_length, ident, frag_off,
         ttl, proto, checksum, src, dst) = struct.unpack_from(_IP_FORMAT, data)
        ihl = vihl & 0x0F
        return cls(
            version=vihl >> 4,
            ihl=ihl,
            tos=tos,
            total_length=total_length,
            ident=ident,
            frag_off=frag_off,
            ttl=ttl,
            proto=proto,
            checksum=checksum,
            src=src,
            dst=dst,
            options=bytes(data[IP_HEADER_LEN:ihl * 4]),
        )

    def pack(self) -> bytes:
        head = struct.pack(
            _IP_FORMAT,
            ((self.version & 0x0F) << 4) | (self.ihl & 0x0F),
            self.tos,
            self.total_length,
            self.ident,
            self.frag_off,
            self.ttl,
            self.proto,
            self.checksum,
            self.src,
            self.dst,
        )
        return head + bytes(self.options)

    def header_length(self) -> int:
        """Header length in bytes."""
        return self.ihl * 4

    def fragment_offset(self) -> int:
        """Fragment offset in bytes."""
        return (self.frag_off & IP_FRAG_OFF) * 8


class PacketBuffer:
    """A frame together with the metadata the stack attaches to it."""

    def __init__(self, data: bytes = b"") -> None:
        self.data = bytearray(data)
        self.proto = 0xFFFF
        self.type = PacketType.NONE
        self.refcnt = 1
        self.indev: Any = None
        self.rtdst: Any = None
        self.sk: Any = None

    def __len__(self) -> int:
        return len(self.data)

    def trim(self, length: int) -> None:
        """Cut the frame down to ``length`` bytes (drops L2 padding)."""
        if length < 0:
            raise ValueError("length must not be negative")
        del self.data[length:]

    def copy(self) -> "PacketBuffer":
        """An independent copy with the same metadata and one reference."""
        clone = PacketBuffer(self.data)
        clone.proto = self.proto
        clone.type = self.type
        clone.indev = self.indev
        clone.rtdst = self.rtdst
        clone.sk = self.sk
        return clone

    def hexdump(self) -> str:
        """Printable and hexadecimal dumps of the frame, 16 bytes a line."""
        lines = [f"packet size: {len(self.data)} bytes", "packet buffer(ascii):"]
        chunks = [self.data[pos:pos + 16] for pos in range(0, len(self.data), 16)]
        for number, chunk in enumerate(chunks):
            text = "".join(chr(b) if 0x20 <= b <= 0x7E else "." for b in chunk)
            lines.append(f"{number * 16:08x}: {text}")
        lines.append("packet buffer(raw):")
        for number, chunk in enumerate(chunks):
            pairs = [chunk[pos:pos + 2].hex() for pos in range(0, len(chunk), 2)]
            lines.append(f"{number * 16:08x}: " + "".join(" " + p for p in pairs))
        return "\n".join(lines) + "\n"


@dataclass
class PacketPool:
    """Allocates packet buffers and tracks how many are alive."""

    limit: int = MAX_PKBS
    allocated: int = field(default=0, init=False)
    freed: int = field(default=0, init=False)

    def __init__(self, limit: int = MAX_PKBS) -> None:
        self.limit = limit
        self.allocated = 0
        self.freed = 0

    def _account(self, pkb: PacketBuffer) -> PacketBuffer:
        self.allocated += 1
        if self.in_use() > self.limit:
            self.allocated -= 1
            raise RuntimeError("too many packet buffers")
        return pkb

    def allocate(self, size: int) -> PacketBuffer:
        """A zero filled buffer of ``size`` bytes."""
        if size < 0:
            raise ValueError("size must not be negative")
        return self._account(PacketBuffer(bytes(size)))

    def copy(self, pkb: PacketBuffer) -> PacketBuffer:
        return self._account(pkb.copy())

    def hold(self, pkb: PacketBuffer) -> None:
        pkb.refcnt += 1

    def release(self, pkb: PacketBuffer) -> None:
        pkb.refcnt -= 1
        if pkb.refcnt == 0:
            self.freed += 1

    def in_use(self) -> int:
        return self.allocated - self.freed


def classify_frame(pkb: PacketBuffer, hwaddr: bytes) -> EthernetHeader:
    """Set the packet's link type and protocol from its ethernet header."""
    if len(pkb) < ETH_HEADER_LEN:
        raise ValueError(f"received packet is too small:{len(pkb)} bytes")
    header = EthernetHeader.parse(pkb.data)
    if header.dst[0] & 0x01:
        if header.dst == BROADCAST_HWADDR:
            pkb.type = PacketType.BROADCAST
        else:
            pkb.type = PacketType.MULTICAST
    elif header.dst == bytes(hwaddr):
        pkb.type = PacketType.LOCALHOST
    else:
        pkb.type = PacketType.OTHERHOST
    pkb.proto = header.proto
    return header