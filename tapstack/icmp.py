"""ICMP messages: receiving, echo replies and error reports."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional

from .addr import ip_str
from .checksum import icmp_checksum
from .packet import (
    ETH_HEADER_LEN,
    IP_FRAG_OFF,
    IP_HEADER_LEN,
    IP_PROTO_ICMP,
    IPv4Header,
    PacketBuffer,
    PacketPool,
    PacketType,
)

logger = logging.getLogger(__name__)

ICMP_HEADER_LEN = 8
ICMP_MAX_TYPE = 18
ICMP_MAX_ERROR_PACKET = 576
ICMP_TTL = 64
ICMP_MAX_ECHO_SIZE = 65507

ICMP_NET_UNREACH = 0
ICMP_HOST_UNREACH = 1
ICMP_FRAG_NEEDED = 4
ICMP_EXC_TTL = 0
ICMP_EXC_FRAGTIME = 1
ICMP_REDIRECT_NET = 0
ICMP_REDIRECT_HOST = 1
ICMP_REDIRECT_TOSNET = 2
ICMP_REDIRECT_TOSHOST = 3

_ICMP_FORMAT = "!BBHI"


class IcmpType(IntEnum):
    ECHORLY = 0
    DESTUNREACH = 3
    SOURCEQUENCH = 4
    REDIRECT = 5
    ECHOREQ = 8
    TIMEEXCEED = 11
    PARAMPROBLEM = 12
    TIMESTAMPREQ = 13
    TIMESTAMPRLY = 14
    INFOREQ = 15
    INFORLY = 16
    ADDRMASKREQ = 17
    ADDRMASKRLY = 18


ERROR_TYPES = frozenset({
    IcmpType.DESTUNREACH,
    IcmpType.SOURCEQUENCH,
    IcmpType.REDIRECT,
    IcmpType.TIMEEXCEED,
    IcmpType.PARAMPROBLEM,
})

_INFO = {
    IcmpType.SOURCEQUENCH: "icmp source quench",
    IcmpType.REDIRECT: "icmp redirect",
    IcmpType.TIMEEXCEED: "icmp time exceeded",
    IcmpType.PARAMPROBLEM: "icmp parameter problem",
    IcmpType.TIMESTAMPREQ: "icmp timestamp request",
    IcmpType.TIMESTAMPRLY: "icmp timestamp rely",
    IcmpType.INFOREQ: "icmp infomation request",
    IcmpType.INFORLY: "icmp infomation reply",
    IcmpType.ADDRMASKREQ: "icmp address mask request",
    IcmpType.ADDRMASKRLY: "icmp address mask reply",
}

_REDIRECT_NAMES = {
    ICMP_REDIRECT_NET: "net redirect",
    ICMP_REDIRECT_HOST: "host redirect",
    ICMP_REDIRECT_TOSNET: "type of serice and net redirect",
    ICMP_REDIRECT_TOSHOST: "type of service and host redirect",
}


def is_multicast(addr: int) -> bool:
    return (addr & 0xF0000000) == 0xE0000000


def is_broadcast(addr: int) -> bool:
    return (addr & 0xFF) == 0xFF


@dataclass
class IcmpHeader:
    type: int
    code: int = 0
    checksum: int = 0
    rest: int = 0
    data: bytes = b""

    @classmethod
    def parse(cls, data: bytes) -> "IcmpHeader":
        if len(data) < ICMP_HEADER_LEN:
            raise ValueError("data is shorter than an icmp header")
        icmp_type, code, checksum, rest = struct.unpack_from(_ICMP_FORMAT, data)
        return cls(icmp_type, code, checksum, rest, bytes(data[ICMP_HEADER_LEN:]))

    def pack(self) -> bytes:
        return struct.pack(
            _ICMP_FORMAT, self.type, self.code, self.checksum, self.rest & 0xFFFFFFFF
        ) + bytes(self.data)

    @property
    def ident(self) -> int:
        return self.rest >> 16

    @property
    def seq(self) -> int:
        return self.rest & 0xFFFF

    @property
    def gateway(self) -> int:
        return self.rest

    def is_error(self) -> bool:
        return self.type in ERROR_TYPES

    def with_checksum(self) -> bytes:
        """The packed message with a freshly computed checksum."""
        self.checksum = 0
        self.checksum = icmp_checksum(self.pack())
        return self.pack()


def build_echo_request(ident: int, seq: int, size: int) -> bytes:
    """An echo request whose data is ``size`` bytes of ``x``."""
    if not 0 <= size <= ICMP_MAX_ECHO_SIZE:
        raise ValueError(f"Packet size {size} is too large. Maximum is {ICMP_MAX_ECHO_SIZE}")
    header = IcmpHeader(
        IcmpType.ECHOREQ, 0, 0, ((ident & 0xFFFF) << 16) | (seq & 0xFFFF), b"x" * size
    )
    return header.with_checksum()


class Icmp:
    """ICMP on top of an IP layer offering ``send_out`` and ``send_info``."""

    def __init__(self, ip_layer: Any, pool: PacketPool) -> None:
        self.ip_layer = ip_layer
        self.pool = pool
        self._handlers: dict[int, Callable[[PacketBuffer, IPv4Header, IcmpHeader], None]] = {
            IcmpType.ECHORLY: self._echo_reply,
            IcmpType.DESTUNREACH: self._dest_unreach,
            IcmpType.REDIRECT: self._redirect,
            IcmpType.ECHOREQ: self._echo_request,
        }

    def receive(self, pkb: PacketBuffer) -> Optional[IcmpHeader]:
        """Handle an ICMP packet; returns its header, or None if it was bad."""
        ip = IPv4Header.parse(pkb.data[ETH_HEADER_LEN:])
        hlen = ip.header_length()
        start = ETH_HEADER_LEN + hlen
        length = ip.total_length - hlen
        logger.debug("%d bytes", length)
        message = bytes(pkb.data[start:start + max(length, 0)])
        if length < ICMP_HEADER_LEN or len(message) < length:
            logger.debug("icmp header is too small")
            self.pool.release(pkb)
            return None
        if icmp_checksum(message) != 0:
            logger.debug("icmp checksum is error")
            self.pool.release(pkb)
            return None
        header = IcmpHeader.parse(message)
        if header.type > ICMP_MAX_TYPE:
            logger.debug("unknown icmp type %d code %d", header.type, header.code)
            self.pool.release(pkb)
            return None
        self._handlers.get(header.type, self._drop_reply)(pkb, ip, header)
        return header

    def _dest_unreach(self, pkb: PacketBuffer, ip: IPv4Header, header: IcmpHeader) -> None:
        logger.debug("dest unreachable")
        self.pool.release(pkb)

    def _redirect(self, pkb: PacketBuffer, ip: IPv4Header, header: IcmpHeader) -> None:
        name = _REDIRECT_NAMES.get(header.code)
        if name is None:
            logger.debug("Redirect code %d is error", header.code)
        else:
            logger.debug("from %s %s(new nexthop %s)",
                         ip_str(ip.src), name, ip_str(header.gateway))
        self.pool.release(pkb)

    def _echo_reply(self, pkb: PacketBuffer, ip: IPv4Header, header: IcmpHeader) -> None:
        logger.debug("from %s id %d seq %d ttl %d",
                     ip_str(ip.src), header.ident, header.seq, ip.ttl)
        self.pool.release(pkb)

    def _echo_request(self, pkb: PacketBuffer, ip: IPv4Header, header: IcmpHeader) -> None:
        logger.debug("echo request data %d bytes icmp_id %d icmp_seq %d",
                     len(header.data), header.ident, header.seq)
        if header.code:
            logger.debug("echo request packet corrupted")
            self.pool.release(pkb)
            return
        hlen = ip.header_length()
        start = ETH_HEADER_LEN + hlen
        reply = IcmpHeader(IcmpType.ECHORLY, header.code, 0, header.rest, header.data)
        raw = reply.with_checksum()
        pkb.data[start:start + len(raw)] = raw
        ip.dst = ip.src
        pkb.data[ETH_HEADER_LEN:start] = ip.pack()
        pkb.rtdst = None
        pkb.indev = None
        pkb.type = PacketType.NONE
        self.ip_layer.send_out(pkb)

    def _drop_reply(self, pkb: PacketBuffer, ip: IPv4Header, header: IcmpHeader) -> None:
        logger.debug("icmp type %d code %d (dropped)", header.type, header.code)
        info = _INFO.get(header.type)
        if info:
            logger.debug("%s", info)
        self.pool.release(pkb)

    def send_error(
        self, icmp_type: int, code: int, data: int, pkb: PacketBuffer
    ) -> Optional[PacketBuffer]:
        """Report a problem with ``pkb`` to its sender.

        ``pkb`` is left untouched. Returns the packet handed to the IP
        layer, or None when the rules forbid an error message here.
        """
        ip = IPv4Header.parse(pkb.data[ETH_HEADER_LEN:])
        hlen = ip.header_length()
        paylen = ip.total_length
        if paylen < hlen + 8:
            return None
        if pkb.type != PacketType.LOCALHOST:
            return None
        if is_multicast(ip.dst) or is_broadcast(ip.dst):
            return None
        if ip.frag_off & IP_FRAG_OFF:
            return None
        if icmp_type in ERROR_TYPES and ip.proto == IP_PROTO_ICMP:
            inner = ETH_HEADER_LEN + hlen
            inner_type = pkb.data[inner] if inner < len(pkb.data) else 0
            if inner_type > ICMP_MAX_TYPE or inner_type in ERROR_TYPES:
                return None

        paylen = min(paylen, ICMP_MAX_ERROR_PACKET - IP_HEADER_LEN - ICMP_HEADER_LEN)
        payload = bytes(pkb.data[ETH_HEADER_LEN:ETH_HEADER_LEN + paylen]).ljust(paylen, b"\0")
        message = IcmpHeader(icmp_type, code, 0, data & 0xFFFFFFFF, payload).with_checksum()
        out = self.pool.allocate(ETH_HEADER_LEN + IP_HEADER_LEN + len(message))
        out.data[ETH_HEADER_LEN + IP_HEADER_LEN:] = message
        logger.debug("to %s(payload %d) [type %d code %d]",
                     ip_str(ip.src), paylen, icmp_type, code)
        self.ip_layer.send_info(
            out, 0, IP_HEADER_LEN + len(message), ICMP_TTL, IP_PROTO_ICMP, ip.src
        )
        return out