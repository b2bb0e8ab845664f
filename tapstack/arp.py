"""Address resolution: the ARP cache and the ARP protocol handler."""

from __future__ import annotations

import logging
import struct
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Optional

from .addr import ip_str, mac_str
from .netdev import NetDevice
from .packet import (
    BROADCAST_HWADDR,
    ETH_ALEN,
    ETH_HEADER_LEN,
    EtherType,
    EthernetHeader,
    PacketBuffer,
    PacketPool,
    PacketType,
)

logger = logging.getLogger(__name__)

ARP_HEADER_LEN = 28
ARP_HRD_ETHER = 1
ARP_OP_REQUEST = 1
ARP_OP_REPLY = 2
IP_ALEN = 4

ARP_CACHE_SIZE = 20
ARP_TIMEOUT = 600
ARP_WAITTIME = 1
ARP_REQ_RETRY = 4

_ARP_FORMAT = "!HHBBH6sI6sI"


def _is_multicast(addr: int) -> bool:
    return (addr & 0xF0000000) == 0xE0000000


class ArpState(IntEnum):
    FREE = 1
    WAITING = 2
    RESOLVED = 3


_STATE_NAMES = {
    ArpState.FREE: "Free",
    ArpState.WAITING: "Waiting",
    ArpState.RESOLVED: "Resolved",
}


class ArpCacheFull(RuntimeError):
    """Raised when no free entry is left in the ARP cache."""


@dataclass
class ArpHeader:
    op: int = ARP_OP_REQUEST
    sha: bytes = bytes(ETH_ALEN)
    sip: int = 0
    tha: bytes = bytes(ETH_ALEN)
    tip: int = 0
    hrd: int = ARP_HRD_ETHER
    pro: int = EtherType.IP
    hrdlen: int = ETH_ALEN
    prolen: int = IP_ALEN

    @classmethod
    def parse(cls, data: bytes) -> "ArpHeader":
        if len(data) < ARP_HEADER_LEN:
            raise ValueError("data is shorter than an arp header")
        hrd, pro, hrdlen, prolen, op, sha, sip, tha, tip = struct.unpack_from(
            _ARP_FORMAT, data
        )
        return cls(op, sha, sip, tha, tip, hrd, pro, hrdlen, prolen)

    def pack(self) -> bytes:
        return struct.pack(
            _ARP_FORMAT,
            self.hrd,
            self.pro,
            self.hrdlen,
            self.prolen,
            self.op,
            bytes(self.sha),
            self.sip,
            bytes(self.tha),
            self.tip,
        )


@dataclass(eq=False)
class ArpEntry:
    state: ArpState = ArpState.FREE
    dev: Optional[NetDevice] = None
    pro: int = EtherType.IP
    ipaddr: int = 0
    hwaddr: bytes = bytes(ETH_ALEN)
    ttl: int = 0
    retry: int = 0
    queue: deque = field(default_factory=deque)


class ArpCache:
    """A fixed number of ARP entries handed out round-robin."""

    def __init__(self, size: int = ARP_CACHE_SIZE) -> None:
        if size <= 0:
            raise ValueError("cache size must be positive")
        self._entries = [ArpEntry() for _ in range(size)]
        self._next = 0
        self._lock = threading.Lock()

    def __iter__(self):
        return iter([e for e in self._entries if e.state is not ArpState.FREE])

    def allocate(self) -> ArpEntry:
        """Claim a free entry in the waiting state."""
        with self._lock:
            size = len(self._entries)
            for _ in range(size):
                if self._entries[self._next].state is ArpState.FREE:
                    break
                self._next = (self._next + 1) % size
            else:
                raise ArpCacheFull("arp cache is full")
            entry = self._entries[self._next]
            entry.dev = None
            entry.retry = ARP_REQ_RETRY
            entry.ttl = ARP_WAITTIME
            entry.state = ArpState.WAITING
            entry.pro = EtherType.IP
            entry.queue = deque()
            self._next = (self._next + 1) % size
            return entry

    def insert(self, dev: NetDevice, pro: int, ipaddr: int, hwaddr: bytes) -> ArpEntry:
        """Add a resolved entry."""
        entry = self.allocate()
        entry.dev = dev
        entry.pro = pro
        entry.ttl = ARP_TIMEOUT
        entry.ipaddr = ipaddr
        entry.state = ArpState.RESOLVED
        entry.hwaddr = bytes(hwaddr)
        return entry

    def lookup(self, pro: int, ipaddr: int) -> Optional[ArpEntry]:
        """The entry for ``ipaddr`` in any non-free state, or None."""
        with self._lock:
            for entry in self._entries:
                if entry.state is ArpState.FREE:
                    continue
                if entry.pro == pro and entry.ipaddr == ipaddr:
                    return entry
        return None

    def lookup_resolved(self, pro: int, ipaddr: int) -> Optional[ArpEntry]:
        """The entry for ``ipaddr`` if it is resolved, or None."""
        entry = self.lookup(pro, ipaddr)
        if entry is not None and entry.state is ArpState.RESOLVED:
            return entry
        return None

    def timer(
        self, delta: int, request: Callable[[ArpEntry], None]
    ) -> list[PacketBuffer]:
        """Age entries by ``delta`` seconds.

        Waiting entries whose time runs out are asked for again through
        ``request`` until their retries are spent. Returns the packets
        that were pending on entries given up on.
        """
        dropped: list[PacketBuffer] = []
        retries: list[ArpEntry] = []
        with self._lock:
            for entry in self._entries:
                if entry.state is ArpState.FREE:
                    continue
                entry.ttl -= delta
                if entry.ttl > 0:
                    continue
                waiting = entry.state is ArpState.WAITING
                expired = entry.state is ArpState.RESOLVED
                if waiting:
                    entry.retry -= 1
                    expired = entry.retry < 0
                if expired:
                    if waiting:
                        dropped.extend(entry.queue)
                        entry.queue.clear()
                    entry.state = ArpState.FREE
                else:
                    entry.ttl = ARP_WAITTIME
                    retries.append(entry)
        for entry in retries:
            request(entry)
        return dropped

    def format_table(self) -> str:
        """The cache in arp-table style; empty when no entry is in use."""
        lines = []
        with self._lock:
            for entry in self._entries:
                if entry.state is ArpState.FREE:
                    continue
                if not lines:
                    lines.append("State    Timeout(s)  HWaddress         Address")
                lines.append(
                    f"{_STATE_NAMES[entry.state]:<9}{max(entry.ttl, 0):<12d}"
                    f"{mac_str(entry.hwaddr)} {ip_str(entry.ipaddr)}"
                )
        return "\n".join(lines) + "\n" if lines else ""


class ArpProtocol:
    """Sends ARP requests and replies and learns from received ARP frames."""

    def __init__(self, cache: ArpCache, pool: PacketPool) -> None:
        self.cache = cache
        self.pool = pool

    def request(self, entry: ArpEntry) -> None:
        """Broadcast a request for the entry's address."""
        dev = entry.dev
        if dev is None:
            raise ValueError("arp entry has no device")
        pkb = self.pool.allocate(ETH_HEADER_LEN + ARP_HEADER_LEN)
        header = ArpHeader(
            op=ARP_OP_REQUEST,
            sha=dev.hwaddr,
            sip=dev.ipaddr,
            tha=BROADCAST_HWADDR,
            tip=entry.ipaddr,
        )
        pkb.data[ETH_HEADER_LEN:] = header.pack()
        logger.debug(
            "%s(%s)->%s(request)",
            ip_str(header.sip), mac_str(header.sha), ip_str(header.tip),
        )
        dev.transmit(pkb, EtherType.ARP, BROADCAST_HWADDR)

    def reply(self, dev: NetDevice, pkb: PacketBuffer) -> None:
        """Turn a received request into a reply and send it back."""
        logger.debug("replying arp request")
        eth = EthernetHeader.parse(pkb.data)
        header = ArpHeader.parse(pkb.data[ETH_HEADER_LEN:])
        header.op = ARP_OP_REPLY
        header.tha = header.sha
        header.tip = header.sip
        header.sha = dev.hwaddr
        header.sip = dev.ipaddr
        pkb.trim(ETH_HEADER_LEN + ARP_HEADER_LEN)
        pkb.data[ETH_HEADER_LEN:] = header.pack()
        dev.transmit(pkb, EtherType.ARP, eth.src)

    def send_queue(self, entry: ArpEntry) -> None:
        """Send every packet waiting on the now resolved entry."""
        while entry.queue:
            pkb = entry.queue.popleft()
            logger.debug("send pending packet")
            entry.dev.transmit(pkb, pkb.proto, entry.hwaddr)

    def drop_queue(self, entry: ArpEntry) -> None:
        """Discard every packet waiting on the entry."""
        while entry.queue:
            logger.debug("drop pending packet")
            self.pool.release(entry.queue.popleft())

    def timer(self, delta: int) -> None:
        for pkb in self.cache.timer(delta, self.request):
            self.pool.release(pkb)

    def receive(self, dev: NetDevice, pkb: PacketBuffer) -> None:
        """Handle an ARP frame received on ``dev``."""
        if pkb.type == PacketType.OTHERHOST:
            logger.debug("arp(l2) packet is not for us")
            return self.pool.release(pkb)
        if len(pkb) < ETH_HEADER_LEN + ARP_HEADER_LEN:
            logger.debug("arp packet is too small")
            return self.pool.release(pkb)
        eth = EthernetHeader.parse(pkb.data)
        header = ArpHeader.parse(pkb.data[ETH_HEADER_LEN:])
        if header.sha != eth.src:
            logger.debug("error sender hardware address")
            return self.pool.release(pkb)
        if (
            header.hrd != ARP_HRD_ETHER
            or header.pro != EtherType.IP
            or header.hrdlen != ETH_ALEN
            or header.prolen != IP_ALEN
        ):
            logger.debug("unsupported L2/L3 protocol")
            return self.pool.release(pkb)
        if header.op not in (ARP_OP_REQUEST, ARP_OP_REPLY):
            logger.debug("unknown arp operation")
            return self.pool.release(pkb)

        logger.debug("%s -> %s", ip_str(header.sip), ip_str(header.tip))
        if _is_multicast(header.tip):
            logger.debug("multicast tip")
            return self.pool.release(pkb)
        if header.tip != dev.ipaddr:
            logger.debug("not for us")
            return self.pool.release(pkb)

        entry = self.cache.lookup(header.pro, header.sip)
        if entry is not None:
            entry.hwaddr = bytes(header.sha)
            if entry.state is ArpState.WAITING:
                self.send_queue(entry)
            entry.state = ArpState.RESOLVED
            entry.ttl = ARP_TIMEOUT
        elif header.op == ARP_OP_REQUEST:
            try:
                self.cache.insert(dev, header.pro, header.sip, header.sha)
            except ArpCacheFull:
                logger.debug("arp cache is full")

        if header.op == ARP_OP_REQUEST:
            self.reply(dev, pkb)
        else:
            self.pool.release(pkb)