"""The IP layer: receiving, routing, forwarding and sending."""

from __future__ import annotations

import logging
from typing import Any

from .addr import ip_str
from .arp import ArpCacheFull, ArpState
from .checksum import ip_checksum
from .icmp import ICMP_EXC_TTL, ICMP_FRAG_NEEDED, ICMP_NET_UNREACH, ICMP_REDIRECT_HOST, IcmpType
from .ipfrag import fragment_packet
from .netdev import NetDevice
from .packet import (
    ETH_HEADER_LEN,
    IP_FRAG_DF,
    IP_FRAG_MF,
    IP_FRAG_OFF,
    IP_HEADER_LEN,
    IP_VERSION_4,
    EtherType,
    IPv4Header,
    PacketBuffer,
    PacketType,
)
from .route import RouteFlag

logger = logging.getLogger(__name__)


def _header(pkb: PacketBuffer) -> IPv4Header:
    return IPv4Header.parse(pkb.data[ETH_HEADER_LEN:])


def _store_header(pkb: PacketBuffer, header: IPv4Header) -> None:
    header.checksum = 0
    header.checksum = ip_checksum(header.pack())
    raw = header.pack()
    pkb.data[ETH_HEADER_LEN:ETH_HEADER_LEN + len(raw)] = raw


class IpLayer:
    """IPv4 processing for a stack.

    The stack supplies ``pool``, ``routes``, ``arp_cache``, ``arp``,
    ``icmp``, ``reassembler``, ``forwarding``, ``protocol_handlers`` and
    ``raw_handlers``.
    """

    def __init__(self, stack: Any) -> None:
        self.stack = stack
        self._ident = 0

    def _drop(self, pkb: PacketBuffer, reason: str) -> None:
        logger.debug("%s", reason)
        self.stack.pool.release(pkb)

    def receive(self, dev: NetDevice, pkb: PacketBuffer) -> None:
        """Check an IP frame received on ``dev`` and pass it on."""
        if pkb.type == PacketType.OTHERHOST:
            return self._drop(pkb, "ip(l2) packet is not for us")
        if len(pkb) < ETH_HEADER_LEN + IP_HEADER_LEN:
            return self._drop(pkb, "ip packet is too small")
        header = _header(pkb)
        if header.version != IP_VERSION_4:
            return self._drop(pkb, "ip packet is not version 4")
        hlen = header.header_length()
        if hlen < IP_HEADER_LEN or len(pkb) < ETH_HEADER_LEN + hlen:
            return self._drop(pkb, "ip header is too small")
        if ip_checksum(bytes(pkb.data[ETH_HEADER_LEN:ETH_HEADER_LEN + hlen])) != 0:
            return self._drop(pkb, "ip checksum is error")
        if header.total_length < hlen or len(pkb) < ETH_HEADER_LEN + header.total_length:
            return self._drop(pkb, "ip size is unknown")
        if len(pkb) > ETH_HEADER_LEN + header.total_length:
            pkb.trim(ETH_HEADER_LEN + header.total_length)
        logger.debug("%s -> %s(%d/%d bytes)", ip_str(header.src), ip_str(header.dst),
                     hlen, header.total_length)
        if not self.route_input(pkb):
            return
        if pkb.rtdst.flags & RouteFlag.LOCALHOST:
            self.receive_local(pkb)
        else:
            self.forward(pkb)

    def route_input(self, pkb: PacketBuffer) -> bool:
        """Attach a route to an incoming packet; False if it was dropped."""
        header = _header(pkb)
        route = self.stack.routes.lookup(header.dst)
        if route is None:
            if self.stack.forwarding:
                self.stack.icmp.send_error(IcmpType.DESTUNREACH, ICMP_NET_UNREACH, 0, pkb)
            self.stack.pool.release(pkb)
            return False
        pkb.rtdst = route
        return True

    def receive_local(self, pkb: PacketBuffer) -> None:
        """Deliver a packet addressed to this host."""
        header = _header(pkb)
        if header.frag_off & (IP_FRAG_OFF | IP_FRAG_MF):
            if header.frag_off & IP_FRAG_DF:
                return self._drop(pkb, "error fragment")
            whole = self.stack.reassembler.reassemble(pkb)
            if whole is None:
                return
            pkb = whole
            header = _header(pkb)
        for handler in self.stack.raw_handlers:
            handler(self.stack.pool.copy(pkb))
        handler = self.stack.protocol_handlers.get(header.proto)
        if handler is None:
            return self._drop(pkb, "unknown protocol")
        handler(pkb)

    def forward(self, pkb: PacketBuffer) -> None:
        """Send a packet for another host on towards it."""
        if not self.stack.forwarding:
            return self._drop(pkb, "host doesnt support forward!")
        header = _header(pkb)
        route = pkb.rtdst
        icmp = self.stack.icmp
        if header.ttl <= 1:
            icmp.send_error(IcmpType.TIMEEXCEED, ICMP_EXC_TTL, 0, pkb)
            return self._drop(pkb, "ttl exceeded")
        header.ttl -= 1
        _store_header(pkb, header)
        dst = route.next_hop(header.dst)
        logger.debug("forward to next-hop %s", ip_str(dst))
        if pkb.indev is route.dev:
            src_route = self.stack.routes.lookup(header.src)
            if (src_route is not None and src_route.metric == 0
                    and (src_route.netmask & header.src) == (src_route.netmask & dst)):
                if src_route.dev is not pkb.indev:
                    logger.debug("Two NIC are connected to the same LAN")
                icmp.send_error(IcmpType.REDIRECT, ICMP_REDIRECT_HOST, dst, pkb)
        if header.total_length > route.dev.mtu:
            if header.frag_off & IP_FRAG_DF:
                icmp.send_error(IcmpType.DESTUNREACH, ICMP_FRAG_NEEDED, 0, pkb)
                return self._drop(pkb, "fragmentation needed")
            self._send_frag(route.dev, pkb)
        else:
            self.send_dev(route.dev, pkb)

    def _send_frag(self, dev: NetDevice, pkb: PacketBuffer) -> None:
        for fragment in fragment_packet(pkb, dev.mtu, self.stack.pool):
            self.send_dev(dev, fragment)
        self.stack.pool.release(pkb)

    def send_dev(self, dev: NetDevice, pkb: PacketBuffer) -> None:
        """Hand a routed packet to ``dev``, resolving the next hop first."""
        route = pkb.rtdst
        if route.flags & RouteFlag.LOCALHOST:
            dev.transmit(pkb, EtherType.IP, dev.hwaddr)
            return
        dst = route.next_hop(_header(pkb).dst)
        entry = self.stack.arp_cache.lookup(EtherType.IP, dst)
        if entry is None:
            try:
                entry = self.stack.arp_cache.allocate()
            except ArpCacheFull:
                return self._drop(pkb, "arp cache is full")
            entry.ipaddr = dst
            entry.dev = dev
            entry.queue.append(pkb)
            self.stack.arp.request(entry)
        elif entry.state is ArpState.WAITING:
            entry.queue.append(pkb)
        else:
            dev.transmit(pkb, EtherType.IP, entry.hwaddr)

    def send_out(self, pkb: PacketBuffer) -> None:
        """Route a packet built by this host and send it."""
        pkb.proto = EtherType.IP
        header = _header(pkb)
        if pkb.rtdst is None:
            route = self.stack.routes.lookup(header.dst)
            if route is None:
                return self._drop(pkb, f"No route entry to {ip_str(header.dst)}")
            pkb.rtdst = route
            header.src = route.dev.ipaddr
        _store_header(pkb, header)
        dev = pkb.rtdst.dev
        if header.total_length > dev.mtu:
            self._send_frag(dev, pkb)
        else:
            self.send_dev(dev, pkb)

    def send_info(self, pkb: PacketBuffer, tos: int, length: int, ttl: int,
                  proto: int, dst: int) -> None:
        """Fill in the IP header of ``pkb`` and send it."""
        header = _header(pkb)
        header.version = IP_VERSION_4
        header.ihl = IP_HEADER_LEN // 4
        header.options = b""
        header.tos = tos
        header.total_length = length
        header.ident = self._ident
        self._ident = (self._ident + 1) & 0xFFFF
        header.frag_off = 0
        header.ttl = ttl
        header.proto = proto
        header.dst = dst
        _store_header(pkb, header)
        self.send_out(pkb)