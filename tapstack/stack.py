"""The network stack: devices, protocols and the link layer input path."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .arp import ArpCache, ArpProtocol
from .icmp import ICMP_EXC_FRAGTIME, Icmp, IcmpType
from .ip import IpLayer
from .ipfrag import Reassembler
from .netdev import DeviceRegistry, LoopbackDevice, NetDevice
from .packet import IP_PROTO_ICMP, EtherType, PacketBuffer, PacketPool, classify_frame
from .route import RoutingTable

logger = logging.getLogger(__name__)

FAKE_IPADDR = 0x0A000001
FAKE_NETMASK = 0xFFFFFF00
FAKE_GATEWAY = 0x0A000002
FAKE_HWADDR = b"\x02\x00\x00\x00\x00\x01"
VETH_MTU = 1500


class NetStack:
    """A complete stack with a loopback device and one virtual ethernet."""

    def __init__(self, veth_xmit: Optional[Callable[[bytes], int]] = None,
                 forwarding: bool = True) -> None:
        self.forwarding = forwarding
        self.pool = PacketPool()
        self.devices = DeviceRegistry()
        self.loopback = self.devices.add(LoopbackDevice(self.net_in))
        self.veth = self.devices.add(
            NetDevice("veth", VETH_MTU, FAKE_IPADDR, FAKE_NETMASK, FAKE_HWADDR)
        )
        self.veth.writer = veth_xmit
        for dev in self.devices:
            dev.pool = self.pool
        self.arp_cache = ArpCache()
        self.arp = ArpProtocol(self.arp_cache, self.pool)
        self.routes = RoutingTable()
        self.routes.install_defaults(self.loopback, self.veth, FAKE_GATEWAY)
        self.reassembler = Reassembler(self.pool)
        self.ip = IpLayer(self)
        self.icmp = Icmp(self.ip, self.pool)
        self.protocol_handlers: dict[int, Callable[[PacketBuffer], object]] = {
            IP_PROTO_ICMP: self.icmp.receive,
        }
        self.raw_handlers: list[Callable[[PacketBuffer], object]] = []

    def net_in(self, dev: NetDevice, pkb: PacketBuffer) -> None:
        """Classify a received frame and pass it to ARP or IP."""
        try:
            classify_frame(pkb, dev.hwaddr)
        except ValueError as exc:
            logger.debug("%s", exc)
            self.pool.release(pkb)
            return
        pkb.indev = dev
        if pkb.proto == EtherType.ARP:
            self.arp.receive(dev, pkb)
        elif pkb.proto == EtherType.IP:
            self.ip.receive(dev, pkb)
        else:
            logger.debug("drop unkown-type packet")
            self.pool.release(pkb)

    def veth_receive(self, frame: bytes) -> None:
        """Feed a frame read from the wire into the virtual ethernet."""
        stats = self.veth.stats
        if not frame:
            stats.rx_errors += 1
            return
        stats.rx_packets += 1
        stats.rx_bytes += len(frame)
        pkb = self.pool.allocate(len(frame))
        pkb.data[:] = frame
        self.net_in(self.veth, pkb)

    def tick(self, delta: int = 1) -> None:
        """Advance the ARP and reassembly timers by ``delta`` seconds."""
        self.arp.timer(delta)
        self.reassembler.timer(
            delta,
            lambda pkb: self.icmp.send_error(IcmpType.TIMEEXCEED, ICMP_EXC_FRAGTIME, 0, pkb),
        )

    def statistics(self) -> dict[str, int]:
        return {
            "alloced_pkbs": self.pool.allocated,
            "free_pkbs": self.pool.freed,
        }