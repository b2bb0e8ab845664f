"""Network devices: the generic device, loopback and the device registry."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from .addr import ip_str, mac_str
from .packet import ETH_HEADER_LEN, EthernetHeader, PacketBuffer, PacketPool

LOOPBACK_MTU = 1500
LOOPBACK_IPADDR = 0x7F000001
LOOPBACK_NETMASK = 0xFF000000


@dataclass
class NetStats:
    rx_packets: int = 0
    rx_bytes: int = 0
    rx_errors: int = 0
    tx_packets: int = 0
    tx_bytes: int = 0
    tx_errors: int = 0


class NetDevice:
    """A network interface of the stack.

    Frames handed to ``xmit`` go to ``writer`` when one is set (it returns
    the number of bytes written), otherwise they are queued in ``outbox``.
    When ``pool`` is set, references are accounted through it.
    """

    def __init__(
        self,
        name: str,
        mtu: int,
        ipaddr: int,
        netmask: int,
        hwaddr: bytes = bytes(6),
    ) -> None:
        self.name = name
        self.mtu = mtu
        self.ipaddr = ipaddr
        self.netmask = netmask
        self.hwaddr = bytes(hwaddr)
        self.stats = NetStats()
        self.writer: Optional[Callable[[bytes], int]] = None
        self.outbox: deque[bytes] = deque()
        self.pool: Optional[PacketPool] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {ip_str(self.ipaddr)})"

    def _hold(self, pkb: PacketBuffer) -> None:
        if self.pool is not None:
            self.pool.hold(pkb)
        else:
            pkb.refcnt += 1

    def _release(self, pkb: PacketBuffer) -> None:
        if self.pool is not None:
            self.pool.release(pkb)
        else:
            pkb.refcnt -= 1

    def xmit(self, pkb: PacketBuffer) -> int:
        """Put a complete frame on the wire and return the bytes written."""
        frame = bytes(pkb.data)
        if self.writer is None:
            self.outbox.append(frame)
            written = len(frame)
        else:
            written = self.writer(frame)
        if written != len(frame):
            self.stats.tx_errors += 1
        else:
            self.stats.tx_packets += 1
            self.stats.tx_bytes += written
        return written

    def transmit(self, pkb: PacketBuffer, proto: int, dst_hwaddr: bytes) -> int:
        """Fill in the ethernet header, send the frame and drop our reference."""
        if len(pkb) < ETH_HEADER_LEN:
            raise ValueError("packet has no room for an ethernet header")
        header = EthernetHeader(bytes(dst_hwaddr), self.hwaddr, int(proto))
        pkb.data[:ETH_HEADER_LEN] = header.pack()
        try:
            return self.xmit(pkb)
        finally:
            self._release(pkb)

    def local_net(self) -> int:
        """Network address of the device's subnet."""
        return self.ipaddr & self.netmask

    def describe(self) -> str:
        """Interface summary in ifconfig style."""
        s = self.stats
        return (
            f"{self.name:<10}HWaddr {mac_str(self.hwaddr)}\n"
            f"          IPaddr {ip_str(self.ipaddr)}\n"
            f"          mtu {self.mtu}\n"
            f"          RX packet:{s.rx_packets} bytes:{s.rx_bytes} errors:{s.rx_errors}\n"
            f"          TX packet:{s.tx_packets} bytes:{s.tx_bytes} errors:{s.tx_errors}\n"
        )


class LoopbackDevice(NetDevice):
    """The ``lo`` device: every frame sent is received straight back."""

    def __init__(self, receiver: Callable[[NetDevice, PacketBuffer], None]) -> None:
        super().__init__("lo", LOOPBACK_MTU, LOOPBACK_IPADDR, LOOPBACK_NETMASK, bytes(6))
        self.receiver = receiver

    def xmit(self, pkb: PacketBuffer) -> int:
        self._hold(pkb)
        self.stats.rx_packets += 1
        self.stats.rx_bytes += len(pkb)
        self.receiver(self, pkb)
        self.stats.tx_packets += 1
        self.stats.tx_bytes += len(pkb)
        return len(pkb)


class DeviceRegistry:
    """The devices that belong to the local host."""

    def __init__(self) -> None:
        self._devices: list[NetDevice] = []

    def add(self, dev: NetDevice) -> NetDevice:
        self._devices.append(dev)
        return dev

    def remove(self, dev: NetDevice) -> None:
        self._devices.remove(dev)

    def is_local_address(self, addr: int, loopback: NetDevice) -> bool:
        """True for the wildcard, loopback net and any device address."""
        if addr == 0:
            return True
        if loopback.local_net() == (loopback.netmask & addr):
            return True
        return any(dev.ipaddr == addr for dev in self._devices)

    def __iter__(self) -> Iterator[NetDevice]:
        return iter(list(self._devices))

    def __len__(self) -> int:
        return len(self._devices)