"""The IP routing table."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import IntFlag
from typing import Iterator, Optional

from .addr import ip_str
from .netdev import NetDevice


class RouteFlag(IntFlag):
    NONE = 0
    LOCALHOST = 1
    DEFAULT = 2


@dataclass(eq=False)
class Route:
    net: int
    netmask: int
    gateway: int
    metric: int
    flags: RouteFlag
    dev: NetDevice

    def matches(self, ipaddr: int) -> bool:
        return (self.netmask & ipaddr) == (self.netmask & self.net)

    def next_hop(self, dst: int) -> int:
        """The gateway for default or remote routes, else ``dst`` itself."""
        if (self.flags & RouteFlag.DEFAULT) or self.metric > 0:
            return self.gateway
        return dst


class RoutingTable:
    """Routes kept in descending netmask order; the first match wins."""

    def __init__(self) -> None:
        self._routes: list[Route] = []
        self._lock = threading.Lock()

    def __iter__(self) -> Iterator[Route]:
        with self._lock:
            return iter(list(self._routes))

    def __len__(self) -> int:
        return len(self._routes)

    def add(
        self,
        net: int,
        netmask: int,
        gateway: int,
        metric: int,
        flags: RouteFlag,
        dev: NetDevice,
    ) -> Route:
        route = Route(net, netmask, gateway, metric, RouteFlag(flags), dev)
        with self._lock:
            index = next(
                (i for i, existing in enumerate(self._routes)
                 if route.netmask >= existing.netmask),
                len(self._routes),
            )
            self._routes.insert(index, route)
        return route

    def lookup(self, ipaddr: int) -> Optional[Route]:
        with self._lock:
            return next((r for r in self._routes if r.matches(ipaddr)), None)

    def install_defaults(
        self, loopback: NetDevice, veth: NetDevice, gateway: int
    ) -> None:
        """Loopback, local host, local net and default routes."""
        self.add(loopback.local_net(), loopback.netmask, 0, 0, RouteFlag.LOCALHOST, loopback)
        self.add(veth.ipaddr, 0xFFFFFFFF, 0, 0, RouteFlag.LOCALHOST, loopback)
        self.add(veth.local_net(), veth.netmask, 0, 0, RouteFlag.NONE, veth)
        self.add(0, 0, gateway, 0, RouteFlag.DEFAULT, veth)

    def format_table(self) -> str:
        """The table in route style, without local host routes."""
        routes = list(self)
        if not routes:
            return ""
        lines = ["Destination     Gateway         Genmask         Metric Iface"]
        for route in routes:
            if route.flags & RouteFlag.LOCALHOST:
                continue
            dest = "default" if route.flags & RouteFlag.DEFAULT else ip_str(route.net)
            gateway = "*" if route.gateway == 0 else ip_str(route.gateway)
            lines.append(
                f"{dest:<16.16}{gateway:<16.16}{ip_str(route.netmask):<16.16}"
                f"{route.metric:<7d}{route.dev.name}"
            )
        return "\n".join(lines) + "\n"