# tapstack

A compact network protocol stack in pure Python. It models the lower
layers of an IPv4 host: Ethernet framing, a loopback device and a
virtual Ethernet device, an ARP cache with request retries, IPv4 input,
output, forwarding, fragmentation and reassembly, ICMP echo replies and
error messages, a routing table, and a small shell for watching and
driving it all.

The virtual Ethernet device is not attached to any real interface:
every frame it sends goes to a callable you supply, and frames from
outside are fed in by your own code.

## Installation

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## The shell

```
tapstack
```

starts a stack, a background thread that advances its timers once a
second, and the shell on standard input with the prompt
`[net shell]: `. Debug output is logged to standard error.

| command    | what it does                                                     |
|------------|------------------------------------------------------------------|
| `help`     | list the commands                                                |
| `clear`    | clear the terminal screen                                        |
| `exit`     | leave the shell (end of input does the same)                     |
| `debug`    | `debug [-c\|-n] (dev\|l2\|arp\|ip\|icmp\|udp\|tcp\|tcpstate\|all)+` |
| `ping2`    | `ping2 [-s size] [-c count] [-t ttl] ipaddr`                     |
| `arpcache` | show the ARP cache                                               |
| `route`    | show the routing table (local host routes are left out)          |
| `ifconfig` | show the `lo` and `veth` interfaces                              |
| `stat`     | show packet buffer accounting                                    |

`debug` without `-n` turns on debug logging for the named layers and
waits until Ctrl+C, then turns it off again; with `-n` it returns at
once and leaves logging on; `-c` clears the named flags, or all of them
when none is named.

`ping2` sends ICMP echo requests through the stack's IP layer once a
second, with ARP, IP and ICMP debug logging on; with `-c` it stops
after that many, otherwise it runs until Ctrl+C. Size defaults to 56
bytes and TTL to 64.

## Default configuration

`NetStack` builds:

- `lo`: 127.0.0.1/8, MTU 1500; frames sent on it are received back.
- `veth`: 10.0.0.1/24, hardware address 02:00:00:00:00:01, MTU 1500.
- Routes: loopback net, 10.0.0.1 as local host, 10.0.0.0/24 on `veth`,
  and a default route through 10.0.0.2.

Forwarding of packets for other hosts is on unless you pass
`forwarding=False`.

## Using the library

```python
from tapstack.stack import NetStack
from tapstack.shell import Shell

frames = []

def send(frame: bytes) -> int:
    frames.append(frame)
    return len(frame)

stack = NetStack(veth_xmit=send)

shell = Shell(stack)
shell.execute("route")
shell.execute("ping2 -c 1 10.0.0.2")   # queues the echo and sends an ARP request

stack.veth_receive(frames[0])          # feed a raw Ethernet frame in
stack.tick(1)                          # age ARP entries and pending fragments
print(stack.statistics())
```

Without a `veth_xmit` callable, frames sent on `veth` are collected in
`stack.veth.outbox`. A frame can also be handed to
`stack.net_in(dev, pkb)` as a `tapstack.packet.PacketBuffer`.

The building blocks can be used on their own:

- `tapstack.addr`: `str2ip`, `parse_ip_port`, `ip_str`, `mac_str`
- `tapstack.checksum`: Internet checksums for IP, ICMP, UDP and TCP
- `tapstack.cbuf`: `CircularBuffer`, a fixed-size byte ring
- `tapstack.packet`: `EthernetHeader`, `IPv4Header`, `PacketBuffer`,
  `PacketPool`, `classify_frame`
- `tapstack.netdev`: `NetDevice`, `LoopbackDevice`, `DeviceRegistry`
- `tapstack.arp`: `ArpHeader`, `ArpCache`, `ArpProtocol`
- `tapstack.route`: `RoutingTable`, `Route`, `RouteFlag`
- `tapstack.icmp`: `Icmp`, `IcmpHeader`, `build_echo_request`
- `tapstack.ipfrag`: `Reassembler`, `fragment_packet`
- `tapstack.ip`: `IpLayer`
- `tapstack.ping`: `parse_ping_args`, `ping2`

IPv4 addresses are plain integers in natural order: `str2ip("10.0.0.1")`
is `0x0A000001`, and `ip_str` turns it back into text.

## What it does not do

- There is no UDP or TCP and no socket interface; only ICMP is handed
  packets above IP. The `udp`, `tcp` and `tcpstate` debug targets are
  accepted but nothing logs under them.
- There is no `ping` that waits for and reports replies; `ping2` only
  sends requests, and replies show up in the debug log.
- The shell cannot change routes or interfaces; `route` and `ifconfig`
  only display them.
- Nothing opens a real network device; moving frames between `veth` and
  a wire is left to the caller.