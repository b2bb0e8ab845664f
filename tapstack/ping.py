"""The ping2 command: echo requests sent through the stack's own IP layer."""

from __future__ import annotations

import getopt
import itertools
import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Sequence, TextIO

from .addr import ip_str, str2ip
from .icmp import ICMP_MAX_ECHO_SIZE, build_echo_request
from .packet import ETH_HEADER_LEN, IP_HEADER_LEN, IP_PROTO_ICMP

USAGE = (
    "Usage: ping [OPTIONS] ipaddr\n"
    "OPTIONS:\n"
    "       -s size     icmp echo size\n"
    "       -c count    times(not implemented)\n"
    "       -t ttl      time to live\n"
)

DEFAULT_SIZE = 56
DEFAULT_TTL = 64
MAX_TTL = 255
PING_INTERVAL = 1.0

_DEBUG_LOGGERS = ("tapstack.arp", "tapstack.ip", "tapstack.icmp")
_INT_RE = re.compile(r"\s*([+-]?\d+)")
_ping_ids = itertools.count(1)


class PingUsageError(Exception):
    """The command line is malformed; the usage text should be shown."""


@dataclass
class PingOptions:
    ipaddr: int = 0
    size: int = DEFAULT_SIZE
    ttl: int = DEFAULT_TTL
    count: int = 0
    finite: bool = False


def _atoi(text: str) -> int:
    match = _INT_RE.match(text)
    return int(match.group(1)) if match else 0


def parse_ping_args(argv: Sequence[str]) -> PingOptions:
    """Parse ``ping2 [-s size] [-c count] [-t ttl] ipaddr``.

    Raises PingUsageError for a malformed command line and ValueError
    for values out of range.
    """
    if len(argv) < 2:
        raise PingUsageError("missing arguments")
    try:
        opts, rest = getopt.gnu_getopt(list(argv[1:]), "s:t:c:h")
    except getopt.GetoptError as exc:
        raise PingUsageError(str(exc)) from exc

    options = PingOptions()
    for opt, value in opts:
        if opt == "-s":
            options.size = _atoi(value)
        elif opt == "-c":
            options.count = _atoi(value)
            options.finite = True
        elif opt == "-t":
            options.ttl = _atoi(value)
        else:
            raise PingUsageError("help requested")

    if not 0 <= options.size <= ICMP_MAX_ECHO_SIZE:
        raise ValueError(
            f"Packet size {options.size} is too large. Maximum is {ICMP_MAX_ECHO_SIZE}"
        )
    if not 0 <= options.ttl <= MAX_TTL:
        raise ValueError(f"ttl {options.ttl} out of range")
    if len(rest) != 1:
        raise PingUsageError("exactly one address is needed")
    try:
        options.ipaddr = str2ip(rest[0])
    except ValueError:
        raise ValueError(f"bad ip address {rest[0]}") from None
    return options


@contextmanager
def _debugging() -> Iterator[None]:
    loggers = [logging.getLogger(name) for name in _DEBUG_LOGGERS]
    saved = [lg.level for lg in loggers]
    for lg in loggers:
        lg.setLevel(logging.DEBUG)
    try:
        yield
    finally:
        for lg, level in zip(loggers, saved):
            lg.setLevel(level)


def _send_packet(stack: Any, options: PingOptions, ident: int, seq: int, out: TextIO) -> None:
    message = build_echo_request(ident, seq, options.size)
    pkb = stack.pool.allocate(ETH_HEADER_LEN + IP_HEADER_LEN + len(message))
    pkb.data[ETH_HEADER_LEN + IP_HEADER_LEN:] = message
    out.write(
        f"{ip_str(stack.veth.ipaddr)} send to {ip_str(options.ipaddr)} "
        f"id {ident} seq {seq} ttl {options.ttl}\n"
    )
    stack.ip.send_info(
        pkb, 0, IP_HEADER_LEN + len(message), options.ttl, IP_PROTO_ICMP, options.ipaddr
    )


def ping2(stack: Any, argv: Sequence[str], out: TextIO) -> int:
    """Send echo requests once a second; return the number sent.

    Without ``-c`` it runs until interrupted with KeyboardInterrupt.
    """
    out.write("".join(f"{arg} " for arg in argv) + "\n")
    try:
        options = parse_ping_args(argv)
    except PingUsageError:
        out.write(USAGE)
        return 0
    except ValueError as exc:
        out.write(f"{exc}\n")
        return 0
    if options.finite and options.count <= 0:
        out.write("bad number of packets to transmit\n")

    ident = next(_ping_ids) & 0xFFFF
    sent = 0
    with _debugging():
        try:
            while not options.finite or sent < options.count:
                sent += 1
                _send_packet(stack, options, ident, sent & 0xFFFF, out)
                if options.finite and sent >= options.count:
                    break
                time.sleep(PING_INTERVAL)
        except KeyboardInterrupt:
            pass
    out.write("\n")
    return sent