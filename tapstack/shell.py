"""A small command shell to inspect and drive the network stack."""

from __future__ import annotations

import logging
import re
import sys
import threading
import time
from dataclasses import dataclass
from enum import IntFlag
from typing import Any, Callable, Iterable, Optional, Sequence, TextIO

from .ping import ping2
from .stack import NetStack

DEFAULT_PROMPT = "[net shell]"
MAX_ARGS = 16

DEBUG_USAGE = (
    "Usage: debug [-c|-n] (dev|l2|arp|ip|icmp|udp|tcp|tcpstate)+\n"
    "     -c    clear non-blocking debug config\n"
    "     -n    open non-blocking debug \n\n"
    "EXAMPLES:\n"
    "  See IP packet flow in blocking model \n"
    "   # debug ip\n"
    "  See TCP packet flow and TCP state transmission in non-blocking model\n"
    "   # debug -n tcp tcpstate\n\n"
)

_BLANKS = re.compile(r"[ \t]+")


class DebugFlag(IntFlag):
    DEV = 0x01
    L2 = 0x02
    ARP = 0x04
    IP = 0x08
    ICMP = 0x10
    UDP = 0x20
    TCP = 0x40
    TCPSTATE = 0x80
    ALL = 0xFF


_DEBUG_NAMES = {
    "dev": DebugFlag.DEV,
    "l2": DebugFlag.L2,
    "arp": DebugFlag.ARP,
    "ip": DebugFlag.IP,
    "icmp": DebugFlag.ICMP,
    "udp": DebugFlag.UDP,
    "tcp": DebugFlag.TCP,
    "tcpstate": DebugFlag.TCPSTATE,
    "all": DebugFlag.ALL,
}

_DEBUG_LOGGERS = {
    DebugFlag.DEV: ("tapstack.netdev",),
    DebugFlag.L2: ("tapstack.stack", "tapstack.packet"),
    DebugFlag.ARP: ("tapstack.arp",),
    DebugFlag.IP: ("tapstack.ip", "tapstack.ipfrag", "tapstack.route"),
    DebugFlag.ICMP: ("tapstack.icmp",),
    DebugFlag.UDP: ("tapstack.udp",),
    DebugFlag.TCP: ("tapstack.tcp",),
    DebugFlag.TCPSTATE: ("tapstack.tcpstate",),
}


def parse_debug_args(args: Sequence[str], current: int) -> tuple[DebugFlag, bool]:
    """Work out the new debug flags from ``debug`` arguments.

    Returns ``(flags, blocking)``; raises ValueError on an unknown word.
    """
    if not args:
        raise ValueError("no debug target given")
    noblock = clear = False
    debug = 0
    for arg in reversed(args):
        if arg == "-n":
            noblock = True
        elif arg == "-c":
            clear = True
        elif arg in _DEBUG_NAMES:
            debug |= _DEBUG_NAMES[arg]
        else:
            raise ValueError(f"unknown debug target {arg!r}")
    if clear:
        remaining = int(current) & ~debug & int(DebugFlag.ALL) if debug else 0
        return DebugFlag(remaining), False
    return DebugFlag((int(current) | debug) & int(DebugFlag.ALL)), not noblock


@dataclass
class _Command:
    name: str
    handler: Callable[[list], None]
    help: str
    argc: Optional[int] = None


class Shell:
    """Reads command lines and runs them against a stack."""

    def __init__(self, stack: Any, out: Optional[TextIO] = None,
                 prompt: Optional[str] = None) -> None:
        self.stack = stack
        self.out = out if out is not None else sys.stdout
        self.prompt = prompt or DEFAULT_PROMPT
        self.running = True
        self.debug_flags = DebugFlag(0)
        commands = [
            _Command("help", self._help, "display shell command information"),
            _Command("clear", self._clear, "clear the terminal screen"),
            _Command("exit", self._exit, "exit shell"),
            _Command("debug", self._debug, "debug dev|l2|arp|ip|icmp|udp|tcp|all"),
            _Command("ping2", self._ping2,
                     "ping [OPTIONS] ipaddr(Internal stack implementation)"),
            _Command("arpcache", self._arpcache, "see arp cache", 1),
            _Command("route", self._route, "show / manipulate the IP routing table", 1),
            _Command("ifconfig", self._ifconfig, "configure a network interface", 1),
            _Command("stat", self._stat, "display pkb/sock information", 1),
        ]
        self._commands = {command.name: command for command in commands}

    @staticmethod
    def parse_line(line: str) -> list[str]:
        """Split a command line at blanks; raises ValueError if too long."""
        text = line.rstrip("\n").strip(" \t")
        if not text:
            return []
        args = _BLANKS.split(text)
        if len(args) > MAX_ARGS:
            raise ValueError("too many arguments")
        return args

    def execute(self, line: str) -> bool:
        """Run one command line; returns whether the shell keeps running."""
        try:
            args = self.parse_line(line)
        except ValueError:
            self.out.write("-shell: too many arguments\n")
            return self.running
        if not args:
            return self.running
        command = self._commands.get(args[0])
        if command is None:
            self.out.write(f"-shell: {args[0]}: command not found\n")
        elif command.argc is not None and command.argc != len(args):
            self.out.write(f"shell: {command.name} needs {command.argc} commands\n")
            self.out.write(f"       {command.name}: {command.help}\n")
        else:
            command.handler(args)
        return self.running

    def run(self, lines: Iterable[str]) -> None:
        """Prompt for and run lines until ``exit`` or the input ends."""
        source = iter(lines)
        while self.running:
            self._print_prompt()
            try:
                line = next(source)
            except StopIteration:
                self.out.write("exit\n")
                line = "exit"
            except KeyboardInterrupt:
                self.out.write("\n")
                continue
            try:
                self.execute(line)
            except KeyboardInterrupt:
                self.out.write("\n")

    def _print_prompt(self) -> None:
        self.out.write(f"{self.prompt}: ")
        self.out.flush()

    def _set_debug(self, flags: DebugFlag) -> None:
        self.debug_flags = flags
        for flag, names in _DEBUG_LOGGERS.items():
            level = logging.DEBUG if flags & flag else logging.NOTSET
            for name in names:
                logging.getLogger(name).setLevel(level)

    def _help(self, args: list) -> None:
        for number, command in enumerate(self._commands.values(), start=1):
            self.out.write(f" {number}  {command.name}: {command.help}\n")

    def _clear(self, args: list) -> None:
        self.out.write("\033[1H\033[2J")

    def _exit(self, args: list) -> None:
        self.running = False

    def _debug(self, args: list) -> None:
        try:
            flags, blocking = parse_debug_args(args[1:], self.debug_flags)
        except ValueError:
            self.out.write(DEBUG_USAGE)
            return
        self._set_debug(flags)
        if not blocking:
            return
        self.out.write("enter ^C to exit debug mode\n")
        self.out.flush()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        self._set_debug(DebugFlag(0))
        self.out.write("\nexit debug mode\n")

    def _ping2(self, args: list) -> None:
        ping2(self.stack, args, self.out)
        self._set_debug(DebugFlag(0))

    def _arpcache(self, args: list) -> None:
        self.out.write(self.stack.arp_cache.format_table())

    def _route(self, args: list) -> None:
        self.out.write(self.stack.routes.format_table())

    def _ifconfig(self, args: list) -> None:
        self.out.write(self.stack.loopback.describe())
        self.out.write(self.stack.veth.describe())

    def _stat(self, args: list) -> None:
        stats = self.stack.statistics()
        self.out.write(
            "[pkbuf memory information]\n"
            f" alloced pkbs: {stats['alloced_pkbs']}\n"
            f" free pkbs:    {stats['free_pkbs']}\n"
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Start a stack with its timer and run the shell on standard input."""
    logging.basicConfig(stream=sys.stderr, format="(%(name)s): %(message)s")
    stack = NetStack()
    stop = threading.Event()

    def _timer() -> None:
        while not stop.wait(1.0):
            stack.tick(1)

    timer = threading.Thread(target=_timer, name="net-timer", daemon=True)
    timer.start()
    try:
        Shell(stack, sys.stdout).run(sys.stdin)
    finally:
        stop.set()
        timer.join()
    return 0