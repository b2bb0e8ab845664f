"""A small user-space network stack: Ethernet, ARP, IPv4, ICMP and a debug shell."""

__version__ = "0.1.0"
__all__ = [
    "addr",
    "arp",
    "cbuf",
    "checksum",
    "icmp",
    "ip",
    "ipfrag",
    "netdev",
    "packet",
    "ping",
    "route",
    "shell",
    "stack",
]