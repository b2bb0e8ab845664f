"""IPv4 fragmentation and reassembly."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from .checksum import ip_checksum
from .packet import (
    ETH_HEADER_LEN,
    IP_FRAG_MF,
    IPv4Header,
    PacketBuffer,
    PacketPool,
    EtherType,
)

logger = logging.getLogger(__name__)

FRAG_TIME = 30
FRAG_FIRST_IN = 0x01
FRAG_LAST_IN = 0x02
FRAG_COMPLETE = 0x04
FRAG_FL_IN = FRAG_FIRST_IN | FRAG_LAST_IN
MAX_IP_PACKET = 65535


def _header_of(pkb: PacketBuffer) -> IPv4Header:
    return IPv4Header.parse(pkb.data[ETH_HEADER_LEN:])


def _with_checksum(header: IPv4Header) -> bytes:
    header.checksum = 0
    header.checksum = ip_checksum(header.pack())
    return header.pack()


@dataclass
class _Piece:
    offset: int
    length: int
    pkb: PacketBuffer


@dataclass(eq=False)
class Fragment:
    """The fragments received so far of one datagram, ordered by offset."""

    ident: int
    src: int
    dst: int
    proto: int
    ttl: int = FRAG_TIME
    hlen: int = 0
    size: int = 0
    rsize: int = 0
    flags: int = 0
    pieces: list = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return bool(self.flags & FRAG_COMPLETE)

    @property
    def packets(self) -> list[PacketBuffer]:
        return [piece.pkb for piece in self.pieces]

    def is_full(self) -> bool:
        """Both ends arrived and every byte in between."""
        return (self.flags & FRAG_FL_IN) == FRAG_FL_IN and self.rsize == self.size

    def insert(self, pkb: PacketBuffer) -> bool:
        """Add a fragment; False when it is rejected (caller drops it)."""
        if self.complete:
            logger.debug("extra fragment for complete reassembled packet")
            return False
        header = _header_of(pkb)
        off = header.fragment_offset()
        hlen = header.header_length()
        dlen = header.total_length - hlen
        piece = _Piece(off, dlen, pkb)

        if not header.frag_off & IP_FRAG_MF:
            if self.flags & FRAG_LAST_IN:
                logger.debug("reduplicate last ip fragment")
                return False
            self.flags |= FRAG_LAST_IN
            self.size = off + dlen
            self.pieces.append(piece)
        else:
            pos = 0
            prev: Optional[_Piece] = None
            for index, existing in reversed(list(enumerate(self.pieces))):
                if off == existing.offset:
                    logger.debug("reduplicate ip fragment")
                    return False
                if off > existing.offset:
                    pos = index + 1
                    prev = existing
                    break
            if self.hlen and self.hlen != hlen:
                logger.debug("error ip fragment")
                return False
            self.hlen = hlen
            if prev is not None and prev.offset + prev.length > off:
                logger.debug("error ip fragment")
                return False
            if off == 0:
                self.flags |= FRAG_FIRST_IN
            self.pieces.insert(pos, piece)

        self.rsize += dlen
        if self.is_full():
            self.flags |= FRAG_COMPLETE
        return True

    def discard(self, pool: PacketPool) -> None:
        """Release every fragment held."""
        for piece in self.pieces:
            pool.release(piece.pkb)
        self.pieces.clear()

    def reassemble(self, pool: PacketPool) -> Optional[PacketBuffer]:
        """Join the fragments into one packet and release them."""
        try:
            hlen = self.hlen
            length = hlen + self.size
            if length > MAX_IP_PACKET or not self.pieces:
                logger.debug("reassembled packet oversize(%d/%d)", hlen, length)
                return None
            first = self.pieces[0].pkb
            header = replace(_header_of(first), frag_off=0, total_length=length)
            pkb = pool.allocate(ETH_HEADER_LEN + length)
            pkb.proto = EtherType.IP
            pkb.data[:ETH_HEADER_LEN] = first.data[:ETH_HEADER_LEN]
            raw = _with_checksum(header)
            pkb.data[ETH_HEADER_LEN:ETH_HEADER_LEN + len(raw)] = raw
            body = b"".join(
                bytes(p.pkb.data[ETH_HEADER_LEN + hlen:ETH_HEADER_LEN + hlen + p.length])
                for p in self.pieces
            )
            start = ETH_HEADER_LEN + hlen
            pkb.data[start:start + len(body)] = body
            logger.debug("resassembly success(%d/%d bytes)", hlen, length)
            return pkb
        finally:
            self.discard(pool)


class Reassembler:
    """Collects fragments of incoming datagrams until they are whole."""

    def __init__(self, pool: PacketPool, ttl: int = FRAG_TIME) -> None:
        self.pool = pool
        self.ttl = ttl
        self._frags: list[Fragment] = []

    def __len__(self) -> int:
        return len(self._frags)

    def lookup(self, header: IPv4Header) -> Optional[Fragment]:
        return next(
            (f for f in self._frags
             if f.ident == header.ident and f.proto == header.proto
             and f.src == header.src and f.dst == header.dst),
            None,
        )

    def reassemble(self, pkb: PacketBuffer) -> Optional[PacketBuffer]:
        """Take a fragment; return the whole datagram once it is complete."""
        header = _header_of(pkb)
        frag = self.lookup(header)
        if frag is None:
            frag = Fragment(header.ident, header.src, header.dst, header.proto, self.ttl)
            self._frags.insert(0, frag)
        if not frag.insert(pkb):
            self.pool.release(pkb)
            return None
        if not frag.complete:
            return None
        self._frags.remove(frag)
        return frag.reassemble(self.pool)

    def timer(self, delta: int, on_timeout: Callable[[PacketBuffer], object]) -> None:
        """Age datagrams; expired ones are reported and discarded."""
        for frag in list(self._frags):
            if frag.is_full():
                continue
            frag.ttl -= delta
            if frag.ttl <= 0:
                if frag.pieces:
                    on_timeout(frag.pieces[0].pkb)
                self._frags.remove(frag)
                frag.discard(self.pool)


def fragment_packet(pkb: PacketBuffer, mtu: int, pool: PacketPool) -> list[PacketBuffer]:
    """Split ``pkb`` into fragments that fit ``mtu``; ``pkb`` is left alone."""
    header = _header_of(pkb)
    hlen = header.header_length()
    mlen = (mtu - hlen) & ~7
    if mlen <= 0:
        raise ValueError("mtu too small to fragment")
    body = bytes(pkb.data[ETH_HEADER_LEN + hlen:ETH_HEADER_LEN + header.total_length])

    def make(off: int, dlen: int, mf_bit: int) -> PacketBuffer:
        frag_header = replace(header, total_length=hlen + dlen, frag_off=mf_bit | (off >> 3))
        fragpkb = pool.allocate(ETH_HEADER_LEN + hlen + dlen)
        fragpkb.proto = pkb.proto
        fragpkb.type = pkb.type
        fragpkb.indev = pkb.indev
        fragpkb.rtdst = pkb.rtdst
        raw = _with_checksum(frag_header)
        fragpkb.data[ETH_HEADER_LEN:ETH_HEADER_LEN + len(raw)] = raw
        fragpkb.data[ETH_HEADER_LEN + hlen:] = body[off:off + dlen]
        return fragpkb

    fragments = []
    dlen = len(body)
    off = 0
    while dlen > mlen:
        fragments.append(make(off, mlen, IP_FRAG_MF))
        dlen -= mlen
        off += mlen
    if dlen:
        fragments.append(make(off, dlen, header.frag_off & IP_FRAG_MF))
    return fragments