"""Fixed size circular byte buffer."""

from __future__ import annotations


class CircularBuffer:
    """A ring of ``size`` bytes with separate read and write positions.

    ``head`` and ``tail`` count written and read bytes; both are rebased
    once the tail passes the end of the storage.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("buffer size must not be negative")
        self.size = size
        self.head = 0
        self.tail = 0
        self._storage = bytearray(size)

    def used(self) -> int:
        """Number of bytes waiting to be read."""
        return self.head - self.tail

    def free(self) -> int:
        """Number of bytes that can still be written."""
        return self.size - self.used()

    def write(self, data: bytes) -> int:
        """Store as much of ``data`` as fits and return the count stored."""
        total = min(self.free(), len(data))
        view = memoryview(data)[:total]
        while view:
            pos = self.head % self.size
            chunk = min(self.size - pos, len(view))
            self._storage[pos:pos + chunk] = view[:chunk]
            view = view[chunk:]
            self.head += chunk
        return total

    def read(self, size: int) -> bytes:
        """Remove and return up to ``size`` bytes."""
        total = max(0, min(self.used(), size))
        parts = []
        remaining = total
        while remaining > 0:
            pos = self.tail % self.size
            chunk = min(self.size - pos, remaining)
            parts.append(bytes(self._storage[pos:pos + chunk]))
            remaining -= chunk
            self.tail += chunk
        if self.size and self.tail >= self.size:
            self.head -= self.size
            self.tail -= self.size
        return b"".join(parts)

    def __len__(self) -> int:
        return self.used()