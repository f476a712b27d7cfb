"""Accumulates stream bytes that have not been consumed yet."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dbfstream.core.header import Header

PREAMBLE_SIZE = 32


class ByteAccumulator:
    """Owned byte buffer carried across chunk deliveries.

    Bytes are only ever removed through `take`; everything else is a query.
    """

    def __init__(self) -> None:
        self._data = bytearray()

    def __len__(self) -> int:
        return len(self._data)

    def append(self, chunk: bytes) -> None:
        self._data += chunk

    def declared_header_length(self) -> int | None:
        """Header byte length from bytes 8-9 of the preamble, once 32 bytes are held."""
        if len(self._data) < PREAMBLE_SIZE:
            return None
        return int.from_bytes(self._data[8:10], "little", signed=False)

    def has_header(self) -> bool:
        declared = self.declared_header_length()
        return declared is not None and len(self._data) >= declared

    def has_record(self, header: Header) -> bool:
        return len(self._data) >= header.number_of_bytes_in_record

    def peek(self, n: int) -> bytes:
        return bytes(self._data[:n])

    def take(self, n: int) -> bytes:
        """Remove and return the first `n` bytes."""
        if n < 0:
            raise ValueError("n must be >= 0")
        out = bytes(self._data[:n])
        del self._data[:n]
        return out
