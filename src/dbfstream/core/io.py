from __future__ import annotations

import mmap
import os
from collections.abc import Iterator

DEFAULT_CHUNK_SIZE = 64 * 1024


class FileChunkSource:
    """Delivers a file as successive byte chunks for the stream decoder.

    Prefers `mmap` for slicing; falls back to buffered reads. The full file is
    never loaded into memory at once, and chunks are only read as the
    iterator is advanced.
    """

    def __init__(
        self,
        path: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        use_mmap: bool = True,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        if not os.path.exists(path):
            raise FileNotFoundError(f"File not found: {path}")

        self._path = path
        self._chunk_size = int(chunk_size)
        self._fh = open(path, "rb")
        self._size = os.fstat(self._fh.fileno()).st_size
        self._mmap: mmap.mmap | None = None
        if use_mmap and self._size > 0:
            try:
                self._mmap = mmap.mmap(self._fh.fileno(), 0, access=mmap.ACCESS_READ)
            except (OSError, ValueError):
                self._mmap = None  # e.g. pipes and special files

    def close(self) -> None:
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
        self._fh.close()

    def __enter__(self) -> FileChunkSource:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def size(self) -> int:
        """File size in bytes."""
        return self._size

    @property
    def path(self) -> str:
        return self._path

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def __iter__(self) -> Iterator[bytes]:
        return self.iter_chunks()

    def iter_chunks(self, start: int = 0) -> Iterator[bytes]:
        """Yield the file from `start` to EOF in chunks of at most `chunk_size` bytes."""
        if start < 0:
            raise ValueError("start must be >= 0")
        pos = start
        if self._mmap is not None:
            while pos < self._size:
                end = min(self._size, pos + self._chunk_size)
                yield bytes(self._mmap[pos:end])  # type: ignore[index]
                pos = end
            return

        self._fh.seek(pos)
        while True:
            data = self._fh.read(self._chunk_size)
            if not data:
                break
            yield data
