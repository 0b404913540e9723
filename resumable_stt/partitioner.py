"""
Byte-range arithmetic for splitting a source file into chunks.

Every chunk except possibly the last is exactly ``chunk_size`` bytes long.
Ranges are inclusive on both ends, matching the HTTP ``Range`` header, and
never extend past ``total_size - 1``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class ByteRange:
    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def header(self) -> str:
        """Render the range as an HTTP ``Range`` header value."""
        return f"bytes={self.start}-{self.end}"


def _check_sizes(total_size: int, chunk_size: int) -> None:
    if total_size <= 0:
        raise ValueError(f"total_size must be positive, got {total_size}")
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")


def chunk_count(total_size: int, chunk_size: int) -> int:
    """Return ``ceil(total_size / chunk_size)``."""
    _check_sizes(total_size, chunk_size)
    return -(-total_size // chunk_size)


def chunk_range(index: int, total_size: int, chunk_size: int) -> ByteRange:
    """Compute the inclusive byte range of chunk ``index``.

    Args:
        index: Zero-based chunk index.
        total_size: Size of the source in bytes.
        chunk_size: Nominal size of each chunk in bytes.

    Returns:
        The :class:`ByteRange` for the chunk.  The final chunk is shorter
        than ``chunk_size`` when ``total_size`` is not a multiple of it.

    Raises:
        ValueError: If either size is not positive.
        IndexError: If ``index`` is outside ``[0, chunk_count)``.
    """
    count = chunk_count(total_size, chunk_size)
    if not 0 <= index < count:
        raise IndexError(f"chunk index {index} out of range for {count} chunks")
    start = index * chunk_size
    end = min(start + chunk_size - 1, total_size - 1)
    return ByteRange(index=index, start=start, end=end)


def chunk_ranges(total_size: int, chunk_size: int) -> List[ByteRange]:
    """Return the ranges of every chunk, in index order."""
    return [
        chunk_range(i, total_size, chunk_size)
        for i in range(chunk_count(total_size, chunk_size))
    ]
