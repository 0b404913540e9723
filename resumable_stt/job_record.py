"""
Persisted state of one transcription job.

A job is keyed by the locator of its source audio.  Chunks ``0`` to
``processed_chunks - 1`` are done and their text sits in
``accumulated_text``; the rest are pending.  Records are immutable, every
state change returns a new record, and the store is the only place they
live between invocations.

Stored records are validated on load so that a hand-edited or truncated
object surfaces as :class:`MalformedJobRecordError` instead of propagating
half-shaped data through the orchestrator.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from .errors import MalformedJobRecordError
from .partitioner import chunk_count as compute_chunk_count


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class JobRecord:
    locator: str
    total_size: int
    chunk_size: int
    chunk_count: int
    processed_chunks: int = 0
    accumulated_text: str = ""
    status: JobStatus = JobStatus.PROCESSING
    etag: Optional[str] = None
    # Store version token, never serialised.  None means "not stored yet".
    generation: Optional[int] = field(default=None, compare=False)

    @classmethod
    def create(
        cls,
        locator: str,
        total_size: int,
        chunk_size: int,
        etag: Optional[str] = None,
    ) -> "JobRecord":
        """Build a fresh record with no chunks processed."""
        return cls(
            locator=locator,
            total_size=total_size,
            chunk_size=chunk_size,
            chunk_count=compute_chunk_count(total_size, chunk_size),
            etag=etag,
        )

    @property
    def is_complete(self) -> bool:
        return self.status is JobStatus.COMPLETE

    def pending_window(self, parallelism: int) -> range:
        """Indices of the next batch, at most ``parallelism`` of them."""
        stop = min(self.processed_chunks + parallelism, self.chunk_count)
        return range(self.processed_chunks, stop)

    def advance(self, texts: Sequence[str]) -> "JobRecord":
        """Append the texts of the next ``len(texts)`` chunks, in order.

        Chunk texts are separated by a single space, including across batch
        boundaries, so ``accumulated_text`` always equals the space-joined
        texts of chunks ``0..processed_chunks-1``.
        """
        processed = self.processed_chunks + len(texts)
        if processed > self.chunk_count:
            raise ValueError(
                f"cannot advance {self.locator} to {processed} of {self.chunk_count} chunks"
            )
        if not texts:
            return self
        joined = " ".join(texts)
        if self.processed_chunks:
            joined = f"{self.accumulated_text} {joined}"
        status = JobStatus.COMPLETE if processed == self.chunk_count else JobStatus.PROCESSING
        return replace(self, processed_chunks=processed, accumulated_text=joined, status=status)

    def mark_complete(self) -> "JobRecord":
        return replace(self, status=JobStatus.COMPLETE)

    def summary(self) -> Dict[str, Any]:
        """Progress body returned to callers after a batch."""
        return {
            "status": self.status.value,
            "result": self.accumulated_text,
            "processedChunks": self.processed_chunks,
            "chunkCount": self.chunk_count,
        }

    # -- serialisation ---------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "locator": self.locator,
            "totalSize": self.total_size,
            "chunkSize": self.chunk_size,
            "chunkCount": self.chunk_count,
            "processedChunks": self.processed_chunks,
            "accumulatedText": self.accumulated_text,
            "status": self.status.value,
        }
        if self.etag is not None:
            data["etag"] = self.etag
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str, generation: Optional[int] = None) -> "JobRecord":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise MalformedJobRecordError(f"Job record is not valid JSON: {exc}") from exc
        return cls.from_dict(data, generation=generation)

    @classmethod
    def from_dict(cls, data: Any, generation: Optional[int] = None) -> "JobRecord":
        """Validate a stored payload and build a record from it.

        Raises:
            MalformedJobRecordError: If a field is missing, has the wrong
                type, or the fields contradict each other.
        """
        if not isinstance(data, dict):
            raise MalformedJobRecordError("Job record must be a JSON object")

        locator = _require(data, "locator", str)
        total_size = _require(data, "totalSize", int)
        chunk_size = _require(data, "chunkSize", int)
        count = _require(data, "chunkCount", int)
        processed = _require(data, "processedChunks", int)
        text = _require(data, "accumulatedText", str)
        raw_status = _require(data, "status", str)
        etag = data.get("etag")
        if etag is not None and not isinstance(etag, str):
            raise MalformedJobRecordError("Job record field 'etag' must be a string")

        if not locator:
            raise MalformedJobRecordError("Job record has an empty locator")
        if total_size <= 0 or chunk_size <= 0:
            raise MalformedJobRecordError(
                f"Job record for {locator} has non-positive sizes"
            )
        if count != compute_chunk_count(total_size, chunk_size):
            raise MalformedJobRecordError(
                f"Job record for {locator} has chunkCount {count}, "
                f"expected ceil({total_size}/{chunk_size})"
            )
        if not 0 <= processed <= count:
            raise MalformedJobRecordError(
                f"Job record for {locator} has processedChunks {processed} outside [0, {count}]"
            )
        try:
            status = JobStatus(raw_status)
        except ValueError:
            raise MalformedJobRecordError(
                f"Job record for {locator} has unknown status {raw_status!r}"
            ) from None
        if status is JobStatus.COMPLETE and processed < count:
            raise MalformedJobRecordError(
                f"Job record for {locator} is complete with {processed} of {count} chunks"
            )

        return cls(
            locator=locator,
            total_size=total_size,
            chunk_size=chunk_size,
            chunk_count=count,
            processed_chunks=processed,
            accumulated_text=text,
            status=status,
            etag=etag,
            generation=generation,
        )


def _require(data: Dict[str, Any], key: str, kind: type) -> Any:
    if key not in data:
        raise MalformedJobRecordError(f"Job record is missing field {key!r}")
    value = data[key]
    # bool is a subclass of int; a stored true/false is never a valid count.
    if isinstance(value, bool) or not isinstance(value, kind):
        raise MalformedJobRecordError(
            f"Job record field {key!r} must be {kind.__name__}, got {type(value).__name__}"
        )
    return value
