"""
Orchestration layer for resumable transcription jobs.

This module defines :class:`TranscriptionJobs`, which is called from the
HTTP entrypoint in :mod:`resumable_stt.main`.  Each invocation advances one
job by a bounded amount of work:

* For an unseen locator, the source is probed with a HEAD request and a
  job record is created.  No audio is transcribed yet.
* For a job still processing, the next window of up to ``parallelism``
  chunks is fetched and transcribed concurrently, the texts are merged in
  chunk order, and the record is written back once.
* For a finished job, the stored transcript is returned as is.

A failure anywhere in a window leaves the stored record untouched, so the
caller can simply invoke again until the job reports ``complete``.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from . import chunk_fetcher, partitioner
from .config import CHUNK_SIZE, PARALLELISM
from .errors import ClientInputError
from .job_record import JobRecord
from .job_store import JobStore
from .partitioner import ByteRange
from .stt_service import TranscriptionInvoker

logger = logging.getLogger(__name__)

CREATED = "created"


@dataclass(frozen=True)
class Outcome:
    """Result of one invocation: a kind plus the JSON body for the caller.

    ``kind`` is ``created``, ``processing`` or ``complete``.
    """

    kind: str
    body: Dict[str, Any]

    @property
    def created(self) -> bool:
        return self.kind == CREATED


def validate_locator(locator: Optional[str]) -> str:
    """Return ``locator`` unchanged or raise :class:`ClientInputError`.

    The locator is the store key as given, so surrounding whitespace is
    rejected rather than trimmed.
    """
    if locator is None or not locator.strip():
        raise ClientInputError("Audio URL is missing")
    if locator != locator.strip():
        raise ClientInputError(f"Audio URL has surrounding whitespace: {locator!r}")
    parsed = urlparse(locator)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ClientInputError(f"Audio URL must be an absolute http(s) URL: {locator}")
    return locator


class TranscriptionJobs:
    """Looks up, creates and advances jobs held in a :class:`JobStore`."""

    def __init__(
        self,
        store: JobStore,
        invoker: TranscriptionInvoker,
        *,
        chunk_size: int = CHUNK_SIZE,
        parallelism: int = PARALLELISM,
        timeout: float = chunk_fetcher.DEFAULT_TIMEOUT,
        probe: Callable[..., chunk_fetcher.SourceInfo] = chunk_fetcher.probe_source,
        fetch: Callable[..., bytes] = chunk_fetcher.fetch_chunk,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.store = store
        self.invoker = invoker
        self.chunk_size = chunk_size
        self.parallelism = parallelism
        self.timeout = timeout
        self._probe = probe
        self._fetch = fetch

    def lookup(self, locator: Optional[str]) -> Outcome:
        """Route one invocation for ``locator`` to the right step."""
        locator = validate_locator(locator)
        job = self.store.get(locator)
        if job is None:
            return self.create_job(locator)
        if job.is_complete:
            logger.info(json.dumps({"event": "job_already_complete", "locator": locator}))
            return _complete(job)
        return self.process_next_chunks(job)

    def create_job(self, locator: str) -> Outcome:
        """Probe the source and store a new record for it.

        Nothing is written when the probe fails.
        """
        info = self._probe(locator, timeout=self.timeout)
        job = JobRecord.create(locator, info.total_size, self.chunk_size, etag=info.etag)
        self.store.put(job)
        logger.info(
            json.dumps(
                {
                    "event": "job_created",
                    "locator": locator,
                    "totalSize": job.total_size,
                    "chunkCount": job.chunk_count,
                }
            )
        )
        return Outcome(CREATED, {"chunkCount": job.chunk_count})

    def process_next_chunks(self, job: JobRecord) -> Outcome:
        """Transcribe the next window of chunks and commit it in one write."""
        window = job.pending_window(self.parallelism)
        if not window:
            # Stale record: every chunk is merged but the status never flipped.
            job = self.store.put(job.mark_complete())
            logger.info(json.dumps({"event": "job_complete", "locator": job.locator}))
            return _complete(job)

        logger.info(
            json.dumps(
                {
                    "event": "batch_start",
                    "locator": job.locator,
                    "first": window.start,
                    "last": window.stop - 1,
                    "chunkCount": job.chunk_count,
                }
            )
        )
        texts = self._run_window(job, window)
        job = self.store.put(job.advance(texts))
        logger.info(
            json.dumps(
                {
                    "event": "batch_committed",
                    "locator": job.locator,
                    "processedChunks": job.processed_chunks,
                    "chunkCount": job.chunk_count,
                    "status": job.status.value,
                }
            )
        )
        if job.is_complete:
            logger.info(json.dumps({"event": "job_complete", "locator": job.locator}))
        return Outcome(job.status.value, job.summary())

    def _run_window(self, job: JobRecord, window: range) -> List[str]:
        """Fetch and transcribe every chunk in ``window``, index-ordered.

        All tasks run to completion before any failure is raised; the error
        of the lowest failing index wins.
        """
        ranges = [partitioner.chunk_range(i, job.total_size, job.chunk_size) for i in window]
        with ThreadPoolExecutor(max_workers=len(ranges)) as pool:
            futures = [pool.submit(self._process_chunk, job, byte_range) for byte_range in ranges]
            wait(futures)

        failures = [(r, f.exception()) for r, f in zip(ranges, futures) if f.exception()]
        for byte_range, exc in failures:
            logger.error(
                json.dumps(
                    {
                        "event": "chunk_failed",
                        "locator": job.locator,
                        "chunk": byte_range.index,
                        "error": str(exc),
                    }
                )
            )
        if failures:
            logger.error(
                json.dumps(
                    {"event": "batch_failed", "locator": job.locator, "failed": len(failures)}
                )
            )
            raise failures[0][1]
        return [f.result() for f in futures]

    def _process_chunk(self, job: JobRecord, byte_range: ByteRange) -> str:
        audio = self._fetch(job.locator, byte_range, etag=job.etag, timeout=self.timeout)
        return self.invoker.transcribe(audio)


def _complete(job: JobRecord) -> Outcome:
    return Outcome(job.status.value, {"status": job.status.value, "result": job.accumulated_text})
