"""
Key-value persistence for job records.

The store exposes two operations: ``get`` a record by locator and ``put``
a record back.  Writes are conditional on the version the record was read
with, so two overlapping invocations for the same locator cannot both
commit the same window: the loser gets :class:`JobConflictError` and the
caller simply polls again.

Two backends are provided:

* :class:`GcsJobStore` keeps one JSON object per locator in a Cloud
  Storage bucket and uses object generations as version tokens.
* :class:`MemoryJobStore` keeps records in process memory, for local runs
  and tests.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, Optional, Protocol, Tuple

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import storage

from .errors import JobConflictError, JobStoreError
from .job_record import JobRecord

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class JobStore(Protocol):
    def get(self, locator: str) -> Optional[JobRecord]:
        """Return the stored record for ``locator`` or ``None``."""

    def put(self, record: JobRecord) -> JobRecord:
        """Persist ``record`` and return it with its new generation."""


class GcsJobStore:
    """Job records stored as ``<prefix><locator>`` objects in a bucket."""

    def __init__(
        self,
        bucket_name: str,
        *,
        prefix: str = "jobs/",
        client: Optional[storage.Client] = None,
    ) -> None:
        self.bucket_name = bucket_name
        self.prefix = prefix
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def blob_name(self, locator: str) -> str:
        return f"{self.prefix}{locator}"

    def get(self, locator: str) -> Optional[JobRecord]:
        name = self.blob_name(locator)
        try:
            bucket = self.client.bucket(self.bucket_name)
            blob = bucket.get_blob(name)
            if blob is None:
                return None
            text = blob.download_as_text(if_generation_match=blob.generation)
        except gcloud_exceptions.PreconditionFailed as exc:
            raise JobConflictError(f"Job record {name} changed while it was read") from exc
        except gcloud_exceptions.GoogleAPIError as exc:
            raise JobStoreError(f"Failed to read job record {name}: {exc}") from exc
        return JobRecord.from_json(text, generation=blob.generation)

    def put(self, record: JobRecord) -> JobRecord:
        name = self.blob_name(record.locator)
        # Generation 0 makes the upload succeed only if the object is absent.
        expected = record.generation or 0
        try:
            blob = self.client.bucket(self.bucket_name).blob(name)
            blob.upload_from_string(
                record.to_json(),
                content_type=JSON_CONTENT_TYPE,
                if_generation_match=expected,
            )
        except gcloud_exceptions.PreconditionFailed as exc:
            raise JobConflictError(
                f"Job record {name} was modified by a concurrent invocation"
            ) from exc
        except gcloud_exceptions.GoogleAPIError as exc:
            raise JobStoreError(f"Failed to write job record {name}: {exc}") from exc
        logger.debug("Stored job record %s at generation %s", name, blob.generation)
        return replace(record, generation=blob.generation)


class MemoryJobStore:
    """In-process store with the same conditional-write semantics."""

    def __init__(self) -> None:
        self._records: Dict[str, Tuple[str, int]] = {}
        self._lock = threading.Lock()

    def get(self, locator: str) -> Optional[JobRecord]:
        with self._lock:
            entry = self._records.get(locator)
        if entry is None:
            return None
        text, generation = entry
        return JobRecord.from_json(text, generation=generation)

    def put(self, record: JobRecord) -> JobRecord:
        with self._lock:
            current = self._records.get(record.locator)
            current_generation = current[1] if current else 0
            if (record.generation or 0) != current_generation:
                raise JobConflictError(
                    f"Job record {record.locator} was modified by a concurrent invocation"
                )
            generation = current_generation + 1
            self._records[record.locator] = (record.to_json(), generation)
        return replace(record, generation=generation)

    def __contains__(self, locator: str) -> bool:
        with self._lock:
            return locator in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
