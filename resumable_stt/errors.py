"""Exception types raised across the transcription service."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every failure the service reports to callers."""


class ConfigurationError(PipelineError):
    """Raised when a required setting or external binding is missing."""


class ClientInputError(PipelineError):
    """Raised when the request carries a missing or invalid audio locator."""


class SourceError(PipelineError):
    """Base class for failures talking to the source audio host."""


class SourceUnreachableError(SourceError):
    """Raised when the metadata probe for a new job fails."""


class ChunkFetchError(SourceError):
    """Raised when a byte-range request for one chunk fails."""


class TranscriptionError(PipelineError):
    """Raised when the speech service cannot transcribe a chunk."""


class JobStoreError(PipelineError):
    """Raised when the job store cannot be read or written."""


class JobConflictError(JobStoreError):
    """Raised when a conditional write loses against a concurrent writer."""


class MalformedJobRecordError(JobStoreError):
    """Raised when a stored job record does not have the expected shape."""
