"""
Environment-driven settings.

Environment variables:

* ``JOB_STORE_BACKEND`` – ``gcs`` (default) or ``memory``.
* ``JOBS_BUCKET`` – Bucket holding job records.  Required for ``gcs``.
* ``JOBS_PREFIX`` – Object-name prefix for job records (default ``jobs/``).
* ``CHUNK_SIZE`` – Bytes per chunk (default 0.5 MB).
* ``PARALLELISM`` – Chunks transcribed per invocation (default 5).
* ``SPEECH_BACKEND`` – ``client`` (default) or ``rest``.
* ``SPEECH_API_URL`` – Speech-to-Text V2 recognize endpoint for ``rest``.
* ``LANGUAGE_CODE`` – BCP-47 language tag (default ``en-US``).
* ``SPEECH_ENCODING`` – Audio encoding name for ``client`` (default ``MP3``).
* ``SAMPLE_RATE_HERTZ`` – Sample rate for ``client`` (default 16000).
* ``REQUEST_TIMEOUT`` – Seconds allowed per HTTP call (default 60).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError
from .stt_service import DEFAULT_SPEECH_API_URL

CHUNK_SIZE = 512 * 1024  # 0.5 MB
PARALLELISM = 5

STORE_BACKENDS = ("gcs", "memory")
SPEECH_BACKENDS = ("client", "rest")


@dataclass(frozen=True)
class Settings:
    job_store_backend: str = "gcs"
    jobs_bucket: Optional[str] = None
    jobs_prefix: str = "jobs/"
    chunk_size: int = CHUNK_SIZE
    parallelism: int = PARALLELISM
    speech_backend: str = "client"
    speech_api_url: str = DEFAULT_SPEECH_API_URL
    language_code: str = "en-US"
    speech_encoding: str = "MP3"
    sample_rate_hertz: int = 16000
    request_timeout: float = 60.0

    def __post_init__(self) -> None:
        if self.job_store_backend not in STORE_BACKENDS:
            raise ConfigurationError(
                f"JOB_STORE_BACKEND must be one of {STORE_BACKENDS}, got {self.job_store_backend!r}"
            )
        if self.job_store_backend == "gcs" and not self.jobs_bucket:
            raise ConfigurationError("JOBS_BUCKET is not set; no job store is bound")
        if self.speech_backend not in SPEECH_BACKENDS:
            raise ConfigurationError(
                f"SPEECH_BACKEND must be one of {SPEECH_BACKENDS}, got {self.speech_backend!r}"
            )
        if self.chunk_size <= 0:
            raise ConfigurationError(f"CHUNK_SIZE must be positive, got {self.chunk_size}")
        if self.parallelism < 1:
            raise ConfigurationError(f"PARALLELISM must be at least 1, got {self.parallelism}")
        if self.request_timeout <= 0:
            raise ConfigurationError(
                f"REQUEST_TIMEOUT must be positive, got {self.request_timeout}"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            job_store_backend=env.get("JOB_STORE_BACKEND", "gcs").lower(),
            jobs_bucket=env.get("JOBS_BUCKET") or None,
            jobs_prefix=env.get("JOBS_PREFIX", "jobs/"),
            chunk_size=_number(env, "CHUNK_SIZE", CHUNK_SIZE, int),
            parallelism=_number(env, "PARALLELISM", PARALLELISM, int),
            speech_backend=env.get("SPEECH_BACKEND", "client").lower(),
            speech_api_url=env.get("SPEECH_API_URL", DEFAULT_SPEECH_API_URL),
            language_code=env.get("LANGUAGE_CODE", "en-US"),
            speech_encoding=env.get("SPEECH_ENCODING", "MP3"),
            sample_rate_hertz=_number(env, "SAMPLE_RATE_HERTZ", 16000, int),
            request_timeout=_number(env, "REQUEST_TIMEOUT", 60.0, float),
        )


def _number(env: Mapping[str, str], name: str, default, kind):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
