"""
HTTP entrypoints for the transcription service.

This module exposes:

* ``app`` – a Flask application serving ``/`` and ``/transcribe``.
* ``http_trigger`` – a Cloud Functions HTTP entrypoint with the same
  behaviour, for deployments that use the functions framework.

Callers pass the source audio as ``audioUrl`` (query string, form field or
JSON body) and keep calling until the response reports ``complete``.  The
first call for a new URL answers ``201`` with the number of chunks; each
later call transcribes the next batch and answers with the progress so far.

Configuration is read from the environment, see :mod:`resumable_stt.config`.
"""

import json
import logging
import os
import threading
from typing import Any, Dict, Optional, Tuple

from flask import Flask, request

from .config import Settings
from .errors import (
    ClientInputError,
    ConfigurationError,
    JobConflictError,
    SourceUnreachableError,
)
from .job_store import GcsJobStore, JobStore, MemoryJobStore
from .stt_service import RestSpeechInvoker, SpeechClientInvoker, TranscriptionInvoker
from .tasks import TranscriptionJobs

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(message)s")

app = Flask(__name__)

# Built on first request so that a missing binding is reported per request.
jobs: Optional[TranscriptionJobs] = None
_jobs_lock = threading.Lock()


def build_jobs(settings: Settings) -> TranscriptionJobs:
    """Wire the job store, speech invoker and limits from ``settings``."""
    store: JobStore
    if settings.job_store_backend == "memory":
        store = MemoryJobStore()
    else:
        store = GcsJobStore(settings.jobs_bucket, prefix=settings.jobs_prefix)

    invoker: TranscriptionInvoker
    if settings.speech_backend == "rest":
        invoker = RestSpeechInvoker(
            api_url=settings.speech_api_url,
            language_code=settings.language_code,
            timeout=settings.request_timeout,
        )
    else:
        invoker = SpeechClientInvoker(
            language_code=settings.language_code,
            encoding=settings.speech_encoding,
            sample_rate_hertz=settings.sample_rate_hertz,
        )

    return TranscriptionJobs(
        store,
        invoker,
        chunk_size=settings.chunk_size,
        parallelism=settings.parallelism,
        timeout=settings.request_timeout,
    )


def get_jobs() -> TranscriptionJobs:
    global jobs
    with _jobs_lock:
        if jobs is None:
            jobs = build_jobs(Settings.from_env())
        return jobs


def _extract_locator(req) -> Optional[str]:
    locator = req.args.get("audioUrl") or req.form.get("audioUrl")
    if locator:
        return locator
    data = req.get_json(silent=True)
    if isinstance(data, dict):
        value = data.get("audioUrl")
        if isinstance(value, str):
            return value
    return None


def _error(message: str, status: int) -> Tuple[Dict[str, Any], int]:
    return {"error": message}, status


def handle_request(req) -> Tuple[Dict[str, Any], int]:
    """Run one invocation and map the outcome to a JSON body and status."""
    try:
        service = get_jobs()
        locator = _extract_locator(req)
        logger.info(json.dumps({"event": "request", "locator": locator}))
        outcome = service.lookup(locator)
        return outcome.body, 201 if outcome.created else 200
    except ConfigurationError as exc:
        logger.error(json.dumps({"event": "configuration_error", "error": str(exc)}))
        return _error(str(exc), 500)
    except (ClientInputError, SourceUnreachableError) as exc:
        logger.info(json.dumps({"event": "client_error", "error": str(exc)}))
        return _error(str(exc), 400)
    except JobConflictError as exc:
        logger.warning(json.dumps({"event": "conflict", "error": str(exc)}))
        return _error(str(exc), 409)
    except Exception as exc:
        logger.exception("Error handling transcription request")
        return _error(str(exc), 500)


@app.route("/", methods=["GET", "POST"])
@app.route("/transcribe", methods=["GET", "POST"])
def transcribe():
    return handle_request(request)


def http_trigger(request):
    """Cloud Functions HTTP entrypoint."""
    return handle_request(request)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)
