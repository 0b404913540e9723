"""
Google Speech-to-Text wrappers.

An invoker takes the raw bytes of one audio chunk and returns the text
recognised in it.  Two implementations are provided:

* :class:`SpeechClientInvoker` calls the synchronous ``recognize`` method of
  the ``speech_v1p1beta1`` client library with the bytes inlined.
* :class:`RestSpeechInvoker` posts to the Speech-to-Text V2 REST endpoint
  using a token from the metadata server, the way Cloud Run services
  without the client library do.

Failures always raise :class:`TranscriptionError`; an empty string means
the service heard nothing in the chunk.

Usage::

    from resumable_stt.stt_service import SpeechClientInvoker

    text = SpeechClientInvoker(language_code="en-GB").transcribe(chunk_bytes)
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from typing import Any, Dict, Optional, Protocol

import requests
from google.api_core import exceptions as gcloud_exceptions
from google.cloud import speech_v1p1beta1 as speech
from google.protobuf.json_format import MessageToDict
from tenacity import retry, stop_after_attempt, wait_exponential

from .errors import ConfigurationError, TranscriptionError

logger = logging.getLogger(__name__)

DEFAULT_SPEECH_API_URL = (
    "https://speech.googleapis.com/v2/projects/"
    "-/locations/global/recognizers/_:recognize"
)
METADATA_TOKEN_URL = (
    "http://metadata.google.internal/computeMetadata/v1/instance/"
    "service-accounts/default/token"
)
# Refresh cached tokens this many seconds before they expire.
TOKEN_EXPIRY_MARGIN = 60


class TranscriptionInvoker(Protocol):
    def transcribe(self, audio: bytes) -> str:
        ...


def extract_transcript(response: Dict[str, Any]) -> str:
    """Join the top alternative of every result with single spaces."""
    parts = []
    for result in response.get("results", []):
        alternatives = result.get("alternatives") or []
        if not alternatives:
            continue
        text = (alternatives[0].get("transcript") or "").strip()
        if text:
            parts.append(text)
    return " ".join(parts)


class SpeechClientInvoker:
    """Synchronous recognition through the ``speech_v1p1beta1`` client."""

    def __init__(
        self,
        *,
        language_code: str = "en-US",
        encoding: str = "MP3",
        sample_rate_hertz: Optional[int] = 16000,
        enable_automatic_punctuation: bool = True,
        client: Optional[Any] = None,
    ) -> None:
        try:
            audio_encoding = speech.RecognitionConfig.AudioEncoding[encoding.upper()]
        except KeyError:
            raise ConfigurationError(f"Unknown speech encoding {encoding!r}") from None
        self.config = speech.RecognitionConfig(
            encoding=audio_encoding,
            sample_rate_hertz=sample_rate_hertz or 0,
            language_code=language_code,
            enable_automatic_punctuation=enable_automatic_punctuation,
        )
        self.client = client if client is not None else speech.SpeechClient()

    def transcribe(self, audio: bytes) -> str:
        try:
            response = self.client.recognize(
                config=self.config,
                audio=speech.RecognitionAudio(content=audio),
            )
        except gcloud_exceptions.GoogleAPIError as exc:
            raise TranscriptionError(f"Speech recognition failed: {exc}") from exc
        return extract_transcript(MessageToDict(response._pb))


@retry(wait=wait_exponential(multiplier=1), stop=stop_after_attempt(3), reraise=True)
def fetch_access_token(timeout: float = 10.0) -> Dict[str, Any]:
    """Retrieve a service-account token from the metadata server."""
    response = requests.get(
        METADATA_TOKEN_URL,
        headers={"Metadata-Flavor": "Google"},
        timeout=timeout,
    )
    response.raise_for_status()
    payload = response.json()
    if not payload.get("access_token"):
        raise ValueError("Metadata server returned no access_token")
    return payload


class RestSpeechInvoker:
    """Recognition through the Speech-to-Text V2 ``:recognize`` endpoint."""

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_SPEECH_API_URL,
        language_code: str = "en-US",
        model: str = "long",
        timeout: float = 60.0,
    ) -> None:
        self.api_url = api_url
        self.language_code = language_code
        self.model = model
        self.timeout = timeout
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def _access_token(self) -> str:
        with self._token_lock:
            if self._token is None or time.monotonic() >= self._token_expires_at:
                try:
                    payload = fetch_access_token()
                except (requests.exceptions.RequestException, ValueError) as exc:
                    raise TranscriptionError(f"Failed to get auth token: {exc}") from exc
                self._token = payload["access_token"]
                lifetime = int(payload.get("expires_in", 0))
                self._token_expires_at = time.monotonic() + max(lifetime - TOKEN_EXPIRY_MARGIN, 0)
                logger.info("Acquired speech access token")
            return self._token

    def transcribe(self, audio: bytes) -> str:
        payload = {
            "config": {
                "autoDecodingConfig": {},
                "languageCodes": [self.language_code],
                "model": self.model,
                "features": {"enableAutomaticPunctuation": True},
            },
            "content": base64.b64encode(audio).decode("ascii"),
        }
        token = self._access_token()
        try:
            response = requests.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise TranscriptionError(f"Speech request failed: {exc}") from exc

        if response.status_code != 200:
            body = response.text[:300] if response.text else "No response body"
            raise TranscriptionError(f"Transcription failed ({response.status_code}): {body}")
        try:
            result = response.json()
        except ValueError as exc:
            raise TranscriptionError("Failed to parse speech response JSON") from exc
        return extract_transcript(result)
