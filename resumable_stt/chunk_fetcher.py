"""
HTTP access to the source audio.

``probe_source`` issues a HEAD request to learn the declared size of a new
job's source without downloading it.  ``fetch_chunk`` retrieves one
inclusive byte range with a ``Range`` request, made conditional on the
ETag seen at probe time so that a source replaced between invocations is
detected instead of being spliced into the transcript.

Neither function retries.  A failed fetch fails the whole batch and the
caller re-invokes later.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import requests

from .errors import ChunkFetchError, SourceUnreachableError
from .partitioner import ByteRange

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
STREAM_BLOCK_SIZE = 64 * 1024
CONTENT_RANGE = re.compile(r"^bytes\s+(\d+)-(\d+)/(\d+|\*)$")


@dataclass(frozen=True)
class SourceInfo:
    total_size: int
    etag: Optional[str] = None


def probe_source(locator: str, *, timeout: float = DEFAULT_TIMEOUT) -> SourceInfo:
    """Read the size and validator of the source without fetching its body.

    Raises:
        SourceUnreachableError: If the request fails, the response is not a
            success, or no positive ``Content-Length`` is declared.
    """
    try:
        response = requests.head(locator, allow_redirects=True, timeout=timeout)
    except requests.exceptions.RequestException as exc:
        raise SourceUnreachableError(f"Failed to fetch audio URL: {exc}") from exc

    if not response.ok:
        raise SourceUnreachableError(
            f"Failed to fetch audio URL: source returned {response.status_code}"
        )

    raw_length = response.headers.get("Content-Length")
    try:
        total_size = int(raw_length)
    except (TypeError, ValueError):
        raise SourceUnreachableError(
            f"Source did not declare a usable Content-Length: {raw_length!r}"
        ) from None
    if total_size <= 0:
        raise SourceUnreachableError(f"Source declared an empty body ({total_size} bytes)")

    return SourceInfo(total_size=total_size, etag=response.headers.get("ETag"))


def fetch_chunk(
    locator: str,
    byte_range: ByteRange,
    *,
    etag: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> bytes:
    """Download exactly the bytes of ``byte_range``.

    The body is streamed into a buffer no larger than the chunk.  A plain
    ``200`` is only acceptable for a range starting at byte 0, where the
    leading bytes of the full body are the requested ones.

    Raises:
        ChunkFetchError: On a transport error, an unexpected status, a
            changed source, a partial response covering another span, or a
            body shorter than the range.
    """
    headers = {"Range": byte_range.header()}
    # If-Range only accepts strong validators.
    if etag and not etag.startswith("W/"):
        headers["If-Range"] = etag

    try:
        response = requests.get(locator, headers=headers, stream=True, timeout=timeout)
    except requests.exceptions.RequestException as exc:
        raise ChunkFetchError(f"Chunk {byte_range.index} request failed: {exc}") from exc

    with response:
        status = response.status_code
        if status != 206 and not (status == 200 and byte_range.start == 0):
            raise ChunkFetchError(
                f"Chunk {byte_range.index} ({byte_range.header()}) returned {status}"
            )
        if status == 206:
            _check_content_range(response.headers.get("Content-Range"), byte_range)
        served_etag = response.headers.get("ETag")
        if etag and served_etag and served_etag != etag:
            raise ChunkFetchError(
                f"Source changed since the job was created (ETag {served_etag} != {etag})"
            )

        buffer = bytearray()
        try:
            for block in response.iter_content(chunk_size=STREAM_BLOCK_SIZE):
                buffer.extend(block)
                if len(buffer) >= byte_range.length:
                    break
        except requests.exceptions.RequestException as exc:
            raise ChunkFetchError(f"Chunk {byte_range.index} body failed: {exc}") from exc

    if len(buffer) < byte_range.length:
        raise ChunkFetchError(
            f"Chunk {byte_range.index} was short: {len(buffer)} of {byte_range.length} bytes"
        )
    del buffer[byte_range.length:]
    logger.debug("Fetched %s of %s", byte_range.header(), locator)
    return bytes(buffer)


def _check_content_range(value: Optional[str], byte_range: ByteRange) -> None:
    match = CONTENT_RANGE.match((value or "").strip())
    if match is None:
        raise ChunkFetchError(
            f"Chunk {byte_range.index} partial response has no usable Content-Range: {value!r}"
        )
    first, last = int(match.group(1)), int(match.group(2))
    if first != byte_range.start or last < byte_range.end:
        raise ChunkFetchError(
            f"Chunk {byte_range.index} requested {byte_range.header()} "
            f"but the source served {value}"
        )
