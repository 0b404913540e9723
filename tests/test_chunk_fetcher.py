import pytest
import requests
from requests.structures import CaseInsensitiveDict

from resumable_stt import chunk_fetcher
from resumable_stt.errors import ChunkFetchError, SourceUnreachableError
from resumable_stt.partitioner import ByteRange

URL = "https://audio.example.com/talk.mp3"


class FakeResponse:
    def __init__(self, status_code=200, headers=None, body=b""):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.body = body
        self.closed = False
        self.blocks_read = 0

    @property
    def ok(self):
        return self.status_code < 400

    def iter_content(self, chunk_size=1):
        for offset in range(0, len(self.body), chunk_size):
            self.blocks_read += 1
            yield self.body[offset:offset + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


def test_probe_reads_size_and_etag(monkeypatch):
    calls = []

    def fake_head(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse(200, {"Content-Length": "1500000", "ETag": '"v1"'})

    monkeypatch.setattr(chunk_fetcher.requests, "head", fake_head)
    info = chunk_fetcher.probe_source(URL, timeout=5)
    assert info.total_size == 1_500_000
    assert info.etag == '"v1"'
    assert calls == [(URL, {"allow_redirects": True, "timeout": 5})]


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(404),
        FakeResponse(200, {}),
        FakeResponse(200, {"Content-Length": "abc"}),
        FakeResponse(200, {"Content-Length": "0"}),
    ],
)
def test_probe_failures(monkeypatch, response):
    monkeypatch.setattr(chunk_fetcher.requests, "head", lambda *a, **k: response)
    with pytest.raises(SourceUnreachableError):
        chunk_fetcher.probe_source(URL)


def test_probe_transport_error(monkeypatch):
    def boom(*a, **k):
        raise requests.exceptions.ConnectionError("no route")

    monkeypatch.setattr(chunk_fetcher.requests, "head", boom)
    with pytest.raises(SourceUnreachableError):
        chunk_fetcher.probe_source(URL)


def test_fetch_sends_conditional_range(monkeypatch):
    sent = {}
    response = FakeResponse(
        206, {"ETag": '"v1"', "Content-Range": "bytes 100-199/2000"}, body=b"x" * 100
    )

    def fake_get(url, headers=None, stream=False, timeout=None):
        sent.update(url=url, headers=headers, stream=stream, timeout=timeout)
        return response

    monkeypatch.setattr(chunk_fetcher.requests, "get", fake_get)
    data = chunk_fetcher.fetch_chunk(URL, ByteRange(1, 100, 199), etag='"v1"', timeout=3)
    assert data == b"x" * 100
    assert sent == {
        "url": URL,
        "headers": {"Range": "bytes=100-199", "If-Range": '"v1"'},
        "stream": True,
        "timeout": 3,
    }
    assert response.closed


def test_fetch_full_body_at_offset_zero_is_truncated(monkeypatch):
    body = bytes(range(256)) * 1024
    response = FakeResponse(200, body=body)
    monkeypatch.setattr(chunk_fetcher.requests, "get", lambda *a, **k: response)
    data = chunk_fetcher.fetch_chunk(URL, ByteRange(0, 0, 999))
    assert data == body[:1000]
    assert response.blocks_read == 1


def test_fetch_full_body_at_later_offset_is_rejected(monkeypatch):
    monkeypatch.setattr(
        chunk_fetcher.requests, "get", lambda *a, **k: FakeResponse(200, body=b"x" * 2000)
    )
    with pytest.raises(ChunkFetchError):
        chunk_fetcher.fetch_chunk(URL, ByteRange(1, 1000, 1999))


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(416),
        FakeResponse(500),
        FakeResponse(206, {"Content-Range": "bytes 100-199/2000"}, body=b"x" * 10),
        FakeResponse(
            206, {"ETag": '"v2"', "Content-Range": "bytes 100-199/2000"}, body=b"x" * 100
        ),
        FakeResponse(206, {"Content-Range": "bytes 0-99/2000"}, body=b"A" * 100),
        FakeResponse(206, {"Content-Range": "bytes 100-150/2000"}, body=b"x" * 100),
        FakeResponse(206, {}, body=b"x" * 100),
        FakeResponse(206, {"Content-Range": "bytes */2000"}, body=b"x" * 100),
    ],
)
def test_fetch_failures(monkeypatch, response):
    monkeypatch.setattr(chunk_fetcher.requests, "get", lambda *a, **k: response)
    with pytest.raises(ChunkFetchError):
        chunk_fetcher.fetch_chunk(URL, ByteRange(1, 100, 199), etag='"v1"')


def test_fetch_transport_error(monkeypatch):
    def boom(*a, **k):
        raise requests.exceptions.Timeout("slow")

    monkeypatch.setattr(chunk_fetcher.requests, "get", boom)
    with pytest.raises(ChunkFetchError):
        chunk_fetcher.fetch_chunk(URL, ByteRange(0, 0, 9))


def test_fetch_with_weak_etag_sends_plain_range(monkeypatch):
    sent = []

    def fake_get(url, headers=None, stream=False, timeout=None):
        sent.append(headers)
        # A weak If-Range makes a compliant server ignore Range.
        if headers.get("If-Range", "").startswith("W/"):
            return FakeResponse(200, {"ETag": 'W/"v1"'}, body=b"y" * 2000)
        return FakeResponse(
            206, {"ETag": 'W/"v1"', "Content-Range": "bytes 1000-1999/5000"}, body=b"z" * 1000
        )

    monkeypatch.setattr(chunk_fetcher.requests, "get", fake_get)
    for _ in range(3):
        data = chunk_fetcher.fetch_chunk(URL, ByteRange(1, 1000, 1999), etag='W/"v1"')
        assert data == b"z" * 1000
    assert all("If-Range" not in headers for headers in sent)


def test_fetch_with_weak_etag_still_detects_changed_source(monkeypatch):
    monkeypatch.setattr(
        chunk_fetcher.requests,
        "get",
        lambda *a, **k: FakeResponse(
            206, {"ETag": 'W/"v2"', "Content-Range": "bytes 1000-1999/5000"}, body=b"z" * 1000
        ),
    )
    with pytest.raises(ChunkFetchError):
        chunk_fetcher.fetch_chunk(URL, ByteRange(1, 1000, 1999), etag='W/"v1"')


def test_fetch_accepts_open_ended_total(monkeypatch):
    monkeypatch.setattr(
        chunk_fetcher.requests,
        "get",
        lambda *a, **k: FakeResponse(206, {"Content-Range": "bytes 0-9/*"}, body=b"0123456789"),
    )
    assert chunk_fetcher.fetch_chunk(URL, ByteRange(0, 0, 9)) == b"0123456789"
