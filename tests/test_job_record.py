import json

import pytest

from resumable_stt.errors import MalformedJobRecordError
from resumable_stt.job_record import JobRecord, JobStatus

URL = "https://audio.example.com/talk.mp3"


def _stored(**overrides):
    data = {
        "locator": URL,
        "totalSize": 1_500_000,
        "chunkSize": 524_288,
        "chunkCount": 3,
        "processedChunks": 0,
        "accumulatedText": "",
        "status": "processing",
    }
    data.update(overrides)
    return data


def test_create_computes_chunk_count():
    job = JobRecord.create(URL, 6_000_000, 524_288, etag='"abc"')
    assert job.chunk_count == 12
    assert job.processed_chunks == 0
    assert job.accumulated_text == ""
    assert job.status is JobStatus.PROCESSING
    assert job.generation is None


def test_json_uses_stored_field_names():
    job = JobRecord.create(URL, 1_500_000, 524_288)
    data = json.loads(job.to_json())
    assert data == _stored()
    assert "generation" not in data


def test_from_json_keeps_generation_and_etag():
    job = JobRecord.from_json(json.dumps(_stored(etag="v1")), generation=7)
    assert job.etag == "v1"
    assert job.generation == 7


def test_advance_joins_with_single_spaces_across_batches():
    job = JobRecord.create(URL, 1_500_000, 524_288)
    job = job.advance(["one", "two"])
    assert job.accumulated_text == "one two"
    assert job.status is JobStatus.PROCESSING
    job = job.advance(["three"])
    assert job.accumulated_text == "one two three"
    assert job.processed_chunks == 3
    assert job.status is JobStatus.COMPLETE


def test_advance_keeps_silent_chunks_positional():
    job = JobRecord.create(URL, 1_500_000, 524_288).advance([""]).advance(["two", "three"])
    assert job.accumulated_text == " two three"


def test_advance_past_chunk_count_is_rejected():
    job = JobRecord.create(URL, 1_500_000, 524_288).advance(["a", "b"])
    with pytest.raises(ValueError):
        job.advance(["c", "d"])


def test_pending_window_is_bounded():
    job = JobRecord.create(URL, 6_000_000, 524_288)
    assert job.pending_window(5) == range(0, 5)
    job = job.advance(["x"] * 10)
    assert job.pending_window(5) == range(10, 12)
    job = job.advance(["x", "x"])
    assert not job.pending_window(5)


def test_summary():
    job = JobRecord.create(URL, 1_500_000, 524_288).advance(["hi"])
    assert job.summary() == {
        "status": "processing",
        "result": "hi",
        "processedChunks": 1,
        "chunkCount": 3,
    }


def test_stale_processing_record_loads():
    job = JobRecord.from_dict(_stored(processedChunks=3, accumulatedText="a b c"))
    assert job.status is JobStatus.PROCESSING
    assert not job.pending_window(5)


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"locator": URL},
        _stored(totalSize="1500000"),
        _stored(processedChunks=True),
        _stored(totalSize=0, chunkCount=0),
        _stored(chunkCount=4),
        _stored(processedChunks=4),
        _stored(processedChunks=-1),
        _stored(status="queued"),
        _stored(status="complete", processedChunks=2),
        _stored(etag=12),
        _stored(locator=""),
    ],
)
def test_malformed_records_are_rejected(payload):
    with pytest.raises(MalformedJobRecordError):
        JobRecord.from_dict(payload)


def test_invalid_json_is_rejected():
    with pytest.raises(MalformedJobRecordError):
        JobRecord.from_json("{not json")
