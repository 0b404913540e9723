"""
Core package for the resumable chunked transcription service.

This package contains the components used by the HTTP entrypoint to split a
remote audio file into byte ranges, run speech recognition on each range,
and stitch the partial transcripts into a single result across several
invocations.
"""
