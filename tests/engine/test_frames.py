"""Tests for response framing."""

import struct

import pytest

from dockerstream.engine.exceptions import TruncatedStreamError
from dockerstream.engine.frames import (
    JsonLinesDecoder,
    MultiplexedDecoder,
    RawLinesDecoder,
    extract_identifiers,
    frame_from_object,
    read_frames,
)
from dockerstream.engine.models import EndOfStream, ErrorEvent, Framing, ProgressEvent, RawChunk


async def _chunks(*chunks: bytes):
    for chunk in chunks:
        yield chunk


async def _collect(chunks, framing=Framing.JSON_LINES):
    return [frame async for frame in read_frames(chunks, framing)]


def _mux(stream: int, payload: bytes) -> bytes:
    return struct.pack('>BxxxL', stream, len(payload)) + payload


def test_json_lines_split_across_chunks():
    """Test that a frame split over several chunks is reassembled."""
    decoder = JsonLinesDecoder()
    assert decoder.feed(b'{"stream":"Step 1/2') == []
    frames = decoder.feed(b' : FROM busybox\\n"}\r\n{"status":"ok"}\n')
    assert [f.stream for f in frames[:1]] == ["Step 1/2 : FROM busybox\n"]
    assert frames[1].status == "ok"
    assert decoder.finish() == []


def test_json_lines_skips_blank_lines():
    """Test that empty lines produce no frames."""
    decoder = JsonLinesDecoder()
    assert decoder.feed(b'\r\n\n  \n') == []


def test_json_lines_concatenated_objects():
    """Test several objects on one line."""
    frames = JsonLinesDecoder().feed(b'{"status":"a"}{"status":"b"}\n')
    assert [f.status for f in frames] == ["a", "b"]


def test_malformed_json_line(log_records):
    """Test that an unparseable line becomes a malformed error frame."""
    decoder = JsonLinesDecoder()
    frames = decoder.feed(b'{"status": nope}\n{"status":"next"}\n')
    assert isinstance(frames[0], ErrorEvent)
    assert frames[0].malformed
    assert frames[0].raw == b'{"status": nope}'
    assert frames[1].status == "next"
    assert [r["level"].name for r in log_records] == ["WARNING"]


def test_non_object_json_is_malformed():
    """Test that a JSON value other than an object is malformed."""
    frame = frame_from_object([1, 2])
    assert isinstance(frame, ErrorEvent)
    assert frame.malformed


def test_unterminated_frame_at_end_of_body():
    """Test that a body ending inside a frame is reported as truncated."""
    decoder = JsonLinesDecoder()
    decoder.feed(b'{"stream":"half')
    with pytest.raises(TruncatedStreamError) as exc_info:
        decoder.finish()
    assert exc_info.value.pending == len(b'{"stream":"half')


def test_complete_frame_without_newline_at_end_of_body():
    """Test that a final complete object lacking a terminator is still decoded."""
    decoder = JsonLinesDecoder()
    assert decoder.feed(b'{"StatusCode":0}') == []
    frames = decoder.finish()
    assert frames[0].identifiers == {"status_code": 0}


def test_error_frame():
    """Test engine-reported errors."""
    frame = frame_from_object({
        "errorDetail": {"code": 1, "message": "returned a non-zero code: 1"},
        "error": "The command '/bin/sh -c exit 1' returned a non-zero code: 1",
    })
    assert isinstance(frame, ErrorEvent)
    assert not frame.malformed
    assert frame.message.startswith("The command")
    assert frame.detail["code"] == 1


def test_error_detail_without_error():
    """Test an error frame carrying only the detail."""
    frame = frame_from_object({"errorDetail": {"message": "denied"}})
    assert isinstance(frame, ErrorEvent)
    assert frame.message == "denied"


def test_wait_error_frame():
    """Test the error object of a container wait response."""
    frame = frame_from_object({"StatusCode": 137, "Error": {"Message": "container killed"}})
    assert isinstance(frame, ErrorEvent)
    assert frame.message == "container killed"

    frame = frame_from_object({"StatusCode": 0, "Error": None})
    assert isinstance(frame, ProgressEvent)
    assert frame.identifiers["status_code"] == 0


@pytest.mark.parametrize("payload, expected", [
    ({"aux": {"ID": "sha256:abc"}}, {"image_id": "sha256:abc"}),
    ({"stream": "Successfully built 0a1b2c3d\n"}, {"image_id": "0a1b2c3d"}),
    ({"stream": "Successfully tagged demo:1.0\n"}, {"tag": "demo:1.0"}),
    (
        {"aux": {"Tag": "latest", "Digest": "sha256:def", "Size": 528}},
        {"tag": "latest", "digest": "sha256:def", "size": 528},
    ),
    ({"status": "latest: digest: sha256:0123abcd size: 528"}, {"digest": "sha256:0123abcd", "size": 528}),
    ({"status": "Digest: sha256:feed"}, {"digest": "sha256:feed"}),
    (
        {"status": "Status: Downloaded newer image for busybox:latest"},
        {"reference": "busybox:latest"},
    ),
    ({"StatusCode": 3}, {"status_code": 3}),
    ({"StatusCode": True}, {}),
    ({"status": "Pushing", "progressDetail": {"current": 1}}, {}),
])
def test_extract_identifiers(payload, expected):
    """Test identifier extraction from status payloads."""
    assert extract_identifiers(payload) == expected


def test_raw_lines_decoder():
    """Test line splitting of raw output."""
    decoder = RawLinesDecoder()
    assert decoder.feed(b'one\ntw') == [RawChunk(b'one\n')]
    assert decoder.feed(b'o\nthree') == [RawChunk(b'two\n')]
    assert decoder.finish() == [RawChunk(b'three')]


def test_multiplexed_decoder():
    """Test demultiplexing of stdout and stderr frames."""
    body = _mux(1, b'out\n') + _mux(2, b'err\n')
    decoder = MultiplexedDecoder()
    frames = decoder.feed(body[:5]) + decoder.feed(body[5:11]) + decoder.feed(body[11:])
    assert frames == [RawChunk(b'out\n', stream=1), RawChunk(b'err\n', stream=2)]
    assert decoder.finish() == []


def test_multiplexed_decoder_truncated():
    """Test a body ending inside a multiplexed frame."""
    decoder = MultiplexedDecoder()
    decoder.feed(_mux(1, b'hello')[:-2])
    with pytest.raises(TruncatedStreamError):
        decoder.finish()


def test_multiplexed_decoder_passthrough():
    """Test that a body without frame headers is passed through raw."""
    decoder = MultiplexedDecoder()
    assert decoder.feed(b'plain tty output\n') == [RawChunk(b'plain tty output\n')]
    assert decoder.feed(b'more') == [RawChunk(b'more')]
    assert decoder.finish() == []


def test_multiplexed_decoder_short_tty_body():
    """Test that a TTY body shorter than a frame header is not reported as truncated."""
    decoder = MultiplexedDecoder()
    assert decoder.feed(b'ok\n') == [RawChunk(b'ok\n')]
    assert decoder.finish() == []


def test_multiplexed_decoder_tty_prompt_delivered_at_once():
    """Test that a short TTY chunk is delivered without waiting for more bytes."""
    decoder = MultiplexedDecoder()
    assert decoder.feed(b'$ ') == [RawChunk(b'$ ')]
    assert decoder.feed(b'ls\n') == [RawChunk(b'ls\n')]


def test_multiplexed_decoder_short_body_resembling_header():
    """Test a body that ends before a header-like prefix could be confirmed."""
    decoder = MultiplexedDecoder()
    assert decoder.feed(b'\x01\x00') == []
    assert decoder.finish() == [RawChunk(b'\x01\x00')]


@pytest.mark.asyncio
async def test_read_frames_short_tty_body():
    """Test the frame sequence of a short TTY log stream."""
    frames = await _collect(_chunks(b'ok\n'), Framing.MULTIPLEXED)
    assert frames == [RawChunk(b'ok\n'), EndOfStream()]


@pytest.mark.asyncio
async def test_read_frames_ends_with_end_of_stream(build_output):
    """Test the frame sequence of a full build response."""
    frames = await _collect(_chunks(*build_output))
    assert len(frames) == len(build_output) + 1
    assert all(isinstance(f, ProgressEvent) for f in frames[:-1])
    assert isinstance(frames[-1], EndOfStream)
    assert frames[3].identifiers == {"image_id": "sha256:0a1b2c3d4e5f"}


@pytest.mark.asyncio
async def test_read_frames_empty_body():
    """Test that an empty body yields only the end marker."""
    frames = await _collect(_chunks())
    assert frames == [EndOfStream()]


@pytest.mark.asyncio
async def test_read_frames_raw():
    """Test raw framing."""
    frames = await _collect(_chunks(b'abc', b'', b'def'), Framing.RAW)
    assert frames == [RawChunk(b'abc'), RawChunk(b'def'), EndOfStream()]


@pytest.mark.asyncio
async def test_read_frames_truncated():
    """Test that truncation is raised instead of the end marker."""
    frames = []
    with pytest.raises(TruncatedStreamError):
        async for frame in read_frames(_chunks(b'{"status":"a"}\n{"sta'), Framing.JSON_LINES):
            frames.append(frame)
    assert len(frames) == 1
    assert frames[0].status == "a"
