"""Splitting of streamed engine responses into frames.

A decoder is fed raw body chunks as they arrive and returns the frames that
became complete. ``finish`` is called once the body is exhausted; a decoder
still holding part of a frame at that point raises TruncatedStreamError.
"""

import json
import re
import struct
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterator, List

from loguru import logger

from .exceptions import TruncatedStreamError
from .models import EndOfStream, ErrorEvent, Framing, ProgressEvent, RawChunk, StreamFrame

logger = logger.bind(name=__name__)

BUILT_PATTERN = re.compile(r'Successfully built ([0-9a-f]+)')
TAGGED_PATTERN = re.compile(r'Successfully tagged (\S+)')
DIGEST_STATUS_PATTERN = re.compile(r'^Digest: (\S+)')
PUSH_DIGEST_PATTERN = re.compile(r'digest: (sha256:[0-9a-f]+) size: (\d+)')
REFERENCE_STATUS_PATTERN = re.compile(r'^Status: .* for (\S+)$')

MULTIPLEX_HEADER = struct.Struct('>BxxxL')


def extract_identifiers(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the identifiers embedded in a JSON status payload.

    Args:
        payload: Decoded JSON object of one frame

    Returns:
        Dict with any of 'image_id', 'tag', 'digest', 'size', 'reference' and
        'status_code' keys
    """
    identifiers: Dict[str, Any] = {}

    aux = payload.get('aux')
    if isinstance(aux, dict):
        if aux.get('ID'):
            identifiers['image_id'] = aux['ID']
        if aux.get('Digest'):
            identifiers['digest'] = aux['Digest']
        if aux.get('Tag'):
            identifiers['tag'] = aux['Tag']
        if isinstance(aux.get('Size'), int):
            identifiers['size'] = aux['Size']

    stream = payload.get('stream')
    if isinstance(stream, str):
        if match := BUILT_PATTERN.search(stream):
            identifiers['image_id'] = match.group(1)
        if match := TAGGED_PATTERN.search(stream):
            identifiers['tag'] = match.group(1)

    status = payload.get('status')
    if isinstance(status, str):
        if match := DIGEST_STATUS_PATTERN.search(status):
            identifiers['digest'] = match.group(1)
        elif match := PUSH_DIGEST_PATTERN.search(status):
            identifiers['digest'] = match.group(1)
            identifiers['size'] = int(match.group(2))
        if match := REFERENCE_STATUS_PATTERN.search(status.strip()):
            identifiers['reference'] = match.group(1)

    status_code = payload.get('StatusCode')
    if isinstance(status_code, int) and not isinstance(status_code, bool):
        identifiers['status_code'] = status_code

    return identifiers


def frame_from_object(obj: Any) -> StreamFrame:
    """Turn one decoded JSON value into a frame."""
    if not isinstance(obj, dict):
        return ErrorEvent(
            message=f"Expected a JSON object, got {type(obj).__name__}",
            malformed=True,
        )

    detail = obj.get('errorDetail')
    if obj.get('error') or detail:
        if not isinstance(detail, dict):
            detail = {'message': detail} if detail else {}
        message = obj.get('error') or detail.get('message') or 'Unknown engine error'
        return ErrorEvent(message=str(message), detail=detail)

    # container wait reports failures in an "Error" object
    wait_error = obj.get('Error')
    if isinstance(wait_error, dict) and wait_error.get('Message'):
        return ErrorEvent(message=str(wait_error['Message']), detail=wait_error)

    return ProgressEvent(payload=obj, identifiers=extract_identifiers(obj))


def _iter_objects(text: str) -> Iterator[Any]:
    """Decode one or more concatenated JSON values."""
    decoder = json.JSONDecoder()
    index, length = 0, len(text)
    while True:
        while index < length and text[index].isspace():
            index += 1
        if index >= length:
            return
        obj, index = decoder.raw_decode(text, index)
        yield obj


class JsonLinesDecoder:
    """Decoder for newline-delimited JSON status streams."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[StreamFrame]:
        self._buffer.extend(data)
        frames: List[StreamFrame] = []
        while (index := self._buffer.find(b'\n')) >= 0:
            line = bytes(self._buffer[:index])
            del self._buffer[:index + 1]
            frames.extend(self._decode_line(line))
        return frames

    def _decode_line(self, line: bytes) -> List[StreamFrame]:
        if not line.strip():
            return []
        frames: List[StreamFrame] = []
        try:
            for obj in _iter_objects(line.decode('utf-8')):
                frames.append(frame_from_object(obj))
        except ValueError as e:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors
            logger.warning(f"Malformed JSON frame: {e}")
            frames.append(ErrorEvent(message=f"Malformed JSON frame: {e}", malformed=True, raw=line))
        return frames

    def finish(self) -> List[StreamFrame]:
        rest = bytes(self._buffer)
        self._buffer.clear()
        if not rest.strip():
            return []
        try:
            objects = list(_iter_objects(rest.decode('utf-8')))
        except ValueError:
            raise TruncatedStreamError("unterminated JSON frame", len(rest))
        return [frame_from_object(obj) for obj in objects]


class RawDecoder:
    """Decoder passing every body chunk through as one frame."""

    def feed(self, data: bytes) -> List[StreamFrame]:
        return [RawChunk(data=bytes(data))] if data else []

    def finish(self) -> List[StreamFrame]:
        return []


class RawLinesDecoder:
    """Decoder emitting one raw frame per newline-terminated line.

    A final line without a terminator is emitted as is.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[StreamFrame]:
        self._buffer.extend(data)
        frames: List[StreamFrame] = []
        while (index := self._buffer.find(b'\n')) >= 0:
            frames.append(RawChunk(data=bytes(self._buffer[:index + 1])))
            del self._buffer[:index + 1]
        return frames

    def finish(self) -> List[StreamFrame]:
        rest = bytes(self._buffer)
        self._buffer.clear()
        return [RawChunk(data=rest)] if rest else []


class MultiplexedDecoder:
    """Decoder for the engine's length-prefixed stdout/stderr stream format.

    Each frame starts with an 8-byte header: the stream id, three zero bytes
    and the big-endian payload length. A body that does not start with a
    valid header (containers with a TTY) is passed through raw, as soon as
    its first bytes rule a header out.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._passthrough = False
        self._framed = False

    def _header_possible(self) -> bool:
        return self._buffer[0] in (0, 1, 2) and not any(self._buffer[1:4])

    def feed(self, data: bytes) -> List[StreamFrame]:
        if self._passthrough:
            return [RawChunk(data=bytes(data))] if data else []
        self._buffer.extend(data)
        frames: List[StreamFrame] = []
        while self._buffer:
            if not self._header_possible():
                logger.warning("Response is not multiplexed, passing it through raw")
                self._passthrough = True
                frames.append(RawChunk(data=bytes(self._buffer)))
                self._buffer.clear()
                break
            if len(self._buffer) < MULTIPLEX_HEADER.size:
                break
            self._framed = True
            stream, size = MULTIPLEX_HEADER.unpack_from(self._buffer)
            end = MULTIPLEX_HEADER.size + size
            if len(self._buffer) < end:
                break
            frames.append(RawChunk(data=bytes(self._buffer[MULTIPLEX_HEADER.size:end]), stream=stream))
            del self._buffer[:end]
        return frames

    def finish(self) -> List[StreamFrame]:
        rest = bytes(self._buffer)
        self._buffer.clear()
        if not rest:
            return []
        if not self._framed:
            # never saw a full header: a short raw body
            return [RawChunk(data=rest)]
        raise TruncatedStreamError("incomplete multiplexed frame", len(rest))


def decoder_for(framing: Framing):
    """Create a fresh decoder for a response framing."""
    if framing is Framing.JSON_LINES:
        return JsonLinesDecoder()
    if framing is Framing.RAW:
        return RawDecoder()
    if framing is Framing.RAW_LINES:
        return RawLinesDecoder()
    if framing is Framing.MULTIPLEXED:
        return MultiplexedDecoder()
    raise ValueError(f"Unsupported framing: {framing}")


async def read_frames(chunks: AsyncIterable[bytes], framing: Framing = Framing.JSON_LINES) -> AsyncIterator[StreamFrame]:
    """Split a response body into frames.

    The sequence ends with EndOfStream once the body is exhausted. It is lazy
    and cannot be restarted.

    Args:
        chunks: Body chunks in arrival order
        framing: How the body is delimited

    Yields:
        Frames in arrival order

    Raises:
        TruncatedStreamError: If the body ends inside a frame
    """
    decoder = decoder_for(framing)
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
    for frame in decoder.finish():
        yield frame
    yield EndOfStream()
