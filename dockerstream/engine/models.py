"""Data models for build contexts and streamed command execution."""

import io
import os
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Tuple, Union

from docker.utils.build import normalize_slashes

from .exceptions import UnsafeArchivePathError


class EntryKind(Enum):
    """Types of entries stored in a build context archive."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


@dataclass
class ArchiveEntry:
    """A single member of a build context archive.

    Content comes either from ``source`` (a file on disk) or ``data``.
    """

    name: str
    kind: EntryKind
    mode: int = 0o644
    size: int = 0
    mtime: int = 0
    source: Optional[Path] = None
    data: Optional[bytes] = None
    link_target: Optional[str] = None

    def __post_init__(self) -> None:
        absolute = self.name.startswith(('/', os.sep))
        name = normalize_slashes(self.name)
        cleaned = posixpath.normpath(name) if name else ''
        if (
            not cleaned
            or cleaned == '.'
            or absolute
            or cleaned == '..'
            or cleaned.startswith('../')
        ):
            raise UnsafeArchivePathError(self.name)
        self.name = cleaned
        if self.data is not None:
            self.size = len(self.data)

    def open(self) -> BinaryIO:
        """Open the entry content for reading."""
        if self.data is not None:
            return io.BytesIO(self.data)
        if self.source is None:
            raise ValueError(f"Entry '{self.name}' has no content")
        return open(self.source, 'rb')


class Framing(Enum):
    """How a streamed response body is split into frames."""

    JSON_LINES = "json-lines"
    RAW = "raw"
    RAW_LINES = "raw-lines"
    MULTIPLEXED = "multiplexed"


class ExecutionState(Enum):
    """Lifecycle states of a streamed command execution."""

    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionState.COMPLETED, ExecutionState.FAILED, ExecutionState.CANCELLED)


@dataclass(frozen=True)
class ProgressEvent:
    """A status frame reported by the engine."""

    payload: Dict[str, Any]
    identifiers: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> Optional[str]:
        return self.payload.get('status')

    @property
    def stream(self) -> Optional[str]:
        return self.payload.get('stream')


@dataclass(frozen=True)
class ErrorEvent:
    """An error frame.

    ``malformed`` is set when the frame could not be parsed, as opposed to an
    error the engine reported itself.
    """

    message: str
    detail: Dict[str, Any] = field(default_factory=dict)
    malformed: bool = False
    raw: Optional[bytes] = None


@dataclass(frozen=True)
class RawChunk:
    """An opaque chunk of a non-JSON response.

    ``stream`` holds the multiplexed stream id (1 stdout, 2 stderr) when the
    response uses the multiplexed framing.
    """

    data: bytes
    stream: Optional[int] = None


@dataclass(frozen=True)
class EndOfStream:
    """Marker frame emitted once the response body is exhausted."""


StreamFrame = Union[ProgressEvent, ErrorEvent, RawChunk, EndOfStream]


@dataclass(frozen=True)
class PushResult:
    """Outcome of an image push."""

    tag: Optional[str]
    digest: str
    size: Optional[int] = None


@dataclass(frozen=True)
class PullResult:
    """Outcome of an image pull."""

    reference: Optional[str]
    digest: Optional[str]


@dataclass
class StreamRequest:
    """Request descriptor of a streamed command.

    ``params`` is a list of pairs so that a key may repeat (several ``t``
    tags on a build).
    """

    method: str
    path: str
    params: List[Tuple[str, str]] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Union[bytes, BinaryIO]] = None
