"""Streamed command execution against the Docker Engine API.

This package provides the build-context archiver with its dockerignore
matcher, the frame reader for streamed responses, the callback dispatch core
and a client composing them into build, push, pull, wait and logs commands.
"""

from .client import StreamingDockerClient
from .commands import BuildOptions, LogsOptions, PullOptions, PushOptions, WaitOptions
from .context import BuildContext, build_context
from .dispatch import CommandExecution, ResultExtractor, StreamCommand
from .exceptions import (
    ConfigurationError,
    ContextError,
    DockerfileExcludedError,
    DockerStreamError,
    ExecutionCancelledError,
    ExecutionError,
    ExecutionTimeoutError,
    InvalidPatternError,
    MissingDockerfileError,
    NoResultFoundError,
    RemoteOperationError,
    TransportError,
    TruncatedStreamError,
    UnsafeArchivePathError,
)
from .frames import read_frames
from .ignore import IgnoreMatcher, IgnorePattern, compile_patterns, read_ignore_file
from .models import (
    ArchiveEntry,
    EndOfStream,
    EntryKind,
    ErrorEvent,
    ExecutionState,
    Framing,
    ProgressEvent,
    PullResult,
    PushResult,
    RawChunk,
    StreamFrame,
    StreamRequest,
)
from .transport import AiodockerTransport, Transport

__all__ = [
    "AiodockerTransport",
    "ArchiveEntry",
    "BuildContext",
    "BuildOptions",
    "CommandExecution",
    "ConfigurationError",
    "ContextError",
    "DockerStreamError",
    "DockerfileExcludedError",
    "EndOfStream",
    "EntryKind",
    "ErrorEvent",
    "ExecutionCancelledError",
    "ExecutionError",
    "ExecutionState",
    "ExecutionTimeoutError",
    "Framing",
    "IgnoreMatcher",
    "IgnorePattern",
    "InvalidPatternError",
    "LogsOptions",
    "MissingDockerfileError",
    "NoResultFoundError",
    "ProgressEvent",
    "PullOptions",
    "PullResult",
    "PushOptions",
    "PushResult",
    "RawChunk",
    "RemoteOperationError",
    "ResultExtractor",
    "StreamCommand",
    "StreamFrame",
    "StreamRequest",
    "StreamingDockerClient",
    "Transport",
    "TransportError",
    "TruncatedStreamError",
    "UnsafeArchivePathError",
    "WaitOptions",
    "build_context",
    "compile_patterns",
    "read_frames",
    "read_ignore_file",
]
