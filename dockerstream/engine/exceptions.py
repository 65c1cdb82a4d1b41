"""Custom exceptions for streamed Docker command execution."""

from typing import Any, Dict, Optional


class DockerStreamError(Exception):
    """Base class for dockerstream errors."""


class ConfigurationError(DockerStreamError):
    """Error raised when there is a configuration issue."""

    def __init__(self, message: str) -> None:
        """Initialize the error.
        
        Args:
            message: Error message
        """
        super().__init__(f"Docker configuration error: {message}")


class ContextError(DockerStreamError):
    """Base class for build context assembly errors.

    These are raised synchronously, before any request is issued.
    """


class InvalidPatternError(ContextError):
    """Error raised when an ignore pattern is syntactically malformed."""

    def __init__(self, pattern: str, reason: str, line_number: Optional[int] = None) -> None:
        """Initialize the error.
        
        Args:
            pattern: The offending pattern line
            reason: Why the pattern was rejected
            line_number: 1-based line number in the ignore file, if known
        """
        self.pattern = pattern
        self.reason = reason
        self.line_number = line_number
        location = f" (line {line_number})" if line_number is not None else ""
        super().__init__(f"Invalid ignore pattern '{pattern}'{location}: {reason}")


class MissingDockerfileError(ContextError):
    """Error raised when the build-definition file does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Dockerfile '{path}' does not exist")


class DockerfileExcludedError(ContextError):
    """Error raised when the build-definition file is excluded by the ignore rules."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Dockerfile '{path}' is excluded by the ignore file")


class UnsafeArchivePathError(ContextError):
    """Error raised when an archive entry would escape the context root."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Archive path '{path}' escapes the build context root")


class ExecutionError(DockerStreamError):
    """Base class for errors delivered as the outcome of a streamed command."""


class TruncatedStreamError(ExecutionError):
    """Error raised when the response stream is severed mid-frame."""

    def __init__(self, reason: str, pending: int = 0) -> None:
        """Initialize the error.
        
        Args:
            reason: Description of where the stream was cut
            pending: Number of buffered bytes belonging to the unfinished frame
        """
        self.reason = reason
        self.pending = pending
        super().__init__(f"Response stream truncated: {reason} ({pending} bytes pending)")


class RemoteOperationError(ExecutionError):
    """Error raised when the engine reports a failure inside the stream."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the error.
        
        Args:
            message: Error message reported by the engine
            detail: Structured error detail (``errorDetail``), if present
        """
        self.message = message
        self.detail = detail or {}
        super().__init__(message)


class NoResultFoundError(ExecutionError):
    """Error raised when a stream completes without yielding a result.

    This indicates a protocol or API version mismatch rather than a
    transient fault.
    """

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"Stream for '{command}' completed without a result")


class TransportError(ExecutionError):
    """Error raised when the engine rejects the request or the connection fails."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.message = message
        self.status = status
        prefix = f"HTTP {status}: " if status is not None else ""
        super().__init__(f"Docker transport error: {prefix}{message}")


class ExecutionTimeoutError(ExecutionError, TimeoutError):
    """Error raised when an outcome is not reached within the caller's timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"'{command}' did not finish within {timeout} seconds")


class ExecutionCancelledError(ExecutionError):
    """Error raised to callers awaiting an execution that was cancelled."""

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"'{command}' was cancelled")
