"""Callback dispatch core for streamed commands.

A CommandExecution drives one streamed command in a background task: it
reads frames from the transport, hands each one to the caller's handler in
arrival order and settles a single-resolution future with the outcome.
Callers either react to frames as they arrive or await the outcome.

State machine::

    PENDING -> STREAMING -> COMPLETED | FAILED | CANCELLED

PENDING moves to STREAMING on the first body byte. A request that fails or
is cancelled before any byte arrives goes straight to a terminal state.
Terminal states are final.
"""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Generic, Optional, TypeVar

from loguru import logger

from dockerstream.config import settings
from .exceptions import (
    ExecutionCancelledError,
    ExecutionError,
    ExecutionTimeoutError,
    NoResultFoundError,
    RemoteOperationError,
)
from .frames import read_frames
from .models import EndOfStream, ErrorEvent, ExecutionState, Framing, StreamFrame, StreamRequest
from .transport import Transport

logger = logger.bind(name=__name__)

T = TypeVar('T')

FrameHandler = Callable[[StreamFrame], None]


@dataclass(frozen=True)
class ResultExtractor(Generic[T]):
    """Fold deriving a command's result from the frames it delivered.

    ``step`` receives the value accumulated so far and the next non-terminal
    frame. A value still None when the stream ends means no result was found.
    """

    step: Callable[[Optional[T], StreamFrame], Optional[T]]
    initial: Optional[T] = None


@dataclass
class StreamCommand(Generic[T]):
    """A streamed command: what to send, how to frame the reply, what to extract.

    With ``close_body`` the execution owns a file-like request body and
    closes it once the background task has finished with it.
    """

    name: str
    request: StreamRequest
    extractor: ResultExtractor[T]
    framing: Framing = Framing.JSON_LINES
    fatal_malformed_frames: bool = False
    close_body: bool = False


class CommandExecution(Generic[T]):
    """An in-flight streamed command.

    Must be created on a running event loop. The execution owns the response
    stream until it reaches a terminal state.
    """

    def __init__(self, command: StreamCommand[T], transport: Transport, handler: Optional[FrameHandler] = None) -> None:
        self.command = command
        self.frames_dispatched = 0
        self._transport = transport
        self._handler = handler
        self._state = ExecutionState.PENDING
        self._accumulated: Optional[T] = command.extractor.initial
        self._outcome: asyncio.Future = asyncio.get_running_loop().create_future()
        self._task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<CommandExecution {self.command.name} {self._state.value}>"

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state.is_terminal

    def start(self) -> "CommandExecution[T]":
        """Start driving the command in a background task.

        Returns:
            The execution itself, for chaining

        Raises:
            RuntimeError: If the execution was already started
        """
        if self._task is not None or self._state is not ExecutionState.PENDING:
            raise RuntimeError(f"Execution of '{self.command.name}' already started")
        self._task = asyncio.create_task(self._run(), name=f"dockerstream:{self.command.name}")
        return self

    def cancel(self) -> bool:
        """Cancel the execution.

        Blocked ``await_outcome`` callers are released at once with
        ExecutionCancelledError; the response stream is closed as the
        background task unwinds.

        Returns:
            True if the execution was cancelled, False if it had already finished
        """
        if self._state.is_terminal:
            return False
        self._settle(ExecutionState.CANCELLED, error=ExecutionCancelledError(self.command.name))
        if self._task is not None:
            # the task releases the body while unwinding
            self._task.cancel()
        else:
            self._release_body()
        return True

    def add_done_callback(self, callback: Callable[["CommandExecution[T]"], None]) -> None:
        """Call `callback` with the execution once it reaches a terminal state."""
        self._outcome.add_done_callback(lambda _: callback(self))

    async def await_outcome(self, timeout: Optional[float] = None) -> T:
        """Wait for the execution to reach a terminal state.

        A timeout leaves the execution running; call ``cancel`` to stop it.

        Args:
            timeout: Seconds to wait; defaults to the configured await timeout

        Returns:
            The extracted result

        Raises:
            ExecutionTimeoutError: If no terminal state was reached in time
            ExecutionCancelledError: If the execution was cancelled
            RemoteOperationError: If the engine reported an error
            NoResultFoundError: If the stream ended without a result
            TruncatedStreamError: If the stream was cut mid-frame
        """
        if timeout is None:
            timeout = settings.streaming.await_timeout
        try:
            return await asyncio.wait_for(asyncio.shield(self._outcome), timeout)
        except asyncio.TimeoutError:
            if self._outcome.done():
                raise
            raise ExecutionTimeoutError(self.command.name, timeout) from None

    async def _run(self) -> None:
        try:
            async with self._transport.open_stream(self.command.request) as chunks:
                frames = read_frames(self._receive(chunks), self.command.framing)
                async with aclosing(frames):
                    async for frame in frames:
                        self._dispatch(frame)
                        if self._state.is_terminal:
                            break
        except asyncio.CancelledError:
            if not self._state.is_terminal:
                self._settle(ExecutionState.CANCELLED, error=ExecutionCancelledError(self.command.name))
            raise
        except Exception as e:
            self._settle(ExecutionState.FAILED, error=e)
        finally:
            self._release_body()

    def _release_body(self) -> None:
        body = self.command.request.body
        if self.command.close_body and hasattr(body, 'close'):
            body.close()

    async def _receive(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            if chunk and self._state is ExecutionState.PENDING:
                self._state = ExecutionState.STREAMING
                logger.debug(f"{self.command.name}: streaming")
            yield chunk

    def _dispatch(self, frame: StreamFrame) -> None:
        if isinstance(frame, EndOfStream):
            self._deliver(frame)
            self._complete()
            return
        if isinstance(frame, ErrorEvent):
            self._deliver(frame)
            if not frame.malformed:
                self._settle(ExecutionState.FAILED, error=RemoteOperationError(frame.message, frame.detail))
            elif self.command.fatal_malformed_frames:
                self._settle(ExecutionState.FAILED, error=ExecutionError(frame.message))
            return
        self._accumulated = self.command.extractor.step(self._accumulated, frame)
        self._deliver(frame)

    def _deliver(self, frame: StreamFrame) -> None:
        if self._handler is not None:
            self._handler(frame)
        self.frames_dispatched += 1

    def _complete(self) -> None:
        if self._accumulated is None:
            self._settle(ExecutionState.FAILED, error=NoResultFoundError(self.command.name))
            return
        self._settle(ExecutionState.COMPLETED, result=self._accumulated)

    def _settle(self, state: ExecutionState, result: Optional[T] = None, error: Optional[BaseException] = None) -> None:
        if self._state.is_terminal:
            return
        self._state = state
        if error is None:
            logger.debug(f"{self.command.name}: {state.value}")
            self._outcome.set_result(result)
            return
        if state is ExecutionState.FAILED:
            logger.error(f"{self.command.name} failed: {str(error)}")
        else:
            logger.debug(f"{self.command.name}: {state.value}")
        self._outcome.set_exception(error)
        # failures are logged above; awaiting the outcome still raises them
        self._outcome.exception()
