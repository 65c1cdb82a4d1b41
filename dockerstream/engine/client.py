"""High-level client issuing streamed Docker commands."""

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, TypeVar, Union

from loguru import logger

from dockerstream.config import settings
from .commands import (
    BuildOptions,
    LogsOptions,
    PullOptions,
    PushOptions,
    WaitOptions,
    build_image_command,
    container_logs_command,
    pull_image_command,
    push_image_command,
    wait_container_command,
)
from .context import BuildContext, build_context
from .dispatch import CommandExecution, FrameHandler, StreamCommand
from .ignore import compile_patterns
from .models import PullResult, PushResult
from .transport import AiodockerTransport, Transport
from .utils import format_size

logger = logger.bind(name=__name__)

T = TypeVar('T')


class StreamingDockerClient:
    """Client running build, push, pull, wait and logs as streamed commands.

    Every command method returns a started CommandExecution. Frames go to the
    optional ``handler`` as they arrive; ``await_outcome`` yields the result.
    """

    def __init__(self, transport: Optional[Transport] = None) -> None:
        """Initialize the client.

        Args:
            transport: Transport to use; an aiodocker transport is created if omitted
        """
        self.transport = transport or AiodockerTransport()

    def execute(self, command: StreamCommand[T], handler: Optional[FrameHandler] = None) -> CommandExecution[T]:
        """Start a streamed command."""
        return CommandExecution(command, self.transport, handler).start()

    async def prepare_context(
        self,
        path: Union[str, Path],
        *,
        dockerfile: Optional[Union[str, Path]] = None,
        ignore_patterns: Optional[Iterable[str]] = None,
        force_include_dockerfile: bool = False,
    ) -> BuildContext:
        """Assemble a build context in a worker thread.

        Args:
            path: Context root directory
            dockerfile: Dockerfile path, relative to the root or absolute
            ignore_patterns: Ignore rules used instead of the root's ignore file
            force_include_dockerfile: Archive the Dockerfile even if it is excluded

        Returns:
            The assembled BuildContext

        Raises:
            InvalidPatternError: If an ignore pattern is malformed
            MissingDockerfileError: If the Dockerfile does not exist
            DockerfileExcludedError: If the Dockerfile is excluded
        """
        matcher = compile_patterns(ignore_patterns) if ignore_patterns is not None else None
        return await asyncio.to_thread(
            build_context,
            path,
            matcher,
            dockerfile,
            force_include_dockerfile=force_include_dockerfile,
        )

    async def build_image(
        self,
        path: Union[str, Path],
        options: Optional[BuildOptions] = None,
        handler: Optional[FrameHandler] = None,
        *,
        dockerfile: Optional[Union[str, Path]] = None,
        ignore_patterns: Optional[Iterable[str]] = None,
        force_include_dockerfile: bool = False,
    ) -> CommandExecution[str]:
        """Build an image from a local directory.

        The context is validated and archived before the request is issued,
        so context errors never lead to a partial upload.

        Args:
            path: Context root directory
            options: Build options
            handler: Callback receiving every frame
            dockerfile: Dockerfile path, relative to the root or absolute
            ignore_patterns: Ignore rules used instead of the root's ignore file
            force_include_dockerfile: Archive the Dockerfile even if it is excluded

        Returns:
            Started execution whose result is the built image id

        Raises:
            InvalidPatternError: If an ignore pattern is malformed
            MissingDockerfileError: If the Dockerfile does not exist
            DockerfileExcludedError: If the Dockerfile is excluded
        """
        options = options or BuildOptions()
        context = await self.prepare_context(
            path,
            dockerfile=dockerfile,
            ignore_patterns=ignore_patterns,
            force_include_dockerfile=force_include_dockerfile,
        )
        compression = options.compression or settings.context.compression
        archive = await asyncio.to_thread(context.open_archive, compression)
        if options.dockerfile is None:
            options = replace(options, dockerfile=context.dockerfile_name)
        logger.debug(f"Uploading build context of {format_size(context.total_size)} from {context.root}")
        return self.execute(build_image_command(archive, options, close_body=True), handler)

    def build_image_from_tar(
        self,
        fileobj: Union[bytes, BinaryIO],
        options: Optional[BuildOptions] = None,
        handler: Optional[FrameHandler] = None,
    ) -> CommandExecution[str]:
        """Build an image from a prepared tar archive.

        Args:
            fileobj: Tar archive of the context; ``options.dockerfile`` names the
                Dockerfile inside it
            options: Build options
            handler: Callback receiving every frame

        Returns:
            Started execution whose result is the built image id
        """
        return self.execute(build_image_command(fileobj, options or BuildOptions()), handler)

    def push_image(
        self,
        image: str,
        options: Optional[PushOptions] = None,
        handler: Optional[FrameHandler] = None,
    ) -> CommandExecution[PushResult]:
        """Push an image to its registry."""
        return self.execute(push_image_command(image, options or PushOptions()), handler)

    def pull_image(
        self,
        image: str,
        options: Optional[PullOptions] = None,
        handler: Optional[FrameHandler] = None,
    ) -> CommandExecution[PullResult]:
        """Pull an image from its registry."""
        return self.execute(pull_image_command(image, options or PullOptions()), handler)

    def wait_container(
        self,
        container_id: str,
        options: Optional[WaitOptions] = None,
        handler: Optional[FrameHandler] = None,
    ) -> CommandExecution[int]:
        """Wait for a container to stop; the result is its exit status code."""
        return self.execute(wait_container_command(container_id, options or WaitOptions()), handler)

    def container_logs(
        self,
        container_id: str,
        options: Optional[LogsOptions] = None,
        handler: Optional[FrameHandler] = None,
    ) -> CommandExecution[bytes]:
        """Stream the output of a container."""
        return self.execute(container_logs_command(container_id, options or LogsOptions()), handler)

    async def close(self) -> None:
        """Close the client and clean up resources."""
        await self.transport.close()

    async def __aenter__(self):
        """Enter the async context."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit the async context and ensure resources are cleaned up."""
        await self.close()
