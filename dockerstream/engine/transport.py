"""Transports executing streamed requests against the Docker Engine API."""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional
from urllib.parse import urlencode

import aiodocker
import aiohttp
from aiodocker.exceptions import DockerError
from loguru import logger

from dockerstream.config import settings
from .exceptions import ConfigurationError, TransportError, TruncatedStreamError
from .models import StreamRequest

logger = logger.bind(name=__name__)


class Transport(ABC):
    """Abstract base class for request/response transports."""

    @abstractmethod
    def open_stream(self, request: StreamRequest) -> AsyncContextManager[AsyncIterator[bytes]]:
        """Issue a request and expose its response body as a chunk stream.

        Leaving the context releases the response, which closes the stream
        if it is still open.

        Args:
            request: The request descriptor

        Returns:
            Async context manager yielding an async iterator of body chunks

        Raises:
            TransportError: If the engine rejects the request
            TruncatedStreamError: If the body is cut off while reading
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the transport and release its connections."""
        pass

    async def __aenter__(self):
        """Enter the async context."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit the async context and ensure resources are cleaned up."""
        await self.close()


class AiodockerTransport(Transport):
    """Transport issuing requests through an aiodocker client."""

    def __init__(self, client: Optional[aiodocker.Docker] = None) -> None:
        """Initialize the transport.

        Args:
            client: Existing aiodocker client; one is created from settings if omitted
        """
        if client is None:
            try:
                client = aiodocker.Docker(url=settings.DOCKER_HOST, api_version=settings.API_VERSION)
            except Exception as e:
                raise ConfigurationError(f"Failed to initialize Docker client: {str(e)}")
        self.client = client

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=None,
            connect=settings.streaming.connect_timeout,
            sock_read=settings.streaming.sock_read_timeout,
        )

    @asynccontextmanager
    async def open_stream(self, request: StreamRequest) -> AsyncIterator[AsyncIterator[bytes]]:
        # aiodocker flattens query parameters into a dict, which would drop
        # repeated keys, so they travel in the path instead
        path = request.path.lstrip('/')
        if request.params:
            path = f"{path}?{urlencode(request.params)}"
        logger.debug(f"Issuing {request.method} {path}")
        try:
            async with self.client._query(
                path,
                method=request.method,
                data=request.body,
                headers=request.headers,
                timeout=self._timeout(),
            ) as response:
                yield _iter_body(response)
        except DockerError as e:
            raise TransportError(e.message, e.status)
        except aiohttp.ClientError as e:
            raise TransportError(str(e))

    async def close(self) -> None:
        """Close the aiodocker client and its HTTP session."""
        await self.client.close()


async def _iter_body(response: aiohttp.ClientResponse) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.content.iter_any():
            yield chunk
    except aiohttp.ClientPayloadError as e:
        raise TruncatedStreamError(str(e))
