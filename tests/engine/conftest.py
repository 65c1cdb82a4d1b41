"""Test fixtures for streamed command tests."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from dockerstream.engine.models import StreamRequest
from dockerstream.engine.transport import Transport


class FakeTransport(Transport):
    """In-memory transport replaying canned response chunks.

    With ``hold_open`` the body never ends after the last chunk, like a
    long-running build that is still producing output. With ``stall_upload``
    the request body is never fully sent, like a slow context upload; the
    state of the body when the upload is aborted is kept in
    ``body_closed_on_abort``.
    """

    def __init__(
        self,
        chunks: Sequence[bytes] = (),
        *,
        hold_open: bool = False,
        stall_upload: bool = False,
        error: Optional[Exception] = None,
        fail_after: Optional[Exception] = None,
    ) -> None:
        self.chunks = list(chunks)
        self.hold_open = hold_open
        self.stall_upload = stall_upload
        self.error = error
        self.fail_after = fail_after
        self.requests: List[StreamRequest] = []
        self.bodies: List[bytes] = []
        self.uploading = asyncio.Event()
        self.aborted = asyncio.Event()
        self.body_closed_on_abort: Optional[bool] = None
        self.released = asyncio.Event()
        self.closed = False

    @asynccontextmanager
    async def open_stream(self, request: StreamRequest):
        self.requests.append(request)
        body = request.body
        if self.stall_upload:
            await self._stall(body)
        if hasattr(body, 'read'):
            self.bodies.append(body.read())
        elif body is not None:
            self.bodies.append(body)
        if self.error is not None:
            raise self.error
        try:
            yield self._iter_chunks()
        finally:
            self.released.set()

    async def _stall(self, body) -> None:
        self.uploading.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.body_closed_on_abort = getattr(body, 'closed', None)
            self.aborted.set()
            raise

    async def _iter_chunks(self):
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.fail_after is not None:
            raise self.fail_after
        if self.hold_open:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


def json_lines(*lines: str) -> List[bytes]:
    """Encode status lines the way the engine sends them, one per chunk."""
    return [f"{line}\r\n".encode() for line in lines]


BUILD_OUTPUT = json_lines(
    '{"stream":"Step 1/2 : FROM busybox\\n"}',
    '{"stream":" ---\\u003e 3f57d9401f8d\\n"}',
    '{"stream":"Step 2/2 : CMD [\\"echo\\", \\"hi\\"]\\n"}',
    '{"aux":{"ID":"sha256:0a1b2c3d4e5f"}}',
    '{"stream":"Successfully built 0a1b2c3d4e5f\\n"}',
    '{"stream":"Successfully tagged demo:latest\\n"}',
)


@pytest.fixture
def fake_transport():
    """Factory for fake transports."""
    return FakeTransport


@pytest.fixture
def build_output() -> List[bytes]:
    return list(BUILD_OUTPUT)


@pytest.fixture
def context_tree(tmp_path: Path) -> Path:
    """Create a small build context directory.

    Layout::

        Dockerfile
        README.md
        app.py
        .git/config
        logs/a.log
        src/main.py
        src/util/__init__.py
    """
    root = tmp_path / "context"
    files = {
        "Dockerfile": "FROM busybox\nCOPY . /app\n",
        "README.md": "# demo\n",
        "app.py": "print('hello')\n",
        ".git/config": "[core]\n",
        "logs/a.log": "log line\n",
        "src/main.py": "import util\n",
        "src/util/__init__.py": "",
    }
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def encode_lines():
    """The json_lines helper."""
    return json_lines
