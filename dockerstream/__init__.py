"""dockerstream - streamed command execution against the Docker Engine API.

The package provides build-context assembly (dockerignore matching and
reproducible tar archives), a frame reader for streamed engine responses and
a dispatch core that delivers frames to a callback while exposing an
awaitable outcome.
"""

__version__ = "0.1.0"
