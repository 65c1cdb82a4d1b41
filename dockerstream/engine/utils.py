"""Utility functions for streamed Docker operations."""

from typing import Dict, Optional, Tuple


def parse_image_name(image_name: str) -> Dict[str, Optional[str]]:
    """Parse a Docker image name into its components.

    Args:
        image_name: Docker image name (e.g. 'ubuntu:latest', 'registry.example.com/ubuntu:18.04')

    Returns:
        Dict with 'registry', 'repository', and 'tag' keys. The tag is None when
        the name does not carry one.
    """
    registry = None
    repository = image_name
    tag = None

    # A registry part contains a dot or a port, or is localhost
    parts = repository.split('/', 1)
    if len(parts) > 1 and ('.' in parts[0] or ':' in parts[0] or parts[0] == 'localhost'):
        registry = parts[0]
        repository = parts[1]

    if '@' in repository:
        repository, tag = repository.split('@', 1)
    elif ':' in repository:
        repository, tag = repository.rsplit(':', 1)

    return {
        'registry': registry,
        'repository': repository,
        'tag': tag
    }


def split_repository_tag(image_name: str) -> Tuple[str, Optional[str]]:
    """Split an image reference into the repository (with registry) and tag.

    Digests (``name@sha256:...``) are returned in the tag position.
    """
    parsed = parse_image_name(image_name)
    repository = parsed['repository']
    if parsed['registry']:
        repository = f"{parsed['registry']}/{repository}"
    return repository, parsed['tag']


def format_size(size_bytes: int) -> str:
    """Format file size in bytes to human readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., '1.2 MiB')
    """
    if size_bytes == 0:
        return "0 B"

    units = ['B', 'KiB', 'MiB', 'GiB', 'TiB']
    i = 0
    size = float(size_bytes)

    while size >= 1024.0 and i < len(units) - 1:
        size /= 1024.0
        i += 1

    return f"{size:.1f} {units[i]}"
