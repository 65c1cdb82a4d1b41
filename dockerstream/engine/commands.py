"""Request assembly and result extraction for streamed commands.

Each command composes three orthogonal pieces: the request shape (built from
an options struct), the response framing and a result extractor.
"""

import json
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from docker.auth import encode_header

from .dispatch import ResultExtractor, StreamCommand
from .models import Framing, ProgressEvent, PullResult, PushResult, RawChunk, StreamFrame, StreamRequest
from .utils import split_repository_tag

TAR_CONTENT_TYPE = "application/x-tar"


@dataclass
class BuildOptions:
    """Options of an image build."""

    tags: List[str] = field(default_factory=list)
    dockerfile: Optional[str] = None
    no_cache: bool = False
    pull: bool = False
    remove: bool = True
    force_remove: bool = False
    quiet: bool = False
    build_args: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    cache_from: List[str] = field(default_factory=list)
    target: Optional[str] = None
    platform: Optional[str] = None
    network_mode: Optional[str] = None
    # registry address -> auth config, sent as X-Registry-Config
    auth_configs: Dict[str, Dict[str, str]] = field(default_factory=dict)
    compression: Optional[str] = None


@dataclass
class PushOptions:
    """Options of an image push."""

    tag: Optional[str] = None
    auth_config: Optional[Dict[str, str]] = None


@dataclass
class PullOptions:
    """Options of an image pull."""

    tag: Optional[str] = None
    platform: Optional[str] = None
    auth_config: Optional[Dict[str, str]] = None


@dataclass
class WaitOptions:
    """Options of a container wait."""

    condition: Optional[str] = None


@dataclass
class LogsOptions:
    """Options of a container log stream."""

    stdout: bool = True
    stderr: bool = True
    follow: bool = False
    timestamps: bool = False
    tail: Optional[Union[int, str]] = None
    tty: bool = False


def _flag(value: bool) -> str:
    return "1" if value else "0"


def _registry_auth(auth_config: Optional[Mapping[str, Any]]) -> str:
    # the engine requires the header on push even without credentials
    return encode_header(dict(auth_config or {})).decode('ascii')


def build_request(body: Union[bytes, BinaryIO], options: BuildOptions) -> StreamRequest:
    """Assemble the request of an image build.

    Args:
        body: Tar archive of the build context
        options: Build options

    Returns:
        StreamRequest for ``POST /build``
    """
    params: List[Tuple[str, str]] = [('t', tag) for tag in options.tags]
    if options.dockerfile:
        params.append(('dockerfile', options.dockerfile))
    params.append(('nocache', _flag(options.no_cache)))
    params.append(('pull', _flag(options.pull)))
    params.append(('rm', _flag(options.remove)))
    params.append(('forcerm', _flag(options.force_remove)))
    if options.quiet:
        params.append(('q', _flag(True)))
    if options.build_args:
        params.append(('buildargs', json.dumps(options.build_args)))
    if options.labels:
        params.append(('labels', json.dumps(options.labels)))
    if options.cache_from:
        params.append(('cachefrom', json.dumps(options.cache_from)))
    if options.target:
        params.append(('target', options.target))
    if options.platform:
        params.append(('platform', options.platform))
    if options.network_mode:
        params.append(('networkmode', options.network_mode))

    # /build only accepts application/x-tar; the engine detects gzip, bzip2
    # and xz compression from the archive bytes
    headers = {'Content-Type': TAR_CONTENT_TYPE}
    if options.auth_configs:
        headers['X-Registry-Config'] = encode_header(options.auth_configs).decode('ascii')
    return StreamRequest(method='POST', path='/build', params=params, headers=headers, body=body)


def push_request(image: str, options: PushOptions) -> StreamRequest:
    """Assemble the request of an image push."""
    repository, tag = split_repository_tag(image)
    tag = options.tag or tag
    params = [('tag', tag)] if tag else []
    return StreamRequest(
        method='POST',
        path=f"/images/{quote(repository, safe='/:')}/push",
        params=params,
        headers={'X-Registry-Auth': _registry_auth(options.auth_config)},
    )


def pull_request(image: str, options: PullOptions) -> StreamRequest:
    """Assemble the request of an image pull (``POST /images/create``)."""
    repository, tag = split_repository_tag(image)
    tag = options.tag or tag or 'latest'
    params = [('fromImage', repository), ('tag', tag)]
    if options.platform:
        params.append(('platform', options.platform))
    headers = {}
    if options.auth_config:
        headers['X-Registry-Auth'] = _registry_auth(options.auth_config)
    return StreamRequest(method='POST', path='/images/create', params=params, headers=headers)


def wait_request(container_id: str, options: WaitOptions) -> StreamRequest:
    """Assemble the request of a container wait."""
    params = [('condition', options.condition)] if options.condition else []
    return StreamRequest(method='POST', path=f"/containers/{quote(container_id, safe='')}/wait", params=params)


def logs_request(container_id: str, options: LogsOptions) -> StreamRequest:
    """Assemble the request of a container log stream."""
    params = [
        ('stdout', _flag(options.stdout)),
        ('stderr', _flag(options.stderr)),
        ('follow', _flag(options.follow)),
        ('timestamps', _flag(options.timestamps)),
    ]
    if options.tail is not None:
        params.append(('tail', str(options.tail)))
    return StreamRequest(method='GET', path=f"/containers/{quote(container_id, safe='')}/logs", params=params)


def last_identifier(key: str) -> ResultExtractor[Any]:
    """Extractor keeping the last value of an embedded identifier."""
    def step(current: Optional[Any], frame: StreamFrame) -> Optional[Any]:
        if isinstance(frame, ProgressEvent) and key in frame.identifiers:
            return frame.identifiers[key]
        return current
    return ResultExtractor(step=step)


def _push_step(current: Optional[PushResult], frame: StreamFrame) -> Optional[PushResult]:
    if isinstance(frame, ProgressEvent) and 'digest' in frame.identifiers:
        ids = frame.identifiers
        return PushResult(tag=ids.get('tag'), digest=ids['digest'], size=ids.get('size'))
    return current


def _pull_step(current: Optional[PullResult], frame: StreamFrame) -> Optional[PullResult]:
    if not isinstance(frame, ProgressEvent):
        return current
    ids = frame.identifiers
    if 'digest' not in ids and 'reference' not in ids:
        return current
    return PullResult(
        reference=ids.get('reference', current.reference if current else None),
        digest=ids.get('digest', current.digest if current else None),
    )


def _output_step(current: Optional[bytes], frame: StreamFrame) -> Optional[bytes]:
    if isinstance(frame, RawChunk):
        return (current or b'') + frame.data
    return current


def build_image_command(
    body: Union[bytes, BinaryIO],
    options: BuildOptions,
    close_body: bool = False,
) -> StreamCommand[str]:
    """Command building an image; the result is the produced image id.

    Args:
        body: Tar archive of the build context
        options: Build options
        close_body: Close a file-like body once the execution is over
    """
    return StreamCommand(
        name="build",
        request=build_request(body, options),
        extractor=last_identifier('image_id'),
        close_body=close_body,
    )


def push_image_command(image: str, options: PushOptions) -> StreamCommand[PushResult]:
    """Command pushing an image; the result carries the pushed digest."""
    return StreamCommand(name=f"push {image}", request=push_request(image, options), extractor=ResultExtractor(step=_push_step))


def pull_image_command(image: str, options: PullOptions) -> StreamCommand[PullResult]:
    """Command pulling an image."""
    return StreamCommand(name=f"pull {image}", request=pull_request(image, options), extractor=ResultExtractor(step=_pull_step))


def wait_container_command(container_id: str, options: WaitOptions) -> StreamCommand[int]:
    """Command waiting for a container; the result is its exit status code."""
    return StreamCommand(
        name=f"wait {container_id}",
        request=wait_request(container_id, options),
        extractor=last_identifier('status_code'),
    )


def container_logs_command(container_id: str, options: LogsOptions) -> StreamCommand[bytes]:
    """Command streaming container output; the result is the collected output."""
    return StreamCommand(
        name=f"logs {container_id}",
        request=logs_request(container_id, options),
        extractor=ResultExtractor(step=_output_step, initial=b''),
        framing=Framing.RAW if options.tty else Framing.MULTIPLEXED,
    )
