"""Build context assembly.

Walks a context directory, applies the dockerignore rules and serializes the
surviving entries into a reproducible tar archive: entries are sorted by path
and tar headers carry no owner information, so archiving an unchanged tree
twice yields identical bytes.
"""

import gzip
import os
import stat
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from loguru import logger

from dockerstream.config import settings
from .exceptions import ContextError, DockerfileExcludedError, MissingDockerfileError
from .ignore import IgnoreMatcher, normalize_path, read_ignore_file
from .models import ArchiveEntry, EntryKind
from .utils import format_size

logger = logger.bind(name=__name__)


@dataclass
class BuildContext:
    """The ordered archive entries of a build context."""

    root: Path
    entries: List[ArchiveEntry]
    dockerfile_path: Path
    dockerfile_name: str
    excluded: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def total_size(self) -> int:
        """Total content size of all file entries in bytes."""
        return sum(e.size for e in self.entries if e.kind is EntryKind.FILE)

    @property
    def names(self) -> List[str]:
        return [e.name for e in self.entries]

    def write(self, fileobj: BinaryIO, compression: Optional[str] = None) -> None:
        """Write the archive to a binary file object.

        Args:
            fileobj: Writable binary stream
            compression: None for a plain tar stream or 'gzip'
        """
        if compression is None:
            self._write_tar(fileobj)
        elif compression == 'gzip':
            # mtime=0 keeps the gzip header reproducible
            with gzip.GzipFile(filename='', fileobj=fileobj, mode='wb', mtime=0) as gz:
                self._write_tar(gz)
        else:
            raise ValueError(f"Unsupported compression: {compression}")

    def _write_tar(self, fileobj: BinaryIO) -> None:
        with tarfile.open(fileobj=fileobj, mode='w', format=tarfile.PAX_FORMAT) as tar:
            for entry in self.entries:
                info = _tarinfo(entry)
                if entry.kind is EntryKind.FILE:
                    with entry.open() as content:
                        tar.addfile(info, content)
                else:
                    tar.addfile(info)

    def open_archive(self, compression: Optional[str] = None) -> BinaryIO:
        """Write the archive to a spooled temporary file rewound to the start."""
        spool = tempfile.SpooledTemporaryFile(max_size=settings.context.spool_max_size)
        try:
            self.write(spool, compression)
        except BaseException:
            spool.close()
            raise
        spool.seek(0)
        return spool

    def to_bytes(self, compression: Optional[str] = None) -> bytes:
        with self.open_archive(compression) as archive:
            return archive.read()


def _tarinfo(entry: ArchiveEntry) -> tarfile.TarInfo:
    info = tarfile.TarInfo(entry.name)
    info.mode = entry.mode
    info.mtime = entry.mtime
    info.uid = info.gid = 0
    info.uname = info.gname = ''
    if entry.kind is EntryKind.FILE:
        info.type = tarfile.REGTYPE
        info.size = entry.size
    elif entry.kind is EntryKind.DIRECTORY:
        info.type = tarfile.DIRTYPE
    else:
        info.type = tarfile.SYMTYPE
        info.linkname = entry.link_target or ''
    return info


def _entry_from_stat(name: str, path: Path, st: os.stat_result) -> Optional[ArchiveEntry]:
    mode = stat.S_IMODE(st.st_mode)
    mtime = int(st.st_mtime)
    if stat.S_ISREG(st.st_mode):
        return ArchiveEntry(name=name, kind=EntryKind.FILE, mode=mode, size=st.st_size, mtime=mtime, source=path)
    if stat.S_ISDIR(st.st_mode):
        return ArchiveEntry(name=name, kind=EntryKind.DIRECTORY, mode=mode, mtime=mtime)
    if stat.S_ISLNK(st.st_mode):
        return ArchiveEntry(
            name=name,
            kind=EntryKind.SYMLINK,
            mode=mode,
            mtime=mtime,
            link_target=os.readlink(path),
        )
    # sockets, FIFOs and device nodes
    return None


def collect_entries(root: Path, matcher: IgnoreMatcher, excluded: Optional[List[str]] = None) -> List[ArchiveEntry]:
    """Walk ``root`` and return the included entries sorted by path.

    Excluded directories are pruned without descending. Symbolic links are
    recorded as links and never followed.
    """
    entries: List[ArchiveEntry] = []
    pending = ['']
    while pending:
        rel_dir = pending.pop()
        with os.scandir(root / rel_dir if rel_dir else root) as it:
            children = sorted(it, key=lambda e: e.name)
        for child in children:
            name = f"{rel_dir}/{child.name}" if rel_dir else child.name
            is_dir = child.is_dir(follow_symlinks=False)
            if matcher.matches(name, is_dir):
                if excluded is not None:
                    excluded.append(name)
                continue
            entry = _entry_from_stat(name, Path(child.path), child.stat(follow_symlinks=False))
            if entry is None:
                logger.warning(f"Skipping special file {name} in build context")
                continue
            entries.append(entry)
            if is_dir:
                pending.append(name)
    entries.sort(key=lambda e: e.name)
    return entries


def build_context(
    root: Union[str, Path],
    matcher: Optional[IgnoreMatcher] = None,
    dockerfile: Optional[Union[str, Path]] = None,
    *,
    force_include_dockerfile: bool = False,
) -> BuildContext:
    """Assemble the build context of a directory.

    Validation happens before the tree is walked: an invalid ignore file or a
    missing or excluded Dockerfile fails without producing any archive bytes.

    Args:
        root: Context root directory
        matcher: Ignore rules; read from the root's ignore file when omitted
        dockerfile: Build-definition file, relative to the root or absolute.
            A file outside the root is injected under a fixed archive name.
        force_include_dockerfile: Archive the Dockerfile even if it is excluded

    Returns:
        BuildContext with sorted entries

    Raises:
        InvalidPatternError: If the root's ignore file is malformed
        MissingDockerfileError: If the Dockerfile does not exist
        DockerfileExcludedError: If the Dockerfile is excluded and not forced
        ContextError: If the root is not a directory
    """
    root = Path(os.path.abspath(root))
    if not root.is_dir():
        raise ContextError(f"Build context '{root}' is not a directory")
    if matcher is None:
        matcher = read_ignore_file(root / settings.context.dockerignore_name)

    if dockerfile is None:
        dockerfile = root / settings.context.default_dockerfile
    dockerfile = Path(dockerfile)
    if not dockerfile.is_absolute():
        dockerfile = root / dockerfile
    dockerfile = Path(os.path.abspath(dockerfile))
    if not dockerfile.is_file():
        raise MissingDockerfileError(str(dockerfile))

    try:
        relative: Optional[Path] = dockerfile.relative_to(root)
    except ValueError:
        relative = None

    if relative is None:
        dockerfile_name = settings.context.external_dockerfile_name
        inject = True
    else:
        dockerfile_name = normalize_path(relative)
        inject = False
        if matcher.matches(dockerfile_name):
            if not force_include_dockerfile:
                raise DockerfileExcludedError(dockerfile_name)
            inject = True

    excluded: List[str] = []
    entries = collect_entries(root, matcher, excluded)

    if inject:
        injected = _entry_from_stat(dockerfile_name, dockerfile, dockerfile.stat())
        kept = [e for e in entries if e.name != dockerfile_name]
        if len(kept) != len(entries):
            logger.warning(f"Replacing {dockerfile_name} in build context with {dockerfile}")
        kept.append(injected)
        kept.sort(key=lambda e: e.name)
        entries = kept

    context = BuildContext(
        root=root,
        entries=entries,
        dockerfile_path=dockerfile,
        dockerfile_name=dockerfile_name,
        excluded=excluded,
    )
    logger.debug(
        f"Build context {root}: {len(context)} entries, {format_size(context.total_size)}, "
        f"{len(excluded)} excluded"
    )
    return context
