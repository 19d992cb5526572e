"""Appendable tar archives for instance backups.

A backup archive is written by several writers one after another: the
snapshotter containers (one per service) and nodekeeper itself. Each writer
resumes exactly where the previous one left its end-of-archive marker, so
nothing already written is ever read back or rewritten.

The tar end-of-archive marker is two 512-byte blocks of zeros
(https://www.gnu.org/software/tar/manual/html_node/Standard.html). At every
rest point the archive ends in that marker, and ``prepare_for_append``
refuses to touch an archive that does not.
"""

from __future__ import annotations

import io
import logging
import os
import posixpath
import tarfile
from collections.abc import Iterator
from contextlib import contextmanager
from typing import BinaryIO

from nodekeeper.api.errors import (
    ArchiveInitError,
    ArchiveNotAppendableError,
    SourceIsDirectoryError,
    SourceNotFoundError,
    SourcePermissionError,
)
from nodekeeper.logging_schema import LogEvent

logger = logging.getLogger(__name__)

TAR_BLOCK_SIZE = 512
TERMINATOR_SIZE = 2 * TAR_BLOCK_SIZE


@contextmanager
def _source_errors(path: str | os.PathLike[str]) -> Iterator[None]:
    """Translate OS errors on a source path into archive errors."""
    try:
        yield
    except FileNotFoundError as e:
        raise SourceNotFoundError(f"source not found: {path}") from e
    except PermissionError as e:
        raise SourcePermissionError(f"permission denied: {path}") from e


def init_archive(path: str | os.PathLike[str]) -> None:
    """Create (or truncate) ``path`` as an empty tar archive.

    The file holds exactly the two zero blocks of the end-of-archive marker.
    The tar standard does not require them for an empty archive, but every
    common tool writes them and ``prepare_for_append`` expects them.
    """
    try:
        with open(path, "wb") as f:
            written = f.write(bytes(TERMINATOR_SIZE))
        os.chmod(path, 0o644)
    except OSError as e:
        raise ArchiveInitError(f"failed initializing empty tar file {path}: {e}") from e
    if written != TERMINATOR_SIZE:
        raise ArchiveInitError(f"failed initializing empty tar file {path}")
    logger.debug(
        "Initialized empty archive",
        extra={"event": LogEvent.ARCHIVE_INITIALIZED, "path": str(path)},
    )


def prepare_for_append(fileobj: BinaryIO) -> None:
    """Position ``fileobj`` so the next write replaces the end-of-archive marker.

    An empty file needs nothing stripped. Otherwise the last 1024 bytes must
    all be zero; if they are not (archive is corrupt or a writer stopped
    midway) ``ArchiveNotAppendableError`` is raised and the stream position
    is restored.
    """
    start = fileobj.tell()
    size = fileobj.seek(0, io.SEEK_END)
    if size == 0:
        return
    if size < TERMINATOR_SIZE:
        fileobj.seek(start)
        raise ArchiveNotAppendableError(
            "failed preparing to append: tar file is not empty but has less "
            f"than 2 blocks ({TERMINATOR_SIZE} bytes)"
        )

    fileobj.seek(size - TERMINATOR_SIZE)
    tail = fileobj.read(TERMINATOR_SIZE)
    if len(tail) != TERMINATOR_SIZE:
        fileobj.seek(start)
        raise ArchiveNotAppendableError(
            f"failed preparing to append: read {len(tail)} bytes instead of {TERMINATOR_SIZE}"
        )
    if tail.count(0) != TERMINATOR_SIZE:
        fileobj.seek(start)
        raise ArchiveNotAppendableError(
            f"failed preparing to append: last {TERMINATOR_SIZE} bytes are not all 0"
        )
    fileobj.seek(size - TERMINATOR_SIZE)


@contextmanager
def _tar_session(fileobj: BinaryIO) -> Iterator[tarfile.TarFile]:
    """Write tar entries starting at the current position of ``fileobj``.

    On success the session ends with exactly one end-of-archive marker after
    the last entry. ``tarfile`` pads the stream to a full 10240-byte record
    on close. That padding is cut off here because the next append strips
    only the final 1024 bytes, and the rest would sit in the middle of the
    archive as a false end marker.
    """
    tar = tarfile.TarFile(fileobj=fileobj, mode="w", format=tarfile.PAX_FORMAT)
    yield tar
    entries_end = tar.offset
    tar.close()
    fileobj.truncate(entries_end + TERMINATOR_SIZE)
    fileobj.seek(entries_end + TERMINATOR_SIZE)
    fileobj.flush()


def _walk(root: str) -> Iterator[str]:
    """Yield ``root`` and everything below it, parents before children, sorted by name."""
    yield root
    if not os.path.isdir(root) or os.path.islink(root):
        return
    with os.scandir(root) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk(entry.path)
        else:
            yield entry.path


def _add_entry(tar: tarfile.TarFile, path: str, arcname: str) -> None:
    with _source_errors(path):
        info = tar.gettarinfo(path, arcname=arcname)
        if info is None:
            # sockets and other special files have no tar representation
            logger.debug("Skipping unsupported file type: %s", path)
            return
        info.mtime = int(info.mtime)
        if info.isreg():
            with open(path, "rb") as f:
                tar.addfile(info, f)
        else:
            tar.addfile(info)


def add_directory_tree(
    source_dir: str | os.PathLike[str],
    prefix: str,
    fileobj: BinaryIO,
) -> None:
    """Add ``source_dir`` and its whole subtree to the archive under ``prefix``.

    Entry names are ``prefix`` joined with each path relative to
    ``source_dir``; the directory itself is stored as ``prefix``. Symlinks
    are stored as links, not followed.
    """
    root = os.fspath(source_dir)
    with _source_errors(root):
        os.lstat(root)

    count = 0
    with _tar_session(fileobj) as tar:
        for path in _walk(root):
            rel = os.path.relpath(path, root)
            if rel == os.curdir:
                arcname = prefix or os.curdir
            else:
                arcname = posixpath.join(prefix, *rel.split(os.sep))
            _add_entry(tar, path, arcname)
            count += 1

    logger.debug(
        "Appended directory to archive",
        extra={
            "event": LogEvent.ARCHIVE_APPENDED,
            "source": root,
            "prefix": prefix,
            "entries": count,
        },
    )


def add_file(
    source_path: str | os.PathLike[str],
    dest_name: str,
    fileobj: BinaryIO,
) -> None:
    """Add one regular file to the archive as ``dest_name``.

    Directories must go through ``add_directory_tree``.
    """
    path = os.fspath(source_path)
    if not os.path.lexists(path):
        raise SourceNotFoundError(f"source not found: {path}")
    if os.path.isdir(path):
        raise SourceIsDirectoryError(f"source is a directory: {path}")

    with _tar_session(fileobj) as tar:
        _add_entry(tar, path, dest_name)

    logger.debug(
        "Appended file to archive",
        extra={"event": LogEvent.ARCHIVE_APPENDED, "source": path, "name": dest_name},
    )


class BackupArchive:
    """A tar archive on disk that is grown by successive appends."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = os.fspath(path)

    @property
    def path(self) -> str:
        return self._path

    def init(self) -> None:
        init_archive(self._path)

    @contextmanager
    def _open_for_append(self) -> Iterator[BinaryIO]:
        with open(self._path, "r+b") as f:
            prepare_for_append(f)
            yield f

    def check_appendable(self) -> None:
        """Verify the archive ends in a clean marker before an external writer appends to it."""
        with self._open_for_append():
            pass

    def add_directory(self, source_dir: str | os.PathLike[str], prefix: str) -> None:
        with self._open_for_append() as f:
            add_directory_tree(source_dir, prefix, f)

    def add_file(self, source_path: str | os.PathLike[str], dest_name: str) -> None:
        with self._open_for_append() as f:
            add_file(source_path, dest_name, f)

    def members(self) -> list[str]:
        """Entry names in archive order."""
        with tarfile.open(self._path, "r:") as tar:
            return tar.getnames()

    def size(self) -> int:
        return os.path.getsize(self._path)
