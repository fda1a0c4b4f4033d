"""Boundary collaborators used by the cache.

The cache never touches the filesystem or hashes identifiers directly: it goes
through the three narrow interfaces below. The Local* classes are the
implementations used by default; tests and embedding services may substitute
their own.
"""

import functools
import hashlib
import logging
import math
import os
import shutil
import stat
from enum import Enum
from typing import Literal, Protocol, Union

from pydantic import BaseModel, ConfigDict

from lru_file_cache.config import BLOCK_SIZE
from lru_file_cache.errors import TransferError
from lru_file_cache.trace import TRACE

logger = logging.getLogger(__name__)

FileSystemPath = Union[str, os.PathLike]


class TransferMode(Enum):
    """How a source file is placed into the cache."""

    COPY = "copy"  # Safest: source left intact
    MOVE = "move"  # Source is consumed, useful for temp files
    LINK = "link"  # Hard link: shares the inode, so later edits to the source leak into the cache


class FileStat(BaseModel):
    """Metadata the cache needs about one file: size in 512-byte blocks and mtime."""

    model_config = ConfigDict(frozen=True)

    size_blocks: int
    modified_time: float
    is_file: bool = True


class DirEntry(BaseModel):
    """One member of a directory listing, classified without following symlinks."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: Literal["file", "directory", "other"]


class Hasher(Protocol):
    """Derives cache keys from identifying strings."""

    def hash(self, identifier: str) -> str: ...


class FileTransfer(Protocol):
    """Places a source file at a destination. Failures raise TransferError."""

    def copy(self, src: FileSystemPath, dst: FileSystemPath) -> None: ...

    def move(self, src: FileSystemPath, dst: FileSystemPath) -> None: ...

    def link(self, src: FileSystemPath, dst: FileSystemPath) -> None: ...


class Filesystem(Protocol):
    """Metadata queries and housekeeping. Failures raise OSError."""

    def exists(self, path: FileSystemPath) -> bool: ...

    def stat(self, path: FileSystemPath) -> FileStat: ...

    def list_entries(self, directory: FileSystemPath) -> list[DirEntry]: ...

    def make_dirs(self, path: FileSystemPath) -> None: ...

    def unlink(self, path: FileSystemPath) -> None: ...


class Md5Hasher:
    """Turn identifying strings (file names, URLs...) into cache keys.

    MD5 is used only for an even spread across shard directories, not for
    security. Digests are memoized in a bounded LRU.
    """

    def __init__(self, memo_size: int = 4096) -> None:
        self._cached_digest = functools.lru_cache(maxsize=memo_size)(self._digest)

    @staticmethod
    def _digest(identifier: str) -> str:
        return hashlib.md5(identifier.encode("utf-8"), usedforsecurity=False).hexdigest()

    def hash(self, identifier: str) -> str:
        if not isinstance(identifier, str):
            raise TypeError(f"Identifier must be a string, got {type(identifier).__name__}")
        return self._cached_digest(identifier)


class LocalFileTransfer:
    """File transfer on the local filesystem. All failures become TransferError."""

    def copy(self, src: FileSystemPath, dst: FileSystemPath) -> None:
        logger.log(TRACE, f"copy({os.fspath(src)!r} -> {os.fspath(dst)!r})")
        try:
            # copyfile, not copy2: the cached file gets a fresh mtime, which resync orders by
            shutil.copyfile(src, dst)
        except OSError as e:
            raise TransferError(f"Failed to copy {os.fspath(src)!r} to {os.fspath(dst)!r}", e) from e

    def move(self, src: FileSystemPath, dst: FileSystemPath) -> None:
        logger.log(TRACE, f"move({os.fspath(src)!r} -> {os.fspath(dst)!r})")
        try:
            shutil.move(os.fspath(src), os.fspath(dst))
        except OSError as e:
            raise TransferError(f"Failed to move {os.fspath(src)!r} to {os.fspath(dst)!r}", e) from e

    def link(self, src: FileSystemPath, dst: FileSystemPath) -> None:
        logger.log(TRACE, f"link({os.fspath(src)!r} -> {os.fspath(dst)!r})")
        try:
            os.link(src, dst)
        except OSError as e:
            raise TransferError(f"Failed to link {os.fspath(src)!r} to {os.fspath(dst)!r}", e) from e


class LocalFilesystem:
    """Filesystem metadata and housekeeping on the local disk."""

    def exists(self, path: FileSystemPath) -> bool:
        return os.path.lexists(path)

    def stat(self, path: FileSystemPath) -> FileStat:
        st = os.stat(path)
        # st_blocks is always in 512-byte units where present (POSIX); Windows lacks it
        blocks = getattr(st, "st_blocks", None)
        if blocks is None:
            blocks = math.ceil(st.st_size / BLOCK_SIZE)
        return FileStat(size_blocks=blocks, modified_time=st.st_mtime, is_file=stat.S_ISREG(st.st_mode))

    def list_entries(self, directory: FileSystemPath) -> list[DirEntry]:
        entries: list[DirEntry] = []
        with os.scandir(directory) as it:
            for entry in it:
                mode = entry.stat(follow_symlinks=False).st_mode
                if stat.S_ISDIR(mode):
                    kind: Literal["file", "directory", "other"] = "directory"
                elif stat.S_ISREG(mode):
                    kind = "file"
                else:
                    kind = "other"
                entries.append(DirEntry(name=entry.name, kind=kind))
        return entries

    def make_dirs(self, path: FileSystemPath) -> None:
        os.makedirs(path, exist_ok=True)

    def unlink(self, path: FileSystemPath) -> None:
        os.unlink(path)

