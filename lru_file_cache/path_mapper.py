"""Map cache keys to locations in the hash-sharded directory tree.

A key ``0123456789abcdef...`` with depth 3 lives at ``<cache_dir>/3/2/1/<key>``:
level ``n`` of the tree (counting down from ``depth``) is named after
``key[n]``. Every tree level therefore fans out to at most 16 directories.
"""

import logging
import re
from pathlib import Path

from lru_file_cache.collaborators import Filesystem
from lru_file_cache.errors import InvalidKeyError
from lru_file_cache.trace import TRACE

logger = logging.getLogger(__name__)

# Hex-encoded MD5, or any longer hex digest
HASH_PATTERN = re.compile(r"[0-9a-f]{32,}")
MIN_HASH_LENGTH = 32


class ShardPathMapper:
    """Resolves cache keys to files in the shard tree under cache_dir."""

    def __init__(self, cache_dir: Path, depth: int, filesystem: Filesystem) -> None:
        if depth >= MIN_HASH_LENGTH:
            raise ValueError(f"Depth {depth} must be below the minimum hash length {MIN_HASH_LENGTH}")
        self._cache_dir = cache_dir
        self._depth = depth
        self._filesystem = filesystem

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @property
    def depth(self) -> int:
        return self._depth

    def validate(self, hash: str) -> None:
        """Raise unless ``hash`` is a usable cache key."""
        if not isinstance(hash, str):
            raise TypeError(f"Hash must be a string, got {type(hash).__name__}")
        if not HASH_PATTERN.fullmatch(hash):
            raise InvalidKeyError(f"Bad hash for cache path: {hash!r}")

    def is_valid(self, hash: str) -> bool:
        return isinstance(hash, str) and HASH_PATTERN.fullmatch(hash) is not None

    def shard_dir(self, hash: str) -> Path:
        """Directory holding ``hash``. Pure: validates but creates nothing."""
        self.validate(hash)
        directory = self._cache_dir
        for level in range(self._depth, 0, -1):
            directory = directory / hash[level]
        return directory

    def locate(self, hash: str) -> Path:
        """Path of the file for ``hash`` without creating any directories."""
        return self.shard_dir(hash) / hash

    def shard_path(self, hash: str) -> Path:
        """Path of the file for ``hash``, creating its shard directories if needed."""
        directory = self.shard_dir(hash)
        if not self._filesystem.exists(directory):
            logger.log(TRACE, f"creating shard directory {str(directory)!r}")
            self._filesystem.make_dirs(directory)
        return directory / hash
