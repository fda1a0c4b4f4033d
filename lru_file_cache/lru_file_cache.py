import errno
import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from lru_file_cache.collaborators import (
    FileSystemPath,
    FileTransfer,
    Filesystem,
    Hasher,
    LocalFileTransfer,
    LocalFilesystem,
    Md5Hasher,
    TransferMode,
)
from lru_file_cache.config import DEFAULT_DEPTH, DEFAULT_MAX_SIZE_BYTES, CacheConfig
from lru_file_cache.errors import InconsistentCacheError, InvalidConfigurationError, TransferError
from lru_file_cache.path_mapper import ShardPathMapper
from lru_file_cache.trace import TRACE

# Set up logger for this module
logger = logging.getLogger(__name__)


class CacheEntry:
    """One cached file. prev/next are arena slots, not references."""

    __slots__ = ("hash", "last_access", "size_blocks", "prev", "next")

    def __init__(self, hash: str, last_access: float, size_blocks: int) -> None:
        self.hash = hash
        self.last_access = last_access
        self.size_blocks = size_blocks
        self.prev: Optional[int] = None
        self.next: Optional[int] = None


class CacheEntryInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    last_access: float
    size_blocks: int


class LRUFileCache:
    """
    Least-recently-used cache of whole files on disk.

    Files live in a hash-sharded directory tree under cache_dir. The index
    keeps every entry in a doubly-linked chain (oldest -> newest) over an
    arena of CacheEntry slots, plus a running total of the blocks they use.
    When the total reaches the budget, entries are evicted from the oldest
    end. The tree itself is the durable record: resync() rebuilds the index
    from file names, block counts and modification times.
    """

    def __init__(
        self,
        cache_dir: FileSystemPath,
        depth: int = DEFAULT_DEPTH,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        hash_memo_size: int = 4096,
        *,
        filesystem: Optional[Filesystem] = None,
        transfer: Optional[FileTransfer] = None,
        hasher: Optional[Hasher] = None,
    ) -> None:
        try:
            self._config = CacheConfig(
                cache_dir=Path(cache_dir),
                depth=depth,
                max_size_bytes=max_size_bytes,
                hash_memo_size=hash_memo_size,
            )
        except ValidationError as e:
            raise InvalidConfigurationError(f"Invalid cache configuration: {e}") from e

        if not self._config.cache_dir.is_dir():
            raise InvalidConfigurationError(f"Bad cache directory {str(self._config.cache_dir)!r}")

        self._filesystem: Filesystem = filesystem if filesystem is not None else LocalFilesystem()
        self._transfer: FileTransfer = transfer if transfer is not None else LocalFileTransfer()
        self._hasher: Hasher = hasher if hasher is not None else Md5Hasher(self._config.hash_memo_size)
        self._mapper = ShardPathMapper(self._config.cache_dir, self._config.depth, self._filesystem)

        # Size budget, in 512-byte blocks. A target, momentarily exceeded between add() and eviction.
        self._max_size = self._config.max_size_blocks

        # Index state
        self._entries: list[Optional[CacheEntry]] = []
        self._free_slots: list[int] = []
        self._slots: dict[str, int] = {}
        self._oldest: Optional[int] = None
        self._newest: Optional[int] = None
        self._total_size = 0

        # Initialize statistics counters
        self._stats_hits = 0
        self._stats_misses = 0
        self._stats_evictions = 0
        self._stats_total_adds = 0
        self._stats_total_gets = 0
        self._stats_total_removes = 0

        # Thread safety lock; reentrant so eviction can go through _remove while held
        self._lock = threading.RLock()

        self.resync()

    @classmethod
    def from_config(
        cls,
        config: CacheConfig,
        *,
        filesystem: Optional[Filesystem] = None,
        transfer: Optional[FileTransfer] = None,
        hasher: Optional[Hasher] = None,
    ) -> "LRUFileCache":
        return cls(**config.model_dump(), filesystem=filesystem, transfer=transfer, hasher=hasher)

    @property
    def cache_dir(self) -> Path:
        return self._config.cache_dir

    @property
    def config(self) -> CacheConfig:
        return self._config

    def hash(self, identifier: str) -> str:
        """Derive a cache key from identifying information (eg. a source URL)."""
        return self._hasher.hash(identifier)

    # ------------------------------------------------------------------
    # Arena and chain

    def _entry(self, slot: int) -> CacheEntry:
        entry = self._entries[slot]
        if entry is None:
            raise InconsistentCacheError(f"Index slot {slot} is linked but empty")
        return entry

    def _allocate(self, entry: CacheEntry) -> int:
        if self._free_slots:
            slot = self._free_slots.pop()
            self._entries[slot] = entry
        else:
            slot = len(self._entries)
            self._entries.append(entry)
        return slot

    def _release(self, slot: int) -> None:
        self._entries[slot] = None
        self._free_slots.append(slot)

    def _detach(self, slot: int) -> None:
        """Unlink a slot from the chain, wiring its neighbours to each other."""
        entry = self._entry(slot)
        prev_slot, next_slot = entry.prev, entry.next

        if prev_slot is not None:
            self._entry(prev_slot).next = next_slot
        else:
            self._oldest = next_slot

        if next_slot is not None:
            self._entry(next_slot).prev = prev_slot
        else:
            self._newest = prev_slot

        entry.prev = None
        entry.next = None

    def _append_newest(self, slot: int) -> None:
        """Link a detached slot at the newest end of the chain."""
        entry = self._entry(slot)
        entry.prev = self._newest
        entry.next = None

        if self._newest is not None:
            self._entry(self._newest).next = slot
        else:
            self._oldest = slot

        self._newest = slot

    def _promote(self, slot: int) -> None:
        if slot == self._newest:
            return
        logger.log(TRACE, f"promoting hash={self._entry(slot).hash!r} to newest")
        self._detach(slot)
        self._append_newest(slot)

    def _index(self, entry: CacheEntry) -> None:
        """Add a new entry to the table and the newest end of the chain."""
        slot = self._allocate(entry)
        self._append_newest(slot)
        self._slots[entry.hash] = slot
        self._total_size += entry.size_blocks

    def _clear_index(self) -> None:
        """Forget the in-memory index. Files on disk are untouched."""
        self._entries = []
        self._free_slots = []
        self._slots = {}
        self._oldest = None
        self._newest = None
        self._total_size = 0

    # ------------------------------------------------------------------
    # Cache operations

    def get(self, hash: str, timestamp: Optional[float] = None) -> Optional[Path]:
        """Return the path of a cached file, marking it as most recently used.

        Returns None if the hash is not cached.

        Raises:
            InvalidKeyError: If hash is not a valid cache key
            InconsistentCacheError: If the index has the hash but its file is gone
            ValueError: If timestamp is older than the newest entry's access time
        """
        self._mapper.validate(hash)
        logger.log(TRACE, f"get(hash={hash!r})")

        with self._lock:
            self._stats_total_gets += 1

            slot = self._slots.get(hash)
            if slot is None:
                logger.log(TRACE, f"get(hash={hash!r}): miss (not found)")
                self._stats_misses += 1
                return None

            now = self._access_time(timestamp)

            cache_path = self._mapper.locate(hash)
            if not self._filesystem.exists(cache_path):
                raise InconsistentCacheError(f"Inconsistent cache: {hash} not found at {str(cache_path)!r}")

            logger.log(TRACE, f"get(hash={hash!r}): hit")
            self._stats_hits += 1

            self._entry(slot).last_access = now
            self._promote(slot)
            self._enforce_budget()

            return cache_path

    def add(
        self,
        source: FileSystemPath,
        hash: str,
        mode: Union[TransferMode, str] = TransferMode.COPY,
        timestamp: Optional[float] = None,
    ) -> Path:
        """Place source into the cache under hash and mark it as most recently used.

        Adding a hash that is already cached replaces the file but keeps the
        size recorded when it was first added.

        Raises:
            InvalidKeyError: If hash is not a valid cache key
            TransferError: If the source is not a readable regular file, or
                preparing the destination or placing the file fails; the index is unchanged
            ValueError: If timestamp is older than the newest entry's access time
        """
        self._mapper.validate(hash)
        mode = TransferMode(mode)
        logger.log(TRACE, f"add(hash={hash!r}, mode={mode.value})")

        with self._lock:
            self._stats_total_adds += 1

            # Stat the source up front: after a MOVE it no longer exists
            try:
                source_stat = self._filesystem.stat(source)
            except OSError as e:
                raise TransferError(f"Cannot stat source {os.fspath(source)!r}", e) from e
            if not source_stat.is_file:
                raise TransferError(
                    f"Cannot cache {os.fspath(source)!r}",
                    OSError(errno.EINVAL, "Not a regular file", os.fspath(source)),
                )

            now = self._access_time(timestamp)

            try:
                cache_path = self._mapper.shard_path(hash)
                if self._filesystem.exists(cache_path):
                    logger.log(TRACE, f"add(hash={hash!r}): replacing existing file")
                    self._filesystem.unlink(cache_path)
            except OSError as e:
                raise TransferError(f"Cannot prepare cache path for {hash}", e) from e

            self._transfer_file(source, cache_path, mode)

            slot = self._slots.get(hash)
            if slot is not None:
                # Refresh only; the recorded size is not reconciled with the new file
                logger.log(TRACE, f"add(hash={hash!r}): refreshing existing entry")
                self._entry(slot).last_access = now
                self._promote(slot)
            else:
                self._index(CacheEntry(hash, now, source_stat.size_blocks))

            self._enforce_budget()

            return cache_path

    def _transfer_file(self, source: FileSystemPath, cache_path: Path, mode: TransferMode) -> None:
        if mode is TransferMode.LINK:
            self._transfer.link(source, cache_path)
        elif mode is TransferMode.MOVE:
            self._transfer.move(source, cache_path)
        else:
            self._transfer.copy(source, cache_path)

    def remove(self, hash: str) -> bool:
        """Remove hash from the index and delete its file.

        Returns False if the hash was not cached. If deleting the file fails
        the OSError propagates, but the entry is already gone from the index.
        """
        self._mapper.validate(hash)
        logger.log(TRACE, f"remove(hash={hash!r})")

        with self._lock:
            self._stats_total_removes += 1
            return self._remove(hash)

    def _remove(self, hash: str) -> bool:
        slot = self._slots.pop(hash, None)
        if slot is None:
            return False

        entry = self._entry(slot)
        self._detach(slot)
        self._release(slot)
        self._total_size -= entry.size_blocks

        self._filesystem.unlink(self._mapper.locate(hash))
        return True

    def _enforce_budget(self) -> None:
        """Evict from the oldest end until the total is under the budget.

        Runs synchronously inside the add()/get() that triggered it, and always
        runs to completion. A file already missing from disk counts as
        evicted; any other unlink failure is raised once the loop is done.
        """
        logger.log(TRACE, f"checking cache size: {self._total_size} / {self._max_size} blocks")

        unlink_error: Optional[OSError] = None
        while self._oldest is not None and self._total_size >= self._max_size:
            oldest = self._entry(self._oldest)
            logger.log(
                TRACE,
                f"evicting hash={oldest.hash!r} (items={len(self._slots)}, "
                f"size={self._total_size} / {self._max_size} blocks)",
            )
            self._stats_evictions += 1
            try:
                self._remove(oldest.hash)
            except FileNotFoundError:
                logger.log(TRACE, f"evicting hash={oldest.hash!r}: file already gone")
            except OSError as e:
                if unlink_error is None:
                    unlink_error = e

        if unlink_error is not None:
            raise unlink_error

    def _access_time(self, timestamp: Optional[float]) -> float:
        """Access time for an entry about to become newest.

        Explicit timestamps (for replaying recorded accesses) must not go
        backwards; the wall clock is clamped so it never does either.
        """
        newest_access = self._entry(self._newest).last_access if self._newest is not None else None
        if timestamp is None:
            now = time.time()
            return now if newest_access is None else max(now, newest_access)
        if newest_access is not None and timestamp < newest_access:
            raise ValueError(f"Timestamp {timestamp} is older than the newest entry ({newest_access})")
        return timestamp

    def resync(self) -> None:
        """Rebuild the index from the directory tree.

        Discards the in-memory index, including promotions that were never
        written to disk, then orders every cached file by modification time.

        Raises:
            InconsistentCacheError: If the tree holds anything other than
                shard directories and correctly placed cache files
        """
        logger.log(TRACE, "resync()")

        with self._lock:
            self._clear_index()

            candidates: list[CacheEntry] = []
            self._catalogue_dir(self._config.cache_dir, candidates)

            # Oldest first; equal mtimes fall back to hash order so rebuilds are deterministic
            candidates.sort(key=lambda entry: (entry.last_access, entry.hash))
            for entry in candidates:
                self._index(entry)

            logger.log(TRACE, f"resync(): indexed {len(candidates)} files, {self._total_size} blocks")

    def _catalogue_dir(self, directory: Path, candidates: list[CacheEntry]) -> None:
        for dir_entry in self._filesystem.list_entries(directory):
            # Skip dotfiles
            if dir_entry.name.startswith("."):
                continue

            path = directory / dir_entry.name

            if dir_entry.kind == "directory":
                self._catalogue_dir(path, candidates)
            elif dir_entry.kind == "file":
                if not self._mapper.is_valid(dir_entry.name):
                    raise InconsistentCacheError(f"Bad file in cache: {str(path)!r}")
                if self._mapper.locate(dir_entry.name) != path:
                    raise InconsistentCacheError(f"Misplaced file in cache: {str(path)!r}")

                file_stat = self._filesystem.stat(path)
                candidates.append(CacheEntry(dir_entry.name, file_stat.modified_time, file_stat.size_blocks))
            else:
                raise InconsistentCacheError(f"Bad object in cache: {str(path)!r}")

    # ------------------------------------------------------------------
    # Introspection

    def exists(self, hash: str) -> bool:
        """Check if hash is indexed. Does not count as an access."""
        self._mapper.validate(hash)
        logger.log(TRACE, f"exists(hash={hash!r})")

        with self._lock:
            return hash in self._slots

    def get_entry(self, hash: str) -> Optional[CacheEntryInfo]:
        """Snapshot of an indexed entry, or None."""
        self._mapper.validate(hash)

        with self._lock:
            slot = self._slots.get(hash)
            if slot is None:
                return None
            entry = self._entry(slot)
            return CacheEntryInfo(hash=entry.hash, last_access=entry.last_access, size_blocks=entry.size_blocks)

    def get_keys(self) -> list[str]:
        """All indexed hashes, oldest first."""
        with self._lock:
            keys: list[str] = []
            slot = self._oldest
            while slot is not None:
                entry = self._entry(slot)
                keys.append(entry.hash)
                slot = entry.next
            return keys

    def get_count(self) -> int:
        with self._lock:
            return len(self._slots)

    def get_total_size(self) -> int:
        """Total size of indexed files, in 512-byte blocks."""
        with self._lock:
            return self._total_size

    def get_max_size(self) -> int:
        """Size budget, in 512-byte blocks."""
        return self._max_size

    def get_stats(self) -> dict[str, int]:
        """Get cache statistics."""
        with self._lock:
            return {
                "hits": self._stats_hits,
                "misses": self._stats_misses,
                "evictions": self._stats_evictions,
                "total_adds": self._stats_total_adds,
                "total_gets": self._stats_total_gets,
                "total_removes": self._stats_total_removes,
                "current_items": len(self._slots),
                "current_size_blocks": self._total_size,
            }
