"""Tests for the copy, move and link transfer modes."""

import hashlib
from pathlib import Path
from typing import Callable

import pytest

from lru_file_cache.collaborators import FileSystemPath, LocalFilesystem, LocalFileTransfer, TransferMode
from lru_file_cache.errors import TransferError
from lru_file_cache.lru_file_cache import LRUFileCache


def key(label: str) -> str:
    return hashlib.md5(label.encode()).hexdigest()


class FailingTransfer(LocalFileTransfer):
    """Transfer whose copy always fails."""

    def copy(self, src: FileSystemPath, dst: FileSystemPath) -> None:
        raise TransferError("Failed to copy", PermissionError("denied"))


def test_copy_is_default_and_keeps_source(
    cache_dir: Path, filesystem: LocalFilesystem, make_source: Callable[..., Path]
) -> None:
    """COPY should leave the source in place with a separate cached copy."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)
    source = make_source("a.bin", fill=b"original")

    path = cache.add(source, key("a"))
    source.write_bytes(b"changed")

    assert source.exists()
    assert path.read_bytes() != b"changed"


def test_move_consumes_source(cache_dir: Path, filesystem: LocalFilesystem, make_source: Callable[..., Path]) -> None:
    """MOVE should relocate the source into the cache."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)
    source = make_source("a.bin", size=1024)
    content = source.read_bytes()

    path = cache.add(source, key("a"), TransferMode.MOVE)

    assert not source.exists()
    assert path.read_bytes() == content
    assert cache.get_total_size() == 2


def test_link_shares_inode(cache_dir: Path, filesystem: LocalFilesystem, make_source: Callable[..., Path]) -> None:
    """LINK should hard-link, so edits to the source show up in the cache."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)
    source = make_source("a.bin")

    path = cache.add(source, key("a"), TransferMode.LINK)

    assert path.stat().st_ino == source.stat().st_ino
    source.write_bytes(b"edited through the source")
    assert path.read_bytes() == b"edited through the source"


def test_mode_accepts_string_value(
    cache_dir: Path, filesystem: LocalFilesystem, make_source: Callable[..., Path]
) -> None:
    """Modes may be passed by value."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)
    source = make_source("a.bin")

    cache.add(source, key("a"), "move")

    assert not source.exists()


def test_unknown_mode_raises_valueerror(
    cache_dir: Path, filesystem: LocalFilesystem, make_source: Callable[..., Path]
) -> None:
    """An unknown mode should be rejected before anything happens."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)

    with pytest.raises(ValueError):
        cache.add(make_source("a.bin"), key("a"), "teleport")

    assert cache.get_count() == 0


def test_missing_source_raises_transfer_error(cache_dir: Path, filesystem: LocalFilesystem, source_dir: Path) -> None:
    """A missing source should raise TransferError and leave the index untouched."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)

    with pytest.raises(TransferError) as exc_info:
        cache.add(source_dir / "nope.bin", key("a"))

    assert isinstance(exc_info.value.cause, FileNotFoundError)
    assert cache.get_count() == 0
    assert cache.get_total_size() == 0


def test_missing_source_keeps_existing_file(
    cache_dir: Path, filesystem: LocalFilesystem, make_source: Callable[..., Path], source_dir: Path
) -> None:
    """A failed refresh with a missing source should not destroy the cached copy."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)
    path = cache.add(make_source("a.bin"), key("a"))

    with pytest.raises(TransferError):
        cache.add(source_dir / "nope.bin", key("a"))

    assert path.exists()
    assert cache.get(key("a")) == path


def test_transfer_failure_leaves_index_unmodified(
    cache_dir: Path, filesystem: LocalFilesystem, make_source: Callable[..., Path]
) -> None:
    """Index must only change after the transfer succeeds."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem, transfer=FailingTransfer())

    with pytest.raises(TransferError, match="denied"):
        cache.add(make_source("a.bin"), key("a"))

    assert cache.get_count() == 0
    assert cache.get_total_size() == 0
    assert cache.get_stats()["total_adds"] == 1


def test_local_transfer_wraps_os_errors(tmp_path: Path) -> None:
    """Every local transfer failure should surface as TransferError with the cause attached."""
    transfer = LocalFileTransfer()
    missing = tmp_path / "missing"
    dst = tmp_path / "dst"

    for operation in (transfer.copy, transfer.move, transfer.link):
        with pytest.raises(TransferError) as exc_info:
            operation(missing, dst)
        assert isinstance(exc_info.value.cause, OSError)


def test_add_replaces_stale_file(cache_dir: Path, filesystem: LocalFilesystem, make_source: Callable[..., Path]) -> None:
    """A leftover file at the destination should be replaced, not mixed with the new one."""
    cache = LRUFileCache(cache_dir=cache_dir, depth=0, filesystem=filesystem)
    stale = cache_dir / key("a")
    stale.write_bytes(b"stale leftover that is longer than the new content")

    path = cache.add(make_source("a.bin", size=4, fill=b"new!"), key("a"))

    assert path == stale
    assert path.read_bytes() == b"new!"
    assert cache.get_count() == 1


@pytest.mark.parametrize("mode", [TransferMode.MOVE, TransferMode.COPY, TransferMode.LINK])
def test_directory_source_is_rejected(
    cache_dir: Path, filesystem: LocalFilesystem, source_dir: Path, mode: TransferMode
) -> None:
    """Only regular files can be cached; a directory must not end up in the shard tree."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)
    directory = source_dir / "bundle"
    directory.mkdir()
    (directory / "inner.txt").write_text("inner")

    with pytest.raises(TransferError, match="Not a regular file"):
        cache.add(directory, key("bundle"), mode)

    assert (directory / "inner.txt").exists()
    assert cache.get_count() == 0
    assert list(cache_dir.iterdir()) == []
    reopened = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)
    assert reopened.get_count() == 0


def test_shard_directory_failure_raises_transfer_error(
    cache_dir: Path,
    filesystem: LocalFilesystem,
    make_source: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Failing to create shard directories should surface as TransferError with the index untouched."""
    cache = LRUFileCache(cache_dir=cache_dir, filesystem=filesystem)

    def make_dirs(path: FileSystemPath) -> None:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(filesystem, "make_dirs", make_dirs)

    with pytest.raises(TransferError) as exc_info:
        cache.add(make_source("a.bin"), key("a"))

    assert isinstance(exc_info.value.cause, PermissionError)
    assert cache.get_count() == 0


def test_stale_file_removal_failure_raises_transfer_error(
    cache_dir: Path,
    filesystem: LocalFilesystem,
    make_source: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Failing to clear a leftover file should surface as TransferError with the index untouched."""
    cache = LRUFileCache(cache_dir=cache_dir, depth=0, filesystem=filesystem)
    (cache_dir / key("a")).write_bytes(b"stale")

    def unlink(path: FileSystemPath) -> None:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(filesystem, "unlink", unlink)

    with pytest.raises(TransferError) as exc_info:
        cache.add(make_source("a.bin"), key("a"))

    assert isinstance(exc_info.value.cause, PermissionError)
    assert cache.get_count() == 0
    assert (cache_dir / key("a")).read_bytes() == b"stale"
