import math
import os
import stat
from pathlib import Path
from typing import Callable

import pytest

from lru_file_cache.collaborators import FileStat, FileSystemPath, LocalFilesystem
from lru_file_cache.config import BLOCK_SIZE


class ApparentSizeFilesystem(LocalFilesystem):
    """Reports sizes as ceil(bytes / 512) so block totals don't depend on the host filesystem."""

    def stat(self, path: FileSystemPath) -> FileStat:
        st = os.stat(path)
        return FileStat(
            size_blocks=math.ceil(st.st_size / BLOCK_SIZE),
            modified_time=st.st_mtime,
            is_file=stat.S_ISREG(st.st_mode),
        )


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Empty, pre-existing cache directory."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    path = tmp_path / "sources"
    path.mkdir()
    return path


@pytest.fixture
def filesystem() -> ApparentSizeFilesystem:
    return ApparentSizeFilesystem()


@pytest.fixture
def make_source(source_dir: Path) -> Callable[..., Path]:
    """Factory writing a source file of the given size (in bytes)."""

    def _make_source(name: str, size: int = BLOCK_SIZE, fill: bytes = b"x") -> Path:
        path = source_dir / name
        path.write_bytes((fill * size)[:size])
        return path

    return _make_source
