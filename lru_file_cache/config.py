from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

BLOCK_SIZE = 512
DEFAULT_MAX_SIZE_BYTES = 1024 * 1024 * 1024  # 1 GiB
DEFAULT_DEPTH = 3


class CacheConfig(BaseModel):
    """Construction-time settings for LRUFileCache."""

    model_config = ConfigDict(frozen=True)

    cache_dir: Path
    # Shard levels read hash[depth] .. hash[1], so depth must stay inside a minimum-length hash
    depth: int = Field(default=DEFAULT_DEPTH, ge=0, le=31)
    max_size_bytes: int = Field(default=DEFAULT_MAX_SIZE_BYTES, gt=0)
    hash_memo_size: int = Field(default=4096, ge=0)

    @property
    def max_size_blocks(self) -> int:
        """Size budget in 512-byte blocks."""
        return max(1, self.max_size_bytes // BLOCK_SIZE)
