"""Example usage of LRUFileCache."""

import tempfile
from pathlib import Path

from lru_file_cache.collaborators import TransferMode
from lru_file_cache.lru_file_cache import LRUFileCache


def main() -> None:
    """Demonstrate cache usage."""
    with tempfile.TemporaryDirectory() as workdir:
        cache_dir = Path(workdir) / "cache"
        cache_dir.mkdir()

        # Create cache
        cache = LRUFileCache(
            cache_dir=cache_dir,
            depth=3,
            max_size_bytes=64 * 1024,  # 64 KB
        )

        print("=== LRUFileCache Example ===\n")

        # Store files
        print("1. Storing files...")
        hashes = {}
        for name in ("alpha.txt", "beta.txt", "gamma.txt"):
            source = Path(workdir) / name
            source.write_text(f"contents of {name}\n" * 100)
            hashes[name] = cache.hash(f"https://example.com/{name}")
            cache.add(source, hashes[name], TransferMode.COPY)
        print(f"   Stored {cache.get_count()} files, {cache.get_total_size()} blocks\n")

        # Retrieve a file
        print("2. Retrieving alpha.txt...")
        path = cache.get(hashes["alpha.txt"])
        if path:
            print(f"   Found at {path.relative_to(cache_dir)}\n")

        # Recency order
        print("3. Recency order (oldest first)...")
        for key in cache.get_keys():
            print(f"   {key}")
        print()

        # Move a temp file in
        print("4. Moving a temporary file into the cache...")
        temp = Path(workdir) / "download.tmp"
        temp.write_bytes(b"\0" * 40 * 1024)
        cache.add(temp, cache.hash("https://example.com/big.bin"), TransferMode.MOVE)
        print(f"   Temp file still exists: {temp.exists()}")
        print(f"   Items after eviction: {cache.get_count()}, {cache.get_total_size()} blocks\n")

        # Rebuild from disk
        print("5. Rebuilding index from disk...")
        cache.resync()
        print(f"   Items: {cache.get_count()}\n")

        # Get statistics
        print("6. Cache statistics...")
        stats = cache.get_stats()
        print(f"   Hits: {stats['hits']}")
        print(f"   Misses: {stats['misses']}")
        print(f"   Evictions: {stats['evictions']}")
        print(f"   Total operations: {stats['total_adds']} adds, {stats['total_gets']} gets\n")

        print("=== Example complete ===")


if __name__ == "__main__":
    main()
