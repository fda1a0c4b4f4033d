class LRUFileCacheError(Exception):
    """Base class for all cache errors."""


class InvalidConfigurationError(LRUFileCacheError, ValueError):
    """Cache cannot be constructed (missing cache directory, bad settings)."""


class InvalidKeyError(LRUFileCacheError, ValueError):
    """Hash is not a valid cache key."""


class InconsistentCacheError(LRUFileCacheError):
    """The in-memory index and the files on disk have diverged.

    Recover by calling resync().
    """


class TransferError(LRUFileCacheError):
    """Placing a source file into the cache failed."""

    def __init__(self, message: str, cause: BaseException) -> None:
        super().__init__(f"{message}: {cause}")
        self.cause = cause
