from .directory import CACHE_KEYS, DirectoryCache, FetchResult
from .store import (
    CACHE_ROOT,
    DEFAULT_TTL,
    LocalCacheStore,
    directory_cache_ttl,
    parse_duration,
)

__all__ = [
    "CACHE_KEYS",
    "CACHE_ROOT",
    "DEFAULT_TTL",
    "DirectoryCache",
    "FetchResult",
    "LocalCacheStore",
    "directory_cache_ttl",
    "parse_duration",
]
