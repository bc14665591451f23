from glowbot_paapi.cache.base import (
    PRIMARY_TTL_MS,
    STALE_SUFFIX,
    STALE_TTL_MS,
    BaseCache,
    CacheEntry,
    stale_key,
)
from glowbot_paapi.cache.factory import CacheSweeper, create_cache
from glowbot_paapi.cache.file_cache import FileCache
from glowbot_paapi.cache.redis_cache import RedisCache

__all__ = [
    "PRIMARY_TTL_MS",
    "STALE_SUFFIX",
    "STALE_TTL_MS",
    "BaseCache",
    "CacheEntry",
    "CacheSweeper",
    "FileCache",
    "RedisCache",
    "create_cache",
    "stale_key",
]
