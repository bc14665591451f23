import json
from typing import Any, Callable, List, Optional

from redis import Redis
from redis.exceptions import RedisError

from glowbot_paapi.cache.base import PRIMARY_TTL_MS, BaseCache, CacheEntry
from glowbot_paapi.core.errors import CacheCorruptionError
from glowbot_paapi.core.log_utils import get_logger

logger = get_logger(__name__)

DEFAULT_NAMESPACE = "glowbot:paapi:"


class RedisCacheConnectionError(RuntimeError):
    """Raised when the Redis connection cannot be initialised."""


class RedisCache(BaseCache):
    """
    Redis-backed cache. Expiry is delegated to Redis (PX on SET), so
    `cleanup` has nothing to sweep. Records use the same JSON envelope as
    the file cache so a value reads back identically from either backend.
    """

    backend_name = "redis"

    def __init__(
        self,
        redis_url: str = "",
        default_ttl_ms: int = PRIMARY_TTL_MS,
        namespace: str = DEFAULT_NAMESPACE,
        client: Optional[Redis] = None,
        clock: Optional[Callable[[], int]] = None,
        socket_timeout: float = 5.0,
    ):
        super().__init__(default_ttl_ms=default_ttl_ms, clock=clock)
        self.namespace = namespace
        try:
            self.client = client or Redis.from_url(
                redis_url,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
                decode_responses=True,
            )
            self.client.ping()
        except (RedisError, ValueError) as exc:
            raise RedisCacheConnectionError(f"Redis connection failed: {exc}") from exc

    def _k(self, key: str) -> str:
        return self.namespace + key

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._k(key))
        except RedisError as exc:
            logger.warning("Redis get failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None

        try:
            try:
                record = json.loads(raw)
            except (TypeError, ValueError) as exc:
                raise CacheCorruptionError(str(exc)) from exc
            entry = CacheEntry.from_record(record)
        except CacheCorruptionError as exc:
            logger.warning("Corrupted cache entry for %s, deleting: %s", key, exc)
            self.delete(key)
            return None

        # Redis expires on its own; this covers clock skew and injected clocks
        if entry.is_expired(self.now()):
            self.delete(key)
            return None
        return entry.data

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        entry = self._entry_for(value, ttl_ms)
        payload = json.dumps(entry.to_record(key), ensure_ascii=False)
        try:
            self.client.set(self._k(key), payload, px=max(1, entry.ttl))
        except RedisError as exc:
            logger.error("Redis set failed for %s: %s", key, exc)

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._k(key))
        except RedisError as exc:
            logger.warning("Redis delete failed for %s: %s", key, exc)

    def clear(self) -> None:
        try:
            batch = []
            for name in self.client.scan_iter(match=self.namespace + "*"):
                batch.append(name)
                if len(batch) >= 500:
                    self.client.delete(*batch)
                    batch = []
            if batch:
                self.client.delete(*batch)
        except RedisError as exc:
            logger.error("Redis clear failed: %s", exc)

    def cleanup(self) -> int:
        return 0

    def keys(self, pattern: Optional[str] = None) -> List[str]:
        match = self.namespace + (pattern or "*")
        names = self.client.scan_iter(match=match)
        return sorted(name[len(self.namespace):] for name in names)
