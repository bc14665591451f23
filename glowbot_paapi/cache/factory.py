import threading
from typing import Optional

from glowbot_paapi.cache.base import BaseCache
from glowbot_paapi.cache.file_cache import FileCache
from glowbot_paapi.cache.redis_cache import RedisCache, RedisCacheConnectionError
from glowbot_paapi.core.config import PaapiConfig
from glowbot_paapi.core.log_utils import get_logger

logger = get_logger(__name__)


def create_cache(config: PaapiConfig) -> BaseCache:
    """Redis when REDIS_URL is set and reachable, otherwise the file cache."""
    if config.use_redis:
        try:
            cache = RedisCache(config.redis_url)
            logger.info("Using Redis cache")
            return cache
        except RedisCacheConnectionError as exc:
            logger.warning("Redis unavailable, falling back to file cache: %s", exc)
    logger.info("Using file-based cache at %s", config.cache_dir)
    return FileCache(config.cache_dir)


class CacheSweeper:
    """
    Runs `cache.cleanup()` every `interval_s` seconds on a daemon timer,
    independent of request traffic.
    """

    def __init__(self, cache: BaseCache, interval_s: float = 3600):
        self.cache = cache
        self.interval_s = interval_s
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._running = False

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def running(self) -> bool:
        return self._running

    def _schedule(self) -> None:
        t = threading.Timer(self.interval_s, self._tick)
        t.daemon = True
        t.start()
        self._timer = t

    def sweep(self) -> int:
        try:
            return self.cache.cleanup()
        except Exception:
            logger.exception("Cache cleanup failed")
            return 0

    def _tick(self) -> None:
        self.sweep()
        with self._lock:
            if self._running:
                self._schedule()
