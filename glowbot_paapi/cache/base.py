import fnmatch
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from glowbot_paapi.core.errors import CacheCorruptionError

HOUR_MS = 60 * 60 * 1000
PRIMARY_TTL_MS = 24 * HOUR_MS        # normal results
STALE_TTL_MS = 7 * 24 * HOUR_MS      # shadow copy read only when upstream fails
STALE_SUFFIX = ":stale"


def now_ms() -> int:
    return int(time.time() * 1000)


def stale_key(key: str) -> str:
    return key + STALE_SUFFIX


@dataclass
class CacheEntry:
    data: Any
    timestamp: int   # epoch ms at write time
    ttl: int         # ms

    def is_expired(self, at_ms: int) -> bool:
        return at_ms > self.timestamp + self.ttl

    def to_record(self, key: str) -> Dict[str, Any]:
        record = asdict(self)
        record["key"] = key
        return record

    @classmethod
    def from_record(cls, record: Any) -> "CacheEntry":
        if not isinstance(record, dict):
            raise CacheCorruptionError("cache record is not an object")
        try:
            return cls(data=record["data"], timestamp=int(record["timestamp"]), ttl=int(record["ttl"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise CacheCorruptionError(f"malformed cache record: {exc!r}") from exc


class BaseCache(ABC):
    """
    TTL key/value store. Values must be JSON-serialisable.

    `get` never returns an expired value; expired and corrupted records are
    treated as misses and removed.
    """

    backend_name = "base"

    def __init__(self, default_ttl_ms: int = PRIMARY_TTL_MS, clock: Optional[Callable[[], int]] = None):
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock or now_ms

    def now(self) -> int:
        return self._clock()

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def cleanup(self) -> int:
        """Evict expired entries; returns how many were removed."""

    @abstractmethod
    def keys(self, pattern: Optional[str] = None) -> List[str]:
        ...

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def stats(self) -> Dict[str, Any]:
        try:
            key_count = len(self.keys())
            healthy = True
        except Exception:
            key_count = 0
            healthy = False
        return {"type": self.backend_name, "keyCount": key_count, "isHealthy": healthy}

    def _entry_for(self, value: Any, ttl_ms: Optional[int]) -> CacheEntry:
        ttl = self.default_ttl_ms if ttl_ms is None else int(ttl_ms)
        return CacheEntry(data=value, timestamp=self.now(), ttl=ttl)

    @staticmethod
    def _match(key: str, pattern: Optional[str]) -> bool:
        return pattern is None or fnmatch.fnmatchcase(key, pattern)
