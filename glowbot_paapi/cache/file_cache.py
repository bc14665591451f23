import hashlib
import json
import os
import re
import tempfile
import threading
from typing import Any, Callable, List, Optional

from glowbot_paapi.cache.base import PRIMARY_TTL_MS, BaseCache, CacheEntry
from glowbot_paapi.core.errors import CacheCorruptionError
from glowbot_paapi.core.log_utils import get_logger

logger = get_logger(__name__)

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")
_MAX_NAME = 80
_SUFFIX = ".json"


def safe_filename(key: str) -> str:
    """
    Filesystem-safe name for a cache key. The sanitized key is truncated
    and suffixed with a digest so distinct keys never share a file.
    """
    readable = _UNSAFE_RE.sub("_", key)[:_MAX_NAME]
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
    return f"{readable}-{digest}{_SUFFIX}"


class FileCache(BaseCache):
    """
    One JSON record per key under `cache_dir`.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so readers see either the old or the new record.
    The lock only guards expiry-driven deletes against a concurrent rewrite
    of the same key; it is held for a single record at a time.
    """

    backend_name = "file"

    def __init__(
        self,
        cache_dir: str = ".cache",
        default_ttl_ms: int = PRIMARY_TTL_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        super().__init__(default_ttl_ms=default_ttl_ms, clock=clock)
        self.cache_dir = os.path.abspath(cache_dir)
        self._lock = threading.Lock()

    def _ensure_dir(self) -> None:
        os.makedirs(self.cache_dir, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.cache_dir, safe_filename(key))

    def _record_files(self) -> List[str]:
        try:
            names = os.listdir(self.cache_dir)
        except FileNotFoundError:
            return []
        return [os.path.join(self.cache_dir, n) for n in names if n.endswith(_SUFFIX)]

    @staticmethod
    def _read_record(path: str) -> dict:
        """Raises FileNotFoundError for misses, CacheCorruptionError for junk."""
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CacheCorruptionError(f"{os.path.basename(path)}: {exc}") from exc
        if not isinstance(record, dict):
            raise CacheCorruptionError(f"{os.path.basename(path)}: not an object")
        return record

    @staticmethod
    def _unlink(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def _remove_if_stale(self, path: str, now: int) -> bool:
        """Re-check under the lock so a fresh rewrite is never deleted."""
        with self._lock:
            try:
                entry = CacheEntry.from_record(self._read_record(path))
            except FileNotFoundError:
                return False
            except (CacheCorruptionError, OSError, UnicodeDecodeError):
                self._unlink(path)
                return True
            if entry.is_expired(now):
                self._unlink(path)
                return True
            return False

    # ---------- Interface ----------

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            entry = CacheEntry.from_record(self._read_record(path))
        except FileNotFoundError:
            return None
        except (CacheCorruptionError, OSError, UnicodeDecodeError) as exc:
            logger.warning("Corrupted cache entry for %s, deleting: %s", key, exc)
            self._remove_if_stale(path, self.now())
            return None

        now = self.now()
        if entry.is_expired(now):
            self._remove_if_stale(path, now)
            return None
        return entry.data

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        entry = self._entry_for(value, ttl_ms)
        payload = json.dumps(entry.to_record(key), ensure_ascii=False)
        self._ensure_dir()
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            with self._lock:
                os.replace(tmp_path, path)
        except BaseException:
            self._unlink(tmp_path)
            raise

    def delete(self, key: str) -> None:
        with self._lock:
            self._unlink(self._path(key))

    def clear(self) -> None:
        try:
            names = os.listdir(self.cache_dir)
        except FileNotFoundError:
            return
        for name in names:
            if name.endswith(_SUFFIX):
                self._unlink(os.path.join(self.cache_dir, name))

    def cleanup(self) -> int:
        now = self.now()
        removed = 0
        for path in self._record_files():
            if self._remove_if_stale(path, now):
                removed += 1
        if removed:
            logger.info("Cache cleanup removed %s expired entries from %s", removed, self.cache_dir)
        return removed

    def keys(self, pattern: Optional[str] = None) -> List[str]:
        now = self.now()
        out = []
        for path in self._record_files():
            try:
                record = self._read_record(path)
                entry = CacheEntry.from_record(record)
            except (FileNotFoundError, CacheCorruptionError, OSError, UnicodeDecodeError):
                continue
            key = record.get("key")
            if isinstance(key, str) and not entry.is_expired(now) and self._match(key, pattern):
                out.append(key)
        return sorted(out)
