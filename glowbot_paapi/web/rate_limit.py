import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

RATE_LIMIT_WINDOW_MS = 60 * 1000
RATE_LIMIT_MAX_REQUESTS = 30
RATE_LIMIT_MESSAGE = "Too many Amazon API requests. Please try again later."


@dataclass
class RateDecision:
    allowed: bool
    remaining: int
    retry_after_s: int


class FixedWindowRateLimiter:
    """Per-client fixed window: at most `max_requests` per `window_ms`."""

    def __init__(
        self,
        window_ms: int = RATE_LIMIT_WINDOW_MS,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._clock_ms = clock_ms
        self._windows: Dict[str, Tuple[int, int]] = {}   # client -> (window_start_ms, count)
        self._lock = threading.Lock()

    def hit(self, client_id: str) -> RateDecision:
        now = self._clock_ms()
        with self._lock:
            # drop windows that ended; the table holds only clients active this window
            self._windows = {
                k: v for k, v in self._windows.items() if now - v[0] < self.window_ms
            }
            start, count = self._windows.get(client_id, (now, 0))
            reset_in_ms = start + self.window_ms - now
            if count >= self.max_requests:
                self._windows[client_id] = (start, count)
                return RateDecision(False, 0, max(1, -(-reset_in_ms // 1000)))
            count += 1
            self._windows[client_id] = (start, count)
            return RateDecision(True, self.max_requests - count, 0)

    def describe(self) -> Dict[str, int]:
        return {"windowMs": self.window_ms, "maxRequests": self.max_requests}
