"""Moving-window rate limiting for the game endpoints.

Counters live in the Flask-Limiter storage configured by
``RATELIMIT_STORAGE_URI``; this wrapper only decides which keys a request
is charged against. A request is either charged on every key or on none.

Usage:
    limiter = current_app.extensions['rate_limiter']
    limiter.enforce(f"games:sign:user:{user_id}", f"games:sign:ip:{ip}")
"""

from dataclasses import dataclass
import math
import threading
import time

from limits import RateLimitItemPerSecond

from scoreguard.errors import RateLimited


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int


class RateLimiter:
    def __init__(self, strategy, limit: int, window_sec: int = 60):
        self.strategy = strategy
        self.limit = limit
        self.window_sec = window_sec
        self._lock = threading.Lock()

    def _item(self):
        return RateLimitItemPerSecond(self.limit, int(self.window_sec))

    def take(self, *keys: str) -> RateLimitResult:
        """Record one hit on every key, unless any of them is already full."""
        if not self.limit or self.limit <= 0 or not keys:
            return RateLimitResult(True, 0, 0)
        item = self._item()
        with self._lock:
            blocked = [k for k in keys if not self.strategy.test(item, k)]
            if not blocked:
                for key in keys:
                    self.strategy.hit(item, key)
                remaining = min(self.strategy.get_window_stats(item, k).remaining for k in keys)
                return RateLimitResult(True, remaining, 0)
            reset_at = max(self.strategy.get_window_stats(item, k).reset_time for k in blocked)
        return RateLimitResult(False, 0, max(1, math.ceil(reset_at - time.time())))

    def enforce(self, *keys: str) -> None:
        result = self.take(*keys)
        if not result.allowed:
            raise RateLimited(retry_after=result.retry_after)
