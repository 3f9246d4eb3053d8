"""
Fixed-window rate limiter for external call classes.

Each call class (extraction, embedding, sync) gets a budget of calls per
window shared by every worker through Redis. When Redis is unavailable the
limiter falls back to an in-process window and retries Redis periodically.

Exceeding the budget raises ``LimitError`` with the seconds left in the
window; callers requeue the job instead of sleeping.
"""
import logging
import threading
import time
from typing import Dict, Optional, Tuple

import redis

from pulseboard.errors import LimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, limits: Dict[str, int], redis_client: Optional[redis.Redis] = None,
                 window_seconds: int = 60, redis_retry_interval: float = 30.0):
        """
        Initialize the rate limiter.

        Args:
            limits: Maximum calls per window keyed by call class. Classes not
                    listed are unlimited.
            redis_client: Shared client; ``None`` keeps everything in-process.
            window_seconds: Window length in seconds.
            redis_retry_interval: Seconds between Redis reconnection attempts
                                  while in fallback mode.
        """
        self.limits = dict(limits)
        self.window_seconds = window_seconds
        self._redis = redis_client
        self._redis_retry_interval = redis_retry_interval

        # Fallback state
        self._fallback_lock = threading.Lock()
        self._local_counts: Dict[str, Tuple[int, int]] = {}
        self._using_fallback = redis_client is None
        self._last_redis_retry = 0.0

    @classmethod
    def from_url(cls, redis_url: str, limits: Dict[str, int], **kwargs) -> "RateLimiter":
        client = redis.Redis.from_url(redis_url, socket_connect_timeout=2, socket_timeout=2)
        return cls(limits, redis_client=client, **kwargs)

    def _window(self, now: float) -> Tuple[int, float]:
        window = int(now // self.window_seconds)
        reset_in = (window + 1) * self.window_seconds - now
        return window, reset_in

    def _try_redis(self, call_class: str, window: int) -> Optional[int]:
        """Increment the shared counter; ``None`` when Redis cannot be used."""
        if self._redis is None:
            return None

        if self._using_fallback:
            now = time.monotonic()
            if now - self._last_redis_retry < self._redis_retry_interval:
                return None
            self._last_redis_retry = now

        key = f"ratelimit:{call_class}:{window}"
        try:
            count = int(self._redis.incr(key))
            if count == 1:
                self._redis.expire(key, self.window_seconds * 2)
        except redis.RedisError as e:
            if not self._using_fallback:
                logger.warning(f"Rate limiter: Redis error, falling back to in-process: {e}")
            self._using_fallback = True
            self._last_redis_retry = time.monotonic()
            return None

        if self._using_fallback:
            logger.info("Rate limiter: recovered Redis connection, switching back from fallback")
            self._using_fallback = False
        return count

    def _local_incr(self, call_class: str, window: int) -> int:
        with self._fallback_lock:
            current_window, count = self._local_counts.get(call_class, (window, 0))
            if current_window != window:
                count = 0
            count += 1
            self._local_counts[call_class] = (window, count)
            return count

    def acquire(self, call_class: str, now: Optional[float] = None):
        """Consume one call from ``call_class``'s budget or raise ``LimitError``."""
        limit = self.limits.get(call_class)
        if not limit:
            return

        window, reset_in = self._window(time.time() if now is None else now)
        count = self._try_redis(call_class, window)
        if count is None:
            count = self._local_incr(call_class, window)

        if count > limit:
            logger.info(f"Rate limit reached for {call_class} ({count}/{limit}), retry in {reset_in:.1f}s")
            raise LimitError(f"Rate limit exceeded for {call_class}", retry_after=reset_in)
