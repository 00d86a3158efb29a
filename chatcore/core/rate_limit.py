from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from time import monotonic

from chatcore.core.errors import RateLimitedError
from chatcore.core.security import Identity
from chatcore.core.settings import get_settings

logger = logging.getLogger(__name__)


class InMemoryRateLimiter:
    def __init__(self, *, window_seconds: int, max_requests: int) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        now = monotonic()
        with self._lock:
            events = self._events[key]
            cutoff = now - self.window_seconds
            while events and events[0] <= cutoff:
                events.popleft()
            if len(events) >= self.max_requests:
                return False
            events.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


settings = get_settings()
friend_request_limiter = InMemoryRateLimiter(
    window_seconds=settings.friend_request_rate_limit_window_seconds,
    max_requests=settings.friend_request_rate_limit_max_requests,
)


def enforce_friend_request_rate_limit(identity: Identity) -> None:
    key = f"friend_request:{identity.user_id}"
    logger.debug("Rate limit check key=%s", key)
    if not friend_request_limiter.hit(key):
        logger.warning("Rate limit exceeded for key=%s", key)
        raise RateLimitedError("Too many friend requests")
