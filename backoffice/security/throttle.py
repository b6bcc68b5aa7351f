"""In-memory login attempt throttle."""

from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock
from typing import Deque, Dict


class LoginThrottle:
    """Thread-safe sliding window counter of login attempts per key.

    Keys whose attempts have all left the window are dropped.
    """

    def __init__(self, max_attempts: int, decay_seconds: int) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_attempts = max_attempts
        self._window = decay_seconds
        self._events: Dict[str, Deque[float]] = {}
        self._lock = Lock()

    def _live(self, key: str, now: float) -> Deque[float] | None:
        """Prune ``key`` and return its attempts, forgetting it when none remain."""
        queue = self._events.get(key)
        if queue is None:
            return None
        while queue and now - queue[0] >= self._window:
            queue.popleft()
        if not queue:
            del self._events[key]
            return None
        return queue

    def attempt(self, key: str) -> bool:
        """Count an attempt for ``key`` unless it has used up the window.

        Returns ``False``, recording nothing, when the attempt must be refused.
        """
        now = time.time()
        with self._lock:
            queue = self._live(key, now)
            if queue is None:
                queue = self._events[key] = deque()
            elif len(queue) >= self._max_attempts:
                return False
            queue.append(now)
            return True

    def clear(self, key: str) -> None:
        with self._lock:
            self._events.pop(key, None)

    def available_in(self, key: str) -> int:
        """Seconds until the oldest counted attempt leaves the window."""
        now = time.time()
        with self._lock:
            queue = self._live(key, now)
            if queue is None:
                return 0
            return max(0, math.ceil(queue[0] + self._window - now))

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
