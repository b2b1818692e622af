"""Sliding-window rate limiting per (session, tool)."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Mapping

from toolguard.errors import RateLimitedError


class RateLimiter:
    """Allow at most ``limit`` calls per ``window`` seconds for each (session, tool).

    Tools without a configured limit are never throttled.
    """

    def __init__(
        self,
        limits: Mapping[str, tuple[int, float]],
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limits = dict(limits)
        self.enabled = enabled
        self._clock = clock
        self._calls: dict[tuple[str, str], deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, session_id: str, tool: str) -> None:
        """Record one call, or raise ``RateLimitedError`` if the window is full."""
        if not self.enabled or tool not in self.limits:
            return
        limit, window = self.limits[tool]
        if limit <= 0:
            raise RateLimitedError(tool, window)
        now = self._clock()
        with self._lock:
            calls = self._calls.setdefault((session_id, tool), deque())
            while calls and now - calls[0] >= window:
                calls.popleft()
            if len(calls) >= limit:
                retry_after = window - (now - calls[0])
                raise RateLimitedError(tool, max(retry_after, 0.0))
            calls.append(now)

    def reset(self, session_id: str | None = None) -> None:
        with self._lock:
            if session_id is None:
                self._calls.clear()
                return
            for key in [k for k in self._calls if k[0] == session_id]:
                del self._calls[key]
