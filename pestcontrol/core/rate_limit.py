# pestcontrol/core/rate_limit.py
"""
Throttling for sensitive operations (login, password resets).

Counters live in an ``AttemptStore`` owned by each limiter, or injected
by the caller when several limiters (or processes, via a shared backend)
must see the same counts. Best effort only: a process restart clears the
default in-memory store.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from cachetools import TTLCache
from fastapi import Request

from pestcontrol.core.errors import RateLimited
from pestcontrol.core.logger import log_security_event, request_context


@dataclass
class _Window:
    count: int
    reset_at: float


class AttemptStore:
    """Fixed-window attempt counters keyed by caller."""

    def __init__(
        self,
        window_seconds: float,
        maxsize: int = 10_000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self._timer = timer
        # entries drop out on their own once the window is over
        self._windows: TTLCache = TTLCache(maxsize=maxsize, ttl=window_seconds, timer=timer)
        self._lock = threading.Lock()

    def hit(self, key: str, max_attempts: int) -> Tuple[bool, int]:
        """
        Records an attempt for ``key``.

        Returns ``(allowed, count)``; a refused attempt is not counted.
        """
        with self._lock:
            now = self._timer()
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                window = _Window(count=0, reset_at=now + self.window_seconds)
                self._windows[key] = window

            if window.count >= max_attempts:
                return False, window.count

            window.count += 1
            return True, window.count

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)


def attempt_key(request: Request) -> str:
    user = getattr(request.state, "user", None)
    ip = request.client.host if request.client else "unknown"
    return f"{ip}-{user.id if user is not None else 'anonymous'}"


def sensitive_op_limiter(
    max_attempts: int = 5,
    window_seconds: float = 15 * 60,
    store: Optional[AttemptStore] = None,
):
    """
    Builds a dependency that allows ``max_attempts`` calls per window for
    each (ip, user) pair and answers 429 beyond that.

    Place it after the authentication dependency when the user id should
    be part of the key.
    """
    store = store or AttemptStore(window_seconds)

    def limiter(request: Request) -> None:
        key = attempt_key(request)
        allowed, count = store.hit(key, max_attempts)
        if not allowed:
            user = getattr(request.state, "user", None)
            log_security_event(
                "Rate limit exceeded for sensitive operation",
                user_id=user.id if user is not None else None,
                attempts=count,
                **request_context(request),
            )
            raise RateLimited("Too many attempts. Please try again later.")

    limiter.store = store
    return limiter
