"""
Fixed-window rate limiter keyed by principal.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from shared.logging import get_logger

from ..decisions import AccessDecision


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class RateLimitWindow:
    """Counter state of one principal."""
    count: int
    reset_time: int


class FixedWindowRateLimiter:
    """In-process fixed-window limiter.

    A window ``{count, reset_time}`` starts on a principal's first request
    (or the first one after ``reset_time``). Up to ``max_requests`` calls are
    admitted per window; at a boundary a client can get ``2 * max_requests``
    through, which is the price of keeping a single timestamp per principal.

    Read-check-increment happens under a per-principal lock, so concurrent
    workers never admit more than ``max_requests`` in one window.

    Eviction: a window whose ``reset_time`` lies more than
    ``eviction_windows`` windows in the past is dropped by ``sweep()``,
    which also runs opportunistically from ``check_rate`` every
    ``sweep_interval_ms``. With ``max_entries`` set, the window with the
    oldest ``reset_time`` is evicted to make room for a new principal.
    State does not survive a restart.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_ms: int = 60_000,
        clock: Optional[Callable[[], float]] = None,
        eviction_windows: int = 2,
        max_entries: Optional[int] = None,
        sweep_interval_ms: Optional[int] = None,
    ):
        if max_requests < 1 or window_ms < 1:
            raise ValueError("max_requests and window_ms must be positive")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")

        self.max_requests = max_requests
        self.window_ms = window_ms
        self.clock = clock or _now_ms
        self.eviction_windows = eviction_windows
        self.max_entries = max_entries
        self.sweep_interval_ms = sweep_interval_ms if sweep_interval_ms is not None else window_ms
        self.logger = get_logger("access.rate_limiter")

        self._windows: Dict[str, RateLimitWindow] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        self._last_sweep = self.clock()

    def _acquire(self, principal_id: str) -> threading.Lock:
        """Acquire the current lock of a principal, retrying if a sweep replaced it."""
        while True:
            with self._guard:
                lock = self._locks.get(principal_id)
                if lock is None:
                    lock = self._locks[principal_id] = threading.Lock()
            lock.acquire()
            with self._guard:
                if self._locks.get(principal_id) is lock:
                    return lock
            lock.release()

    def check_rate(
        self,
        principal_id: str,
        max_requests: Optional[int] = None,
        window_ms: Optional[int] = None,
    ) -> AccessDecision:
        """Count one request for the principal and decide whether to admit it."""
        max_requests = self.max_requests if max_requests is None else max_requests
        window_ms = self.window_ms if window_ms is None else window_ms
        if max_requests < 1 or window_ms < 1:
            raise ValueError("max_requests and window_ms must be positive")

        now = self.clock()
        if now - self._last_sweep >= self.sweep_interval_ms:
            self.sweep(now)

        lock = self._acquire(principal_id)
        try:
            window = self._windows.get(principal_id)

            if window is None or now > window.reset_time:
                with self._guard:
                    if window is None:
                        self._make_room(principal_id)
                    self._windows[principal_id] = RateLimitWindow(
                        count=1, reset_time=math.ceil(now + window_ms)
                    )
                return AccessDecision(allowed=True, remaining=max_requests - 1, limit=max_requests)

            if window.count >= max_requests:
                self.logger.warning(
                    "Rate limit exceeded",
                    principal_id=principal_id,
                    count=window.count,
                    limit=max_requests,
                )
                return AccessDecision(
                    allowed=False,
                    reason="Too many requests",
                    remaining=0,
                    reset_time=window.reset_time,
                    limit=max_requests,
                )

            window.count += 1
            return AccessDecision(
                allowed=True, remaining=max_requests - window.count, limit=max_requests
            )
        finally:
            lock.release()

    def _make_room(self, principal_id: str):
        # Caller holds self._guard
        if self.max_entries is None or len(self._windows) < self.max_entries:
            return

        candidates = sorted(self._windows.items(), key=lambda item: item[1].reset_time)
        for key, _window in candidates:
            if key == principal_id:
                continue
            lock = self._locks.get(key)
            if lock is not None and not lock.acquire(blocking=False):
                continue
            try:
                del self._windows[key]
                self._locks.pop(key, None)
            finally:
                if lock is not None:
                    lock.release()
            self.logger.debug("Rate limit window evicted for capacity", principal_id=key)
            return

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop windows that expired more than ``eviction_windows`` windows ago."""
        now = self.clock() if now is None else now
        horizon = now - self.eviction_windows * self.window_ms
        evicted = 0

        with self._guard:
            self._last_sweep = now
            for key, window in list(self._windows.items()):
                if window.reset_time >= horizon:
                    continue
                lock = self._locks.get(key)
                if lock is not None and not lock.acquire(blocking=False):
                    # In use right now, so not abandoned
                    continue
                try:
                    del self._windows[key]
                    self._locks.pop(key, None)
                    evicted += 1
                finally:
                    if lock is not None:
                        lock.release()

        if evicted:
            self.logger.debug("Rate limit windows swept", evicted=evicted, remaining=len(self._windows))
        return evicted

    def reset(self, principal_id: str) -> bool:
        """Forget a principal's window."""
        lock = self._acquire(principal_id)
        try:
            with self._guard:
                existed = self._windows.pop(principal_id, None) is not None
                self._locks.pop(principal_id, None)
        finally:
            lock.release()
        if existed:
            self.logger.info("Rate limit reset", principal_id=principal_id)
        return existed

    def get_window(self, principal_id: str) -> Optional[RateLimitWindow]:
        """Snapshot of a principal's window, if tracked."""
        with self._guard:
            window = self._windows.get(principal_id)
            if window is None:
                return None
            return RateLimitWindow(count=window.count, reset_time=window.reset_time)

    def stats(self) -> Dict[str, int]:
        with self._guard:
            return {
                "tracked_principals": len(self._windows),
                "max_requests": self.max_requests,
                "window_ms": self.window_ms,
            }

    def __len__(self) -> int:
        with self._guard:
            return len(self._windows)
