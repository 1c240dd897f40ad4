from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Hashable, Optional


class RateLimitError(RuntimeError):
    """Raised when a non-blocking acquire would exceed the rate limit."""


@dataclass
class _WindowConfig:
    max_calls: int
    per_seconds: float


class SlidingWindowRateLimiter:
    """
    Thread-safe sliding-window rate limiter with optional per-key windows.

    - At most `max_calls` acquisitions per key within any `per_seconds` window.
    - `key` defaults to a single shared window (plain client throttle).
    - Keyed use (e.g. one window per (initiator, counterparty) pair) keeps
      independent budgets. A key whose window has emptied is dropped; keys
      nobody touches again are swept once per window length.
    - `blocking=True` waits for a slot, `blocking=False` raises `RateLimitError`.

    Single-process only; the ledger remains the authority on any real quota.
    """

    def __init__(
        self,
        max_calls: int,
        per_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_calls <= 0:
            raise ValueError("max_calls must be > 0")
        if per_seconds <= 0:
            raise ValueError("per_seconds must be > 0")
        self._cfg = _WindowConfig(max_calls=max_calls, per_seconds=per_seconds)
        self._windows: Dict[Hashable, Deque[float]] = {}
        self._last_sweep: Optional[float] = None
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    def _prune(self, key: Hashable, now: float) -> Deque[float]:
        events = self._windows.setdefault(key, deque())
        window_start = now - self._cfg.per_seconds
        while events and events[0] <= window_start:
            events.popleft()
        return events

    def _sweep(self, now: float) -> None:
        if self._last_sweep is not None and now - self._last_sweep < self._cfg.per_seconds:
            return
        self._last_sweep = now
        window_start = now - self._cfg.per_seconds
        stale = [k for k, events in self._windows.items() if not events or events[-1] <= window_start]
        for k in stale:
            del self._windows[k]

    def _next_available_delay(self, events: Deque[float], now: float) -> float:
        if len(events) < self._cfg.max_calls:
            return 0.0
        return max(0.0, (events[0] + self._cfg.per_seconds) - now)

    def remaining(self, key: Hashable = None) -> int:
        """Slots still free for `key` in the current window (no side effects on budget)."""
        with self._lock:
            events = self._prune(key, self._clock())
            left = self._cfg.max_calls - len(events)
            if not events:
                self._windows.pop(key, None)
            return max(0, left)

    def acquire(self, key: Hashable = None, *, blocking: bool = True) -> None:
        """
        Acquire a permit for `key`.

        - If `blocking`, sleeps until allowed.
        - If not, raises RateLimitError if a slot is not immediately available.
        """
        while True:
            with self._lock:
                now = self._clock()
                self._sweep(now)
                events = self._prune(key, now)
                delay = self._next_available_delay(events, now)
                if delay == 0.0:
                    events.append(now)
                    return
            if not blocking:
                raise RateLimitError(f"rate limit exceeded for {key!r}; no slot available")
            self._sleep(min(delay, 1.0))
