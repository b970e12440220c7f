"""In memory sliding window counters keyed by client address."""

import time
from collections import deque
from collections.abc import Callable, Hashable


class SlidingWindowCounter:
    """Track event timestamps per key and enforce a ceiling per window.

    ``hit`` checks and records in one step: a rejected event is not
    recorded, so a client hammering a closed window does not extend it.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._windows: dict[Hashable, deque[float]] = {}
        self._clock = clock

    def _prune(self, window: deque[float], cutoff: float) -> None:
        """Remove timestamps at or before the cutoff."""
        while window and window[0] <= cutoff:
            window.popleft()

    def hit(self, key: Hashable, limit: int, window_seconds: float) -> bool:
        """Return True and record the event if the key is within its limit."""
        now = self._clock()
        window = self._windows.get(key)
        if window is None:
            window = deque()
            self._windows[key] = window
        self._prune(window, now - window_seconds)
        if len(window) >= limit:
            return False
        window.append(now)
        return True

    def sweep(self, max_age_seconds: float) -> int:
        """Drop keys with no events newer than ``max_age_seconds``; return how many."""
        cutoff = self._clock() - max_age_seconds
        removed = 0
        for key in list(self._windows):
            window = self._windows[key]
            self._prune(window, cutoff)
            if not window:
                del self._windows[key]
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._windows)
