"""
SlotGuard — Fixed-Window Rate Limiter

Counts attempts per (identifier, operation) inside a fixed window that
starts at the first attempt. In-memory and per-process.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from slotguard.primitives.common import wall_clock

logger = structlog.get_logger()


@dataclass
class _Window:
    count: int
    started_at: float


class FixedWindowRateLimiter:
    def __init__(
        self,
        max_attempts: int = 10,
        window_s: float = 60.0,
        clock: Callable[[], float] = wall_clock,
    ) -> None:
        self._max_attempts = max_attempts
        self._window_s = window_s
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._logger = logger.bind(system="validation.rate_limiter")

    def check(self, identifier: str, operation: str) -> bool:
        """Record an attempt and return whether it is allowed."""
        key = f"{identifier}_{operation}"
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now - window.started_at > self._window_s:
            self._windows[key] = _Window(count=1, started_at=now)
            return True

        if window.count >= self._max_attempts:
            self._logger.warning(
                "rate_limit_exceeded",
                key=key,
                max_attempts=self._max_attempts,
                window_s=self._window_s,
            )
            return False

        window.count += 1
        return True

    def cleanup(self) -> int:
        """Drop windows older than twice the window length. Returns the number removed."""
        cutoff = self._clock() - self._window_s * 2
        stale = [k for k, w in self._windows.items() if w.started_at < cutoff]
        for key in stale:
            del self._windows[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)
