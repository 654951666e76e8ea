"""
SlotGuard — Adaptive Timing Engine

Produces human-looking delays for browser actions. Each draw:

  1. Gaussian around the action's mean, σ = (max - min) / 6
  2. Behaviour perturbations, checked in sequence (not exclusive):
     distraction ×1.5–3.5, rush ×0.6–0.9, consistency (≈ recent average)
  3. Context flags: stress ×0.8, careful ×1.3
  4. Fatigue (grows with session age, capped) and adaptive multiplier
  5. Clamp, ±jitter, round to the nearest rounding step, clamp again
  6. Record into the bounded history; recompute the adaptive multiplier

Randomness comes from the injected ``random.Random`` and time from the
injected clock, so a seeded generator and a fixed clock give reproducible
sequences.
"""

from __future__ import annotations

import asyncio
import math
import random
import statistics
from collections import deque
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from slotguard.config import TimingConfig
from slotguard.errors import ValidationError
from slotguard.primitives.common import wall_clock

logger = structlog.get_logger()

BACKSPACE = "\b"

# Horizontal neighbours on a QWERTY row
_NEARBY_KEYS: dict[str, str] = {
    "a": "s", "s": "a", "d": "s", "f": "d", "g": "f", "h": "g", "j": "h", "k": "j", "l": "k",
    "q": "w", "w": "q", "e": "w", "r": "e", "t": "r", "y": "t", "u": "y", "i": "u", "o": "i",
    "p": "o",
}


# ─── Pure helpers ─────────────────────────────────────────────────


def gaussian(rng: random.Random, mean: float, std_dev: float) -> float:
    """Box–Muller transform over ``rng``."""
    u = 0.0
    while u == 0.0:
        u = rng.random()
    v = 0.0
    while v == 0.0:
        v = rng.random()
    z = math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)
    return z * std_dev + mean


def variance(values: Sequence[float]) -> float:
    """Population variance; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return statistics.pvariance(values)


def typo_for(char: str, rng: random.Random) -> str:
    nearby = _NEARBY_KEYS.get(char.lower())
    if nearby is not None:
        return nearby.upper() if char.isupper() else nearby
    shifted = ord(char) + (1 if rng.random() > 0.5 else -1)
    return chr(max(shifted, 0))


# ─── Types ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Keystroke:
    """One key press followed by ``delay_ms`` of idle time."""

    char: str
    delay_ms: int


@dataclass(frozen=True)
class _TimedAction:
    action_type: str
    interval_ms: int
    timestamp: float


class KeySink(Protocol):
    """Where simulated keystrokes go (a page element, a terminal...)."""

    async def press(self, key: str) -> None:
        ...


# ─── Engine ───────────────────────────────────────────────────────


class TimingEngine:
    def __init__(
        self,
        config: TimingConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = wall_clock,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config or TimingConfig()
        self._rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep
        self._recent: deque[_TimedAction] = deque(maxlen=self._config.max_history)
        self._adaptive_multiplier = 1.0
        self._fatigue_factor = 1.0
        self._session_start = clock()
        self._logger = logger.bind(system="timing")

    @property
    def action_types(self) -> list[str]:
        return list(self._config.base_patterns)

    def get_next_interval(
        self,
        action_type: str,
        context: Mapping[str, Any] | None = None,
    ) -> int:
        """Milliseconds to wait before the next ``action_type`` action."""
        pattern = self._config.base_patterns.get(action_type)
        if pattern is None:
            raise ValidationError(f"Unknown timing type: {action_type}", field="action_type")

        interval = gaussian(self._rng, pattern.mean, (pattern.max - pattern.min) / 6)
        interval = self._apply_behaviour(interval, action_type, context or {})

        hours = (self._clock() - self._session_start) / 3600.0
        self._fatigue_factor = min(
            self._config.fatigue_cap,
            1.0 + hours * self._config.fatigue_rate_per_hour,
        )
        interval *= self._fatigue_factor * self._adaptive_multiplier

        interval = min(pattern.max, max(pattern.min, interval))
        interval += (self._rng.random() - 0.5) * 2 * self._config.jitter_ms
        step = self._config.rounding_ms
        if step > 0:
            interval = round(interval / step) * step
        result = max(0, int(min(pattern.max, max(pattern.min, interval))))

        self._record(action_type, result)
        self._logger.debug(
            "interval_drawn",
            action_type=action_type,
            interval_ms=result,
            fatigue=round(self._fatigue_factor, 2),
        )
        return result

    async def wait(
        self,
        action_type: str,
        context: Mapping[str, Any] | None = None,
    ) -> int:
        interval = self.get_next_interval(action_type, context)
        await self._sleep(interval / 1000)
        return interval

    def _apply_behaviour(
        self,
        interval: float,
        action_type: str,
        context: Mapping[str, Any],
    ) -> float:
        cfg = self._config
        rng = self._rng

        if rng.random() < cfg.distraction_probability:
            interval *= 1.5 + rng.random() * 2.0
            self._logger.debug("distraction_applied", action_type=action_type)

        if rng.random() < cfg.rush_probability:
            interval *= 0.6 + rng.random() * 0.3
            self._logger.debug("rush_applied", action_type=action_type)

        if rng.random() < cfg.consistency_probability:
            similar = self._recent_similar(action_type)
            if similar:
                average = sum(a.interval_ms for a in similar) / len(similar)
                interval = average * (0.9 + rng.random() * 0.2)
                self._logger.debug("consistency_applied", action_type=action_type)

        if context.get("stress"):
            interval *= 0.8
        if context.get("careful"):
            interval *= 1.3
        return interval

    def _recent_similar(self, action_type: str) -> list[_TimedAction]:
        cutoff = self._clock() - self._config.consistency_window_s
        return [
            a for a in self._recent
            if a.action_type == action_type and a.timestamp > cutoff
        ]

    def _record(self, action_type: str, interval_ms: int) -> None:
        self._recent.append(_TimedAction(action_type, interval_ms, self._clock()))
        self._update_adaptive_multiplier()

    def _update_adaptive_multiplier(self) -> None:
        window = self._config.variance_window
        if len(self._recent) < window:
            return
        last = [a.interval_ms for a in list(self._recent)[-window:]]
        if variance(last) < self._config.low_variance_threshold:
            # Too regular: shake the multiplier up
            self._adaptive_multiplier = 1.0 + (self._rng.random() - 0.5) * 0.3
            self._logger.debug("low_variance_detected", multiplier=self._adaptive_multiplier)
        else:
            self._adaptive_multiplier += (1.0 - self._adaptive_multiplier) * 0.1

    # ─── Typing ────────────────────────────────────────────────────

    def generate_typing_pattern(self, text: str) -> list[Keystroke]:
        """
        Keystrokes for ``text``. Occasionally (never on the first character)
        a neighbouring key is hit first and corrected with a backspace.
        """
        cfg = self._config
        rng = self._rng
        pattern: list[Keystroke] = []
        for position, char in enumerate(text):
            if position > 0 and rng.random() < cfg.typo_probability:
                pattern.append(Keystroke(typo_for(char, rng), max(0, round(gaussian(rng, 200, 50)))))
                pattern.append(Keystroke(BACKSPACE, max(0, round(gaussian(rng, 150, 30)))))
            delay = gaussian(rng, cfg.keystroke_mean_ms, cfg.keystroke_std_ms)
            pattern.append(Keystroke(char, round(max(cfg.keystroke_floor_ms, delay))))
        return pattern

    async def simulate_human_typing(self, sink: KeySink, text: str) -> list[Keystroke]:
        pattern = self.generate_typing_pattern(text)
        for keystroke in pattern:
            await sink.press(keystroke.char)
            if keystroke.delay_ms:
                await self._sleep(keystroke.delay_ms / 1000)
        self._logger.debug(
            "typing_simulated",
            characters=len(text),
            keystrokes=len(pattern),
        )
        return pattern

    # ─── Introspection ─────────────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        per_type: dict[str, list[int]] = {}
        for action in self._recent:
            per_type.setdefault(action.action_type, []).append(action.interval_ms)

        return {
            "stats": {
                action_type: {
                    "count": len(intervals),
                    "total": sum(intervals),
                    "average": sum(intervals) / len(intervals),
                    "variance": variance(intervals),
                }
                for action_type, intervals in per_type.items()
            },
            "session_duration_ms": int((self._clock() - self._session_start) * 1000),
            "fatigue_factor": self._fatigue_factor,
            "adaptive_multiplier": self._adaptive_multiplier,
            "history_length": len(self._recent),
        }

    def reset(self) -> None:
        self._recent.clear()
        self._adaptive_multiplier = 1.0
        self._fatigue_factor = 1.0
        self._session_start = self._clock()
