"""
SlotGuard — Bézier Mouse Simulator

Moves the pointer along a cubic Bézier curve whose control points are
pulled off the straight line, with ease-in-out spacing and a pixel of
jitter per step. Total movement time is drawn from the timing engine so it
shares the session's fatigue and adaptive pacing.
"""

from __future__ import annotations

import asyncio
import math
import random
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from slotguard.config import StealthLevel
from slotguard.systems.stealth.types import STEALTH_LEVEL_MULTIPLIER, Point, PointerDriver
from slotguard.systems.timing import TimingEngine

logger = structlog.get_logger()

MIN_STEPS = 10
MAX_STEPS = 60
PIXELS_PER_STEP = 15
JITTER_PX = 1.0


def ease_in_out(t: float) -> float:
    """Cubic ease: slow start, fast middle, slow finish."""
    if t < 0.5:
        return 4 * t * t * t
    return 1 - (-2 * t + 2) ** 3 / 2


def cubic_bezier(p0: Point, p1: Point, p2: Point, p3: Point, t: float) -> Point:
    u = 1 - t
    x = u**3 * p0.x + 3 * u**2 * t * p1.x + 3 * u * t**2 * p2.x + t**3 * p3.x
    y = u**3 * p0.y + 3 * u**2 * t * p1.y + 3 * u * t**2 * p2.y + t**3 * p3.y
    return Point(x, y)


def bezier_path(start: Point, end: Point, steps: int, rng: random.Random) -> list[Point]:
    """``steps`` points from just after ``start`` to exactly ``end``."""
    dx, dy = end.x - start.x, end.y - start.y
    distance = math.hypot(dx, dy)
    # Unit normal to the straight line; control points are pushed along it
    nx, ny = (-dy / distance, dx / distance) if distance else (0.0, 0.0)
    spread = distance * 0.3

    def control(fraction: float) -> Point:
        offset = rng.uniform(-spread, spread)
        return Point(start.x + dx * fraction + nx * offset, start.y + dy * fraction + ny * offset)

    p1, p2 = control(rng.uniform(0.2, 0.4)), control(rng.uniform(0.6, 0.8))
    path = [cubic_bezier(start, p1, p2, end, ease_in_out(i / steps)) for i in range(1, steps + 1)]
    path[-1] = end
    return path


class BezierMouseSimulator:
    def __init__(
        self,
        driver: PointerDriver,
        timing: TimingEngine,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        viewport: tuple[int, int] = (1280, 800),
    ) -> None:
        self._driver = driver
        self._timing = timing
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._viewport = viewport
        self._position = Point(viewport[0] / 2, viewport[1] / 2)
        self._logger = logger.bind(system="stealth.mouse")

    @property
    def position(self) -> Point:
        return self._position

    async def simulate_natural_movement(
        self,
        target: Point | None = None,
        *,
        stealth_level: StealthLevel = StealthLevel.HIGH,
    ) -> None:
        """Glide to ``target``, or wander to a random point in the viewport."""
        if target is None:
            width, height = self._viewport
            target = Point(self._rng.uniform(0, width), self._rng.uniform(0, height))

        distance = math.hypot(target.x - self._position.x, target.y - self._position.y)
        steps = max(MIN_STEPS, min(MAX_STEPS, int(distance / PIXELS_PER_STEP)))
        duration_ms = (
            self._timing.get_next_interval("click")
            * STEALTH_LEVEL_MULTIPLIER[stealth_level]
        )
        step_delay_s = duration_ms / steps / 1000

        for point in bezier_path(self._position, target, steps, self._rng):
            x = point.x + self._rng.uniform(-JITTER_PX, JITTER_PX)
            y = point.y + self._rng.uniform(-JITTER_PX, JITTER_PX)
            await self._driver.move_to(x, y)
            await self._sleep(step_delay_s)

        # Land exactly on the target
        await self._driver.move_to(target.x, target.y)
        self._position = target
        self._logger.debug(
            "mouse_moved",
            steps=steps,
            distance=round(distance),
            duration_ms=round(duration_ms),
        )


class HeadlessPointer:
    """PointerDriver for sessions without a visible pointer: only tracks position."""

    def __init__(self) -> None:
        self.position = Point(0.0, 0.0)
        self.moves = 0

    async def move_to(self, x: float, y: float) -> None:
        self.position = Point(x, y)
        self.moves += 1
