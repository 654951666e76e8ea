"""
SlotGuard — Stealth Coordinator

Wraps every site operation in a risk check and human-looking pacing.

execute_stealth_operation():
  1. Assess risk: the detection collaborator's base score plus session
     factors (long session, high frequency, unusual success rate,
     fingerprint drift), capped at 100.
  2. Block when the level is HIGH and the score reaches max_risk_score.
     A block is a StealthOutcome(blocked=True); the operation never runs.
  3. Pre-operation delays: thinking time scaled by operation complexity and
     importance, extra pauses on MEDIUM/HIGH risk, idle mouse/scroll/reading.
  4. Run the operation. Its exceptions become StealthOutcome(success=False).
  5. Post-operation delays, then rolling statistics.

Collaborators are injected; nothing here checks whether they exist.
"""

from __future__ import annotations

import asyncio
import random
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import structlog

from slotguard.config import StealthConfig
from slotguard.primitives.common import wall_clock
from slotguard.systems.stealth.types import (
    STEALTH_LEVEL_MULTIPLIER,
    DetectionEvasion,
    EmergencyEvent,
    MouseSimulator,
    RiskAssessment,
    RiskLevel,
    StealthOutcome,
    classify_risk,
)
from slotguard.systems.timing import TimingEngine

logger = structlog.get_logger()

T = TypeVar("T")

OPERATION_COMPLEXITY: dict[str, str] = {
    "login": "high",
    "checkAvailability": "medium",
    "reserveSlot": "high",
    "confirmBooking": "high",
    "cancelBooking": "medium",
    "search": "low",
}

OPERATION_IMPORTANCE: dict[str, str] = {
    "login": "high",
    "checkAvailability": "medium",
    "reserveSlot": "high",
    "confirmBooking": "high",
    "cancelBooking": "high",
    "search": "low",
}

COMPLEXITY_FACTOR: dict[str, float] = {"low": 0.7, "medium": 1.0, "high": 1.4}
IMPORTANCE_FACTOR: dict[str, float] = {"low": 0.9, "medium": 1.0, "high": 1.2}


class StealthCoordinator:
    def __init__(
        self,
        config: StealthConfig,
        timing: TimingEngine,
        detection: DetectionEvasion,
        mouse: MouseSimulator,
        clock: Callable[[], float] = wall_clock,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._timing = timing
        self._detection = detection
        self._mouse = mouse
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._logger = logger.bind(system="stealth")

        self._active = False
        self._session_start = clock()
        self._total_operations = 0
        self._successful_operations = 0
        self._blocked_operations = 0
        self._emergency_activations = 0
        self._operation_times: deque[float] = deque()
        self._last_assessment: RiskAssessment | None = None
        self._emergency_events: list[EmergencyEvent] = []
        self._total_delay_ms = 0

        self._max_risk_score = config.max_risk_score
        self._slowdown = 1.0
        self._emergency_mode = False

    async def initialize(self) -> None:
        self._active = True
        self._session_start = self._clock()
        self._logger.info(
            "stealth_initialized",
            stealth_level=self._config.stealth_level.value,
            max_risk_score=self._max_risk_score,
            adaptive_mode=self._config.adaptive_mode,
        )

    @property
    def is_active(self) -> bool:
        return self._active

    # ─── Operations ────────────────────────────────────────────────

    async def execute_stealth_operation(
        self,
        operation_type: str,
        operation: Callable[[], Awaitable[T]],
        context: Mapping[str, Any] | None = None,
    ) -> StealthOutcome:
        if not self._active:
            self._logger.warning("stealth_not_active", action="initializing")
            await self.initialize()

        op_context = {
            **(context or {}),
            "operation_type": operation_type,
            "timestamp": self._clock(),
        }

        assessment = self.assess_operation_risk(op_context)
        if assessment.should_block:
            self._blocked_operations += 1
            self._logger.warning(
                "operation_blocked",
                operation_type=operation_type,
                risk_score=assessment.risk_score,
                factors=assessment.factors,
            )
            return StealthOutcome(
                success=False,
                blocked=True,
                reason="High detection risk",
                risk_level=assessment.risk_level,
                risk_score=assessment.risk_score,
            )

        measures = await self._pre_operation(operation_type, op_context, assessment)
        self._operation_times.append(self._clock())

        try:
            result = await operation()
        except Exception as exc:
            self._total_operations += 1
            self._logger.error(
                "stealth_operation_failed",
                operation_type=operation_type,
                error=str(exc),
            )
            measures += await self._post_operation(success=False)
            return StealthOutcome(
                success=False,
                error=str(exc),
                risk_level=RiskLevel.HIGH,
                risk_score=assessment.risk_score,
                stealth_measures=measures,
            )

        measures += await self._post_operation(success=True)
        self._total_operations += 1
        self._successful_operations += 1
        self._logger.info(
            "stealth_operation_complete",
            operation_type=operation_type,
            risk_level=assessment.risk_level.value,
            risk_score=assessment.risk_score,
            measures=len(measures),
        )
        return StealthOutcome(
            success=True,
            result=result,
            risk_level=assessment.risk_level,
            risk_score=assessment.risk_score,
            stealth_measures=measures,
        )

    # ─── Risk ──────────────────────────────────────────────────────

    def assess_operation_risk(self, context: Mapping[str, Any]) -> RiskAssessment:
        cfg = self._config
        report = self._detection.assess_detection_risk(context)
        factors = list(report.risk_factors)
        additional = 0
        now = self._clock()

        if (now - self._session_start) / 3600.0 > cfg.long_session_hours:
            factors.append("Long session duration")
            additional += cfg.long_session_weight

        cutoff = now - cfg.frequency_window_s
        while self._operation_times and self._operation_times[0] <= cutoff:
            self._operation_times.popleft()
        if len(self._operation_times) > cfg.max_operations_per_window:
            factors.append("High operation frequency")
            additional += cfg.high_frequency_weight

        if self._total_operations > cfg.success_rate_min_operations:
            rate = self._successful_operations / self._total_operations
            if rate > cfg.success_rate_high or rate < cfg.success_rate_low:
                factors.append("Unusual success rate pattern")
                additional += cfg.success_rate_weight

        fingerprint = self._detection.assess_fingerprint_risk(context)
        if fingerprint.risk_level == RiskLevel.HIGH:
            factors.append(fingerprint.reason or "Fingerprint inconsistency")
            additional += cfg.fingerprint_weight

        score = max(0, min(100, report.risk_score + additional))
        level = classify_risk(score, cfg.high_risk_level, cfg.medium_risk_level)
        # In emergency mode the lowered threshold applies below the HIGH band too
        should_block = score >= self._max_risk_score and (
            level == RiskLevel.HIGH or self._emergency_mode
        )

        assessment = RiskAssessment(
            risk_level=level,
            risk_score=score,
            should_block=should_block,
            base_score=report.risk_score,
            additional_score=additional,
            factors=factors,
        )
        self._last_assessment = assessment

        if score >= cfg.emergency_mode_threshold:
            self._logger.warning(
                "emergency_mode_recommended",
                risk_score=score,
                threshold=cfg.emergency_mode_threshold,
            )
        self._logger.debug(
            "risk_assessed",
            risk_level=level.value,
            risk_score=score,
            blocked=should_block,
        )
        return assessment

    # ─── Pacing ────────────────────────────────────────────────────

    async def _pause(self, base_ms: float) -> int:
        ms = int(base_ms * STEALTH_LEVEL_MULTIPLIER[self._config.stealth_level] * self._slowdown)
        ms = max(0, ms)
        self._total_delay_ms += ms
        await self._sleep(ms / 1000)
        return ms

    async def _pre_operation(
        self,
        operation_type: str,
        context: Mapping[str, Any],
        assessment: RiskAssessment,
    ) -> list[str]:
        cfg = self._config
        measures: list[str] = []

        complexity = OPERATION_COMPLEXITY.get(operation_type, "medium")
        importance = OPERATION_IMPORTANCE.get(operation_type, "medium")
        thinking = (
            self._timing.get_next_interval("pause", context)
            * COMPLEXITY_FACTOR[complexity]
            * IMPORTANCE_FACTOR[importance]
        )
        await self._pause(thinking)
        measures.append("thinking_time")

        if cfg.adaptive_mode:
            if assessment.risk_level == RiskLevel.MEDIUM:
                await self._pause(self._timing.get_next_interval("pause", {"careful": True}))
                measures.append("medium_risk_pause")
            elif assessment.risk_level == RiskLevel.HIGH:
                await self._pause(self._timing.get_next_interval("pause", {"careful": True}) * 2)
                await self._mouse.simulate_natural_movement(stealth_level=cfg.stealth_level)
                measures.append("high_risk_pause")

        if self._rng.random() < cfg.mouse_wander_probability:
            await self._mouse.simulate_natural_movement(stealth_level=cfg.stealth_level)
            measures.append("mouse_movement")
        if self._rng.random() < cfg.scroll_probability:
            await self._pause(self._timing.get_next_interval("scroll"))
            measures.append("scroll_pause")
        if self._rng.random() < cfg.reading_probability:
            await self._pause(self._timing.get_next_interval("pause"))
            measures.append("reading_pause")
        return measures

    async def _post_operation(self, success: bool) -> list[str]:
        if success:
            await self._pause(self._timing.get_next_interval("click"))
            reaction = "success_reaction"
        else:
            await self._pause(self._timing.get_next_interval("pause"))
            reaction = "failure_reaction"
        await self._pause(self._timing.get_next_interval("click") / 2)
        return [reaction, "post_operation_pause"]

    # ─── Emergency mode ────────────────────────────────────────────

    async def activate_emergency_mode(
        self,
        trigger: str,
        context: Mapping[str, Any] | None = None,
    ) -> EmergencyEvent:
        """
        Manual circuit breaker: lower the blocking threshold, slow every delay
        down, and hold still for emergency_pause_ms.
        """
        cfg = self._config
        self._emergency_activations += 1
        self._emergency_mode = True
        self._slowdown = cfg.emergency_slowdown
        self._max_risk_score = cfg.emergency_max_risk_score

        event = EmergencyEvent(
            trigger=trigger,
            context=dict(context or {}),
            max_risk_score=self._max_risk_score,
        )
        self._emergency_events.append(event)
        self._logger.warning(
            "emergency_mode_activated",
            trigger=trigger,
            activations=self._emergency_activations,
            max_risk_score=self._max_risk_score,
            pause_ms=cfg.emergency_pause_ms,
        )
        await self._sleep(cfg.emergency_pause_ms / 1000)
        return event

    def deactivate_emergency_mode(self) -> None:
        self._emergency_mode = False
        self._slowdown = 1.0
        self._max_risk_score = self._config.max_risk_score
        self._logger.info("emergency_mode_deactivated")

    def get_emergency_log(self) -> list[EmergencyEvent]:
        return list(self._emergency_events)

    # ─── Statistics ────────────────────────────────────────────────

    def get_stealth_statistics(self) -> dict[str, Any]:
        last = self._last_assessment
        total = self._total_operations
        return {
            "session_age_ms": int((self._clock() - self._session_start) * 1000),
            "total_operations": total,
            "successful_operations": self._successful_operations,
            "success_rate": self._successful_operations / total if total else 0.0,
            "blocked_operations": self._blocked_operations,
            "emergency_activations": self._emergency_activations,
            "emergency_mode": self._emergency_mode,
            "max_risk_score": self._max_risk_score,
            "total_delay_ms": self._total_delay_ms,
            "current_risk_level": last.risk_level.value if last else None,
            "last_risk_assessment": last.model_dump() if last else None,
            "emergency_recommended": (
                last is not None and last.risk_score >= self._config.emergency_mode_threshold
            ),
            "is_active": self._active,
        }
