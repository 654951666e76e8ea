"""
SlotGuard — Heuristic Detection Risk

Default DetectionEvasion. Scores are additive and capped at 100:

  captcha_detected                      +40
  http_status 429 (rate limited)        +30
  http_status 403 (forbidden)           +30
  consecutive_failures                  +10 each, at most +30
  same operation again within 2 s       +15

Fingerprint risk is HIGH as soon as the user agent, viewport or timezone
differs from the first value observed in this session.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import structlog

from slotguard.primitives.common import wall_clock
from slotguard.systems.stealth.types import DetectionReport, FingerprintReport, RiskLevel

logger = structlog.get_logger()

CAPTCHA_WEIGHT = 40
HTTP_STATUS_WEIGHTS: dict[int, tuple[int, str]] = {
    429: (30, "Rate limited by server"),
    403: (30, "Access forbidden by server"),
}
FAILURE_WEIGHT = 10
FAILURE_WEIGHT_CAP = 30
RAPID_REPEAT_WEIGHT = 15
RAPID_REPEAT_WINDOW_S = 2.0
MAX_SCORE = 100

FINGERPRINT_KEYS: tuple[str, ...] = ("user_agent", "viewport", "timezone")


class HeuristicDetectionEvasion:
    def __init__(self, clock: Callable[[], float] = wall_clock) -> None:
        self._clock = clock
        self._last_seen: dict[str, float] = {}
        self._baseline: dict[str, Any] = {}
        self._logger = logger.bind(system="stealth.detection")

    def assess_detection_risk(self, context: Mapping[str, Any]) -> DetectionReport:
        score = 0
        factors: list[str] = []

        if context.get("captcha_detected"):
            score += CAPTCHA_WEIGHT
            factors.append("CAPTCHA challenge present")

        status = context.get("http_status")
        if status in HTTP_STATUS_WEIGHTS:
            weight, reason = HTTP_STATUS_WEIGHTS[status]
            score += weight
            factors.append(reason)

        failures = int(context.get("consecutive_failures") or 0)
        if failures > 0:
            score += min(FAILURE_WEIGHT_CAP, failures * FAILURE_WEIGHT)
            factors.append(f"{failures} consecutive failures")

        operation = context.get("operation_type")
        if operation:
            now = self._clock()
            previous = self._last_seen.get(operation)
            if previous is not None and now - previous < RAPID_REPEAT_WINDOW_S:
                score += RAPID_REPEAT_WEIGHT
                factors.append(f"Rapid repeat of {operation}")
            self._last_seen[operation] = now

        score = min(MAX_SCORE, score)
        if factors:
            self._logger.debug("detection_signals", score=score, factors=factors)
        return DetectionReport(risk_score=score, risk_factors=factors)

    def assess_fingerprint_risk(self, context: Mapping[str, Any]) -> FingerprintReport:
        changed: list[str] = []
        for key in FINGERPRINT_KEYS:
            value = context.get(key)
            if value is None:
                continue
            baseline = self._baseline.setdefault(key, value)
            if baseline != value:
                changed.append(key)

        if changed:
            self._logger.warning("fingerprint_changed", keys=changed)
            return FingerprintReport(
                risk_level=RiskLevel.HIGH,
                reason=f"Fingerprint changed: {', '.join(changed)}",
            )
        return FingerprintReport()

    def reset(self) -> None:
        self._last_seen.clear()
        self._baseline.clear()
