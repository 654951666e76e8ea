"""
SlotGuard — Stealth Types

Capability protocols for the collaborators the coordinator is built with,
plus the values it reports. A blocked operation is a StealthOutcome with
``blocked=True``; it is never raised.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from pydantic import Field

from slotguard.config import StealthLevel
from slotguard.primitives.common import SlotGuardBaseModel, utc_now


class RiskLevel(enum.StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# Delay multiplier per configured stealth level
STEALTH_LEVEL_MULTIPLIER: dict[StealthLevel, float] = {
    StealthLevel.LOW: 0.7,
    StealthLevel.MEDIUM: 1.0,
    StealthLevel.HIGH: 1.3,
}


def classify_risk(score: int, high: int = 60, medium: int = 30) -> RiskLevel:
    if score >= high:
        return RiskLevel.HIGH
    if score >= medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass(frozen=True)
class Point:
    x: float
    y: float


# ─── Reports ──────────────────────────────────────────────────────


class DetectionReport(SlotGuardBaseModel):
    """Base detection risk from page and request signals."""

    risk_score: int = 0
    risk_factors: list[str] = Field(default_factory=list)


class FingerprintReport(SlotGuardBaseModel):
    risk_level: RiskLevel = RiskLevel.LOW
    reason: str = ""


class RiskAssessment(SlotGuardBaseModel):
    risk_level: RiskLevel
    risk_score: int
    should_block: bool
    base_score: int = 0
    additional_score: int = 0
    factors: list[str] = Field(default_factory=list)
    assessed_at: datetime = Field(default_factory=utc_now)


class StealthOutcome(SlotGuardBaseModel):
    """What execute_stealth_operation() hands back, success or not."""

    success: bool
    blocked: bool = False
    result: Any = None
    reason: str = ""
    error: str = ""
    risk_level: RiskLevel | None = None
    risk_score: int | None = None
    stealth_measures: list[str] = Field(default_factory=list)


class EmergencyEvent(SlotGuardBaseModel):
    trigger: str
    context: dict[str, Any] = Field(default_factory=dict)
    max_risk_score: int
    timestamp: datetime = Field(default_factory=utc_now)


# ─── Capability protocols ─────────────────────────────────────────


class DetectionEvasion(Protocol):
    def assess_detection_risk(self, context: Mapping[str, Any]) -> DetectionReport:
        ...

    def assess_fingerprint_risk(self, context: Mapping[str, Any]) -> FingerprintReport:
        ...


class MouseSimulator(Protocol):
    async def simulate_natural_movement(
        self,
        target: Point | None = None,
        *,
        stealth_level: StealthLevel = StealthLevel.HIGH,
    ) -> None:
        ...


class PointerDriver(Protocol):
    """Moves the real (or headless) pointer."""

    async def move_to(self, x: float, y: float) -> None:
        ...
