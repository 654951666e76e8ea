"""
SlotGuard — Stealth

Risk-scored, human-paced execution of site operations.

Public interface:
  StealthCoordinator         — execute_stealth_operation(), activate_emergency_mode()
  HeuristicDetectionEvasion  — default DetectionEvasion
  BezierMouseSimulator       — default MouseSimulator over a PointerDriver
"""

from slotguard.systems.stealth.coordinator import StealthCoordinator
from slotguard.systems.stealth.mouse import (
    BezierMouseSimulator,
    HeadlessPointer,
    bezier_path,
    cubic_bezier,
)
from slotguard.systems.stealth.risk import HeuristicDetectionEvasion
from slotguard.systems.stealth.types import (
    DetectionEvasion,
    DetectionReport,
    EmergencyEvent,
    FingerprintReport,
    MouseSimulator,
    Point,
    PointerDriver,
    RiskAssessment,
    RiskLevel,
    StealthOutcome,
    classify_risk,
)

__all__ = [
    "BezierMouseSimulator",
    "DetectionEvasion",
    "DetectionReport",
    "EmergencyEvent",
    "FingerprintReport",
    "HeadlessPointer",
    "HeuristicDetectionEvasion",
    "MouseSimulator",
    "Point",
    "PointerDriver",
    "RiskAssessment",
    "RiskLevel",
    "StealthCoordinator",
    "StealthOutcome",
    "bezier_path",
    "classify_risk",
    "cubic_bezier",
]
