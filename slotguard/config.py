"""
SlotGuard — Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

Every tunable threshold and multiplier lives here. The booking transition
table is deliberately absent: it is fixed in code and cannot be configured.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class StealthLevel(enum.StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"
    include_callsite: bool = False
    quiet_loggers: list[str] = Field(default_factory=lambda: ["asyncio"])


class ValidationConfig(BaseModel):
    rate_limit_max_attempts: int = 10
    rate_limit_window_s: float = 60.0
    notes_max_length: int = 500


class ConsentConfig(BaseModel):
    # Upper bound on how long a human has to answer a booking prompt
    confirmation_timeout_s: float = 30.0
    approve_action: str = "approve"
    cancel_action: str = "cancel"


class BookingConfig(BaseModel):
    # None disables the BOOKING deadline
    booking_timeout_s: float | None = 60.0
    history_size: int = 50


class TimingPattern(BaseModel):
    """Bounds for one action type, in milliseconds."""

    min: int
    max: int
    mean: int

    @model_validator(mode="after")
    def _check_bounds(self) -> TimingPattern:
        if not 0 <= self.min <= self.mean <= self.max:
            raise ValueError(
                f"timing pattern must satisfy 0 <= min <= mean <= max "
                f"(got min={self.min}, mean={self.mean}, max={self.max})"
            )
        return self


def _default_patterns() -> dict[str, TimingPattern]:
    return {
        "search": TimingPattern(min=8000, max=25000, mean=15000),
        "click": TimingPattern(min=1200, max=3500, mean=2200),
        "type": TimingPattern(min=80, max=300, mean=180),
        "scroll": TimingPattern(min=800, max=2000, mean=1400),
        "pause": TimingPattern(min=2000, max=8000, mean=4500),
    }


class TimingConfig(BaseModel):
    base_patterns: dict[str, TimingPattern] = Field(default_factory=_default_patterns)
    max_history: int = 20
    distraction_probability: float = 0.05
    rush_probability: float = 0.02
    consistency_probability: float = 0.15
    consistency_window_s: float = 300.0
    fatigue_rate_per_hour: float = 0.1
    fatigue_cap: float = 1.5
    # Variance (ms²) of the last few intervals below which timing looks robotic
    low_variance_threshold: float = 100.0
    variance_window: int = 5
    jitter_ms: int = 100
    rounding_ms: int = 50
    # Typing simulation
    typo_probability: float = 0.02
    keystroke_mean_ms: float = 180.0
    keystroke_std_ms: float = 40.0
    keystroke_floor_ms: int = 50


class StealthConfig(BaseModel):
    stealth_level: StealthLevel = StealthLevel.HIGH
    max_risk_score: int = 60
    emergency_mode_threshold: int = 70
    emergency_max_risk_score: int = 40
    emergency_pause_ms: int = 10_000
    emergency_slowdown: float = 2.0
    adaptive_mode: bool = True
    # Risk level classification
    high_risk_level: int = 60
    medium_risk_level: int = 30
    # Additive risk weights; empirically tuned, not a contract
    long_session_hours: float = 8.0
    long_session_weight: int = 10
    frequency_window_s: float = 3600.0
    max_operations_per_window: int = 20
    high_frequency_weight: int = 15
    success_rate_min_operations: int = 10
    success_rate_high: float = 0.8
    success_rate_low: float = 0.1
    success_rate_weight: int = 10
    fingerprint_weight: int = 20
    # Probabilities of idle human behaviour before an operation
    mouse_wander_probability: float = 0.3
    scroll_probability: float = 0.2
    reading_probability: float = 0.15


# ─── Root Config ──────────────────────────────────────────────────


class SlotGuardConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="SLOTGUARD_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "slotguard-default"

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    consent: ConsentConfig = Field(default_factory=ConsentConfig)
    booking: BookingConfig = Field(default_factory=BookingConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    stealth: StealthConfig = Field(default_factory=StealthConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> SlotGuardConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    import os

    if level := os.environ.get("SLOTGUARD_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = level
    if stealth_level := os.environ.get("SLOTGUARD_STEALTH_LEVEL"):
        raw.setdefault("stealth", {})["stealth_level"] = stealth_level.upper()
    if instance_id := os.environ.get("SLOTGUARD_INSTANCE_ID"):
        raw["instance_id"] = instance_id

    if overrides:
        raw = _deep_merge(raw, overrides)

    return SlotGuardConfig(**raw)
