"""
SlotGuard — Adaptive Timing

Human-looking delays and typing rhythm for browser automation.

Public interface:
  TimingEngine   — get_next_interval(), wait(), simulate_human_typing(), get_stats()
  Keystroke      — one simulated key press and the pause after it
  KeySink        — protocol receiving simulated key presses
"""

from slotguard.systems.timing.engine import (
    BACKSPACE,
    KeySink,
    Keystroke,
    TimingEngine,
    gaussian,
    typo_for,
    variance,
)

__all__ = [
    "BACKSPACE",
    "KeySink",
    "Keystroke",
    "TimingEngine",
    "gaussian",
    "typo_for",
    "variance",
]
