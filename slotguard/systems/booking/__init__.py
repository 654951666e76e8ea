"""
SlotGuard — Booking

The booking lifecycle and the consent-gated flow that drives it.

Public interface:
  BookingStateMachine   — transition_to(), get_state(), reset(), emergency_stop()
  BookingOrchestrator   — attempt_booking(): confirm, then book under stealth
  BookingReporter       — protocol for reporting terminal outcomes
"""

from slotguard.systems.booking.orchestrator import BookingAttempt, BookingOrchestrator, lock_key
from slotguard.systems.booking.state_machine import (
    ALLOWED_TRANSITIONS,
    BookingReporter,
    BookingStateMachine,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "BookingAttempt",
    "BookingOrchestrator",
    "BookingReporter",
    "BookingStateMachine",
    "lock_key",
]
