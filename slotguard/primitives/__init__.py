"""Shared SlotGuard primitives."""

from slotguard.primitives.booking import (
    TERMINAL_STATES,
    BookingReport,
    BookingSession,
    BookingState,
    SlotDetails,
    StateTransition,
)
from slotguard.primitives.common import SlotGuardBaseModel, new_id, utc_now

__all__ = [
    "BookingReport",
    "BookingSession",
    "BookingState",
    "SlotDetails",
    "SlotGuardBaseModel",
    "StateTransition",
    "TERMINAL_STATES",
    "new_id",
    "utc_now",
]
