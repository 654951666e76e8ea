"""
SlotGuard — Booking Primitives

The booking session is owned by the BookingStateMachine. Every other
component receives copies; nothing outside the state machine mutates it.

Invariants:
  - slot_details is set on entering FOUND and carried by every later state
  - booking_id is set only on entering BOOKING (and kept in the terminal
    state reached from it)
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import Field

from slotguard.primitives.common import SlotGuardBaseModel, utc_now


class BookingState(enum.StrEnum):
    IDLE = "IDLE"
    SEARCHING = "SEARCHING"
    FOUND = "FOUND"
    CONFIRMING = "CONFIRMING"
    BOOKING = "BOOKING"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    COMPLETE = "COMPLETE"


TERMINAL_STATES: frozenset[BookingState] = frozenset({
    BookingState.COMPLETE,
    BookingState.TIMEOUT,
    BookingState.CANCELLED,
})


class SlotDetails(SlotGuardBaseModel):
    """A test slot located on the booking site."""

    date: str
    time: str
    test_centre: str = Field(alias="testCentre")


class BookingSession(SlotGuardBaseModel):
    """Live data for one monitored pupil/task."""

    state: BookingState = BookingState.IDLE
    slot_details: SlotDetails | None = None
    pupil_id: str | None = None
    test_centre: str | None = None
    booking_id: str | None = None
    # Free-form transition payload (reason, error, ...)
    context: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True, "populate_by_name": True}


class StateTransition(SlotGuardBaseModel):
    """One entry in the state machine's bounded history."""

    from_state: str
    to_state: str
    timestamp: datetime = Field(default_factory=utc_now)
    payload: dict[str, Any] = Field(default_factory=dict)


class BookingReport(SlotGuardBaseModel):
    """
    Handed to the persistence/notification surface when a session reaches a
    terminal state. Delivery is fire-and-forget from the core's perspective.
    """

    outcome: BookingState
    booking_id: str | None = None
    pupil_id: str | None = None
    test_centre: str | None = None
    slot_details: SlotDetails | None = None
    reason: str = ""
    error: str = ""
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def success(self) -> bool:
        return self.outcome == BookingState.COMPLETE
