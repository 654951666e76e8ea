"""
SlotGuard — Error Hierarchy

Only programmer-facing failures are exceptions. Confirmation timeouts and
risk-based blocks are expected outcomes and travel as result values
(ConfirmationResult.reason == "timeout", StealthOutcome.blocked).

  ValidationError         malformed pupil data, message or booking details
  InvalidTransitionError  state change outside the booking transition table
  BookingAbortedError     the booking session moved on before its action ran

Exceptions raised by an operation running under KeyedLock.acquire() reach
the caller unchanged.
"""

from __future__ import annotations


class SlotGuardError(RuntimeError):
    """Base for all SlotGuard errors."""


class ValidationError(SlotGuardError):
    """
    Input failed validation. The message is human-readable and names the
    first violated rule (e.g. "Invalid email format").
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidTransitionError(SlotGuardError):
    """A booking state transition outside the allowed edge set was attempted."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid state transition: {current} -> {target}")
        self.current = current
        self.target = target


class BookingAbortedError(SlotGuardError):
    """
    The session left BOOKING (deadline, emergency stop) or was replaced before
    the booking action started. The action is never invoked.
    """

    def __init__(self, booking_id: str | None, state: str) -> None:
        super().__init__(f"Booking {booking_id} aborted: session is {state}")
        self.booking_id = booking_id
        self.state = state
