"""
SlotGuard — Booking Orchestrator

Drives one consent-gated booking attempt from FOUND to a terminal state:

  FOUND ─► CONFIRMING ─► gate.request_confirmation()
            │  approved (is_confirmed)  ─► BOOKING ─► stealth operation
            │                                  ├─ success  ─► COMPLETE
            │                                  └─ failure / blocked ─► CANCELLED
            └─ denied / timed out / invalid ─► CANCELLED

The booking action runs only after is_confirmed() returned True. The whole
attempt is serialised under ``booking:<pupil_id>`` so one pupil never has two
attempts in flight. TIMEOUT is reachable only from BOOKING (via the state
machine's deadline); a confirmation that times out cancels with
reason="timeout".

The booking action re-checks the session just before it runs: pacing delays
come first, and a deadline or emergency stop that lands during them means
``book`` is never called.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from slotguard.errors import BookingAbortedError, ValidationError
from slotguard.primitives.booking import BookingState
from slotguard.primitives.common import SlotGuardBaseModel
from slotguard.systems.booking.state_machine import BookingStateMachine
from slotguard.systems.consent import (
    ConfirmationGate,
    ConfirmationRequest,
    ConfirmationResult,
    is_confirmed,
)
from slotguard.systems.lock import KeyedLock
from slotguard.systems.stealth import StealthCoordinator, StealthOutcome

logger = structlog.get_logger()

BOOKING_OPERATION = "confirmBooking"


class BookingAttempt(SlotGuardBaseModel):
    """How one attempt ended."""

    final_state: BookingState
    booking_id: str | None = None
    confirmation: ConfirmationResult | None = None
    outcome: StealthOutcome | None = None
    reason: str = ""

    @property
    def booked(self) -> bool:
        return self.final_state == BookingState.COMPLETE


def lock_key(pupil_id: str | None) -> str:
    return f"booking:{pupil_id or 'anonymous'}"


class BookingOrchestrator:
    def __init__(
        self,
        lock: KeyedLock,
        gate: ConfirmationGate,
        coordinator: StealthCoordinator,
    ) -> None:
        self._lock = lock
        self._gate = gate
        self._coordinator = coordinator
        self._logger = logger.bind(system="booking.orchestrator")

    async def attempt_booking(
        self,
        machine: BookingStateMachine,
        details: ConfirmationRequest | Mapping[str, Any],
        book: Callable[[], Awaitable[Any]],
        *,
        operation_type: str = BOOKING_OPERATION,
        context: Mapping[str, Any] | None = None,
    ) -> BookingAttempt:
        """
        ``machine`` must be in FOUND. ``book`` performs the state-changing
        site action; it is awaited at most once.
        """
        key = lock_key(machine.get_session().pupil_id)
        return await self._lock.acquire(
            key,
            lambda: self._run(machine, details, book, operation_type, context),
            label=f"{key}:{operation_type}",
        )

    async def _run(
        self,
        machine: BookingStateMachine,
        details: ConfirmationRequest | Mapping[str, Any],
        book: Callable[[], Awaitable[Any]],
        operation_type: str,
        context: Mapping[str, Any] | None,
    ) -> BookingAttempt:
        machine.transition_to(BookingState.CONFIRMING)

        try:
            confirmation = await self._gate.request_confirmation(details)
        except ValidationError as exc:
            self._abandon(machine, "invalid_confirmation", str(exc))
            raise
        except asyncio.CancelledError:
            self._abandon(machine, "confirmation_cancelled", "")
            raise
        except Exception as exc:
            self._abandon(machine, "notifier_failed", str(exc))
            raise

        if not is_confirmed(confirmation):
            reason = confirmation.reason.value
            machine.transition_to(
                BookingState.CANCELLED,
                {"reason": reason, "confirmation_id": confirmation.confirmation_id},
            )
            self._logger.info("booking_not_confirmed", reason=reason)
            return BookingAttempt(
                final_state=machine.get_state(),
                confirmation=confirmation,
                reason=reason,
            )

        session = machine.transition_to(
            BookingState.BOOKING,
            {"confirmation_id": confirmation.confirmation_id},
        )
        booking_id = session.booking_id

        async def guarded_book() -> Any:
            # Pacing delays run before this; the deadline may have fired since
            state = machine.get_state()
            if state != BookingState.BOOKING or machine.get_session().booking_id != booking_id:
                raise BookingAbortedError(booking_id, state.value)
            return await book()

        outcome = await self._coordinator.execute_stealth_operation(
            operation_type,
            guarded_book,
            {**(context or {}), "pupil_id": session.pupil_id, "booking_id": booking_id},
        )

        if machine.get_state() != BookingState.BOOKING or (
            machine.get_session().booking_id != booking_id
        ):
            # The BOOKING deadline or an emergency stop ended the session first
            self._logger.warning(
                "booking_session_ended_early",
                booking_id=session.booking_id,
                state=machine.get_state().value,
            )
            return BookingAttempt(
                final_state=machine.get_state(),
                booking_id=session.booking_id,
                confirmation=confirmation,
                outcome=outcome,
                reason=str(machine.get_context().get("reason", "")),
            )

        if outcome.success:
            machine.transition_to(BookingState.COMPLETE)
            reason = ""
        else:
            reason = "blocked_high_risk" if outcome.blocked else "booking_failed"
            machine.transition_to(
                BookingState.CANCELLED,
                {"reason": reason, "error": outcome.error or outcome.reason},
            )

        self._logger.info(
            "booking_attempt_finished",
            booking_id=session.booking_id,
            state=machine.get_state().value,
            reason=reason,
        )
        return BookingAttempt(
            final_state=machine.get_state(),
            booking_id=session.booking_id,
            confirmation=confirmation,
            outcome=outcome,
            reason=reason,
        )

    def _abandon(self, machine: BookingStateMachine, reason: str, error: str) -> None:
        """Leave CONFIRMING so the next attempt for this pupil can start."""
        self._logger.warning("confirmation_abandoned", reason=reason, error=error)
        if machine.get_state() == BookingState.CONFIRMING:
            machine.transition_to(BookingState.CANCELLED, {"reason": reason, "error": error})
