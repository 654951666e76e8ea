"""
SlotGuard — Booking State Machine

The canonical lifecycle of one booking attempt:

  IDLE → SEARCHING → FOUND → CONFIRMING → BOOKING → COMPLETE | TIMEOUT
  any non-terminal state → CANCELLED

Terminal states (COMPLETE, TIMEOUT, CANCELLED) only leave through reset().

The ordering is the safety property: BOOKING is reachable only through FOUND
(a slot was located) and CONFIRMING (consent was sought). The transition
table is fixed here and is not configurable.

transition_to() is synchronous and contains no await, so on a single event
loop validation and mutation cannot interleave with another transition. The
next session is built in full and then swapped in; a rejected transition
leaves the previous session untouched.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from pydantic import ValidationError as PydanticValidationError

from slotguard.config import BookingConfig
from slotguard.errors import InvalidTransitionError, ValidationError
from slotguard.primitives.booking import (
    TERMINAL_STATES,
    BookingReport,
    BookingSession,
    BookingState,
    SlotDetails,
    StateTransition,
)
from slotguard.primitives.common import new_id, wall_clock

logger = structlog.get_logger()

S = BookingState

ALLOWED_TRANSITIONS: Mapping[BookingState, frozenset[BookingState]] = {
    S.IDLE: frozenset({S.SEARCHING, S.CANCELLED}),
    S.SEARCHING: frozenset({S.FOUND, S.CANCELLED}),
    S.FOUND: frozenset({S.CONFIRMING, S.CANCELLED}),
    S.CONFIRMING: frozenset({S.BOOKING, S.CANCELLED}),
    S.BOOKING: frozenset({S.COMPLETE, S.TIMEOUT, S.CANCELLED}),
    S.COMPLETE: frozenset(),
    S.TIMEOUT: frozenset(),
    S.CANCELLED: frozenset(),
}

IN_PROGRESS_STATES: frozenset[BookingState] = frozenset({
    S.SEARCHING, S.FOUND, S.CONFIRMING, S.BOOKING,
})

# Payload keys with a dedicated session field, in both spellings
_SLOT_KEYS = ("slot_details", "slotDetails")
_BOOKING_ID_KEYS = ("booking_id", "bookingId")
_PUPIL_ID_KEYS = ("pupil_id", "pupilId")
_TEST_CENTRE_KEYS = ("test_centre", "testCentre")


class BookingReporter(Protocol):
    """Persistence / notification surface for finished bookings."""

    async def report(self, report: BookingReport) -> None:
        ...


def _pop_first(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    found = None
    for key in keys:
        value = payload.pop(key, None)
        if found is None:
            found = value
    return found


class BookingStateMachine:
    """
    Owns exactly one BookingSession. Other components read copies through
    get_session() and never mutate it.
    """

    def __init__(
        self,
        config: BookingConfig | None = None,
        reporter: BookingReporter | None = None,
        clock: Callable[[], float] = wall_clock,
    ) -> None:
        self._config = config or BookingConfig()
        self._reporter = reporter
        self._clock = clock
        self._session = BookingSession()
        self._history: deque[StateTransition] = deque(maxlen=self._config.history_size)
        self._deadline: asyncio.TimerHandle | None = None
        self._pending_reports: set[asyncio.Task[None]] = set()
        self._logger = logger.bind(system="booking.state_machine")

    # ─── Transitions ───────────────────────────────────────────────

    def transition_to(
        self,
        target: BookingState | str,
        payload: Mapping[str, Any] | None = None,
    ) -> BookingSession:
        current = self._session.state
        try:
            target_state = BookingState(target)
        except ValueError:
            raise InvalidTransitionError(current.value, str(target)) from None

        if target_state not in ALLOWED_TRANSITIONS[current]:
            self._logger.warning(
                "invalid_transition",
                from_state=current.value,
                to_state=target_state.value,
            )
            raise InvalidTransitionError(current.value, target_state.value)

        data = dict(payload or {})
        next_session = self._build_session(target_state, data)

        self._history.append(StateTransition(
            from_state=current.value,
            to_state=target_state.value,
            timestamp=self._now(),
            payload=dict(payload or {}),
        ))
        self._session = next_session

        self._logger.info(
            "state_transition",
            from_state=current.value,
            to_state=target_state.value,
            pupil_id=next_session.pupil_id,
            booking_id=next_session.booking_id,
        )
        self._on_enter(current, next_session)
        return next_session.model_copy(deep=True)

    def _build_session(self, target: BookingState, data: dict[str, Any]) -> BookingSession:
        """Compute the post-transition session without touching the live one."""
        session = self._session
        slot_raw = _pop_first(data, _SLOT_KEYS)
        booking_id = _pop_first(data, _BOOKING_ID_KEYS)
        pupil_id = _pop_first(data, _PUPIL_ID_KEYS)
        test_centre = _pop_first(data, _TEST_CENTRE_KEYS)

        slot_details = session.slot_details
        if slot_raw is not None:
            if target != S.FOUND:
                raise ValidationError(
                    f"slot_details can only be supplied when entering FOUND, not {target.value}",
                    field="slot_details",
                )
            try:
                slot_details = (
                    slot_raw
                    if isinstance(slot_raw, SlotDetails)
                    else SlotDetails.model_validate(slot_raw)
                )
            except PydanticValidationError as exc:
                raise ValidationError(
                    f"Invalid slot details: {exc.errors()[0]['msg']}",
                    field="slot_details",
                ) from exc
        elif target == S.FOUND:
            raise ValidationError("slot_details are required when entering FOUND", field="slot_details")

        if booking_id is not None and target != S.BOOKING:
            raise ValidationError(
                f"booking_id is assigned on entering BOOKING, not {target.value}",
                field="booking_id",
            )
        if target == S.BOOKING:
            booking_id = str(booking_id) if booking_id is not None else new_id()
        else:
            booking_id = session.booking_id

        return BookingSession(
            state=target,
            slot_details=slot_details,
            pupil_id=str(pupil_id) if pupil_id is not None else session.pupil_id,
            test_centre=str(test_centre) if test_centre is not None else session.test_centre,
            booking_id=booking_id,
            context={**session.context, **data},
        )

    def _on_enter(self, previous: BookingState, session: BookingSession) -> None:
        if previous == S.BOOKING:
            self._disarm_deadline()
        if session.state == S.BOOKING:
            self._arm_deadline(session.booking_id)
        if session.state in TERMINAL_STATES:
            self._report(session)

    # ─── BOOKING deadline ─────────────────────────────────────────

    def _arm_deadline(self, booking_id: str | None) -> None:
        timeout_s = self._config.booking_timeout_s
        if timeout_s is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.debug("booking_deadline_not_armed", reason="no_running_loop")
            return
        self._deadline = loop.call_later(timeout_s, self._on_deadline, booking_id)

    def _disarm_deadline(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def _on_deadline(self, booking_id: str | None) -> None:
        self._deadline = None
        if self._session.state != S.BOOKING or self._session.booking_id != booking_id:
            return
        self._logger.warning(
            "booking_deadline_exceeded",
            booking_id=booking_id,
            timeout_s=self._config.booking_timeout_s,
        )
        self.transition_to(S.TIMEOUT, {"reason": "booking_timeout"})

    # ─── Reporting ─────────────────────────────────────────────────

    def _report(self, session: BookingSession) -> None:
        if self._reporter is None:
            return
        report = BookingReport(
            outcome=session.state,
            booking_id=session.booking_id,
            pupil_id=session.pupil_id,
            test_centre=session.test_centre,
            slot_details=session.slot_details,
            reason=str(session.context.get("reason", "")),
            error=str(session.context.get("error", "")),
            timestamp=self._now(),
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning(
                "booking_report_dropped",
                reason="no_running_loop",
                outcome=report.outcome.value,
            )
            return
        task = loop.create_task(self._deliver(report))
        self._pending_reports.add(task)
        task.add_done_callback(self._pending_reports.discard)

    async def _deliver(self, report: BookingReport) -> None:
        assert self._reporter is not None
        try:
            await self._reporter.report(report)
        except Exception as exc:
            self._logger.error(
                "booking_report_failed",
                outcome=report.outcome.value,
                booking_id=report.booking_id,
                error=str(exc),
            )

    async def drain_reports(self) -> None:
        """Wait for in-flight reports (shutdown and tests)."""
        if self._pending_reports:
            await asyncio.gather(*self._pending_reports)

    # ─── Queries ───────────────────────────────────────────────────

    def get_state(self) -> BookingState:
        return self._session.state

    def get_session(self) -> BookingSession:
        return self._session.model_copy(deep=True)

    def get_context(self) -> dict[str, Any]:
        return dict(self._session.context)

    def get_history(self) -> list[StateTransition]:
        return list(self._history)

    def is_booking_in_progress(self) -> bool:
        return self._session.state in IN_PROGRESS_STATES

    def can_cancel(self) -> bool:
        return S.CANCELLED in ALLOWED_TRANSITIONS[self._session.state]

    # ─── Resets ────────────────────────────────────────────────────

    def reset(self) -> None:
        """Force IDLE and clear the session payload."""
        self._disarm_deadline()
        self._session = BookingSession()
        self._logger.info("state_reset")

    def emergency_stop(self, reason: str = "emergency_stop") -> None:
        self._logger.warning("emergency_stop", from_state=self._session.state.value, reason=reason)
        previous = self._session.state.value
        self.reset()
        self._history.append(StateTransition(
            from_state="EMERGENCY",
            to_state=S.IDLE.value,
            timestamp=self._now(),
            payload={"reason": reason, "interrupted_state": previous},
        ))

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)
