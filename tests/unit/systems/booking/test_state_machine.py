"""
Unit tests for the BookingStateMachine.

Tests the fixed transition table, payload handling, the BOOKING deadline,
terminal-state reporting, reset and emergency stop.
"""

from __future__ import annotations

import asyncio
from itertools import product
from unittest.mock import AsyncMock

import pytest

from slotguard.config import BookingConfig
from slotguard.errors import InvalidTransitionError, ValidationError
from slotguard.primitives.booking import BookingReport, BookingState
from slotguard.systems.booking import ALLOWED_TRANSITIONS, BookingStateMachine

S = BookingState

SLOT = {"date": "2024-12-20", "time": "09:30", "testCentre": "Leeds"}

PATH_TO = {
    S.IDLE: [],
    S.SEARCHING: [S.SEARCHING],
    S.FOUND: [S.SEARCHING, S.FOUND],
    S.CONFIRMING: [S.SEARCHING, S.FOUND, S.CONFIRMING],
    S.BOOKING: [S.SEARCHING, S.FOUND, S.CONFIRMING, S.BOOKING],
    S.COMPLETE: [S.SEARCHING, S.FOUND, S.CONFIRMING, S.BOOKING, S.COMPLETE],
    S.TIMEOUT: [S.SEARCHING, S.FOUND, S.CONFIRMING, S.BOOKING, S.TIMEOUT],
    S.CANCELLED: [S.CANCELLED],
}


def make_config(**kwargs) -> BookingConfig:
    defaults = {"booking_timeout_s": None}
    return BookingConfig(**{**defaults, **kwargs})


def drive(machine: BookingStateMachine, target: BookingState) -> None:
    for state in PATH_TO[target]:
        payload = {"slot_details": SLOT} if state == S.FOUND else None
        machine.transition_to(state, payload)


# ─── Tests: Transition table ──────────────────────────────────────


class TestTransitions:
    def test_happy_path(self):
        machine = BookingStateMachine(make_config())
        steps = [
            (S.SEARCHING, {"pupilId": "pupil-42", "testCentre": "Leeds"}),
            (S.FOUND, {"slotDetails": SLOT}),
            (S.CONFIRMING, None),
            (S.BOOKING, None),
            (S.COMPLETE, None),
        ]
        for target, payload in steps:
            machine.transition_to(target, payload)
            assert machine.get_state() == target

    def test_idle_to_booking_is_invalid(self):
        machine = BookingStateMachine(make_config())
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition_to("BOOKING")
        assert str(exc_info.value) == "Invalid state transition: IDLE -> BOOKING"
        assert machine.get_state() == S.IDLE

    def test_every_edge_outside_the_table_is_rejected(self):
        for current, target in product(S, S):
            if target in ALLOWED_TRANSITIONS[current]:
                continue
            machine = BookingStateMachine(make_config())
            drive(machine, current)
            history_before = machine.get_history()

            with pytest.raises(InvalidTransitionError):
                machine.transition_to(target, {"slot_details": SLOT})

            assert machine.get_state() == current
            assert machine.get_history() == history_before

    def test_cancel_from_every_non_terminal_state(self):
        for state in (S.IDLE, S.SEARCHING, S.FOUND, S.CONFIRMING, S.BOOKING):
            machine = BookingStateMachine(make_config())
            drive(machine, state)
            assert machine.can_cancel() is True
            machine.transition_to(S.CANCELLED, {"reason": "user"})
            assert machine.get_state() == S.CANCELLED
            assert machine.can_cancel() is False

    def test_timeout_path(self):
        machine = BookingStateMachine(make_config())
        drive(machine, S.BOOKING)
        machine.transition_to(S.TIMEOUT, {"reason": "slow site"})
        assert machine.get_state() == S.TIMEOUT
        assert machine.get_context()["reason"] == "slow site"

    def test_unknown_target_is_invalid(self):
        machine = BookingStateMachine(make_config())
        with pytest.raises(InvalidTransitionError, match="IDLE -> PAID"):
            machine.transition_to("PAID")


# ─── Tests: Payload ───────────────────────────────────────────────


class TestPayload:
    def test_found_requires_slot_details(self):
        machine = BookingStateMachine(make_config())
        drive(machine, S.SEARCHING)
        with pytest.raises(ValidationError, match="slot_details"):
            machine.transition_to(S.FOUND)
        assert machine.get_state() == S.SEARCHING

    def test_malformed_slot_details_leave_state_untouched(self):
        machine = BookingStateMachine(make_config())
        drive(machine, S.SEARCHING)
        with pytest.raises(ValidationError):
            machine.transition_to(S.FOUND, {"slot_details": {"date": "2024-12-20"}})
        assert machine.get_state() == S.SEARCHING
        assert machine.get_history()[-1].to_state == "SEARCHING"

    def test_slot_details_carried_forward(self):
        machine = BookingStateMachine(make_config())
        drive(machine, S.BOOKING)
        session = machine.get_session()
        assert session.slot_details is not None
        assert session.slot_details.test_centre == "Leeds"

    def test_booking_id_generated_on_booking(self):
        machine = BookingStateMachine(make_config())
        drive(machine, S.CONFIRMING)
        assert machine.get_session().booking_id is None
        machine.transition_to(S.BOOKING)
        assert machine.get_session().booking_id

    def test_booking_id_supplied(self):
        machine = BookingStateMachine(make_config())
        drive(machine, S.CONFIRMING)
        machine.transition_to(S.BOOKING, {"bookingId": "bk-1", "pupilId": "pupil-42"})
        session = machine.get_session()
        assert session.booking_id == "bk-1"
        assert session.pupil_id == "pupil-42"

    def test_booking_id_rejected_outside_booking(self):
        machine = BookingStateMachine(make_config())
        with pytest.raises(ValidationError, match="booking_id"):
            machine.transition_to(S.SEARCHING, {"booking_id": "bk-1"})
        assert machine.get_state() == S.IDLE

    def test_extra_keys_go_to_context(self):
        machine = BookingStateMachine(make_config())
        machine.transition_to(S.SEARCHING, {"attempt": 3})
        assert machine.get_context() == {"attempt": 3}

    def test_session_copy_is_detached(self):
        machine = BookingStateMachine(make_config())
        machine.transition_to(S.SEARCHING, {"attempt": 3})
        machine.get_session().context["attempt"] = 99
        assert machine.get_context()["attempt"] == 3

    def test_returned_session_is_detached(self):
        machine = BookingStateMachine(make_config())
        session = machine.transition_to(S.SEARCHING, {"attempt": 3})
        session.context["attempt"] = 99
        session.context["injected"] = True
        assert machine.get_context() == {"attempt": 3}


# ─── Tests: History, reset, emergency stop ────────────────────────


class TestLifecycle:
    def test_history_is_bounded(self):
        machine = BookingStateMachine(make_config(history_size=3))
        for _ in range(5):
            drive(machine, S.CANCELLED)
            machine.reset()
        assert len(machine.get_history()) == 3

    def test_reset_returns_to_idle(self):
        machine = BookingStateMachine(make_config())
        drive(machine, S.COMPLETE)
        machine.reset()
        assert machine.get_state() == S.IDLE
        assert machine.get_session().slot_details is None
        assert machine.is_booking_in_progress() is False

    def test_in_progress(self):
        machine = BookingStateMachine(make_config())
        assert machine.is_booking_in_progress() is False
        drive(machine, S.FOUND)
        assert machine.is_booking_in_progress() is True

    def test_emergency_stop_records_history(self):
        machine = BookingStateMachine(make_config())
        drive(machine, S.BOOKING)
        machine.emergency_stop("captcha")

        assert machine.get_state() == S.IDLE
        last = machine.get_history()[-1]
        assert (last.from_state, last.to_state) == ("EMERGENCY", "IDLE")
        assert last.payload["interrupted_state"] == "BOOKING"


# ─── Tests: Deadline and reporting ────────────────────────────────


class TestDeadline:
    @pytest.mark.asyncio
    async def test_booking_deadline_transitions_to_timeout(self):
        machine = BookingStateMachine(make_config(booking_timeout_s=0.01))
        drive(machine, S.BOOKING)

        await asyncio.sleep(0.05)

        assert machine.get_state() == S.TIMEOUT
        assert machine.get_context()["reason"] == "booking_timeout"

    @pytest.mark.asyncio
    async def test_leaving_booking_disarms_deadline(self):
        machine = BookingStateMachine(make_config(booking_timeout_s=0.01))
        drive(machine, S.COMPLETE)

        await asyncio.sleep(0.05)
        assert machine.get_state() == S.COMPLETE

    @pytest.mark.asyncio
    async def test_reset_disarms_deadline(self):
        machine = BookingStateMachine(make_config(booking_timeout_s=0.01))
        drive(machine, S.BOOKING)
        machine.reset()
        drive(machine, S.CONFIRMING)

        await asyncio.sleep(0.05)
        assert machine.get_state() == S.CONFIRMING


class TestReporting:
    @pytest.mark.asyncio
    async def test_terminal_state_is_reported(self):
        reporter = AsyncMock()
        machine = BookingStateMachine(make_config(), reporter=reporter)
        drive(machine, S.SEARCHING)
        machine.transition_to(S.CANCELLED, {"reason": "user"})

        await machine.drain_reports()

        reporter.report.assert_awaited_once()
        report: BookingReport = reporter.report.await_args.args[0]
        assert report.outcome == S.CANCELLED
        assert report.reason == "user"
        assert report.success is False

    @pytest.mark.asyncio
    async def test_non_terminal_states_not_reported(self):
        reporter = AsyncMock()
        machine = BookingStateMachine(make_config(), reporter=reporter)
        drive(machine, S.BOOKING)
        await machine.drain_reports()
        reporter.report.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reporter_failure_does_not_raise(self):
        reporter = AsyncMock()
        reporter.report.side_effect = ConnectionError("backend down")
        machine = BookingStateMachine(make_config(), reporter=reporter)
        drive(machine, S.COMPLETE)

        await machine.drain_reports()

        assert machine.get_state() == S.COMPLETE
        reporter.report.assert_awaited_once()
