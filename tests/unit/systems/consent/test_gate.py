"""
Unit tests for the Secure Confirmation Gate.

Tests booking-detail validation, the approve / deny / timeout outcomes,
response authentication, audit completeness and identifier generation.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from slotguard.config import ConsentConfig
from slotguard.errors import ValidationError
from slotguard.systems.consent import (
    AuditOutcome,
    ConfirmationGate,
    ConfirmationReason,
    NotifierResponse,
    is_confirmed,
)
from slotguard.systems.consent.prompt import PROMPT_TITLE

NOW = datetime(2024, 12, 1, 12, 0, tzinfo=timezone.utc).timestamp()


def fixed_clock() -> float:
    return NOW


def make_config(**kwargs) -> ConsentConfig:
    defaults = {"confirmation_timeout_s": 1.0}
    return ConsentConfig(**{**defaults, **kwargs})


def make_details(**overrides) -> dict:
    details = {
        "pupilName": "John Doe-Smith",
        "testCentre": "Leeds",
        "currentTestDate": "2025-03-10",
        "currentTestTime": "14:00",
        "newTestDate": "2024-12-20",
        "newTestTime": "09:30",
    }
    details.update(overrides)
    return details


def responding_notifier(action: str | None) -> AsyncMock:
    """A notifier that answers with ``action``, echoing the id and token it was given."""

    async def notify(title, body, actions, *, confirmation_id, secure_token):
        return NotifierResponse(
            confirmation_id=confirmation_id,
            secure_token=secure_token,
            action=action,
        )

    return AsyncMock(side_effect=notify)


class StubNotifier:
    def __init__(self, notify: AsyncMock) -> None:
        self.notify = notify


def make_gate(notify: AsyncMock | None = None, **config) -> ConfirmationGate:
    notifier = StubNotifier(notify or responding_notifier("approve"))
    return ConfirmationGate(notifier, make_config(**config), clock=fixed_clock)


# ─── Tests: validate_booking_details ──────────────────────────────


class TestValidateBookingDetails:
    def test_future_date_is_valid(self):
        assert make_gate().validate_booking_details(make_details()) is True

    def test_past_date_is_invalid(self):
        assert make_gate().validate_booking_details(make_details(newTestDate="2020-01-01")) is False

    def test_same_day_earlier_time_is_invalid(self):
        details = make_details(newTestDate="2024-12-01", newTestTime="11:00")
        assert make_gate().validate_booking_details(details) is False

    @pytest.mark.parametrize("new_time, valid", [
        ("12:30+01:00", False),
        ("13:30+01:00", True),
        ("11:30-01:00", True),
        ("12:00+00:00", False),
    ])
    def test_time_offset_is_converted_to_utc(self, new_time, valid):
        details = make_details(newTestDate="2024-12-01", newTestTime=new_time)
        assert make_gate().validate_booking_details(details) is valid

    @pytest.mark.parametrize("field", [
        "pupilName", "testCentre", "currentTestDate", "currentTestTime", "newTestDate", "newTestTime",
    ])
    def test_missing_field_is_invalid(self, field):
        details = make_details()
        del details[field]
        assert make_gate().validate_booking_details(details) is False

    @pytest.mark.parametrize("value", ["", "   ", None, 20241220])
    def test_blank_or_non_string_is_invalid(self, value):
        assert make_gate().validate_booking_details(make_details(newTestDate=value)) is False

    def test_unparsable_date_never_raises(self):
        assert make_gate().validate_booking_details(make_details(newTestDate="next friday")) is False

    def test_snake_case_keys_accepted(self):
        details = {
            "pupil_name": "Jane Roe",
            "test_centre": "Leeds",
            "current_test_date": "2025-03-10",
            "current_test_time": "14:00",
            "new_test_date": "2024-12-20",
            "new_test_time": "09:30",
        }
        assert make_gate().validate_booking_details(details) is True

    def test_none_is_invalid(self):
        assert make_gate().validate_booking_details(None) is False


# ─── Tests: request_confirmation ──────────────────────────────────


class TestRequestConfirmation:
    @pytest.mark.asyncio
    async def test_approval(self):
        notify = responding_notifier("approve")
        gate = make_gate(notify)

        result = await gate.request_confirmation(make_details())

        assert result.confirmed is True
        assert result.reason == ConfirmationReason.USER_APPROVED
        assert is_confirmed(result)
        title, body, actions = notify.await_args.args
        assert title == PROMPT_TITLE
        assert "Friday 20 December 2024" in body
        assert "09:30" in body
        assert list(actions) == ["approve", "cancel"]

    @pytest.mark.asyncio
    async def test_cancel_action_denies(self):
        result = await make_gate(responding_notifier("cancel")).request_confirmation(make_details())
        assert result.confirmed is False
        assert result.reason == ConfirmationReason.USER_CANCELLED
        assert not is_confirmed(result)

    @pytest.mark.asyncio
    async def test_dismissed_prompt_denies(self):
        result = await make_gate(responding_notifier(None)).request_confirmation(make_details())
        assert result.reason == ConfirmationReason.USER_CANCELLED

    @pytest.mark.asyncio
    async def test_timeout_is_a_result(self):
        async def never_answers(*args, **kwargs):
            await asyncio.sleep(10)

        gate = make_gate(AsyncMock(side_effect=never_answers), confirmation_timeout_s=0.01)
        result = await gate.request_confirmation(make_details())

        assert result.confirmed is False
        assert result.reason == ConfirmationReason.TIMEOUT
        assert not is_confirmed(result)

    @pytest.mark.asyncio
    async def test_invalid_details_fail_before_prompt(self):
        notify = responding_notifier("approve")
        gate = make_gate(notify)

        with pytest.raises(ValidationError, match="Invalid booking details provided"):
            await gate.request_confirmation(make_details(newTestDate="2020-01-01"))
        notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_forged_token_rejected(self):
        async def forged(title, body, actions, *, confirmation_id, secure_token):
            return NotifierResponse(
                confirmation_id=confirmation_id,
                secure_token="0" * 32,
                action="approve",
            )

        gate = make_gate(AsyncMock(side_effect=forged))
        with pytest.raises(ValidationError, match="Invalid confirmation response"):
            await gate.request_confirmation(make_details())
        assert gate.get_audit_trail()[-1].outcome == AuditOutcome.REJECTED_RESPONSE

    @pytest.mark.asyncio
    async def test_mismatched_id_rejected(self):
        async def wrong_id(title, body, actions, *, confirmation_id, secure_token):
            return NotifierResponse(
                confirmation_id="conf_1_other",
                secure_token=secure_token,
                action="approve",
            )

        with pytest.raises(ValidationError):
            await make_gate(AsyncMock(side_effect=wrong_id)).request_confirmation(make_details())

    @pytest.mark.asyncio
    async def test_notifier_failure_propagates(self):
        gate = make_gate(AsyncMock(side_effect=ConnectionError("popup closed")))
        with pytest.raises(ConnectionError):
            await gate.request_confirmation(make_details())
        assert gate.get_audit_trail()[-1].outcome == AuditOutcome.NOTIFIER_FAILED


# ─── Tests: Audit trail ───────────────────────────────────────────


class TestAuditTrail:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("action, outcome", [
        ("approve", AuditOutcome.APPROVED),
        ("cancel", AuditOutcome.DENIED),
    ])
    async def test_one_entry_per_answered_call(self, action, outcome):
        gate = make_gate(responding_notifier(action))
        await gate.request_confirmation(make_details())

        trail = gate.get_audit_trail()
        assert len(trail) == 1
        assert trail[0].outcome == outcome
        assert trail[0].pupil_name == "John Doe-Smith"

    @pytest.mark.asyncio
    async def test_one_entry_per_timeout(self):
        async def never_answers(*args, **kwargs):
            await asyncio.sleep(10)

        gate = make_gate(AsyncMock(side_effect=never_answers), confirmation_timeout_s=0.01)
        await gate.request_confirmation(make_details())
        await gate.request_confirmation(make_details())

        outcomes = [entry.outcome for entry in gate.get_audit_trail()]
        assert outcomes == [AuditOutcome.TIMED_OUT, AuditOutcome.TIMED_OUT]

    @pytest.mark.asyncio
    async def test_one_entry_for_invalid_details(self):
        gate = make_gate()
        with pytest.raises(ValidationError):
            await gate.request_confirmation(make_details(newTestDate="2020-01-01"))
        assert [e.outcome for e in gate.get_audit_trail()] == [AuditOutcome.INVALID_DETAILS]

    @pytest.mark.asyncio
    async def test_one_entry_when_cancelled_mid_prompt(self):
        prompted = asyncio.Event()

        async def waits_for_user(*args, **kwargs):
            prompted.set()
            await asyncio.sleep(10)

        gate = make_gate(AsyncMock(side_effect=waits_for_user), confirmation_timeout_s=5.0)
        task = asyncio.create_task(gate.request_confirmation(make_details()))
        await prompted.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        trail = gate.get_audit_trail()
        assert [e.outcome for e in trail] == [AuditOutcome.CANCELLED]
        assert trail[0].result is None
        assert trail[0].pupil_name == "John Doe-Smith"

    @pytest.mark.asyncio
    async def test_trail_is_a_copy_and_clearable(self):
        gate = make_gate()
        await gate.request_confirmation(make_details())

        trail = gate.get_audit_trail()
        trail.clear()
        assert len(gate.get_audit_trail()) == 1

        gate.clear_audit_log()
        assert gate.get_audit_trail() == []


# ─── Tests: Identifiers ───────────────────────────────────────────


class TestIdentifiers:
    def test_secure_ids_are_unique_and_well_formed(self):
        gate = make_gate()
        ids = [gate.generate_secure_id() for _ in range(1000)]

        assert len(set(ids)) == 1000
        pattern = re.compile(r"^conf_\d+_[a-z0-9]+$")
        assert all(pattern.match(i) for i in ids)

    def test_secure_tokens(self):
        first = ConfirmationGate.generate_secure_token()
        second = ConfirmationGate.generate_secure_token()

        assert len(first) == 32
        assert re.fullmatch(r"[0-9a-f]{32}", first)
        assert first != second
