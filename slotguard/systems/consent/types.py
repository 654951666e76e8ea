"""
SlotGuard — Consent Types

ConfirmationResult is a value, never an exception: a timed-out or denied
prompt is an expected outcome that callers must branch on. Only a result
with ``confirmed=True`` may open the path to a state-changing booking action.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from pydantic import Field

from slotguard.primitives.common import SlotGuardBaseModel, utc_now


class ConfirmationReason(enum.StrEnum):
    USER_APPROVED = "user_approved"
    USER_CANCELLED = "user_cancelled"
    TIMEOUT = "timeout"


class ConfirmationRequest(SlotGuardBaseModel):
    pupil_name: str = Field(alias="pupilName")
    test_centre: str = Field(alias="testCentre")
    current_test_date: str = Field(alias="currentTestDate")
    current_test_time: str = Field(alias="currentTestTime")
    new_test_date: str = Field(alias="newTestDate")
    new_test_time: str = Field(alias="newTestTime")


class ConfirmationResult(SlotGuardBaseModel):
    confirmed: bool
    reason: ConfirmationReason
    confirmation_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    user_agent: str | None = None


class NotifierResponse(SlotGuardBaseModel):
    """What the UI surface reports back for one prompt."""

    confirmation_id: str
    secure_token: str
    # The action the human picked; None when the prompt was dismissed
    action: str | None = None
    user_agent: str | None = None


class AuditOutcome(enum.StrEnum):
    APPROVED = "approved"
    DENIED = "denied"
    TIMED_OUT = "timed_out"
    INVALID_DETAILS = "invalid_details"
    REJECTED_RESPONSE = "rejected_response"
    NOTIFIER_FAILED = "notifier_failed"
    CANCELLED = "cancelled"


class AuditEntry(SlotGuardBaseModel):
    """One confirmation decision point. Never mutated after insertion."""

    confirmation_id: str
    outcome: AuditOutcome
    requested_at: datetime
    resolved_at: datetime = Field(default_factory=utc_now)
    pupil_name: str | None = None
    test_centre: str | None = None
    current_test_date: str | None = None
    new_test_date: str | None = None
    result: ConfirmationResult | None = None
    error: str = ""

    model_config = {"frozen": True}

    @property
    def response_time_ms(self) -> int:
        return int((self.resolved_at - self.requested_at).total_seconds() * 1000)


class Notifier(Protocol):
    """
    The human-facing confirmation surface (browser notification, popup,
    chat message...). The concrete binding lives outside the core.
    """

    async def notify(
        self,
        title: str,
        body: str,
        actions: Sequence[str],
        *,
        confirmation_id: str,
        secure_token: str,
    ) -> NotifierResponse:
        ...


def is_confirmed(result: ConfirmationResult | None) -> bool:
    """The single predicate allowed to authorise a booking action."""
    return (
        result is not None
        and result.confirmed is True
        and result.reason == ConfirmationReason.USER_APPROVED
    )
