"""
SlotGuard — Validation Types

PupilRecord is the only shape in which pupil data leaves the validator.
Message payload models double as the default inter-process message schema:
each message type maps to the model its ``data`` must satisfy.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from slotguard.errors import ValidationError
from slotguard.primitives.common import SlotGuardBaseModel, utc_now
from slotguard.systems.validation import rules


class PupilRecord(SlotGuardBaseModel):
    """A validated, normalised pupil."""

    id: str | None = None
    name: str
    licence_number: str
    phone: str
    email: str
    test_centre: str
    test_reference: str | None = None
    postcode: str | None = None
    notes: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class MessageType(enum.StrEnum):
    SEARCH_REQUEST = "SEARCH_REQUEST"
    BOOKING_REQUEST = "BOOKING_REQUEST"
    CANCEL_REQUEST = "CANCEL_REQUEST"
    STATUS_UPDATE = "STATUS_UPDATE"


def _as_value_error(rule: Callable[[Any], str], value: Any) -> str:
    # Pydantic only collects ValueError; surface the rule's message through it
    try:
        return rule(value)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


class _MessagePayload(BaseModel):
    model_config = {"extra": "forbid", "populate_by_name": True}


class SearchRequestData(_MessagePayload):
    pupil_id: str = Field(alias="pupilId")
    test_centre: str = Field(alias="testCentre")
    preferred_dates: list[str] = Field(default_factory=list, alias="preferredDates")

    @field_validator("pupil_id")
    @classmethod
    def _pupil_id(cls, v: Any) -> str:
        return _as_value_error(rules.sanitize_id, v)

    @field_validator("test_centre")
    @classmethod
    def _test_centre(cls, v: Any) -> str:
        return _as_value_error(rules.sanitize_test_centre, v)

    @field_validator("preferred_dates")
    @classmethod
    def _dates(cls, v: list[str]) -> list[str]:
        return [rules.sanitize_text(d, 10) for d in v]


class BookingRequestData(_MessagePayload):
    pupil_id: str = Field(alias="pupilId")
    test_reference: str = Field(alias="testReference")
    new_test_date: str = Field(alias="newTestDate")
    new_test_time: str = Field(alias="newTestTime")

    @field_validator("pupil_id")
    @classmethod
    def _pupil_id(cls, v: Any) -> str:
        return _as_value_error(rules.sanitize_id, v)

    @field_validator("test_reference")
    @classmethod
    def _test_reference(cls, v: Any) -> str:
        return _as_value_error(rules.validate_test_reference, v)

    @field_validator("new_test_date")
    @classmethod
    def _date(cls, v: str) -> str:
        return rules.sanitize_text(v, 10)

    @field_validator("new_test_time")
    @classmethod
    def _time(cls, v: str) -> str:
        return rules.sanitize_text(v, 5)


class CancelRequestData(_MessagePayload):
    pupil_id: str = Field(alias="pupilId")
    reason: str = ""

    @field_validator("pupil_id")
    @classmethod
    def _pupil_id(cls, v: Any) -> str:
        return _as_value_error(rules.sanitize_id, v)

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: str) -> str:
        return rules.sanitize_text(v, 200)


class StatusUpdateData(BaseModel):
    status: str
    detail: str = ""

    model_config = {"extra": "allow"}

    @field_validator("status", "detail")
    @classmethod
    def _text(cls, v: str) -> str:
        return rules.sanitize_text(v, 200)


MessageSchema = dict[str, type[BaseModel]]

DEFAULT_MESSAGE_SCHEMA: MessageSchema = {
    MessageType.SEARCH_REQUEST: SearchRequestData,
    MessageType.BOOKING_REQUEST: BookingRequestData,
    MessageType.CANCEL_REQUEST: CancelRequestData,
    MessageType.STATUS_UPDATE: StatusUpdateData,
}


class InboundMessage(SlotGuardBaseModel):
    """A message that passed schema validation, with sanitised data."""

    type: str
    data: BaseModel
    sender: str | None = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}
