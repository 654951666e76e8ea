"""
SlotGuard — Input Validator

Two trust boundaries:

1. Pupil records entered by the instructor. sanitize_pupil_data() fails
   loudly with ValidationError on the first violated rule.
2. Messages crossing process boundaries (content script ↔ background).
   The sender may be untrusted, so validate_message() never raises: it
   answers True or False and logs why.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from slotguard.config import ValidationConfig
from slotguard.errors import ValidationError
from slotguard.primitives.common import utc_now, wall_clock
from slotguard.systems.validation import rules
from slotguard.systems.validation.rate_limit import FixedWindowRateLimiter
from slotguard.systems.validation.types import (
    DEFAULT_MESSAGE_SCHEMA,
    InboundMessage,
    MessageSchema,
    PupilRecord,
)

logger = structlog.get_logger()


def _lookup(record: Mapping[str, Any], *names: str) -> Any:
    """First present value among snake_case / camelCase spellings."""
    for name in names:
        if name in record and record[name] is not None:
            return record[name]
    return None


class InputValidator:
    def __init__(
        self,
        config: ValidationConfig | None = None,
        clock: Callable[[], float] = wall_clock,
    ) -> None:
        self._config = config or ValidationConfig()
        self._rate_limiter = FixedWindowRateLimiter(
            max_attempts=self._config.rate_limit_max_attempts,
            window_s=self._config.rate_limit_window_s,
            clock=clock,
        )
        self._logger = logger.bind(system="validation")

    # ─── Pupil records ─────────────────────────────────────────────

    def sanitize_pupil_data(self, record: Mapping[str, Any]) -> PupilRecord:
        """
        Validate and normalise a pupil record.

        Contact fields may be flat (``email``, ``phone``) or nested under
        ``contact``. Optional fields (id, test reference, postcode, notes) are
        validated only when present.
        """
        if not isinstance(record, Mapping):
            raise ValidationError("Invalid pupil data: record must be a mapping")

        contact = record.get("contact")
        if not isinstance(contact, Mapping):
            contact = {}

        try:
            raw_id = _lookup(record, "id")
            raw_reference = _lookup(record, "test_reference", "testReference")
            raw_postcode = _lookup(record, "postcode")
            values: dict[str, Any] = {
                "id": rules.sanitize_id(raw_id) if raw_id is not None else None,
                "name": rules.validate_name(record.get("name")),
                "licence_number": rules.validate_licence_number(
                    _lookup(record, "licence_number", "licenceNumber")
                ),
                "phone": rules.validate_phone(
                    _lookup(record, "phone") or _lookup(contact, "phone")
                ),
                "email": rules.validate_email(
                    _lookup(record, "email") or _lookup(contact, "email")
                ),
                "test_centre": rules.sanitize_test_centre(
                    _lookup(record, "test_centre", "testCentre")
                ),
                "test_reference": (
                    rules.validate_test_reference(raw_reference)
                    if raw_reference is not None
                    else None
                ),
                "postcode": (
                    rules.validate_postcode(raw_postcode) if raw_postcode is not None else None
                ),
                "notes": rules.sanitize_text(record.get("notes"), self._config.notes_max_length),
            }
        except ValidationError as exc:
            self._logger.info("pupil_data_rejected", field=exc.field, reason=str(exc))
            raise ValidationError(f"Invalid pupil data: {exc}", field=exc.field) from exc

        created_at = record.get("created_at") or record.get("createdAt")
        if created_at is not None:
            values["created_at"] = created_at
        values["updated_at"] = utc_now()
        return PupilRecord(**values)

    def sanitize_text(self, text: Any, max_length: int = 1000) -> str:
        return rules.sanitize_text(text, max_length)

    # ─── Inter-process messages ────────────────────────────────────

    def parse_message(
        self,
        message: Any,
        schema: MessageSchema | None = None,
        sender: str | None = None,
    ) -> InboundMessage:
        """Raising variant of validate_message(); returns sanitised data."""
        schema = schema if schema is not None else DEFAULT_MESSAGE_SCHEMA

        if not isinstance(message, Mapping):
            raise ValidationError("Invalid message format")
        for required in ("type", "data"):
            if not message.get(required):
                raise ValidationError(f"Missing required field: {required}", field=required)

        msg_type = message["type"]
        if not isinstance(msg_type, str) or msg_type not in schema:
            raise ValidationError("Invalid message type", field="type")
        if not isinstance(message["data"], Mapping):
            raise ValidationError("Message data must be an object", field="data")

        try:
            data = schema[msg_type].model_validate(dict(message["data"]))
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            raise ValidationError(
                f"Invalid {msg_type} data: {first['msg']}",
                field=".".join(str(p) for p in first["loc"]) or "data",
            ) from exc

        return InboundMessage(type=msg_type, data=data, sender=sender)

    def validate_message(
        self,
        message: Any,
        schema: MessageSchema | None = None,
        sender: str | None = None,
    ) -> bool:
        try:
            self.parse_message(message, schema, sender)
        except ValidationError as exc:
            self._logger.warning(
                "message_rejected",
                reason=str(exc),
                field=exc.field,
                sender=sender,
            )
            return False
        return True

    # ─── Rate limiting ─────────────────────────────────────────────

    def check_rate_limit(self, identifier: str, operation: str) -> bool:
        return self._rate_limiter.check(identifier, operation)

    def cleanup_rate_limits(self) -> int:
        return self._rate_limiter.cleanup()
