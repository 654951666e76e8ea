"""
SlotGuard — Secure Confirmation Gate

No booking action happens without an explicit, time-bounded human "yes".

Each request_confirmation() call:
  1. Validates the booking details (future slot, all fields present).
     Invalid details fail before any prompt is shown.
  2. Issues a confirmation id and a one-time secure token.
  3. Presents the opportunity through the injected Notifier and waits, bounded
     by ConsentConfig.confirmation_timeout_s.
  4. Checks the response echoes the id and token it was issued.
  5. Appends exactly one AuditEntry, whatever happened.

Timeout is a result (reason="timeout"), not an exception. The gate holds no
booking state; the caller drives the state machine from the result.
"""

from __future__ import annotations

import asyncio
import secrets
import string
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from slotguard.config import ConsentConfig
from slotguard.errors import ValidationError
from slotguard.primitives.common import wall_clock
from slotguard.systems.consent.prompt import parse_date, parse_time, render_prompt
from slotguard.systems.consent.types import (
    AuditEntry,
    AuditOutcome,
    ConfirmationReason,
    ConfirmationRequest,
    ConfirmationResult,
    Notifier,
    NotifierResponse,
)

logger = structlog.get_logger()

REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("pupil_name", "pupilName"),
    ("test_centre", "testCentre"),
    ("current_test_date", "currentTestDate"),
    ("current_test_time", "currentTestTime"),
    ("new_test_date", "newTestDate"),
    ("new_test_time", "newTestTime"),
)

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _as_mapping(details: ConfirmationRequest | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(details, ConfirmationRequest):
        return details.model_dump()
    return details


class ConfirmationGate:
    def __init__(
        self,
        notifier: Notifier,
        config: ConsentConfig | None = None,
        clock: Callable[[], float] = wall_clock,
    ) -> None:
        self._notifier = notifier
        self._config = config or ConsentConfig()
        self._clock = clock
        self._audit_log: list[AuditEntry] = []
        self._logger = logger.bind(system="consent.gate")

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    # ─── Validation ────────────────────────────────────────────────

    def validate_booking_details(
        self, details: ConfirmationRequest | Mapping[str, Any] | None
    ) -> bool:
        """
        True when every required field is a non-blank string, both dates parse,
        and the new slot starts strictly after now. Never raises.
        """
        if details is None:
            return False
        raw = _as_mapping(details)
        if not isinstance(raw, Mapping):
            return False

        values: dict[str, str] = {}
        for snake, camel in REQUIRED_FIELDS:
            value = raw.get(snake, raw.get(camel))
            if not isinstance(value, str) or not value.strip():
                self._logger.info("booking_details_missing_field", field=snake)
                return False
            values[snake] = value.strip()

        try:
            parse_date(values["current_test_date"])
            parse_time(values["current_test_time"])
            new_date = parse_date(values["new_test_date"])
            new_time = parse_time(values["new_test_time"])
        except ValueError:
            self._logger.info("booking_details_bad_date")
            return False

        if new_time.tzinfo is None:
            starts_at = datetime.combine(new_date, new_time, tzinfo=timezone.utc)
        else:
            starts_at = datetime.combine(new_date, new_time).astimezone(timezone.utc)
        if starts_at <= self._now():
            self._logger.info("booking_details_not_future", new_test_date=values["new_test_date"])
            return False
        return True

    # ─── Confirmation ──────────────────────────────────────────────

    async def request_confirmation(
        self, details: ConfirmationRequest | Mapping[str, Any]
    ) -> ConfirmationResult:
        requested_at = self._now()
        confirmation_id = self.generate_secure_id()

        if not self.validate_booking_details(details):
            self._append(AuditEntry(
                confirmation_id=confirmation_id,
                outcome=AuditOutcome.INVALID_DETAILS,
                requested_at=requested_at,
                resolved_at=self._now(),
                error="Invalid booking details provided",
            ))
            raise ValidationError("Invalid booking details provided")

        try:
            request = (
                details
                if isinstance(details, ConfirmationRequest)
                else ConfirmationRequest.model_validate(dict(details))
            )
        except PydanticValidationError as exc:
            self._append(AuditEntry(
                confirmation_id=confirmation_id,
                outcome=AuditOutcome.INVALID_DETAILS,
                requested_at=requested_at,
                resolved_at=self._now(),
                error=str(exc),
            ))
            raise ValidationError("Invalid booking details provided") from exc

        secure_token = self.generate_secure_token()
        title, body = render_prompt(request, self._config.confirmation_timeout_s)
        actions = [self._config.approve_action, self._config.cancel_action]

        self._logger.info(
            "confirmation_requested",
            confirmation_id=confirmation_id,
            test_centre=request.test_centre,
            new_test_date=request.new_test_date,
        )

        try:
            response = await asyncio.wait_for(
                self._notifier.notify(
                    title,
                    body,
                    actions,
                    confirmation_id=confirmation_id,
                    secure_token=secure_token,
                ),
                timeout=self._config.confirmation_timeout_s,
            )
        except asyncio.TimeoutError:
            result = ConfirmationResult(
                confirmed=False,
                reason=ConfirmationReason.TIMEOUT,
                confirmation_id=confirmation_id,
                timestamp=self._now(),
            )
            self._record(request, confirmation_id, requested_at, AuditOutcome.TIMED_OUT, result)
            return result
        except asyncio.CancelledError:
            self._record(
                request,
                confirmation_id,
                requested_at,
                AuditOutcome.CANCELLED,
                None,
                error="Confirmation request cancelled",
            )
            raise
        except Exception as exc:
            self._record(
                request,
                confirmation_id,
                requested_at,
                AuditOutcome.NOTIFIER_FAILED,
                None,
                error=str(exc),
            )
            raise

        if not self._response_is_authentic(response, confirmation_id, secure_token):
            self._record(
                request,
                confirmation_id,
                requested_at,
                AuditOutcome.REJECTED_RESPONSE,
                None,
                error="Invalid confirmation response",
            )
            raise ValidationError("Invalid confirmation response")

        approved = response.action == self._config.approve_action
        result = ConfirmationResult(
            confirmed=approved,
            reason=(
                ConfirmationReason.USER_APPROVED
                if approved
                else ConfirmationReason.USER_CANCELLED
            ),
            confirmation_id=confirmation_id,
            timestamp=self._now(),
            user_agent=response.user_agent,
        )
        self._record(
            request,
            confirmation_id,
            requested_at,
            AuditOutcome.APPROVED if approved else AuditOutcome.DENIED,
            result,
        )
        return result

    def _response_is_authentic(
        self,
        response: Any,
        confirmation_id: str,
        secure_token: str,
    ) -> bool:
        if not isinstance(response, NotifierResponse):
            self._logger.error("confirmation_response_malformed", confirmation_id=confirmation_id)
            return False
        if response.confirmation_id != confirmation_id:
            self._logger.error("confirmation_id_mismatch", confirmation_id=confirmation_id)
            return False
        if not secrets.compare_digest(response.secure_token, secure_token):
            self._logger.error("confirmation_token_mismatch", confirmation_id=confirmation_id)
            return False
        return True

    # ─── Audit trail ───────────────────────────────────────────────

    def _record(
        self,
        request: ConfirmationRequest,
        confirmation_id: str,
        requested_at: datetime,
        outcome: AuditOutcome,
        result: ConfirmationResult | None,
        error: str = "",
    ) -> None:
        self._append(AuditEntry(
            confirmation_id=confirmation_id,
            outcome=outcome,
            requested_at=requested_at,
            resolved_at=self._now(),
            pupil_name=request.pupil_name,
            test_centre=request.test_centre,
            current_test_date=request.current_test_date,
            new_test_date=request.new_test_date,
            result=result,
            error=error,
        ))

    def _append(self, entry: AuditEntry) -> None:
        self._audit_log.append(entry)
        self._logger.info(
            "confirmation_audit",
            confirmation_id=entry.confirmation_id,
            outcome=entry.outcome,
            response_time_ms=entry.response_time_ms,
        )

    def get_audit_trail(self) -> list[AuditEntry]:
        return list(self._audit_log)

    def clear_audit_log(self) -> None:
        """Testing / debugging only."""
        self._audit_log = []

    # ─── Identifiers ───────────────────────────────────────────────

    def generate_secure_id(self) -> str:
        """``conf_<epoch-ms>_<base36>``, random part from the OS CSPRNG."""
        return f"conf_{int(self._clock() * 1000)}_{_to_base36(secrets.randbits(64))}"

    @staticmethod
    def generate_secure_token() -> str:
        """32 hex characters (128 random bits)."""
        return secrets.token_hex(16)
