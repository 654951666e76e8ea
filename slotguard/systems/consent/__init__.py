"""
SlotGuard — Consent (Secure Confirmation Gate)

Explicit, time-bounded, audited human approval before any booking action.

Public interface:
  ConfirmationGate     — request_confirmation(), validate_booking_details(), audit trail
  Notifier             — protocol for the external confirmation surface
  ConfirmationResult   — approval / denial / timeout as a value
  is_confirmed         — the only predicate that may authorise a booking
"""

from slotguard.systems.consent.gate import ConfirmationGate
from slotguard.systems.consent.types import (
    AuditEntry,
    AuditOutcome,
    ConfirmationReason,
    ConfirmationRequest,
    ConfirmationResult,
    Notifier,
    NotifierResponse,
    is_confirmed,
)

__all__ = [
    "AuditEntry",
    "AuditOutcome",
    "ConfirmationGate",
    "ConfirmationReason",
    "ConfirmationRequest",
    "ConfirmationResult",
    "Notifier",
    "NotifierResponse",
    "is_confirmed",
]
