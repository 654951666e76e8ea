"""
SlotGuard — Input Validation

Normalises pupil records and checks messages that cross a trust boundary.

Public interface:
  InputValidator   — sanitize_pupil_data(), validate_message(), check_rate_limit()
  PupilRecord      — validated pupil
  InboundMessage   — validated message
"""

from slotguard.systems.validation.types import (
    DEFAULT_MESSAGE_SCHEMA,
    InboundMessage,
    MessageType,
    PupilRecord,
)
from slotguard.systems.validation.validator import InputValidator

__all__ = [
    "DEFAULT_MESSAGE_SCHEMA",
    "InboundMessage",
    "InputValidator",
    "MessageType",
    "PupilRecord",
]
