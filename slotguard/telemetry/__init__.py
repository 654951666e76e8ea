"""SlotGuard telemetry: structured logging setup."""

from slotguard.telemetry.logging import setup_logging

__all__ = ["setup_logging"]
