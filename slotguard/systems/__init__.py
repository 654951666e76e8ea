"""SlotGuard systems."""
