"""
SlotGuard — Common Primitives

Shared base classes and utilities used across all systems.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone

from pydantic import BaseModel
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def wall_clock() -> float:
    """Seconds since the epoch. The default injectable clock."""
    return time.time()


class SlotGuardBaseModel(BaseModel):
    """Base model for all SlotGuard primitives."""

    model_config = {"populate_by_name": True, "from_attributes": True}
