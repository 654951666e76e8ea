"""
SlotGuard — Keyed Lock (booking serializer)

At most one in-flight critical operation per named resource. Same-key
callers run strictly one at a time in call order; different keys are
independent.

Public interface:
  KeyedLock   — acquire(key, operation)
"""

from slotguard.systems.lock.keyed_lock import KeyedLock

__all__ = ["KeyedLock"]
