"""
SlotGuard — Keyed Lock

Each key owns a FIFO queue of waiters. The head of the queue runs; every
other caller is suspended on its own future until the head releases. A
failing operation releases the key exactly like a successful one, so an
error can never strand the queue.

Single event loop only. Queue mutations happen between awaits, which makes
them atomic with respect to other tasks.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class _LockEntry:
    holder: str | None = None
    waiters: deque[tuple[str, asyncio.Future[None]]] = field(default_factory=deque)


class KeyedLock:
    """
    Serializes async operations per key.

        lock = KeyedLock()
        result = await lock.acquire("booking:pupil-42", do_booking)

    ``operation`` is a zero-argument callable returning an awaitable. Its
    return value is handed back to the caller; its exception propagates to
    the caller unchanged.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}
        self._logger = logger.bind(system="lock")

    async def acquire(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str | None = None,
    ) -> T:
        name = label or key
        await self._enter(key, name)
        try:
            self._logger.debug("lock_acquired", key=key, holder=name)
            return await operation()
        except Exception as exc:
            self._logger.warning(
                "lock_operation_failed",
                key=key,
                holder=name,
                error=str(exc),
            )
            raise
        finally:
            self._release(key)
            self._logger.debug("lock_released", key=key, holder=name)

    async def _enter(self, key: str, name: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry()
            self._entries[key] = entry

        if entry.holder is None and not entry.waiters:
            entry.holder = name
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry.waiters.append((name, fut))
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Ownership was handed over just as we were cancelled: pass it on
                self._release(key)
            else:
                self._discard_waiter(key, fut)
            raise

    def _release(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        while entry.waiters:
            name, fut = entry.waiters.popleft()
            if fut.done():
                continue
            entry.holder = name
            fut.set_result(None)
            return
        entry.holder = None
        del self._entries[key]

    def _discard_waiter(self, key: str, fut: asyncio.Future[None]) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.waiters = deque(w for w in entry.waiters if w[1] is not fut)
        if entry.holder is None and not entry.waiters:
            del self._entries[key]

    def clear(self, key: str | None = None) -> int:
        """
        Cancel every queued waiter for ``key`` (all keys when None). Each
        dropped caller sees CancelledError from acquire(); current holders
        keep running and release normally. Returns the number dropped.
        """
        keys = [key] if key is not None else list(self._entries)
        dropped = 0
        for k in keys:
            entry = self._entries.get(k)
            if entry is None:
                continue
            waiters, entry.waiters = entry.waiters, deque()
            for _name, fut in waiters:
                if fut.cancel():
                    dropped += 1
            if entry.holder is None:
                del self._entries[k]
        if dropped:
            self._logger.warning("lock_cleared", key=key, dropped=dropped)
        return dropped

    # ─── Introspection ─────────────────────────────────────────────

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.holder is not None

    def current_holder(self, key: str) -> str | None:
        entry = self._entries.get(key)
        return entry.holder if entry else None

    def queue_length(self, key: str) -> int:
        """Number of callers waiting behind the current holder."""
        entry = self._entries.get(key)
        return len(entry.waiters) if entry else 0

    def active_keys(self) -> list[str]:
        return list(self._entries)
