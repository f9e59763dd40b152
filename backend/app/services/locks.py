"""
Per-key asyncio locks.

Used to serialize read-validate-write sequences that must not interleave
within one process: dependency edges per project, instance
materialization per template. Across processes the database constraints
(edge primary key, unique (template, occurrence)) are the final guard.

A key's lock only exists while some coroutine holds or waits for it, so
the table stays as small as the number of keys in use.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """asyncio.Lock per key, created on first use and dropped when idle."""

    def __init__(self, name: str):
        self.name = name
        self._slots: dict[str, _Slot] = {}

    @asynccontextmanager
    async def hold(self, key: uuid.UUID | str) -> AsyncIterator[None]:
        """Acquire the lock for `key` for the duration of the block."""
        lock_key = str(key)
        slot = self._slots.get(lock_key)
        if slot is None:
            slot = self._slots[lock_key] = _Slot()
        # Counted before awaiting so a waiter keeps the slot alive
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[lock_key]

    def locked(self, key: uuid.UUID | str) -> bool:
        slot = self._slots.get(str(key))
        return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        return len(self._slots)

    def __repr__(self):
        return f"KeyedLocks(name={self.name}, keys={len(self._slots)})"
