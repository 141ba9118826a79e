"""In-process serialization points for ledger writers.

Each key (a child or a reward) gets its own ``asyncio.Lock``. Inside one
process this is the single-writer-per-child guarantee; across processes the
row locks taken by the store (``SELECT ... FOR UPDATE``) and the unique
``(child_id, sequence)`` constraint provide the same ordering.

Lock order is always reward before child.
"""

from __future__ import annotations

import asyncio
import weakref


class KeyedLocks:
    """Lazily created per-key locks, dropped once nobody holds a reference."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _get_lock(self, scope: str, identifier: object) -> asyncio.Lock:
        lock_key = f"{scope}:{identifier}"
        lock = self._locks.get(lock_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[lock_key] = lock
        return lock

    def child(self, child_id: object) -> asyncio.Lock:
        return self._get_lock("child", child_id)

    def reward(self, reward_id: object) -> asyncio.Lock:
        return self._get_lock("reward", reward_id)

    def __len__(self) -> int:
        return len(self._locks)


_registry = KeyedLocks()


def get_lock_registry() -> KeyedLocks:
    """Process-wide registry shared by every store/engine instance."""
    return _registry
