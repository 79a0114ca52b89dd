"""
Per-Deal Locks

Reader/writer locks keyed by deal id.

Transitions and mutations hold the write side; validation, summaries and
timeline reads hold the read side. Different deal ids never share a lock,
and an entry is dropped from the registry once nobody holds or waits on it.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional


class DealLock:
    """
    Writer-preferring reader/writer lock for a single deal.

    Readers share the lock; a writer holds it alone. Once a writer is
    waiting, new readers queue behind it.
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def locked(self) -> bool:
        return self._writer

    async def acquire_read(self):
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0
            )
            self._readers += 1

    async def release_read(self):
        async with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    async def acquire_write(self):
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._waiting_writers -= 1
                # Wake readers queued behind this writer
                self._cond.notify_all()
            self._writer = True

    async def release_write(self):
        async with self._cond:
            self._writer = False
            self._cond.notify_all()


@dataclass
class _Entry:
    lock: DealLock = field(default_factory=DealLock)
    users: int = 0


class DealLockRegistry:
    """
    Hands out per-deal locks and forgets them when unused.

    Usage:
        locks = DealLockRegistry()
        async with locks.write(deal.id):
            ...
        async with locks.read(deal.id):
            ...
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, deal_id: str) -> bool:
        return deal_id in self._entries

    def _checkout(self, deal_id: str) -> DealLock:
        entry = self._entries.get(deal_id)
        if entry is None:
            entry = self._entries[deal_id] = _Entry()
        entry.users += 1
        return entry.lock

    def _checkin(self, deal_id: str):
        entry = self._entries[deal_id]
        entry.users -= 1
        if entry.users == 0:
            del self._entries[deal_id]

    @asynccontextmanager
    async def write(self, deal_id: str) -> AsyncIterator[DealLock]:
        lock = self._checkout(deal_id)
        try:
            await lock.acquire_write()
            try:
                yield lock
            finally:
                await lock.release_write()
        finally:
            self._checkin(deal_id)

    @asynccontextmanager
    async def read(self, deal_id: str) -> AsyncIterator[DealLock]:
        lock = self._checkout(deal_id)
        try:
            await lock.acquire_read()
            try:
                yield lock
            finally:
                await lock.release_read()
        finally:
            self._checkin(deal_id)


# Singleton instance
_lock_registry: Optional[DealLockRegistry] = None


def get_lock_registry() -> DealLockRegistry:
    """Get the process-wide lock registry."""
    global _lock_registry
    if _lock_registry is None:
        _lock_registry = DealLockRegistry()
    return _lock_registry
