"""
Shared in-process state for the replication engines.

Both objects here are owned by the replication service and injected into the
engines; neither is module-global.
"""

import asyncio
import threading
import time
from collections import Counter
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Iterator, Optional


def wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


class WriteClock:
    """
    Source of server-authoritative ``updatedAt`` stamps.

    Stamps are strictly increasing even if the wall clock stalls or steps
    backwards. A stamp stays "in flight" from reservation until its writes
    finish; pulls stop short of the oldest in-flight stamp so a cursor can
    never move past a write that has not landed yet.
    """

    def __init__(self, now: Callable[[], int] = wall_clock_ms, floor: int = 0):
        self._now = now
        self._last = floor
        self._in_flight: Counter = Counter()
        self._lock = threading.Lock()

    def observe(self, updated_at: int) -> None:
        """Make sure future stamps sort after an existing one."""
        with self._lock:
            self._last = max(self._last, updated_at)

    def next_stamp(self) -> int:
        with self._lock:
            self._last = max(self._now(), self._last + 1)
            return self._last

    @contextmanager
    def reserve(self) -> Iterator[int]:
        """Allocate a stamp and hold it in flight for the block's duration."""
        with self._lock:
            stamp = self._last = max(self._now(), self._last + 1)
            self._in_flight[stamp] += 1
        try:
            yield stamp
        finally:
            with self._lock:
                self._in_flight[stamp] -= 1
                if self._in_flight[stamp] <= 0:
                    del self._in_flight[stamp]

    def visibility_horizon(self) -> Optional[int]:
        """Smallest in-flight stamp, or None when no write is pending."""
        with self._lock:
            return min(self._in_flight) if self._in_flight else None

    @property
    def last_stamp(self) -> int:
        return self._last


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyLockTable:
    """
    Key-partitioned async locks.

    Entries exist only while some task holds or waits for the key, so the
    table stays proportional to the number of keys currently contended.
    """

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()


__all__ = [
    'WriteClock',
    'KeyLockTable',
    'wall_clock_ms',
]
