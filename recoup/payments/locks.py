"""Per-key asyncio locks for serializing work on a single invoice."""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import DefaultDict


class KeyedLocks:
    """
    One asyncio.Lock per key, dropped again once nobody holds or waits on it.

    Only serializes callers inside one process; across processes the invoice
    version column is what catches the race.
    """

    def __init__(self):
        self._locks: DefaultDict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiters: DefaultDict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str):
        self._waiters[key] += 1
        lock = self._locks[key]
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._locks


# Shared by every PaymentMonitor in the process
invoice_locks = KeyedLocks()
