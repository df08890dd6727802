"""Per-scope-key write serialization and optimistic version checks.

In-memory stores hold one asyncio.Lock per scope key so two writers to the
same key never interleave, while writers to different keys proceed in
parallel. Readers never take a lock: they read the record reference that
is currently stored, and records are immutable.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

from src.shared.errors import ConflictError


class KeyedLock:
    """A map of scope key -> asyncio.Lock.

    A key's lock exists only while some task holds or waits for it, so the
    map stays as small as the number of keys currently being written.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def check_expected_version(expected: int | None, current: int, scope: str) -> None:
    """Raise ConflictError when a write was based on a stale version.

    expected=None skips the check (last write wins).
    """
    if expected is not None and expected != current:
        msg = f"Stale write to {scope}: expected version {expected}, stored version {current}"
        raise ConflictError(msg)
