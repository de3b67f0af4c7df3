"""
In-Memory Subtree Lock Registry
Serializes structural mutations (create under a parent, re-parent, delete)
per affected subtree using asyncio locks keyed by root association id.

Note: Locks live in process memory. Multi-process deployments rely on the
idempotent descendant repair path instead.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set

from assoc_registry.core.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

KeyResolver = Callable[[], Awaitable[Iterable[str]]]

MAX_LOCK_ATTEMPTS = 10


def root_key(record: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Lock key for the subtree containing `record`: its root id."""
    if record is None:
        return None
    hierarchy = record.get("hierarchy") or []
    return hierarchy[0] if hierarchy else record["id"]


class SubtreeLocks:
    """
    Registry of one asyncio.Lock per root id.

    `hold(resolve_keys)` computes the keys, acquires the locks in sorted order
    and recomputes the keys once held. If a concurrent move changed the roots
    in the meantime, the locks are released and acquisition starts over.

    A key's lock is dropped once no caller holds or waits on it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _forget(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    def _release(self, held: List[str]) -> None:
        for key in reversed(held):
            self._locks[key].release()
            self._forget(key)
        held.clear()

    async def _acquire(self, keys: List[str], held: List[str]) -> None:
        try:
            for key in keys:
                lock = self._lock_for(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._forget(key)
                    raise
                held.append(key)
        except BaseException:
            self._release(held)
            raise

    @asynccontextmanager
    async def hold(self, resolve_keys: KeyResolver):
        held: List[str] = []
        keys: Set[str] = set()
        for attempt in range(1, MAX_LOCK_ATTEMPTS + 1):
            keys = {k for k in await resolve_keys() if k}
            await self._acquire(sorted(keys), held)
            try:
                current = {k for k in await resolve_keys() if k}
            except BaseException:
                self._release(held)
                raise
            if current == keys:
                break
            self._release(held)
            logger.debug(
                "Subtree roots changed while acquiring locks, retrying",
                extra={"attempt": attempt, "keys": sorted(keys), "current": sorted(current)}
            )
        else:
            raise StorageUnavailableError(
                f"Could not acquire stable subtree locks after {MAX_LOCK_ATTEMPTS} attempts",
                context={"keys": sorted(keys)}
            )

        try:
            yield sorted(keys)
        finally:
            self._release(held)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
