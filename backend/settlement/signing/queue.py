"""
Per-key serialization of sign-and-submit work.

Two authorizations for the same signer and nonce counter must never read
the counter concurrently, otherwise both carry the same nonce and the
second one reverts on chain. Work for one key runs strictly one at a time;
work for different keys interleaves freely.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Tuple

logger = logging.getLogger(__name__)


class KeyedSerializer:
    """
    Lazily created ``asyncio.Lock`` per key.

    Locks are dropped once no task holds or waits for them, so the map does
    not grow with every signer ever seen.
    """

    def __init__(self) -> None:
        self._locks: Dict[Tuple[Hashable, ...], asyncio.Lock] = {}
        self._users: Dict[Tuple[Hashable, ...], int] = {}

    @staticmethod
    def _normalize(key: Tuple[Hashable, ...]) -> Tuple[Hashable, ...]:
        # Addresses arrive both checksummed and lower-cased
        return tuple(part.lower() if isinstance(part, str) else part for part in key)

    def _get_lock(self, key: Tuple[Hashable, ...]) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            self._users[key] = 0
        return self._locks[key]

    @asynccontextmanager
    async def hold(self, *key: Hashable) -> AsyncIterator[None]:
        """
        Run the enclosed block exclusively for ``key``.

        Usage:
            async with serializer.hold(signer_address, NonceKind.MINT):
                ...
        """
        key = self._normalize(key)
        lock = self._get_lock(key)
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_held(self, *key: Hashable) -> bool:
        lock = self._locks.get(self._normalize(key))
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)
