"""
The MIT License (MIT)

Copyright (c) 2026-present mrsnifo

Permission is hereby granted, free of charge, to any person obtaining a
copy of this software and associated documentation files (the "Software"),
to deal in the Software without restriction, including without limitation
the rights to use, copy, modify, merge, publish, distribute, sublicense,
and/or sell copies of the Software, and to permit persons to whom the
Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in
all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS
OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NON-INFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING
FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
DEALINGS IN THE SOFTWARE.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple
from redis.asyncio import Redis
from redis.exceptions import RedisError
from .errors import StoreError
import abc
import heapq
import logging
import time

_logger = logging.getLogger(__name__)

__all__ = ('KVStore', 'MemoryStore', 'RedisStore', 'store_from_url')


class KVStore(abc.ABC):
    """
    Asynchronous key-value store with per-entry expiry.

    Implementations are expected to be eventually consistent at best: no
    read-after-write guarantee is assumed across concurrent callers and no
    transactions are used.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the live value stored under ``key`` or None."""

    @abc.abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key``, expiring after ``ttl_seconds``."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is not an error."""

    async def close(self) -> None:
        """Release backend resources."""


class MemoryStore(KVStore):
    """
    In-process store with expiry.

    Entries are dropped when read after their deadline, and every write
    purges whatever has expired since, so keys that are never read again
    (past counter windows) do not accumulate. The clock is injectable so
    expiry can be simulated.

    Parameters
    ----------
    clock: Callable[[], float]
        Returns the current time in seconds.
    """

    __slots__ = ('clock', '_entries', '_deadlines')

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock: Callable[[], float] = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._deadlines: List[Tuple[float, str]] = []

    def __len__(self) -> int:
        now = self.clock()
        return sum(1 for _, expires_at in self._entries.values() if now < expires_at)

    def __contains__(self, key: str) -> bool:
        return self._live(key) is not None

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def _purge(self, now: float) -> None:
        deadlines = self._deadlines
        while deadlines and deadlines[0][0] <= now:
            expires_at, key = heapq.heappop(deadlines)
            entry = self._entries.get(key)
            # Stale deadlines left behind by overwrites are skipped.
            if entry is not None and entry[1] == expires_at:
                del self._entries[key]

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self.clock()
        self._purge(now)
        expires_at = now + ttl_seconds
        self._entries[key] = (value, expires_at)
        heapq.heappush(self._deadlines, (expires_at, key))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class RedisStore(KVStore):
    """
    Store backed by ``redis.asyncio``.

    Every backend failure is re-raised as :class:`StoreError` so callers only
    deal with one exception type.

    Parameters
    ----------
    redis: Redis
        A client created with ``decode_responses=True``.
    """

    __slots__ = ('redis',)

    def __init__(self, redis: Redis) -> None:
        self.redis: Redis = redis

    @classmethod
    def from_url(cls, url: str, **options) -> RedisStore:
        options.setdefault('decode_responses', True)
        return cls(Redis.from_url(url, **options))

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.redis.get(key)
        except RedisError as exc:
            raise StoreError('get', key, exc) from exc
        if isinstance(value, bytes):
            return value.decode('utf-8', 'replace')
        return value

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.redis.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise StoreError('put', key, exc) from exc

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as exc:
            raise StoreError('delete', key, exc) from exc

    async def close(self) -> None:
        await self.redis.aclose()


def store_from_url(url: Optional[str]) -> Optional[KVStore]:
    """
    Build a store from a URL.

    ``memory://`` yields a :class:`MemoryStore`, ``redis://``, ``rediss://``
    and ``unix://`` yield a :class:`RedisStore`. An empty value yields None,
    which leaves the guard without a store.
    """
    if not url:
        return None
    if url.startswith('memory://'):
        _logger.debug('Using in-process memory store')
        return MemoryStore()
    if url.startswith(('redis://', 'rediss://', 'unix://')):
        _logger.debug('Using redis store')
        return RedisStore.from_url(url)
    raise ValueError(f'Unsupported store URL: {url!r}')
