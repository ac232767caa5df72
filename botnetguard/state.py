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

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from .store import KVStore
import enum
import json
import logging
import time

_logger = logging.getLogger(__name__)

__all__ = (
    'Reason',
    'BlockRecord',
    'BlockStore',
    'CounterStore',
    'ScoreStore',
    'timestamp',
)

BLOCK_KEY_PREFIX = 'blocked:'
COUNTER_KEY_PREFIX = 'count:'
SCORE_KEY_PREFIX = 'score:'

# Counters outlive their window slightly so late readers still see them.
COUNTER_GRACE_SECONDS = 5


class Reason(str, enum.Enum):
    RATE_LIMIT_WINDOW = 'rate_limit_window'
    RATE_LIMIT_BURST = 'rate_limit_burst'
    BOT_SIGNATURE = 'bot_signature'
    MANUAL = 'manual'


def timestamp(now: float) -> str:
    """Format epoch seconds as an ISO-8601 UTC string with millisecond precision."""
    moment = datetime.fromtimestamp(now, tz=timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _to_int(raw: Optional[str]) -> int:
    if not raw:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


@dataclass
class BlockRecord:
    """
    A TTL-bound decision to reject every request from an address.

    Attributes
    ----------
    reason: str
        One of :class:`Reason` or a free-form reason supplied by an operator.
    blocked_at: str
        ISO-8601 timestamp of the decision.
    fields: Dict[str, Any]
        Reason specific details, already in wire (camelCase) form.
    """

    reason: str
    blocked_at: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'reason': self.reason}
        if self.blocked_at:
            data['blockedAt'] = self.blocked_at
        data.update(self.fields)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BlockRecord:
        extra = {k: v for k, v in data.items() if k not in ('reason', 'blockedAt')}
        return cls(reason=data.get('reason', Reason.MANUAL.value), blocked_at=data.get('blockedAt', ''), fields=extra)

    @classmethod
    def rate_limit(
            cls,
            reason: Reason,
            now: float,
            *,
            window_seconds: int,
            max_requests: int,
            observed_count: int,
            path: str
    ) -> BlockRecord:
        return cls(reason.value, timestamp(now), {
            'windowSeconds': window_seconds,
            'maxRequests': max_requests,
            'observedCount': observed_count,
            'path': path,
        })

    @classmethod
    def manual(cls, now: float, reason: str = Reason.MANUAL.value, actor: str = 'admin_api') -> BlockRecord:
        return cls(reason, timestamp(now), {'actor': actor})


class BlockStore:
    """Block ledger keyed by client address."""

    __slots__ = ('kv',)

    def __init__(self, kv: KVStore) -> None:
        self.kv: KVStore = kv

    @staticmethod
    def key(ip: str) -> str:
        return f'{BLOCK_KEY_PREFIX}{ip}'

    async def get(self, ip: str) -> Optional[BlockRecord]:
        raw = await self.kv.get(self.key(ip))
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            # Entries written by hand, e.g. ``SET blocked:1.2.3.4 spam``.
            return BlockRecord(Reason.MANUAL.value, '', {'detail': raw})
        return BlockRecord.from_dict(data)

    async def put(self, ip: str, record: BlockRecord, ttl_seconds: int) -> None:
        _logger.debug('Blocking %s for %ss (%s)', ip, ttl_seconds, record.reason)
        await self.kv.put(self.key(ip), json.dumps(record.to_dict()), ttl_seconds)

    async def delete(self, ip: str) -> None:
        await self.kv.delete(self.key(ip))


class CounterStore:
    """
    Fixed-window request counters.

    Increments are read-then-write and therefore not atomic: two concurrent
    requests can read the same value and undercount.

    Parameters
    ----------
    kv: KVStore
        Backing store.
    clock: Callable[[], float]
        Returns the current time in seconds.
    """

    __slots__ = ('kv', 'clock')

    def __init__(self, kv: KVStore, clock: Callable[[], float] = time.time) -> None:
        self.kv: KVStore = kv
        self.clock: Callable[[], float] = clock

    @staticmethod
    def key(ip: str, scope: str, window_id: int) -> str:
        return f'{COUNTER_KEY_PREFIX}{scope}:{ip}:{window_id}'

    def window_id(self, window_seconds: int) -> int:
        return int(self.clock() // window_seconds)

    async def increment(self, ip: str, scope: str, window_seconds: int) -> int:
        key = self.key(ip, scope, self.window_id(window_seconds))
        count = _to_int(await self.kv.get(key)) + 1
        await self.kv.put(key, str(count), window_seconds + COUNTER_GRACE_SECONDS)
        return count


class ScoreStore:
    """Bot score accumulator. Every increment resets the entry's TTL."""

    __slots__ = ('kv',)

    def __init__(self, kv: KVStore) -> None:
        self.kv: KVStore = kv

    @staticmethod
    def key(ip: str) -> str:
        return f'{SCORE_KEY_PREFIX}{ip}'

    async def get(self, ip: str) -> int:
        return _to_int(await self.kv.get(self.key(ip)))

    async def increment(self, ip: str, delta: int, ttl_seconds: int) -> int:
        score = await self.get(ip) + delta
        await self.kv.put(self.key(ip), str(score), ttl_seconds)
        return score

    async def delete(self, ip: str) -> None:
        await self.kv.delete(self.key(ip))
