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

from dataclasses import dataclass
from typing import Callable, Optional
from aiohttp import web
from .config import Settings
from .identity import client_ip
from .scorer import BotScorer
from .state import BlockRecord, BlockStore, CounterStore, Reason, ScoreStore
from .store import KVStore
import logging
import time

_logger = logging.getLogger(__name__)

__all__ = ('Verdict', 'DecisionEngine')

WINDOW_SCOPE = 'window'
BURST_SCOPE = 'burst'


@dataclass(frozen=True)
class Verdict:
    """
    Outcome of inspecting one request.

    Attributes
    ----------
    ip: Optional[str]
        The validated client address, if any.
    record: Optional[BlockRecord]
        The block record that rejects the request, or None to forward it.
    created: bool
        True when the record was written by this inspection rather than found.
    """

    ip: Optional[str]
    record: Optional[BlockRecord] = None
    created: bool = False

    @property
    def blocked(self) -> bool:
        return self.record is not None


class DecisionEngine:
    """
    Per-request admission control.

    Checks run in a fixed order and stop at the first positive: existing
    block, sustained window counter, burst counter, bot score. Any failure
    while talking to the store forwards the request instead of blocking it.

    Parameters
    ----------
    store: Optional[KVStore]
        Shared state. When None every request is forwarded.
    clock: Callable[[], float]
        Returns the current time in seconds.
    """

    def __init__(self, store: Optional[KVStore], clock: Callable[[], float] = time.time) -> None:
        self.store: Optional[KVStore] = store
        self.clock: Callable[[], float] = clock
        if store is not None:
            self.blocks: BlockStore = BlockStore(store)
            self.counters: CounterStore = CounterStore(store, clock)
            self.scorer: BotScorer = BotScorer(ScoreStore(store), clock)

    async def inspect(self, request: web.BaseRequest, settings: Settings) -> Verdict:
        """
        Decide whether ``request`` should be forwarded or blocked.

        Parameters
        ----------
        request: web.BaseRequest
            The inbound request.
        settings: Settings
            Configuration resolved for this request.

        Returns
        -------
        Verdict
            A verdict whose ``blocked`` property tells the caller what to do.
        """
        if self.store is None:
            return Verdict(None)

        ip = client_ip(request, settings.client_ip_header)
        if ip is None or ip in settings.allowlist_ips:
            _logger.debug('Skipping inspection for %s %s (ip=%s)', request.method, request.path, ip)
            return Verdict(ip)

        try:
            return await self._inspect(request, ip, settings)
        except Exception:
            _logger.exception('Inspection failed for %s, forwarding request', ip)
            return Verdict(ip)

    async def _inspect(self, request: web.BaseRequest, ip: str, settings: Settings) -> Verdict:
        existing = await self.blocks.get(ip)
        if existing is not None:
            return Verdict(ip, existing)

        path = request.path
        if not settings.inspects(path):
            return Verdict(ip)

        count = await self.counters.increment(ip, WINDOW_SCOPE, settings.rate_window_seconds)
        if count > settings.rate_max_requests:
            record = BlockRecord.rate_limit(
                Reason.RATE_LIMIT_WINDOW,
                self.clock(),
                window_seconds=settings.rate_window_seconds,
                max_requests=settings.rate_max_requests,
                observed_count=count,
                path=path,
            )
            return await self._block(ip, record, settings)

        count = await self.counters.increment(ip, BURST_SCOPE, settings.burst_window_seconds)
        if count > settings.burst_max_requests:
            record = BlockRecord.rate_limit(
                Reason.RATE_LIMIT_BURST,
                self.clock(),
                window_seconds=settings.burst_window_seconds,
                max_requests=settings.burst_max_requests,
                observed_count=count,
                path=path,
            )
            return await self._block(ip, record, settings)

        outcome = await self.scorer.score(request, ip, path, settings)
        if outcome.should_block:
            return await self._block(ip, outcome.record, settings)

        return Verdict(ip)

    async def _block(self, ip: str, record: BlockRecord, settings: Settings) -> Verdict:
        await self.blocks.put(ip, record, settings.block_ttl_seconds)
        _logger.info('Blocked %s: %s', ip, record.reason)
        return Verdict(ip, record, created=True)
