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
from typing import Callable, Iterable, List, Optional
from aiohttp import web
from .config import Settings
from .state import BlockRecord, Reason, ScoreStore, timestamp
import logging
import time

_logger = logging.getLogger(__name__)

__all__ = ('ScoreOutcome', 'BotScorer')

SUSPICIOUS_PATH = 'suspicious_path'
MISSING_USER_AGENT = 'missing_user_agent'
BAD_USER_AGENT = 'bad_user_agent'


@dataclass(frozen=True)
class ScoreOutcome:
    should_block: bool
    record: Optional[BlockRecord] = None


def _matches_any(target: str, patterns: Iterable[str]) -> bool:
    return any(pattern in target for pattern in patterns)


class BotScorer:
    """
    Heuristic bot-signature scoring.

    Two independent signals are evaluated per request, a probing path and a
    missing or scripted user agent. Their weights are summed and added to the
    address' running score, which expires in full after a quiet period.

    Parameters
    ----------
    scores: ScoreStore
        Where running scores are kept.
    clock: Callable[[], float]
        Returns the current time in seconds.
    """

    __slots__ = ('scores', 'clock')

    def __init__(self, scores: ScoreStore, clock: Callable[[], float] = time.time) -> None:
        self.scores: ScoreStore = scores
        self.clock: Callable[[], float] = clock

    @staticmethod
    def signals(request: web.BaseRequest, path: str, settings: Settings) -> List[str]:
        """Return the names of the signals raised by ``request``."""
        found: List[str] = []
        if _matches_any(path.lower(), settings.suspicious_path_patterns):
            found.append(SUSPICIOUS_PATH)

        user_agent = (request.headers.get('User-Agent') or '').lower()
        if not user_agent:
            found.append(MISSING_USER_AGENT)
        elif _matches_any(user_agent, settings.bad_user_agent_patterns):
            found.append(BAD_USER_AGENT)
        return found

    @staticmethod
    def weigh(signals: Iterable[str], settings: Settings) -> int:
        weights = {
            SUSPICIOUS_PATH: settings.bot_score_path_weight,
            MISSING_USER_AGENT: settings.bot_score_user_agent_weight,
            BAD_USER_AGENT: settings.bot_score_user_agent_weight,
        }
        return sum(weights[name] for name in signals)

    async def score(self, request: web.BaseRequest, ip: str, path: str, settings: Settings) -> ScoreOutcome:
        """
        Score a request and decide whether its address should be blocked.

        Parameters
        ----------
        request: web.BaseRequest
            The request being inspected.
        ip: str
            The validated client address.
        path: str
            The request path.
        settings: Settings
            Resolved configuration.

        Returns
        -------
        ScoreOutcome
            ``should_block`` is True once the cumulative score reaches the
            configured threshold. No store write happens when no signal fires.
        """
        signals = self.signals(request, path, settings)
        delta = self.weigh(signals, settings)
        if delta <= 0:
            return ScoreOutcome(False)

        score = await self.scores.increment(ip, delta, settings.bot_score_ttl_seconds)
        _logger.debug('Bot score for %s is now %s (+%s %s)', ip, score, delta, signals)
        if score < settings.bot_score_block_threshold:
            return ScoreOutcome(False)

        record = BlockRecord(Reason.BOT_SIGNATURE.value, timestamp(self.clock()), {
            'score': score,
            'blockThreshold': settings.bot_score_block_threshold,
            'scoreDelta': delta,
            'signals': signals,
            'path': path,
        })
        return ScoreOutcome(True, record)
