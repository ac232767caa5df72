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

from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from aiohttp import web
from .config import Settings, parse_positive_int
from .errors import AdminError, AuthError, NotFound, StoreError, StoreUnavailable, ValidationError
from .identity import is_valid_ip
from .state import BlockRecord, BlockStore, Reason, ScoreStore
from .store import KVStore
from .utils import json_response
import hmac
import json
import logging
import time

_logger = logging.getLogger(__name__)

__all__ = ('AdminAPI',)

SERVICE_NAME = 'botnet-guard'
ADMIN_ACTOR = 'admin_api'
BEARER_PREFIX = 'Bearer '

Route = Callable[[web.BaseRequest, Settings], Awaitable[web.Response]]


class AdminAPI:
    """
    Authenticated control surface over the block ledger and bot scores.

    Routes live under ``Settings.admin_path_prefix`` and are never inspected
    by the decision engine. Unlike inspection, failures here are explicit:
    a missing store or a backend error yields a 500.

    Parameters
    ----------
    store: Optional[KVStore]
        Shared state.
    clock: Callable[[], float]
        Returns the current time in seconds.
    """

    def __init__(self, store: Optional[KVStore], clock: Callable[[], float] = time.time) -> None:
        self.store: Optional[KVStore] = store
        self.clock: Callable[[], float] = clock
        self._routes: Dict[Tuple[str, str], Route] = {
            ('GET', '/status'): self.status,
            ('POST', '/block'): self.block,
            ('POST', '/unblock'): self.unblock,
            ('DELETE', '/unblock'): self.unblock,
        }

    async def handle(self, request: web.BaseRequest, settings: Settings) -> web.Response:
        """Route an admin request and render errors as JSON."""
        try:
            return await self._dispatch(request, settings)
        except AdminError as exc:
            _logger.debug('Admin %s %s rejected: %s', request.method, request.path, exc)
            return json_response({'ok': False, 'error': exc.error}, status=exc.status)
        except StoreError:
            _logger.exception('Admin %s %s failed', request.method, request.path)
            return json_response({'ok': False, 'error': 'store_error'}, status=500)

    async def _dispatch(self, request: web.BaseRequest, settings: Settings) -> web.Response:
        if self.store is None:
            raise StoreUnavailable()

        route = request.path[len(settings.admin_path_prefix):]
        if request.method == 'GET' and route == '/health':
            return json_response({'ok': True, 'service': SERVICE_NAME})

        if not self.is_authorized(request, settings.admin_token):
            raise AuthError()

        handler = self._routes.get((request.method, route))
        if handler is None:
            raise NotFound()
        return await handler(request, settings)

    @staticmethod
    def is_authorized(request: web.BaseRequest, expected: Optional[str]) -> bool:
        if not expected:
            return False
        header = request.headers.get('Authorization', '')
        if not header.startswith(BEARER_PREFIX):
            return False
        provided = header[len(BEARER_PREFIX):].strip()
        return bool(provided) and hmac.compare_digest(provided.encode(), expected.encode())

    @staticmethod
    async def read_body(request: web.BaseRequest) -> Dict[str, Any]:
        """Return the JSON object body, or an empty dict when absent or malformed."""
        try:
            body = json.loads(await request.text())
        except (ValueError, LookupError):
            # Unknown charset or invalid JSON.
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def require_ip(value: Any) -> str:
        ip = value.strip() if isinstance(value, str) else ''
        if not is_valid_ip(ip):
            raise ValidationError('valid ip is required')
        return ip

    async def status(self, request: web.BaseRequest, settings: Settings) -> web.Response:
        ip = request.query.get('ip', '')
        if not is_valid_ip(ip):
            raise ValidationError('valid ip is required')

        record = await BlockStore(self.store).get(ip)
        score = await ScoreStore(self.store).get(ip)
        return json_response({
            'ok': True,
            'ip': ip,
            'blocked': record is not None,
            'details': record.to_dict() if record is not None else None,
            'botScore': score,
        })

    async def block(self, request: web.BaseRequest, settings: Settings) -> web.Response:
        body = await self.read_body(request)
        ip = self.require_ip(body.get('ip'))
        ttl_seconds = parse_positive_int(body.get('ttlSeconds'), settings.block_ttl_seconds)

        reason = body.get('reason')
        reason = reason.strip() if isinstance(reason, str) and reason.strip() else Reason.MANUAL.value
        record = BlockRecord.manual(self.clock(), reason=reason, actor=ADMIN_ACTOR)

        await BlockStore(self.store).put(ip, record, ttl_seconds)
        _logger.info('Admin blocked %s for %ss (%s)', ip, ttl_seconds, reason)
        return json_response({
            'ok': True,
            'blocked': True,
            'ip': ip,
            'ttlSeconds': ttl_seconds,
            'details': record.to_dict(),
        })

    async def unblock(self, request: web.BaseRequest, settings: Settings) -> web.Response:
        body = await self.read_body(request)
        ip = self.require_ip(body.get('ip'))

        await BlockStore(self.store).delete(ip)
        await ScoreStore(self.store).delete(ip)
        _logger.info('Admin unblocked %s', ip)
        return json_response({'ok': True, 'blocked': False, 'ip': ip})
