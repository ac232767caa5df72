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

from aiohttp import web
from .http import HTTPClient
import aiohttp
import asyncio
import logging

_logger = logging.getLogger(__name__)

__all__ = ('Proxy',)


class Proxy:
    """
    Forwards admitted requests to the origin and relays its reply verbatim.

    Parameters
    ----------
    target_url: str
        Base URL of the origin, e.g. ``http://localhost:8030``.
    http: HTTPClient
        Client used for upstream calls.
    """

    __slots__ = ('target_url', 'http')

    def __init__(self, target_url: str, http: HTTPClient) -> None:
        self.target_url: str = target_url.rstrip('/')
        self.http: HTTPClient = http

    async def forward(self, request: web.BaseRequest) -> web.Response:
        target = f"{self.target_url}{request.rel_url.raw_path_qs}"
        body = await request.read() if request.body_exists else None

        _logger.debug("Forwarding HTTP: %s %s", request.method, target)

        try:
            return await self.http.request(
                method=request.method,
                url=target,
                headers=request.headers,
                data=body,
                allow_redirects=False
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            _logger.error("Proxy error for %s: %s", target, e)
            raise web.HTTPBadGateway(text=f"Proxy error: {e}")

    async def handle(self, request: web.Request) -> web.Response:
        """Catch-all route handler."""
        return await self.forward(request)
