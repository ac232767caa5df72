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

from typing import Any, ClassVar, FrozenSet, Optional
from multidict import CIMultiDict
from aiohttp import web
import aiohttp
import logging

_logger = logging.getLogger(__name__)

__all__ = ('HTTPClient',)


class HTTPClient:
    """Upstream HTTP client returning fully buffered aiohttp responses."""

    HOP_BY_HOP_HEADERS: ClassVar[FrozenSet[str]] = frozenset({
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    })

    # Bodies are relayed still encoded; aiohttp recomputes the length.
    BODY_FRAMING_HEADERS: ClassVar[FrozenSet[str]] = frozenset({
        "content-length",
    })

    __slots__ = ('connector', '__session', 'timeout', 'http_trace')

    def __init__(
            self,
            connector: Optional[aiohttp.BaseConnector] = None,
            *,
            timeout: Optional[aiohttp.ClientTimeout] = None,
            http_trace: Optional[aiohttp.TraceConfig] = None
    ) -> None:
        self.connector: Optional[aiohttp.BaseConnector] = connector
        self.__session: Optional[aiohttp.ClientSession] = None
        self.timeout: aiohttp.ClientTimeout = timeout or aiohttp.ClientTimeout(total=30)
        self.http_trace: Optional[aiohttp.TraceConfig] = http_trace

    def clear(self) -> None:
        """Clear the session if it exists and is closed."""
        if self.__session and self.__session.closed:
            self.__session = None

    async def close(self) -> None:
        """Close the active HTTP session."""
        if self.__session:
            await self.__session.close()

    def _get_session(self) -> aiohttp.ClientSession:
        """Get the active ClientSession, creating one if it does not exist or is closed."""
        if self.__session is None or self.__session.closed:
            self.__session = aiohttp.ClientSession(connector=self.connector,
                                                   timeout=self.timeout,
                                                   auto_decompress=False,
                                                   trace_configs=None if self.http_trace is None else [self.http_trace]
                                                   )
        return self.__session

    async def request(self, **kwargs: Any) -> web.Response:
        """
        Send a request and buffer the upstream response.

        Parameters
        ----------
        **kwargs
            Passed to :meth:`aiohttp.ClientSession.request`. Request headers are
            stripped of hop-by-hop entries and ``Host``.

        Returns
        -------
        web.Response
            Status, reason, end-to-end headers and body of the upstream reply.
        """
        session = self._get_session()

        raw_headers = kwargs.get("headers")
        if raw_headers is not None:
            kwargs["headers"] = self._filter_headers(raw_headers, include_host=True)

        async with session.request(**kwargs) as response:
            _logger.debug(
                "%s %s returned %s",
                response.method,
                response.url,
                response.status
            )
            response_headers = self._filter_headers(response.headers, excluded=self.BODY_FRAMING_HEADERS)
            response_body = await response.read()
            return web.Response(
                status=response.status,
                reason=response.reason,
                headers=response_headers,
                body=response_body
            )

    def _filter_headers(
            self,
            headers,
            include_host: bool = False,
            excluded: FrozenSet[str] = frozenset()
    ) -> CIMultiDict:
        """Remove hop-by-hop headers, keeping repeated headers such as Set-Cookie."""
        excluded = self.HOP_BY_HOP_HEADERS | excluded
        if include_host:
            excluded = excluded | {"host"}

        return CIMultiDict((k, v) for k, v in headers.items() if k.lower() not in excluded)
