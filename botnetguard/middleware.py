from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Generator
from aiohttp import web
from aiohttp.typedefs import Handler
from .config import Settings
from .errors import RequestAborted
from .utils import blocked_response
import logging

if TYPE_CHECKING:
    from .app import App

_logger = logging.getLogger(__name__)

MiddlewareType = Callable[[web.Request, Handler], Awaitable[web.StreamResponse]]

__all__ = ('Middleware',)


class Middleware:
    """Admission control in front of the proxy route."""

    def __init__(self, app: App):
        self._app = app

    async def guard(self, request: web.Request, settings: Settings) -> None:
        """Raise RequestAborted when the request must not reach the origin."""
        if request.path.startswith(settings.admin_path_prefix):
            raise RequestAborted(await self._app.admin.handle(request, settings))

        verdict = await self._app.engine.inspect(request, settings)
        if verdict.blocked:
            self._app.dispatch('block', request, verdict)
            raise RequestAborted(blocked_response(verdict.ip, verdict.record.to_dict()))

    @web.middleware
    async def middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        settings = self._app.settings()
        try:
            await self.guard(request, settings)
        except RequestAborted as exc:
            _logger.debug("%s %s answered by guard with %s", request.method, request.path, exc.response.status)
            return exc.response
        return await handler(request)

    def __iter__(self) -> Generator[MiddlewareType, None, None]:
        yield self.middleware
