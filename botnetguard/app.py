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

from typing import Any, Callable, Mapping, Optional, Set, Type
from aiohttp import web
from types import TracebackType
from .admin import AdminAPI
from .config import Settings
from .engine import DecisionEngine
from .http import HTTPClient
from .middleware import Middleware
from .proxy import Proxy
from .store import KVStore
from . import utils
import aiohttp
import asyncio
import inspect
import logging
import os
import time

__all__ = ('App',)

_logger = logging.getLogger(__name__)


class _LoopSentinel:
    """Sentinel class to handle loop access before app initialization."""
    __slots__ = ()

    def __getattr__(self, attr: str) -> None:
        raise AttributeError(
            "Cannot access 'loop' before the app is fully initialized. "
            "Run inside an asynchronous context."
        )


_loop: Any = _LoopSentinel()


class App:
    """
    Edge guard application.

    Wraps an aiohttp application whose single catch-all route forwards to the
    origin, behind a middleware that serves the admin API and runs the
    decision engine on everything else.

    Parameters
    ----------
    upstream_url: str
        Base URL of the origin server.
    store: Optional[KVStore]
        Shared state. Without it inspection is skipped and admin routes fail.
    environ: Optional[Mapping[str, str]]
        Raw configuration, resolved into :class:`Settings` on every request.
        Defaults to ``os.environ``.
    clock: Callable[[], float]
        Returns the current time in seconds.
    connector: Optional[aiohttp.BaseConnector]
        Custom connector for upstream connections.
    http_trace: Optional[aiohttp.TraceConfig]
        Trace configuration for upstream requests.

    Events
    ------
    Register coroutines with :meth:`event`:

    ``on_serve(host, port)``
        The server is listening.
    ``on_block(request, verdict)``
        A request was rejected by the decision engine.
    """

    def __init__(
            self,
            upstream_url: str = 'http://localhost:8030',
            *,
            store: Optional[KVStore] = None,
            environ: Optional[Mapping[str, str]] = None,
            clock: Callable[[], float] = time.time,
            connector: Optional[aiohttp.BaseConnector] = None,
            http_trace: Optional[aiohttp.TraceConfig] = None
    ):
        self.loop: asyncio.AbstractEventLoop = _loop
        self.environ: Mapping[str, str] = os.environ if environ is None else environ
        self.store: Optional[KVStore] = store
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._closing_task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Event] = None
        self._event_tasks: Set[asyncio.Task] = set()
        self.http = HTTPClient(connector, http_trace=http_trace)
        self.proxy = Proxy(upstream_url, http=self.http)
        self.engine = DecisionEngine(store, clock=clock)
        self.admin = AdminAPI(store, clock=clock)
        self._middleware: Middleware = Middleware(self)

    @property
    def app(self) -> web.Application:
        """Get the underlying aiohttp application."""
        if self._app is None:
            raise RuntimeError("App not initialized. Call build first.")
        return self._app

    @property
    def router(self) -> web.UrlDispatcher:
        """Get the application router."""
        return self.app.router

    def settings(self) -> Settings:
        """Resolve the current configuration."""
        return Settings.from_mapping(self.environ)

    def is_ready(self) -> bool:
        """Check if the app is ready to handle requests."""
        return self._ready is not None and self._ready.is_set()

    async def __aenter__(self) -> App:
        self._async_setup()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[Type[BaseException]],
            exc_value: Optional[BaseException],
            traceback: Optional[TracebackType]
    ) -> None:
        await self.close()

    def _async_setup(self) -> None:
        """Initialize async components."""
        loop = asyncio.get_running_loop()
        self.loop = loop
        self._ready = asyncio.Event()

    def event(self, coro: Callable[..., Any], /) -> Callable[..., Any]:
        """Register an event handler.

        Usage:
            @app.event
            async def on_block(request, verdict):
                print(f"Blocked {verdict.ip}: {verdict.record.reason}")
        """
        if not inspect.iscoroutinefunction(coro):
            raise TypeError('Event handler must be a coroutine function')
        setattr(self, coro.__name__, coro)
        _logger.debug("Registered event: %s", coro.__name__)
        return coro

    def dispatch(self, event: str, /, *args: Any, **kwargs: Any) -> None:
        """Dispatch an event to registered handlers."""
        method = 'on_' + event
        try:
            coro = getattr(self, method)
        except AttributeError:
            return
        if coro is not None and inspect.iscoroutinefunction(coro):
            _logger.debug('Dispatching event: %s', event)
            wrapped = self._run_event(coro, method, *args, **kwargs)
            task = self.loop.create_task(wrapped, name=f'botnetguard:{method}')
            self._event_tasks.add(task)
            task.add_done_callback(self._event_tasks.discard)

    async def _run_event(
            self,
            coro: Callable[..., Any],
            event_name: str,
            *args: Any,
            **kwargs: Any
    ) -> None:
        """Run an event handler with error handling."""
        try:
            await coro(*args, **kwargs)
        except asyncio.CancelledError:
            pass
        except Exception as error:
            await self.on_error(event_name, error, *args, **kwargs)

    @staticmethod
    async def on_error(
            event_method: str,
            error: Exception,
            /,
            *args: Any,
            **kwargs: Any
    ) -> None:
        """Default error handler for events."""
        _logger.exception(
            'Error in %s: %s, args: %s kwargs: %s',
            event_method, error, args, kwargs
        )

    async def setup_hook(self) -> None:
        """Override this to perform setup operations before the app starts."""
        pass

    async def _on_cleanup(self, _: web.Application) -> None:
        await self.http.close()

    async def build(self, **options: Any) -> web.Application:
        """Build the aiohttp application."""
        if self.loop is _loop:
            self._async_setup()
        self._app = web.Application(
            middlewares=[*self._middleware],
            **options
        )
        self._app.router.add_route('*', '/{tail:.*}', self.proxy.handle)
        self._app.on_cleanup.append(self._on_cleanup)
        await self.setup_hook()
        self._ready.set()
        return self._app

    async def serve(self, host: str, port: int = 8080, **options: Any) -> None:
        """Start serving the application."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host=host, port=port, **options)
        await self._site.start()
        _logger.info('Server started at %s:%s', host, port)
        if self.store is None:
            _logger.warning('No store configured, requests are forwarded without inspection')
        self.dispatch('serve', host, port)

    async def start(self, host: str = 'localhost', port: int = 8080, **options: Any) -> None:
        """Build and start the application."""
        await self.build()
        await self.serve(host, port, **options)

    async def close(self) -> None:
        """Gracefully close the application."""
        if self._closing_task:
            return await self._closing_task

        async def _close():
            if self._site:
                await self._site.stop()

            if self._runner:
                await self._runner.cleanup()
            else:
                await self.http.close()

            if self.store is not None:
                await self.store.close()

            if self._ready:
                self._ready.clear()

            self.loop = _loop

        self._closing_task = asyncio.create_task(_close())
        return await self._closing_task

    def run(
            self,
            host: str = 'localhost',
            port: int = 8080,
            *,
            log_handler: Optional[logging.Handler] = None,
            log_level: int = logging.INFO,
            root_logger: bool = False,
            **options
    ) -> None:
        """Run the application (blocking call)."""
        utils.setup_logging(handler=log_handler, level=log_level, root=root_logger)

        async def runner() -> None:
            async with self:
                await self.start(host, port, **options)
                try:
                    await asyncio.Event().wait()
                except KeyboardInterrupt:
                    pass

        try:
            asyncio.run(runner())
        except KeyboardInterrupt:
            return
