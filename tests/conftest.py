import gzip
from typing import Any, Dict, Optional

import pytest
from aiohttp import web

from botnetguard import App, KVStore, MemoryStore
from botnetguard.errors import StoreError

ADMIN_TOKEN = "test-token"
GZIPPED_BODY = gzip.compress(b"compressed origin reply")

BASE_ENV: Dict[str, str] = {
    "BOTNET_ADMIN_TOKEN": ADMIN_TOKEN,
    "RATE_WINDOW_SECONDS": "60",
    "RATE_MAX_REQUESTS": "2",
    "BURST_WINDOW_SECONDS": "10",
    "BURST_MAX_REQUESTS": "100",
    "BLOCK_TTL_SECONDS": "120",
    "PROTECTED_PATH_PREFIXES": "/api",
    "SUSPICIOUS_PATH_PATTERNS": "/wp-login.php,/xmlrpc.php",
    "BAD_USER_AGENT_PATTERNS": "curl/,python-requests",
    "BOT_SCORE_TTL_SECONDS": "900",
    "BOT_SCORE_BLOCK_THRESHOLD": "6",
    "BOT_SCORE_PATH_WEIGHT": "3",
    "BOT_SCORE_USER_AGENT_WEIGHT": "2",
    "ADMIN_PATH_PREFIX": "/__botnet",
    "ALLOWLIST_IPS": "",
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenStore(KVStore):
    def __init__(self):
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise StoreError("get", key, ConnectionError("unreachable"))

    async def put(self, key, value, ttl_seconds):
        self.calls += 1
        raise StoreError("put", key, ConnectionError("unreachable"))

    async def delete(self, key):
        self.calls += 1
        raise StoreError("delete", key, ConnectionError("unreachable"))


def client_headers(
    ip: Optional[str] = "1.2.3.4",
    *,
    user_agent: Optional[str] = "Mozilla/5.0 test",
    token: Optional[str] = None,
) -> Dict[str, str]:
    headers = {}
    if ip is not None:
        headers["CF-Connecting-IP"] = ip
    if user_agent is not None:
        headers["User-Agent"] = user_agent
    if token is not None:
        headers["Authorization"] = f"Bearer {token}"
    return headers


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
async def origin(aiohttp_server):
    async def handler(request: web.Request) -> web.Response:
        if request.path == "/teapot":
            return web.Response(status=418, text="short and stout")
        if request.path == "/gzipped":
            return web.Response(
                body=GZIPPED_BODY,
                headers={"Content-Encoding": "gzip", "Content-Type": "text/plain"},
            )
        return web.Response(text="origin-ok", headers={"X-Origin": "yes"})

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", handler)
    return await aiohttp_server(app)


@pytest.fixture
def make_guard(origin, store, clock):
    def factory(overrides: Optional[Dict[str, Any]] = None, *, with_store: bool = True) -> App:
        environ = {**BASE_ENV, **(overrides or {})}
        return App(
            str(origin.make_url("")),
            store=store if with_store else None,
            environ=environ,
            clock=clock,
        )

    return factory


@pytest.fixture
def make_client(aiohttp_client, make_guard):
    async def factory(overrides: Optional[Dict[str, Any]] = None, *, with_store: bool = True, **client_options):
        guard = make_guard(overrides, with_store=with_store)
        return await aiohttp_client(await guard.build(), **client_options)

    return factory
