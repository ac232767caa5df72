import asyncio

import pytest

from botnetguard import App

from .conftest import ADMIN_TOKEN, GZIPPED_BODY, BrokenStore, client_headers


async def _json(response):
    return await response.json()


async def test_clean_traffic_is_passed_through(make_client):
    client = await make_client()

    response = await client.get("/api/users?page=2", headers=client_headers())
    assert response.status == 200
    assert await response.text() == "origin-ok"
    assert response.headers["X-Origin"] == "yes"

    teapot = await client.get("/teapot", headers=client_headers())
    assert teapot.status == 418
    assert await teapot.text() == "short and stout"


async def test_rate_limit_blocks_third_request(make_client):
    client = await make_client()

    for _ in range(2):
        response = await client.get("/api/login", headers=client_headers())
        assert response.status == 200

    blocked = await client.get("/api/login", headers=client_headers())
    assert blocked.status == 403
    assert blocked.headers["Cache-Control"] == "no-store"
    assert blocked.content_type == "application/json"
    body = await _json(blocked)
    assert body["ok"] is False
    assert body["blocked"] is True
    assert body["ip"] == "1.2.3.4"
    assert body["details"]["reason"] == "rate_limit_window"


async def test_burst_limit_blocks(make_client):
    client = await make_client({"RATE_MAX_REQUESTS": "100", "BURST_MAX_REQUESTS": "3"})

    for _ in range(3):
        assert (await client.get("/api/x", headers=client_headers())).status == 200
    blocked = await client.get("/api/x", headers=client_headers())

    assert blocked.status == 403
    assert (await _json(blocked))["details"]["reason"] == "rate_limit_burst"


async def test_bot_signature_blocks_scanner(make_client):
    client = await make_client({
        "RATE_MAX_REQUESTS": "100",
        "BURST_MAX_REQUESTS": "100",
        "BOT_SCORE_BLOCK_THRESHOLD": "5",
        "PROTECTED_PATH_PREFIXES": "*",
    })

    response = await client.get("/wp-login.php", headers=client_headers("9.9.9.9", user_agent="curl/8.0.1"))

    assert response.status == 403
    body = await _json(response)
    assert body["blocked"] is True
    assert body["details"]["reason"] == "bot_signature"
    assert body["details"]["signals"] == ["suspicious_path", "bad_user_agent"]


async def test_missing_user_agent_counts_as_signal(make_client):
    client = await make_client({"RATE_MAX_REQUESTS": "100", "BOT_SCORE_BLOCK_THRESHOLD": "2"})

    response = await client.get(
        "/api/data",
        headers=client_headers(user_agent=None),
        skip_auto_headers=["User-Agent"],
    )

    assert response.status == 403
    assert (await _json(response))["details"]["signals"] == ["missing_user_agent"]


async def test_admin_block_status_unblock_flow(make_client, store):
    client = await make_client()
    auth = client_headers(token=ADMIN_TOKEN)

    block = await client.post(
        "/__botnet/block",
        json={"ip": "8.8.8.8", "reason": "manual-test", "ttlSeconds": 300},
        headers=auth,
    )
    assert block.status == 200
    body = await _json(block)
    assert body["ok"] is True
    assert body["blocked"] is True
    assert body["ttlSeconds"] == 300
    assert body["details"]["reason"] == "manual-test"
    assert body["details"]["actor"] == "admin_api"

    for path in ("/any", "/api/login", "/static/x.css"):
        response = await client.get(path, headers=client_headers("8.8.8.8"))
        assert response.status == 403

    status = await client.get("/__botnet/status", params={"ip": "8.8.8.8"}, headers=auth)
    assert status.status == 200
    status_body = await _json(status)
    assert status_body["blocked"] is True
    assert status_body["details"]["reason"] == "manual-test"

    await store.put("score:8.8.8.8", "4", 900)
    unblock = await client.post("/__botnet/unblock", json={"ip": "8.8.8.8"}, headers=auth)
    assert unblock.status == 200
    assert await _json(unblock) == {"ok": True, "blocked": False, "ip": "8.8.8.8"}

    status = await client.get("/__botnet/status", params={"ip": "8.8.8.8"}, headers=auth)
    status_body = await _json(status)
    assert status_body["blocked"] is False
    assert status_body["details"] is None
    assert status_body["botScore"] == 0

    after = await client.get("/any", headers=client_headers("8.8.8.8"))
    assert after.status == 200


async def test_admin_block_expires_with_ttl(make_client, clock):
    client = await make_client()
    auth = client_headers(token=ADMIN_TOKEN)

    await client.post("/__botnet/block", json={"ip": "8.8.8.8", "ttlSeconds": 300}, headers=auth)
    assert (await client.get("/any", headers=client_headers("8.8.8.8"))).status == 403

    clock.advance(300)
    assert (await client.get("/any", headers=client_headers("8.8.8.8"))).status == 200


async def test_admin_block_defaults(make_client):
    client = await make_client()

    response = await client.post(
        "/__botnet/block",
        json={"ip": " 8.8.4.4 ", "reason": "  ", "ttlSeconds": "soon"},
        headers=client_headers(token=ADMIN_TOKEN),
    )

    body = await _json(response)
    assert response.status == 200
    assert body["ip"] == "8.8.4.4"
    assert body["ttlSeconds"] == 120
    assert body["details"]["reason"] == "manual"


async def test_unblock_via_delete_is_idempotent(make_client):
    client = await make_client()

    response = await client.delete(
        "/__botnet/unblock",
        json={"ip": "7.7.7.7"},
        headers=client_headers(token=ADMIN_TOKEN),
    )

    assert response.status == 200
    assert await _json(response) == {"ok": True, "blocked": False, "ip": "7.7.7.7"}


@pytest.mark.parametrize(
    "method, path",
    [
        ("GET", "/__botnet/status?ip=1.2.3.4"),
        ("POST", "/__botnet/block"),
        ("POST", "/__botnet/unblock"),
        ("GET", "/__botnet/nope"),
    ],
)
@pytest.mark.parametrize("token", [None, "wrong-token", ""])
async def test_admin_rejects_bad_tokens_without_mutating(make_client, store, method, path, token):
    client = await make_client()
    headers = client_headers()
    if token is not None:
        headers["Authorization"] = f"Bearer {token}"

    response = await client.request(method, path, json={"ip": "1.2.3.4"}, headers=headers)

    assert response.status == 401
    assert await _json(response) == {"ok": False, "error": "unauthorized"}
    assert len(store) == 0


async def test_admin_requires_configured_token(make_client):
    client = await make_client({"BOTNET_ADMIN_TOKEN": ""})
    response = await client.get("/__botnet/status?ip=1.2.3.4", headers=client_headers(token=""))
    assert response.status == 401


async def test_admin_health_needs_no_auth(make_client):
    client = await make_client()
    response = await client.get("/__botnet/health")
    assert response.status == 200
    assert await _json(response) == {"ok": True, "service": "botnet-guard"}


async def test_admin_unknown_route_is_404(make_client):
    client = await make_client()
    auth = client_headers(token=ADMIN_TOKEN)

    for method, path in (("GET", "/__botnet/unknown"), ("GET", "/__botnet/block"), ("PUT", "/__botnet/unblock")):
        response = await client.request(method, path, headers=auth)
        assert response.status == 404
        assert await _json(response) == {"ok": False, "error": "not_found"}


@pytest.mark.parametrize(
    "content_type, payload",
    [
        ("application/json", "not json"),
        ("application/json", "[1, 2]"),
        ("application/json", ""),
        ("application/json", '{"ip": 42}'),
        ("application/json", '{"ip": "1.2.3"}'),
        ("application/json", b'{"ip": "1.2.3.4\xff"}'),
        ("application/json; charset=bogus", b'{"ip": "1.2.3.4"}'),
    ],
)
async def test_admin_write_routes_validate_body(make_client, store, content_type, payload):
    client = await make_client()
    auth = {**client_headers(token=ADMIN_TOKEN), "Content-Type": content_type}

    for path in ("/__botnet/block", "/__botnet/unblock"):
        response = await client.post(path, data=payload, headers=auth)
        assert response.status == 400
        assert await _json(response) == {"ok": False, "error": "valid ip is required"}
    assert len(store) == 0


async def test_admin_status_validates_ip(make_client):
    client = await make_client()
    response = await client.get("/__botnet/status?ip=bogus", headers=client_headers(token=ADMIN_TOKEN))
    assert response.status == 400


async def test_admin_without_store_is_an_explicit_error(make_client):
    client = await make_client(with_store=False)

    for method, path in (("GET", "/__botnet/health"), ("POST", "/__botnet/block")):
        response = await client.request(method, path, json={"ip": "1.2.3.4"}, headers=client_headers(token=ADMIN_TOKEN))
        assert response.status == 500
        assert (await _json(response))["ok"] is False


async def test_inspection_without_store_forwards(make_client):
    client = await make_client({"RATE_MAX_REQUESTS": "1"}, with_store=False)
    for _ in range(3):
        assert (await client.get("/api/login", headers=client_headers())).status == 200


async def test_admin_traffic_is_never_rate_limited(make_client, store):
    client = await make_client({"RATE_MAX_REQUESTS": "1", "PROTECTED_PATH_PREFIXES": "*"})
    for _ in range(5):
        assert (await client.get("/__botnet/health", headers=client_headers())).status == 200
    assert (await client.get("/api/login", headers=client_headers())).status == 200


async def test_allowlisted_address_is_never_blocked(make_client, store):
    client = await make_client({
        "RATE_MAX_REQUESTS": "1",
        "BURST_MAX_REQUESTS": "1",
        "BOT_SCORE_BLOCK_THRESHOLD": "1",
        "PROTECTED_PATH_PREFIXES": "*",
        "ALLOWLIST_IPS": "5.5.5.5",
    })
    headers = client_headers("5.5.5.5", user_agent="sqlmap/1.0 curl/")

    for _ in range(5):
        assert (await client.get("/wp-login.php", headers=headers)).status == 200
    assert len(store) == 0


async def test_missing_client_address_bypasses_inspection(make_client, store):
    client = await make_client({"RATE_MAX_REQUESTS": "1"})
    for _ in range(3):
        assert (await client.get("/api/login", headers=client_headers(ip=None))).status == 200
    assert len(store) == 0


async def test_custom_admin_prefix_and_client_header(make_client):
    client = await make_client({"ADMIN_PATH_PREFIX": "ops", "CLIENT_IP_HEADER": "X-Real-IP"})

    assert (await client.get("/ops/health")).status == 200
    assert (await client.get("/__botnet/health")).status == 200  # plain origin traffic now

    headers = {"X-Real-IP": "4.4.4.4", "User-Agent": "Mozilla/5.0"}
    for _ in range(2):
        assert (await client.get("/api/a", headers=headers)).status == 200
    assert (await client.get("/api/a", headers=headers)).status == 403


async def test_block_event_is_dispatched(make_guard, aiohttp_client):
    guard = make_guard()
    seen = asyncio.Event()
    verdicts = []

    @guard.event
    async def on_block(request, verdict):
        verdicts.append(verdict)
        seen.set()

    client = await aiohttp_client(await guard.build())
    for _ in range(3):
        await client.get("/api/login", headers=client_headers())

    await asyncio.wait_for(seen.wait(), timeout=1)
    assert verdicts[0].ip == "1.2.3.4"
    assert verdicts[0].created is True
    assert verdicts[0].record.reason == "rate_limit_window"


def test_event_requires_coroutine():
    guard = App()
    with pytest.raises(TypeError):
        guard.event(lambda request, verdict: None)


async def test_unreachable_origin_is_bad_gateway(aiohttp_client, store, clock):
    guard = App("http://127.0.0.1:1", store=store, environ={}, clock=clock)
    client = await aiohttp_client(await guard.build())

    response = await client.get("/", headers=client_headers())
    assert response.status == 502


async def test_store_failure_during_admin_operation_is_500(aiohttp_client, origin, clock):
    guard = App(str(origin.make_url("")), store=BrokenStore(), environ={"BOTNET_ADMIN_TOKEN": ADMIN_TOKEN}, clock=clock)
    client = await aiohttp_client(await guard.build())
    auth = client_headers(token=ADMIN_TOKEN)

    requests = [
        ("GET", "/__botnet/status?ip=1.2.3.4", None),
        ("POST", "/__botnet/block", {"ip": "1.2.3.4"}),
        ("POST", "/__botnet/unblock", {"ip": "1.2.3.4"}),
        ("DELETE", "/__botnet/unblock", {"ip": "1.2.3.4"}),
    ]
    for method, path, body in requests:
        response = await client.request(method, path, json=body, headers=auth)
        assert response.status == 500
        assert await _json(response) == {"ok": False, "error": "store_error"}

    assert (await client.get("/__botnet/health")).status == 200
    assert (await client.get("/api/login", headers=client_headers())).status == 200


async def test_compressed_origin_reply_is_relayed_verbatim(make_client):
    client = await make_client(auto_decompress=False)

    response = await client.get("/gzipped", headers=client_headers())

    assert response.status == 200
    assert response.headers["Content-Encoding"] == "gzip"
    assert await response.read() == GZIPPED_BODY


async def test_running_event_tasks_are_retained(make_guard, aiohttp_client):
    guard = make_guard()
    release = asyncio.Event()

    @guard.event
    async def on_block(request, verdict):
        await release.wait()

    client = await aiohttp_client(await guard.build())
    for _ in range(3):
        await client.get("/api/login", headers=client_headers())

    assert len(guard._event_tasks) == 1
    task = next(iter(guard._event_tasks))

    release.set()
    await task
    await asyncio.sleep(0)
    assert not guard._event_tasks
