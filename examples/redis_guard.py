from botnetguard import App, RedisStore
from botnetguard.engine import Verdict
from aiohttp import web
import os

os.environ.setdefault('BOTNET_ADMIN_TOKEN', 'change-me')
os.environ.setdefault('PROTECTED_PATH_PREFIXES', '/api,/login')

app = App(
    'http://localhost:8030',
    store=RedisStore.from_url('redis://localhost:6379/0'),
)

@app.event
async def on_serve(host: str, port: int):
    print(f'Guarding http://localhost:8030 on {host}:{port}')

@app.event
async def on_block(request: web.Request, verdict: Verdict):
    if verdict.created:
        print(f'Blocked {verdict.ip}: {verdict.record.reason} on {request.path}')

app.run(port=8080)
