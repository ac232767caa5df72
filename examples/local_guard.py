from botnetguard import App, MemoryStore

# Single-process state, lost on restart. Clients are keyed on X-Real-IP.
app = App(
    'http://localhost:8030',
    store=MemoryStore(),
    environ={
        'CLIENT_IP_HEADER': 'X-Real-IP',
        'RATE_MAX_REQUESTS': '30',
        'BOT_SCORE_BLOCK_THRESHOLD': '5',
        'BOTNET_ADMIN_TOKEN': 'local-token',
    },
)

app.run(port=8080)
