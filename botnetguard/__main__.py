from __future__ import annotations

from .app import App
from .config import parse_positive_int
from .store import store_from_url
import logging
import os


def main() -> None:
    environ = os.environ
    level = logging.getLevelName(environ.get('LOG_LEVEL', 'INFO').upper())
    app = App(
        environ.get('UPSTREAM_URL', 'http://localhost:8030'),
        store=store_from_url(environ.get('BOTNET_STORE_URL')),
        environ=environ,
    )
    app.run(
        environ.get('BOTNET_HOST', 'localhost'),
        parse_positive_int(environ.get('BOTNET_PORT'), 8080),
        log_level=level if isinstance(level, int) else logging.INFO,
        root_logger=True,
    )


if __name__ == '__main__':
    main()
