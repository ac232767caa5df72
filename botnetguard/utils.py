from __future__ import annotations
from typing import Any, Dict, Optional
from aiohttp import web
import functools
import json
import logging

__all__ = (
    'setup_logging',
    'json_response',
    'blocked_response',
)

_dumps = functools.partial(json.dumps, indent=2)


def setup_logging(handler: Optional[logging.Handler] = None,
                  level: Optional[int] = None,
                  root: bool = True
                  ) -> None:
    """Setup logging configuration."""

    # Use provided handler or default to console
    handler = handler or logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        '[{asctime}] [{levelname}] {name}: {message}',
        '%Y-%m-%d %H:%M:%S',
        style='{'
    ))

    logger = logging.getLogger() if root else logging.getLogger(__name__.split('.')[0])
    logger.setLevel(level if level is not None else logging.INFO)
    logger.addHandler(handler)


def json_response(body: Dict[str, Any], status: int = 200) -> web.Response:
    """Pretty printed, non-cacheable JSON response."""
    return web.json_response(body, status=status, dumps=_dumps, headers={'Cache-Control': 'no-store'})


def blocked_response(ip: Optional[str], details: Dict[str, Any]) -> web.Response:
    return json_response({'ok': False, 'blocked': True, 'ip': ip, 'details': details}, status=403)
