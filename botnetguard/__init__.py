"""
botnetguard

Edge admission-control proxy: rate limiting, burst detection, bot-signature
scoring and a TTL-bound block ledger in front of an origin server

Copyright (c) 2026-present mrsnifo
License: MIT, see LICENSE for more details.
"""

__title__ = 'botnetguard'
__license__ = 'MIT License'
__author__ = 'mrsnifo'
__copyright__ = 'Copyright 2026-present mrsnifo'
__email__ = 'snifo@mail.com'
__url__ = 'https://github.com/mrsnifo/botnetguard'
__version__ = '0.1.0'

from .app import App
from .config import Settings
from .engine import DecisionEngine, Verdict
from .admin import AdminAPI
from .state import BlockRecord, Reason
from .store import KVStore, MemoryStore, RedisStore, store_from_url
from .errors import *

from . import (
    utils as utils,
)
