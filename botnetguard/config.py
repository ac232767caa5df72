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

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
import re

__all__ = (
    'DEFAULTS',
    'Settings',
    'parse_positive_int',
    'parse_csv_list',
    'normalize_path_prefix',
)

DEFAULTS: Dict[str, Any] = {
    'rate_window_seconds': 60,
    'rate_max_requests': 180,
    'burst_window_seconds': 10,
    'burst_max_requests': 30,
    'block_ttl_seconds': 3600,
    'protected_path_prefixes': ('*',),
    'admin_path_prefix': '/__botnet',
    'suspicious_path_patterns': (
        '/wp-login.php',
        '/xmlrpc.php',
        '/wp-admin',
        '/.env',
        '/cgi-bin',
        '/boaform',
    ),
    'bad_user_agent_patterns': (
        'python-requests',
        'curl/',
        'wget/',
        'sqlmap',
        'masscan',
        'nmap',
        'zgrab',
        'go-http-client',
    ),
    'bot_score_ttl_seconds': 900,
    'bot_score_block_threshold': 6,
    'bot_score_path_weight': 3,
    'bot_score_user_agent_weight': 2,
    'client_ip_header': 'CF-Connecting-IP',
}

INSPECT_ALL = '*'

_LEADING_INT = re.compile(r'\s*([+-]?[0-9]+)')


def parse_positive_int(value: Any, fallback: int) -> int:
    """
    Parse a strictly positive integer, returning ``fallback`` otherwise.

    Strings are parsed from their leading digits, so ``"30s"`` yields 30.
    Floats are truncated. Booleans, ``None`` and anything without a leading
    integer fall back.
    """
    if isinstance(value, bool) or value is None:
        return fallback
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if value != value or value in (float('inf'), float('-inf')):
            return fallback
        parsed = int(value)
    elif isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match is None:
            return fallback
        parsed = int(match.group(1))
    else:
        return fallback
    return parsed if parsed > 0 else fallback


def parse_csv_list(value: Optional[str]) -> List[str]:
    """Split a comma separated string, trimming entries and dropping empty ones."""
    if not value:
        return []
    return [entry.strip() for entry in value.split(',') if entry.strip()]


def normalize_path_prefix(prefix: Optional[str]) -> str:
    if not prefix:
        return '/'
    if prefix == INSPECT_ALL:
        return INSPECT_ALL
    return prefix if prefix.startswith('/') else f'/{prefix}'


def _parse_path_prefixes(value: Optional[str]) -> Tuple[str, ...]:
    parsed = [normalize_path_prefix(item) for item in parse_csv_list(value)]
    return tuple(parsed) if parsed else DEFAULTS['protected_path_prefixes']


def _parse_patterns(value: Optional[str], fallback: Iterable[str]) -> Tuple[str, ...]:
    parsed = [item.lower() for item in parse_csv_list(value)]
    return tuple(parsed) if parsed else tuple(fallback)


@dataclass(frozen=True)
class Settings:
    """
    Immutable guard configuration.

    Build it with :meth:`from_mapping`, which never fails: every option has a
    documented fallback that is used when the raw value is missing or invalid.

    Attributes
    ----------
    rate_window_seconds: int
        Length of the sustained counting window.
    rate_max_requests: int
        Requests allowed per sustained window before an automatic block.
    burst_window_seconds: int
        Length of the short burst window.
    burst_max_requests: int
        Requests allowed per burst window before an automatic block.
    block_ttl_seconds: int
        Lifetime of automatic blocks and default lifetime of manual ones.
    protected_path_prefixes: Tuple[str, ...]
        Path prefixes subject to inspection, ``'*'`` meaning every path.
    admin_path_prefix: str
        Prefix under which the admin API is routed.
    allowlist_ips: FrozenSet[str]
        Addresses exempt from all inspection.
    suspicious_path_patterns: Tuple[str, ...]
        Lowercase substrings that mark a probing path.
    bad_user_agent_patterns: Tuple[str, ...]
        Lowercase substrings that mark a scripted user agent.
    bot_score_ttl_seconds: int
        Silence period after which an accumulated bot score is forgotten.
    bot_score_block_threshold: int
        Cumulative score at which an address is blocked.
    bot_score_path_weight: int
        Score added for a suspicious path.
    bot_score_user_agent_weight: int
        Score added for a missing or suspicious user agent.
    admin_token: Optional[str]
        Bearer secret for the admin API. Admin routes other than health
        always answer 401 while unset.
    client_ip_header: str
        The single trusted header the client address is read from.
    """

    rate_window_seconds: int = DEFAULTS['rate_window_seconds']
    rate_max_requests: int = DEFAULTS['rate_max_requests']
    burst_window_seconds: int = DEFAULTS['burst_window_seconds']
    burst_max_requests: int = DEFAULTS['burst_max_requests']
    block_ttl_seconds: int = DEFAULTS['block_ttl_seconds']
    protected_path_prefixes: Tuple[str, ...] = DEFAULTS['protected_path_prefixes']
    admin_path_prefix: str = DEFAULTS['admin_path_prefix']
    allowlist_ips: FrozenSet[str] = field(default_factory=frozenset)
    suspicious_path_patterns: Tuple[str, ...] = DEFAULTS['suspicious_path_patterns']
    bad_user_agent_patterns: Tuple[str, ...] = DEFAULTS['bad_user_agent_patterns']
    bot_score_ttl_seconds: int = DEFAULTS['bot_score_ttl_seconds']
    bot_score_block_threshold: int = DEFAULTS['bot_score_block_threshold']
    bot_score_path_weight: int = DEFAULTS['bot_score_path_weight']
    bot_score_user_agent_weight: int = DEFAULTS['bot_score_user_agent_weight']
    admin_token: Optional[str] = None
    client_ip_header: str = DEFAULTS['client_ip_header']

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Optional[str]]) -> Settings:
        """
        Resolve settings from environment style keys.

        Parameters
        ----------
        raw: Mapping[str, Optional[str]]
            Usually ``os.environ``. Unknown keys are ignored.

        Returns
        -------
        Settings
            A fully populated settings object.
        """
        def integer(key: str, name: str) -> int:
            return parse_positive_int(raw.get(key), DEFAULTS[name])

        return cls(
            rate_window_seconds=integer('RATE_WINDOW_SECONDS', 'rate_window_seconds'),
            rate_max_requests=integer('RATE_MAX_REQUESTS', 'rate_max_requests'),
            burst_window_seconds=integer('BURST_WINDOW_SECONDS', 'burst_window_seconds'),
            burst_max_requests=integer('BURST_MAX_REQUESTS', 'burst_max_requests'),
            block_ttl_seconds=integer('BLOCK_TTL_SECONDS', 'block_ttl_seconds'),
            protected_path_prefixes=_parse_path_prefixes(raw.get('PROTECTED_PATH_PREFIXES')),
            admin_path_prefix=normalize_path_prefix(
                raw.get('ADMIN_PATH_PREFIX') or DEFAULTS['admin_path_prefix']
            ),
            allowlist_ips=frozenset(parse_csv_list(raw.get('ALLOWLIST_IPS'))),
            suspicious_path_patterns=_parse_patterns(
                raw.get('SUSPICIOUS_PATH_PATTERNS'), DEFAULTS['suspicious_path_patterns']
            ),
            bad_user_agent_patterns=_parse_patterns(
                raw.get('BAD_USER_AGENT_PATTERNS'), DEFAULTS['bad_user_agent_patterns']
            ),
            bot_score_ttl_seconds=integer('BOT_SCORE_TTL_SECONDS', 'bot_score_ttl_seconds'),
            bot_score_block_threshold=integer('BOT_SCORE_BLOCK_THRESHOLD', 'bot_score_block_threshold'),
            bot_score_path_weight=integer('BOT_SCORE_PATH_WEIGHT', 'bot_score_path_weight'),
            bot_score_user_agent_weight=integer('BOT_SCORE_USER_AGENT_WEIGHT', 'bot_score_user_agent_weight'),
            admin_token=raw.get('BOTNET_ADMIN_TOKEN') or None,
            client_ip_header=(raw.get('CLIENT_IP_HEADER') or '').strip() or DEFAULTS['client_ip_header'],
        )

    def inspects(self, path: str) -> bool:
        """Return whether ``path`` falls under the protected path configuration."""
        if INSPECT_ALL in self.protected_path_prefixes:
            return True
        return any(path.startswith(prefix) for prefix in self.protected_path_prefixes)
