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

from typing import Optional
from aiohttp import web
import re

__all__ = ('is_valid_ip', 'is_valid_ipv4', 'is_valid_ipv6', 'client_ip')

_OCTET = re.compile(r'[0-9]{1,3}')
_IPV6_CHARS = re.compile(r'[0-9a-fA-F:]+')


def is_valid_ipv4(value: str) -> bool:
    parts = value.split('.')
    if len(parts) != 4:
        return False
    return all(_OCTET.fullmatch(part) and int(part) <= 255 for part in parts)


def is_valid_ipv6(value: str) -> bool:
    # Syntax check only, no canonicalization.
    return ':' in value and _IPV6_CHARS.fullmatch(value) is not None


def is_valid_ip(value: Optional[str]) -> bool:
    """Return whether ``value`` looks like an IPv4 or IPv6 address."""
    if not value:
        return False
    return is_valid_ipv4(value) or is_valid_ipv6(value)


def client_ip(request: web.BaseRequest, header: str) -> Optional[str]:
    """
    Extract the caller's address from the single trusted header.

    The header is trusted as-is. Whatever sits in front of the guard is
    responsible for making sure it was set by a legitimate proxy.

    Parameters
    ----------
    request: web.BaseRequest
        The incoming request.
    header: str
        Name of the header carrying the client address.

    Returns
    -------
    Optional[str]
        The trimmed address, or None when the header is absent or malformed.
    """
    value = (request.headers.get(header) or '').strip()
    return value if is_valid_ip(value) else None
