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

__all__ = (
    "GuardException",
    "RequestAborted",
    "AdminError",
    "ValidationError",
    "AuthError",
    "NotFound",
    "StoreUnavailable",
    "StoreError",
)


class GuardException(Exception):
    """Base exception for all botnetguard errors."""


class RequestAborted(GuardException):
    """Raised when a request is intentionally stopped and a response is immediately returned."""
    def __init__(self, response: web.StreamResponse) -> None:
        self.response: web.StreamResponse = response
        super().__init__(f"Request aborted with response: {response.status}")


class AdminError(GuardException):
    """
    Base class for errors surfaced by the admin API.

    Parameters
    ----------
    error: str
        Short machine readable message returned in the ``error`` field.
    status: Optional[int]
        HTTP status override. Subclasses provide a default.
    """
    status: int = 500

    def __init__(self, error: str, status: Optional[int] = None) -> None:
        self.error: str = error
        if status is not None:
            self.status = status
        super().__init__(f"{self.status}: {error}")


class ValidationError(AdminError):
    """Raised when an address or a required body field is missing or malformed."""
    status = 400


class AuthError(AdminError):
    """Raised when the bearer token is missing or does not match."""
    status = 401

    def __init__(self) -> None:
        super().__init__("unauthorized")


class NotFound(AdminError):
    """Raised for admin paths that match no route."""
    status = 404

    def __init__(self) -> None:
        super().__init__("not_found")


class StoreUnavailable(AdminError):
    """Raised when an admin operation is attempted without a store bound."""
    status = 500

    def __init__(self) -> None:
        super().__init__("store binding is missing")


class StoreError(GuardException):
    """Raised by a key-value store backend when an operation fails."""
    def __init__(self, operation: str, key: str, original: Optional[BaseException] = None) -> None:
        self.operation: str = operation
        self.key: str = key
        self.original: Optional[BaseException] = original
        super().__init__(f"Store {operation} failed for key {key!r}: {original}")
