"""Exceptions raised by the REST client."""

from __future__ import annotations


class RestError(Exception):
    """Base class for every REST error."""


class HttpError(RestError):
    """Non-2xx response, or the request never got one (status is None)."""

    def __init__(self, status: int | None, body: str = "") -> None:
        super().__init__(f"HTTP {status}: {body[:200]}")
        self.status = status
        self.body = body


class AuthError(RestError):
    """Missing credentials, or the exchange rejected the signature."""


class ParamsError(RestError, ValueError):
    """Unsupported query parameter or argument value."""
