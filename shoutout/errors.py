"""Exception hierarchy for Shout Out.

Fatal errors (configuration, authentication, upstream fetch) propagate to the
entry point; per-record problems are caught inside the pipeline and counted.
"""

from __future__ import annotations


class ShoutOutError(Exception):
    """Base class for all application errors."""


class AuthenticationError(ShoutOutError):
    """ServiceTitan rejected the client credentials or returned no token."""


class UpstreamError(ShoutOutError):
    """Non-2xx response from the ServiceTitan API after retries."""

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class SettingsValidationError(ShoutOutError, ValueError):
    """A settings write was rejected (unknown key or invalid value)."""

    def __init__(self, message: str, allowed: list[str] | None = None):
        super().__init__(message)
        self.allowed = allowed
