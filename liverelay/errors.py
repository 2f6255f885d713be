# liverelay/errors.py
"""Failures surfaced to players as short plain-text responses."""

from typing import Optional


class RelayError(Exception):
    status_code = 500
    default_message = "Stream Unavailable"

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class UpstreamUnavailable(RelayError):
    """Origin answered non-200 or a provider error code."""


class NotFound(RelayError):
    status_code = 404
    default_message = "Not Found"


class RemuxFailure(RelayError):
    default_message = "Remux failed"


class CacheStoreFailure(RelayError):
    default_message = "Cache store unreachable"
