"""
Error taxonomy for the crawler.

ApiError subclasses describe what went wrong talking to the remote API and
drive the retry policy: RateLimited is always retried after the signaled
delay, TransientError is retried with bounded backoff, everything else is
fatal.
"""

from __future__ import annotations


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class ApiError(CrawlerError):
    """A failed interaction with the remote API."""


class RateLimited(ApiError):
    """The API asked us to slow down."""

    def __init__(self, retry_after_s: float, message: str = ""):
        self.retry_after_s = max(0.0, float(retry_after_s))
        super().__init__(message or f"rate limited, retry after {self.retry_after_s:.0f}s")


class AuthFailure(ApiError):
    """The credential was rejected. Never retried."""


class TransientError(ApiError):
    """Network blip or server-side failure, worth retrying."""


class MalformedResponse(ApiError):
    """The response did not have the expected shape. Never retried."""


class RetryExhausted(CrawlerError):
    """A transient failure persisted past the configured attempt count."""

    def __init__(self, what: str, attempts: int, last_error: Exception):
        self.what = what
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{what}: giving up after {attempts} attempts ({last_error})")


class StorageError(CrawlerError):
    """Reading or writing the data directory failed."""
