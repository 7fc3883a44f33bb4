from __future__ import annotations

import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

from lang_repos.core.errors import RateLimited, RetryExhausted, TransientError
from lang_repos.utils.logging import get_logger

T = TypeVar("T")

log = get_logger("lang_repos.retry")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior around API calls."""

    max_attempts: int = 5
    base_delay_s: float = 10.0
    max_delay_s: float = 640.0
    jitter_s: float = 1.0


class ErrorKind(str, Enum):
    """How the retry loop should treat an exception."""

    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT = "TRANSIENT"
    FATAL = "FATAL"


class RateLimiter:
    """Simple fixed-delay rate limiter."""

    def __init__(self, delay_ms: int, sleep: Callable[[float], None] = time.sleep):
        self.delay_s = max(0, delay_ms) / 1000.0
        self._sleep = sleep
        self._last: Optional[float] = None

    def wait(self) -> None:
        """Sleep until at least the configured delay has passed since the last call."""
        if self.delay_s > 0 and self._last is not None:
            remaining = self.delay_s - (time.monotonic() - self._last)
            if remaining > 0:
                self._sleep(remaining)
        self._last = time.monotonic()


def backoff_delay(policy: RetryPolicy, attempt_index: int) -> float:
    """Exponential backoff with jitter, capped at ``max_delay_s``."""
    delay = min(policy.base_delay_s * (2**attempt_index), policy.max_delay_s)
    if policy.jitter_s > 0:
        delay += random.uniform(0, policy.jitter_s)
    return delay


def classify_api_error(exc: Exception) -> ErrorKind:
    """Default classifier for the ApiError taxonomy."""
    if isinstance(exc, RateLimited):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, TransientError):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    what: str,
    classify: Callable[[Exception], ErrorKind] = classify_api_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds, retrying according to ``classify``.

    Rate-limited calls are retried after the delay the API signaled, with no
    attempt cap. Transient failures are retried with exponential backoff up to
    ``policy.max_attempts`` calls, after which RetryExhausted is raised.
    Fatal errors propagate unchanged.

    Args:
        fn: Zero-argument callable performing one attempt.
        policy: Backoff configuration.
        what: Short description used in logs and errors.
        classify: Maps an exception to an ErrorKind.
        sleep: Sleep function, injectable for tests.
    """
    transient_failures = 0

    while True:
        try:
            return fn()
        except Exception as e:
            kind = classify(e)
            if kind == ErrorKind.FATAL:
                raise

            if kind == ErrorKind.RATE_LIMITED:
                wait = getattr(e, "retry_after_s", policy.base_delay_s)
                log.warning("Rate limited during %s, retrying in %.0f seconds", what, wait)
                sleep(wait)
                continue

            transient_failures += 1
            if transient_failures >= policy.max_attempts:
                raise RetryExhausted(what, transient_failures, e) from e

            wait = backoff_delay(policy, transient_failures - 1)
            log.warning(
                "Transient failure during %s (%s), retrying in %.0f seconds (attempt=%s/%s)",
                what,
                e,
                wait,
                transient_failures,
                policy.max_attempts,
            )
            sleep(wait)
