from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

import requests

from lang_repos.core.errors import AuthFailure, RateLimited, TransientError
from lang_repos.core.models import RequestSpec
from lang_repos.http.policies import RateLimiter
from lang_repos.http.response import HttpResponse
from lang_repos.utils.logging import get_logger

DEFAULT_USER_AGENT = "lang-repos (https://github.com/lang-repos/lang-repos)"
DEFAULT_RATE_LIMIT_WAIT_S = 60.0
SERVER_ERROR_STATUSES = (500, 502, 503, 504)


class HttpClient(Protocol):
    """Protocol for HTTP clients."""

    def send(self, req: RequestSpec) -> HttpResponse: ...

    def retry_after_s(self, resp: HttpResponse) -> float: ...

class GitHubHttpClient:
    """
    HTTP client for the GitHub APIs using the requests library.

    Each call performs exactly one request; retrying is left to the caller.
    Outcomes that mean the same thing on every GitHub endpoint are turned into
    ApiError exceptions here: bad credentials, rate limiting, server errors and
    network failures. Every other status is handed back to the caller.
    """

    def __init__(
        self,
        token: str,
        timeout_s: int = 30,
        user_agent: str = DEFAULT_USER_AGENT,
        limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session or requests.Session()
        self.timeout_s = timeout_s
        self.limiter = limiter or RateLimiter(0)
        self.clock = clock
        self.session.headers.update(
            {
                "Authorization": f"bearer {token}",
                "User-Agent": user_agent,
            }
        )
        self.log = get_logger("lang_repos.http")

    def send(self, req: RequestSpec) -> HttpResponse:
        """Send one request and classify transport-level failures."""
        self.limiter.wait()
        try:
            r = self.session.request(
                method=req.method,
                url=req.url,
                headers=req.headers,
                params=req.params,
                json=req.body if isinstance(req.body, (dict, list)) else None,
                data=None if isinstance(req.body, (dict, list)) else req.body,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise TransientError(f"{req.method} {req.url} failed: {type(e).__name__}: {e}") from e

        js = None
        if "json" in r.headers.get("Content-Type", "").lower():
            try:
                js = r.json()
            except ValueError:
                js = None

        resp = HttpResponse(status_code=r.status_code, headers=dict(r.headers), text=r.text, json=js)
        self.log.debug("%s %s -> %s", req.method, req.url, resp.status_code)
        self._raise_for_api_status(req, resp)
        return resp

    def _raise_for_api_status(self, req: RequestSpec, resp: HttpResponse) -> None:
        status = resp.status_code

        if status == 401:
            raise AuthFailure(f"GitHub rejected the credential ({req.method} {req.url} returned 401)")

        if status in (403, 429):
            if status == 429 or self._is_rate_limit(resp):
                raise RateLimited(self.retry_after_s(resp), f"rate limited by {req.url} (status {status})")
            raise AuthFailure(f"access forbidden: {req.method} {req.url} returned 403: {self._message(resp)}")

        if status in SERVER_ERROR_STATUSES:
            raise TransientError(f"{req.method} {req.url} returned status {status}")

    def _is_rate_limit(self, resp: HttpResponse) -> bool:
        """Detect primary and secondary (abuse detection) rate limits."""
        if resp.header("Retry-After"):
            return True
        if resp.header("X-RateLimit-Remaining") == "0":
            return True
        message = self._message(resp).lower()
        return "rate limit" in message or "abuse" in message

    def retry_after_s(self, resp: HttpResponse) -> float:
        """Seconds to wait before retrying, as signaled by the response headers."""
        retry_after = resp.header("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass

        reset = resp.header("X-RateLimit-Reset")
        if reset and resp.header("X-RateLimit-Remaining") == "0":
            try:
                return max(1.0, float(reset) - self.clock() + 1)
            except ValueError:
                pass

        return DEFAULT_RATE_LIMIT_WAIT_S

    def _message(self, resp: HttpResponse) -> str:
        if isinstance(resp.json, dict):
            return str(resp.json.get("message", ""))
        return resp.text or ""
