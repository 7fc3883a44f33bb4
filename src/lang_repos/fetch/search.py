from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from lang_repos.core.errors import MalformedResponse, RateLimited
from lang_repos.core.models import RawRepoDescriptor, RequestSpec, SearchPage
from lang_repos.fetch.windows import CreatedWindow
from lang_repos.http.client import DEFAULT_RATE_LIMIT_WAIT_S, HttpClient
from lang_repos.utils.logging import get_logger
from lang_repos.utils.time import seconds_until

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"

GRAPHQL_SEARCH_REPOSITORIES = """
query($q: String!, $first: Int!, $after: String) {
    search(query: $q, type: REPOSITORY, first: $first, after: $after) {
        repositoryCount
        pageInfo {
            hasNextPage
            endCursor
        }
        nodes {
            ... on Repository {
                id
                nameWithOwner
                defaultBranchRef {
                    name
                }
            }
        }
    }

    rateLimit {
        remaining
        resetAt
    }
}
"""


def build_search_query(language: str, include_forks: bool = False, qualifiers: Sequence[str] = ()) -> str:
    """Search string for repositories written in ``language``."""
    parts = [f"language:{language}"]
    if include_forks:
        parts.append("fork:true")
    parts.extend(q.strip() for q in qualifiers if q.strip())
    return " ".join(parts)


class RemoteQueryClient(Protocol):
    """Protocol for paginated repository search."""

    def fetch_page(self, cursor: Optional[str], window: Optional[CreatedWindow] = None) -> SearchPage: ...


class GitHubSearchClient:
    """Repository search through the GitHub GraphQL API, one page per call."""

    def __init__(
        self,
        client: HttpClient,
        query: str,
        page_size: int = 100,
        api_url: str = GITHUB_GRAPHQL_URL,
    ):
        self.client = client
        self.query = query
        self.page_size = page_size
        self.api_url = api_url
        self.log = get_logger("lang_repos.search")

    def fetch_page(self, cursor: Optional[str], window: Optional[CreatedWindow] = None) -> SearchPage:
        """
        Fetch the page of results following ``cursor``.

        Args:
            cursor: Continuation token from the previous page, or None to start
                from the beginning of the result set.
            window: Optional creation-time window narrowing the query; the
                cursor must belong to the same window.

        Returns:
            The repositories on the page and where to continue.

        Raises:
            ApiError: RateLimited, AuthFailure, TransientError or MalformedResponse.
        """
        req = RequestSpec(
            url=self.api_url,
            method="POST",
            body={
                "query": GRAPHQL_SEARCH_REPOSITORIES,
                "variables": {"q": self.query_for(window), "first": self.page_size, "after": cursor},
            },
        )
        resp = self.client.send(req)

        if resp.status_code != 200:
            raise MalformedResponse(f"GitHub GraphQL call returned unexpected status {resp.status_code}")
        if not isinstance(resp.json, dict):
            raise MalformedResponse("GitHub GraphQL call returned a non-JSON body")

        data = resp.json.get("data")
        errors = resp.json.get("errors") or []
        if not isinstance(errors, list):
            errors = [errors]
        self._check_errors(errors, has_data=bool(data), resp=resp)
        if not isinstance(data, dict):
            message = resp.json.get("message") or "empty GraphQL response"
            raise MalformedResponse(f"GitHub GraphQL call failed: {message}")

        page = self._parse_search(data.get("search"))
        self._log_rate_limit(data.get("rateLimit"))
        self.log.debug(
            "Search page: window=%s cursor=%s repos=%d total=%s next_cursor=%s has_more=%s",
            window,
            cursor,
            len(page.records),
            page.total_count,
            page.next_cursor,
            page.has_more,
        )
        return page

    def query_for(self, window: Optional[CreatedWindow] = None) -> str:
        """The search string sent for ``window``."""
        if window is None:
            return self.query
        return f"{self.query} {window.qualifier()}"

    def _check_errors(self, errors: List[Dict[str, Any]], has_data: bool, resp) -> None:
        for error in errors:
            error_type = error.get("type") if isinstance(error, dict) else None
            message = error.get("message", "") if isinstance(error, dict) else str(error)

            if error_type == "RATE_LIMITED":
                raise RateLimited(self._graphql_retry_after(resp), f"GraphQL rate limit: {message}")

            if not has_data:
                raise MalformedResponse(f"GitHub GraphQL call failed: {message}")

            if error_type == "NOT_FOUND":
                self.log.debug("Ignored GraphQL error: %s", message)
            else:
                self.log.warning("Non-fatal GraphQL error: %s", message)

    def _graphql_retry_after(self, resp) -> float:
        wait = self.client.retry_after_s(resp)
        if wait != DEFAULT_RATE_LIMIT_WAIT_S:
            return wait
        data = resp.json.get("data") if isinstance(resp.json, dict) else None
        rate = data.get("rateLimit") if isinstance(data, dict) else None
        if isinstance(rate, dict) and rate.get("resetAt"):
            try:
                return max(1.0, seconds_until(rate["resetAt"]) + 1)
            except ValueError:
                pass
        return wait

    def _parse_search(self, search: Any) -> SearchPage:
        if not isinstance(search, dict):
            raise MalformedResponse("GraphQL response has no search result")

        page_info = search.get("pageInfo")
        nodes = search.get("nodes")
        if not isinstance(page_info, dict) or not isinstance(nodes, list):
            raise MalformedResponse("GraphQL search result lacks pageInfo or nodes")

        has_more = page_info.get("hasNextPage")
        next_cursor = page_info.get("endCursor")
        if not isinstance(has_more, bool):
            raise MalformedResponse("pageInfo.hasNextPage is not a boolean")
        if has_more and not isinstance(next_cursor, str):
            raise MalformedResponse("pageInfo.hasNextPage is true but no endCursor was returned")

        records: List[RawRepoDescriptor] = []
        for node in nodes:
            # null or empty nodes are search hits that are not repositories
            if not node:
                continue
            records.append(self._parse_node(node))

        total = search.get("repositoryCount")
        return SearchPage(
            records=records,
            next_cursor=next_cursor if has_more else None,
            has_more=has_more,
            total_count=total if isinstance(total, int) else None,
        )

    def _parse_node(self, node: Any) -> RawRepoDescriptor:
        if not isinstance(node, dict):
            raise MalformedResponse(f"unexpected search node: {node!r}")

        rid = node.get("id")
        name = node.get("nameWithOwner")
        if not isinstance(rid, str) or not rid or not isinstance(name, str) or not name:
            raise MalformedResponse(f"search node lacks id or nameWithOwner: {node!r}")

        branch_ref = node.get("defaultBranchRef") or {}
        branch = branch_ref.get("name") if isinstance(branch_ref, dict) else None

        return RawRepoDescriptor(id=rid, name=name, default_branch=branch)

    def _log_rate_limit(self, rate: Any) -> None:
        if isinstance(rate, dict) and rate.get("remaining") is not None:
            self.log.debug("GraphQL rate limit: remaining=%s reset_at=%s", rate.get("remaining"), rate.get("resetAt"))
