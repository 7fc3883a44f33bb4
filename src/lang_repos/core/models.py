from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class RequestSpec:
    """Specification for an HTTP request."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True)
class RawRepoDescriptor:
    """A repository as returned by the search API, before marker checks."""

    id: str
    name: str
    default_branch: Optional[str] = None


@dataclass(frozen=True)
class SearchPage:
    """One page of search results plus the cursor to continue after it."""

    records: List[RawRepoDescriptor]
    next_cursor: Optional[str]
    has_more: bool
    total_count: Optional[int] = None


@dataclass(frozen=True)
class MarkerResult:
    """Presence of the two marker files at a repository's root."""

    has_marker_a: bool
    has_marker_b: bool


@dataclass(frozen=True)
class RepositoryRecord:
    """A row of the output dataset, keyed by ``id``."""

    id: str
    name: str
    has_marker_a: bool
    has_marker_b: bool


# Insertion-ordered: first sighting decides the row position.
Dataset = Dict[str, RepositoryRecord]


@dataclass
class CheckpointState:
    """Resumption state of the crawl.

    ``cursor`` is None at the start of a pass. ``query`` records the search the
    cursor belongs to, since cursors of different queries are not comparable.
    ``window_start``/``window_end`` bound the creation-time window the cursor
    pages through when the search is split by creation date; ``window_end``
    is None for the last, open-ended window.
    """

    cursor: Optional[str] = None
    completed_full_pass: bool = False
    query: Optional[str] = None
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    pages_processed: int = 0
    run_count: int = 0
    updated_at_utc: str = ""


@dataclass
class CrawlReport:
    """Summary report of a crawl run."""

    pages_fetched: int = 0
    repos_seen: int = 0
    repos_new: int = 0
    repos_updated: int = 0
    repos_skipped: int = 0
    started_new_pass: bool = False
    completed_full_pass: bool = False
    stopped_early: bool = False
    failures: Dict[str, int] = field(default_factory=dict)

    def bump_failure(self, key: str) -> None:
        """Increment the count for a specific failure type."""
        self.failures[key] = self.failures.get(key, 0) + 1
