from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Tuple

from lang_repos.utils.logging import get_logger

# GitHub search never returns more hits than this for a single query.
SEARCH_RESULT_CAP = 1000
GITHUB_EPOCH = date(2008, 1, 1)
ONE_SECOND = timedelta(seconds=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S+00:00")


def _parse(value: str) -> datetime:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class CreatedWindow:
    """
    Inclusive range of repository creation times searched as one query.

    ``end`` is None for the open-ended window that closes a pass; every
    repository created after ``start``, including ones created mid-crawl,
    falls into it.
    """

    start: datetime
    end: Optional[datetime] = None

    @property
    def is_last(self) -> bool:
        return self.end is None

    def qualifier(self) -> str:
        """Search qualifier restricting results to this window."""
        if self.end is None:
            return f"created:>={_format(self.start)}"
        return f"created:{_format(self.start)}..{_format(self.end)}"

    def to_state(self) -> Tuple[str, Optional[str]]:
        return _format(self.start), (_format(self.end) if self.end is not None else None)

    @classmethod
    def from_state(cls, start: str, end: Optional[str]) -> "CreatedWindow":
        return cls(start=_parse(start), end=_parse(end) if end else None)

    def __str__(self) -> str:
        return self.qualifier()


class CreatedWindowPlanner:
    """
    Splits one search into consecutive, non-overlapping creation-time windows
    small enough to stay under the search result cap.

    A window whose first page reports more than ``cap`` hits is halved until it
    fits. After a window is exhausted the next one starts one second after it
    ends, keeping the previous width, or doubling it when the previous window
    was sparse.
    """

    def __init__(
        self,
        since: date = GITHUB_EPOCH,
        cap: int = SEARCH_RESULT_CAP,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.since = datetime.combine(since, time(), tzinfo=timezone.utc)
        self.cap = cap
        self.clock = clock
        self.log = get_logger("lang_repos.windows")

    def first(self) -> CreatedWindow:
        return CreatedWindow(start=self.since)

    def too_large(self, window: CreatedWindow, total_count: Optional[int]) -> bool:
        """True when the window holds more hits than a search can return and can still be split."""
        if total_count is None or total_count <= self.cap:
            return False
        if self._span(window) < ONE_SECOND:
            self.log.warning(
                "Window %s holds %s repositories and cannot be split further, only %s are reachable",
                window,
                total_count,
                self.cap,
            )
            return False
        return True

    def narrow(self, window: CreatedWindow) -> CreatedWindow:
        """The first half of ``window``, pinned to the current time when it was open."""
        half = timedelta(seconds=int(self._span(window).total_seconds()) // 2)
        return CreatedWindow(start=window.start, end=window.start + half)

    def advance(self, window: CreatedWindow, total_count: Optional[int]) -> CreatedWindow:
        """The window following an exhausted, closed ``window``."""
        if window.end is None:
            raise ValueError("the open-ended window is the last one of a pass")

        width = window.end - window.start + ONE_SECOND
        if total_count is not None and total_count < self.cap // 4:
            width *= 2

        start = window.end + ONE_SECOND
        end = start + width - ONE_SECOND
        if end >= self._now():
            return CreatedWindow(start=start)
        return CreatedWindow(start=start, end=end)

    def _span(self, window: CreatedWindow) -> timedelta:
        end = window.end if window.end is not None else self._now()
        return end - window.start

    def _now(self) -> datetime:
        return self.clock().astimezone(timezone.utc).replace(microsecond=0)
