from __future__ import annotations

import time
from dataclasses import replace
from functools import partial
from typing import Callable, List, Optional, Tuple

from lang_repos.core.errors import CrawlerError, RetryExhausted
from lang_repos.core.models import (
    CheckpointState,
    CrawlReport,
    Dataset,
    RawRepoDescriptor,
    RepositoryRecord,
    SearchPage,
)
from lang_repos.enrich.base import MarkerChecker
from lang_repos.fetch.search import RemoteQueryClient
from lang_repos.fetch.windows import CreatedWindow, CreatedWindowPlanner
from lang_repos.http.policies import RetryPolicy, call_with_retry
from lang_repos.sinks.base import DatasetStore
from lang_repos.state.base import CheckpointStore
from lang_repos.utils.logging import get_logger


class CrawlEngine:
    """
    Walks the search results page by page, classifies every repository found
    and commits the dataset and the checkpoint after each page.

    The run is an explicit loop over a CheckpointState: the cursor it holds is
    the only thing that decides where the next page starts. A page is either
    fully committed (dataset first, then checkpoint) or not at all, so an
    interrupted run loses at most the page it was working on.

    With a window planner the search is walked one creation-date window at a
    time; the checkpoint then also records the window the cursor belongs to,
    and only exhausting the open-ended last window completes a pass.
    """

    def __init__(
        self,
        search: RemoteQueryClient,
        markers: MarkerChecker,
        checkpoints: CheckpointStore,
        dataset_store: DatasetStore,
        query: str,
        windows: Optional[CreatedWindowPlanner] = None,
        retry: Optional[RetryPolicy] = None,
        recheck_known: bool = True,
        should_stop: Callable[[], bool] = lambda: False,
        max_runtime_s: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the crawl engine with all necessary components.

        Args:
            search: Paginated repository search client.
            markers: Per-repository marker file checker.
            checkpoints: Store for the resumption state.
            dataset_store: Store for the accumulated records.
            query: The search string; cursors are only valid for this query.
            windows: Splits the search into creation-time windows so that no
                single query runs into the search result cap. None searches
                the query as a whole.
            retry: Backoff policy shared by page fetches and marker checks.
            recheck_known: Whether known repositories with an unchanged name get
                their markers checked again.
            should_stop: Polled between pages; True ends the run early.
            max_runtime_s: Optional wall-clock budget, also checked between pages.
            sleep: Sleep function used for backoff, injectable for tests.
            clock: Monotonic clock used for the runtime budget.
        """
        self.search = search
        self.markers = markers
        self.checkpoints = checkpoints
        self.dataset_store = dataset_store
        self.query = query
        self.windows = windows
        self.retry = retry or RetryPolicy()
        self.recheck_known = recheck_known
        self.should_stop = should_stop
        self.max_runtime_s = max_runtime_s
        self.sleep = sleep
        self.clock = clock
        self.log = get_logger("lang_repos.engine")

    def run(self) -> CrawlReport:
        """
        Run one crawl invocation until the result set is exhausted or a stop is
        requested.

        Returns:
            A report summarizing the run.

        Raises:
            CrawlerError: On auth failure, malformed responses, retry exhaustion
                or storage failure. Files keep their last committed content.
        """
        report = CrawlReport()
        started_at = self.clock()

        state = self._begin(self.checkpoints.load(), report)
        state, window = self._resume_window(state)
        dataset = self.dataset_store.load()

        self.log.info(
            "Crawl started: query=%r run=%s new_pass=%s window=%s cursor=%s known_repos=%s",
            self.query,
            state.run_count,
            report.started_new_pass,
            window,
            state.cursor,
            len(dataset),
        )

        try:
            while True:
                if self._stop_requested(started_at):
                    report.stopped_early = True
                    self.log.info("Stopping before page %s, progress is saved", state.pages_processed + 1)
                    break

                page = self._fetch_page(state.cursor, window)
                report.pages_fetched += 1

                if window is not None and state.cursor is None and self.windows.too_large(window, page.total_count):
                    narrowed = self.windows.narrow(window)
                    self.log.info(
                        "Window %s holds %s repositories, narrowing to %s", window, page.total_count, narrowed
                    )
                    window = narrowed
                    state = self._with_window(state, window)
                    continue

                records = self._build_records(page, dataset, report)
                dataset = self._commit_records(dataset, records, report)

                state, window = self._advance(state, window, page)
                self.checkpoints.save(state)

                self.log.info(
                    "Page %s committed: repos=%s dataset=%s has_more=%s window=%s",
                    state.pages_processed,
                    len(page.records),
                    len(dataset),
                    page.has_more,
                    window,
                )

                if state.completed_full_pass:
                    report.completed_full_pass = True
                    self.log.info("Full pass completed after %s pages", state.pages_processed)
                    break
        except CrawlerError:
            self.log.error(
                "Crawl aborted: pages_processed=%s last_committed_cursor=%s",
                state.pages_processed,
                state.cursor,
            )
            raise

        self.log.info(
            "Crawl done: pages=%s seen=%s new=%s updated=%s skipped=%s completed=%s stopped_early=%s",
            report.pages_fetched,
            report.repos_seen,
            report.repos_new,
            report.repos_updated,
            report.repos_skipped,
            report.completed_full_pass,
            report.stopped_early,
        )
        return report

    def _begin(self, state: CheckpointState, report: CrawlReport) -> CheckpointState:
        """Decide whether to resume from the stored cursor or start a new pass."""
        query_changed = state.query is not None and state.query != self.query
        if query_changed:
            self.log.warning("Search query changed from %r to %r, discarding the stored cursor", state.query, self.query)

        # a cursor only makes sense for the same windowed or unwindowed search
        mode_changed = state.cursor is not None and (self.windows is None) != (state.window_start is None)
        if mode_changed:
            self.log.warning("Creation-date windowing was toggled, discarding the stored cursor")

        if state.completed_full_pass or query_changed or mode_changed:
            state = CheckpointState(run_count=state.run_count)
        elif self.windows is None:
            state = replace(state, window_start=None, window_end=None)

        report.started_new_pass = state.cursor is None and state.window_start is None
        return replace(state, query=self.query, run_count=state.run_count + 1)

    def _resume_window(self, state: CheckpointState) -> Tuple[CheckpointState, Optional[CreatedWindow]]:
        """The creation-time window the stored cursor belongs to."""
        if self.windows is None:
            return state, None
        if state.window_start is None:
            return state, self.windows.first()
        try:
            return state, CreatedWindow.from_state(state.window_start, state.window_end)
        except ValueError:
            self.log.warning("Unreadable window %r in checkpoint, restarting the pass", state.window_start)
            return replace(state, cursor=None, window_start=None, window_end=None), self.windows.first()

    def _with_window(self, state: CheckpointState, window: Optional[CreatedWindow]) -> CheckpointState:
        if window is None:
            return replace(state, window_start=None, window_end=None)
        start, end = window.to_state()
        return replace(state, window_start=start, window_end=end)

    def _advance(
        self, state: CheckpointState, window: Optional[CreatedWindow], page: SearchPage
    ) -> Tuple[CheckpointState, Optional[CreatedWindow]]:
        """State after a committed page: next cursor, next window or end of the pass."""
        state = replace(state, pages_processed=state.pages_processed + 1)

        if page.has_more:
            return self._with_window(replace(state, cursor=page.next_cursor), window), window

        if window is not None and not window.is_last:
            following = self.windows.advance(window, page.total_count)
            self.log.info("Window %s exhausted, continuing with %s", window, following)
            return self._with_window(replace(state, cursor=None), following), following

        return replace(state, cursor=None, completed_full_pass=True, window_start=None, window_end=None), None

    def _fetch_page(self, cursor: Optional[str], window: Optional[CreatedWindow]) -> SearchPage:
        return call_with_retry(
            partial(self.search.fetch_page, cursor, window),
            self.retry,
            what=f"search page after cursor {cursor} in {window or 'the whole result set'}",
            sleep=self.sleep,
        )

    def _build_records(self, page: SearchPage, dataset: Dataset, report: CrawlReport) -> List[RepositoryRecord]:
        """Run marker checks for every repository on the page."""
        records: List[RepositoryRecord] = []

        for repo in page.records:
            report.repos_seen += 1

            known = dataset.get(repo.id)
            if known is not None and not self.recheck_known and known.name == repo.name:
                records.append(known)
                continue

            try:
                markers = call_with_retry(
                    partial(self.markers.check_markers, repo),
                    self.retry,
                    what=f"marker check for {repo.name}",
                    sleep=self.sleep,
                )
            except RetryExhausted as e:
                # Left for the next pass; an existing record stays as it was.
                report.repos_skipped += 1
                report.bump_failure("marker_check_exhausted")
                self.log.warning("Skipping %s for this pass: %s", repo.name, e)
                continue

            records.append(self._to_record(repo, markers.has_marker_a, markers.has_marker_b))

        return records

    def _commit_records(self, dataset: Dataset, records: List[RepositoryRecord], report: CrawlReport) -> Dataset:
        merged = self.dataset_store.merge(dataset, records)
        self.dataset_store.save(merged)

        stats = self.dataset_store.last_merge
        report.repos_new += stats.inserted
        report.repos_updated += stats.updated
        return merged

    def _to_record(self, repo: RawRepoDescriptor, has_marker_a: bool, has_marker_b: bool) -> RepositoryRecord:
        return RepositoryRecord(id=repo.id, name=repo.name, has_marker_a=has_marker_a, has_marker_b=has_marker_b)

    def _stop_requested(self, started_at: float) -> bool:
        if self.should_stop():
            self.log.info("Stop requested")
            return True
        if self.max_runtime_s is not None and self.clock() - started_at >= self.max_runtime_s:
            self.log.info("Runtime budget of %s seconds used up", self.max_runtime_s)
            return True
        return False
