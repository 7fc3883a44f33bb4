from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from lang_repos.config_models import CrawlerConfig
from lang_repos.core.engine import CrawlEngine
from lang_repos.enrich.markers import RawFileMarkerChecker
from lang_repos.fetch.search import GitHubSearchClient, build_search_query
from lang_repos.fetch.windows import CreatedWindowPlanner
from lang_repos.http.client import GitHubHttpClient
from lang_repos.http.policies import RateLimiter
from lang_repos.sinks.csv_dataset import CsvDatasetStore
from lang_repos.state.checkpoint_store import JsonCheckpointStore


@dataclass(frozen=True)
class BuiltComponents:
    engine: CrawlEngine
    client: GitHubHttpClient
    search: GitHubSearchClient
    markers: RawFileMarkerChecker
    checkpoints: JsonCheckpointStore
    dataset_store: CsvDatasetStore


class ComponentFactory:
    """
    Factory responsible for wiring dependencies.
    Keeps main.py clean and lets tests build engines from plain configs.
    """

    def __init__(self, config: CrawlerConfig, sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.sleep = sleep

    def build(self, data_dir: Path, token: str, should_stop: Optional[Callable[[], bool]] = None) -> BuiltComponents:
        """
        Build all components needed for a crawl.

        Args:
            data_dir: Directory holding the dataset and checkpoint files.
            token: GitHub API token.
            should_stop: Optional stop predicate polled between pages.

        Returns:
            A container with all built components.
        """
        data_dir = Path(data_dir)
        client = self._http_client(token)
        query = build_search_query(self.config.language, self.config.include_forks, self.config.query_qualifiers)
        search = GitHubSearchClient(client, query=query, page_size=self.config.page_size, api_url=self.config.api_url)
        markers = RawFileMarkerChecker(client, self.config.marker_files, raw_url=self.config.raw_url)
        checkpoints = JsonCheckpointStore(data_dir / self.config.checkpoint_filename)
        dataset_store = CsvDatasetStore(data_dir / self.config.dataset_filename, self.config.marker_files)

        engine = CrawlEngine(
            search=search,
            markers=markers,
            checkpoints=checkpoints,
            dataset_store=dataset_store,
            query=query,
            windows=CreatedWindowPlanner(since=self.config.created_since) if self.config.split_by_created else None,
            retry=self.config.retry.to_policy(),
            recheck_known=self.config.recheck_known,
            should_stop=should_stop or (lambda: False),
            max_runtime_s=self.config.max_runtime_s,
            sleep=self.sleep,
        )

        return BuiltComponents(
            engine=engine,
            client=client,
            search=search,
            markers=markers,
            checkpoints=checkpoints,
            dataset_store=dataset_store,
        )

    # ---------- Builders (private) ----------

    def _http_client(self, token: str) -> GitHubHttpClient:
        """Create the HTTP client shared by search and marker checks."""
        return GitHubHttpClient(
            token=token,
            timeout_s=self.config.http_timeout_s,
            user_agent=self.config.user_agent,
            limiter=RateLimiter(self.config.delay_ms, sleep=self.sleep),
        )
