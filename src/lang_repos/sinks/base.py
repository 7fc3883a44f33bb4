from __future__ import annotations
from typing import Iterable, Protocol
from lang_repos.core.models import Dataset, RepositoryRecord
from lang_repos.transform.dedupe import MergeStats

class DatasetStore(Protocol):
    """Protocol for dataset backends."""

    # stats of the most recent merge() call
    last_merge: MergeStats

    def load(self) -> Dataset: ...

    def merge(self, existing: Dataset, incoming: Iterable[RepositoryRecord]) -> Dataset: ...

    def save(self, dataset: Dataset) -> None: ...
