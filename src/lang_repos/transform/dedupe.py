from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Protocol

from lang_repos.core.models import Dataset, RepositoryRecord
from lang_repos.utils.logging import get_logger


@dataclass(frozen=True)
class MergeStats:
    """What a merge did to the dataset."""

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0


class MergeStrategy(Protocol):
    """Protocol for merging incoming records into a dataset."""

    def key(self, record: RepositoryRecord) -> str: ...
    def merge(self, existing: Dataset, incoming: Iterable[RepositoryRecord]) -> tuple[Dataset, MergeStats]: ...


class IdMergeStrategy:
    """Upsert records by repository id, keeping first-sighting order."""

    def __init__(self):
        self.log = get_logger("lang_repos.dedupe.id")

    def key(self, record: RepositoryRecord) -> str:
        """Dedupe key: the stable repository id, never the display name."""
        return (record.id or "").strip()

    def merge(self, existing: Dataset, incoming: Iterable[RepositoryRecord]) -> tuple[Dataset, MergeStats]:
        """
        Apply incoming records on top of a copy of ``existing``.

        Known ids are overwritten where they already sit; new ids are appended.
        When an id appears more than once in ``incoming`` the last one wins.
        """
        merged: Dataset = dict(existing)
        touched: Dict[str, None] = {}

        for r in incoming:
            k = self.key(r)
            if not k:
                self.log.debug("Record without id skipped: %s", r.name)
                continue
            touched[k] = None
            # dict assignment keeps the position of an existing key
            merged[k] = r

        # counted per id against the dataset before the merge
        inserted = updated = unchanged = 0
        for k in touched:
            previous = existing.get(k)
            if previous is None:
                inserted += 1
            elif previous != merged[k]:
                updated += 1
                self.log.debug("Record updated: %s (%s -> %s)", k, previous, merged[k])
            else:
                unchanged += 1

        stats = MergeStats(inserted=inserted, updated=updated, unchanged=unchanged)
        self.log.info(
            "Id merge: existing=%d incoming_ids=%d inserted=%d updated=%d unchanged=%d total=%d",
            len(existing),
            len(touched),
            inserted,
            updated,
            unchanged,
            len(merged),
        )
        return merged, stats
