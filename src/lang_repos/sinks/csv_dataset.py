from __future__ import annotations

import csv
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from lang_repos.core.errors import StorageError
from lang_repos.core.models import Dataset, RepositoryRecord
from lang_repos.sinks.base import DatasetStore
from lang_repos.transform.dedupe import IdMergeStrategy, MergeStats, MergeStrategy
from lang_repos.utils.atomic import atomic_write
from lang_repos.utils.logging import get_logger

_BOOL_TOKENS = {"true": True, "false": False}


def marker_column(marker_path: str) -> str:
    """Column name for a marker file: ``Cargo.toml`` -> ``has_cargo_toml``."""
    slug = re.sub(r"[^0-9a-z]+", "_", marker_path.lower()).strip("_")
    return f"has_{slug}"


class CsvDatasetStore(DatasetStore):
    """
    Dataset kept as a CSV file with a fixed column order:
    id, name, marker A present, marker B present.

    The whole file is rewritten on every save through a temporary file, so the
    on-disk dataset is always a complete snapshot.
    """

    def __init__(self, path: Path, marker_files: Sequence[str], merger: Optional[MergeStrategy] = None):
        if len(marker_files) != 2:
            raise ValueError("exactly two marker files are required")
        self.path = Path(path)
        self.columns: List[str] = ["id", "name"] + [marker_column(m) for m in marker_files]
        self.merger = merger or IdMergeStrategy()
        self.last_merge = MergeStats()
        self.rows_skipped = 0
        self.log = get_logger("lang_repos.sink.csv")

    def load(self) -> Dataset:
        """
        Read the dataset; a missing file is an empty dataset, bad rows are skipped.

        Raises:
            StorageError: If the file cannot be read or its header names other
                marker columns than the configured ones.
        """
        dataset: Dataset = {}
        self.rows_skipped = 0

        if not self.path.exists():
            self.log.info("No dataset at %s, starting empty", self.path)
            return dataset

        try:
            with self.path.open("r", newline="", encoding="utf-8") as f:
                for line_no, row in enumerate(csv.reader(f), start=1):
                    if line_no == 1 and row and row[0] == "id":
                        if row != self.columns:
                            raise StorageError(
                                f"dataset {self.path} has columns {row}, expected {self.columns}; "
                                "marker_files must match the ones the dataset was built with"
                            )
                        continue

                    record = self._parse_row(row, line_no)
                    if record is None:
                        self.rows_skipped += 1
                        continue
                    dataset[record.id] = record
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise StorageError(f"cannot read dataset {self.path}: {e}") from e

        self.log.info("Dataset loaded: path=%s rows=%d skipped=%d", self.path, len(dataset), self.rows_skipped)
        return dataset

    def merge(self, existing: Dataset, incoming: Iterable[RepositoryRecord]) -> Dataset:
        """Upsert incoming records by id. ``existing`` is left untouched."""
        merged, self.last_merge = self.merger.merge(existing, incoming)
        return merged

    def save(self, dataset: Dataset) -> None:
        """Rewrite the whole file atomically."""
        with atomic_write(self.path, newline="") as f:
            w = csv.writer(f, lineterminator="\n")
            w.writerow(self.columns)
            for r in dataset.values():
                w.writerow([r.id, r.name, self._format_bool(r.has_marker_a), self._format_bool(r.has_marker_b)])

        self.log.info("CSV write: path=%s rows=%d", self.path, len(dataset))

    def _parse_row(self, row: List[str], line_no: int) -> Optional[RepositoryRecord]:
        if len(row) != len(self.columns):
            self.log.warning("Skipping malformed dataset row %d: expected %d fields, got %d", line_no, len(self.columns), len(row))
            return None

        rid, name, marker_a, marker_b = row
        if not rid.strip():
            self.log.warning("Skipping malformed dataset row %d: empty id", line_no)
            return None

        flags = [_BOOL_TOKENS.get(marker_a), _BOOL_TOKENS.get(marker_b)]
        if None in flags:
            self.log.warning("Skipping malformed dataset row %d: booleans must be true/false, got %r", line_no, row[2:])
            return None

        return RepositoryRecord(id=rid, name=name, has_marker_a=flags[0], has_marker_b=flags[1])

    def _format_bool(self, value: bool) -> str:
        return "true" if value else "false"
