import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from lang_repos.core.errors import StorageError
from lang_repos.core.models import RepositoryRecord
from lang_repos.sinks.csv_dataset import CsvDatasetStore, marker_column

HEADER = "id,name,has_cargo_toml,has_cargo_lock\n"


def rec(rid, name=None, a=False, b=False):
    return RepositoryRecord(id=rid, name=name or f"owner/{rid}", has_marker_a=a, has_marker_b=b)


class TestMarkerColumn(unittest.TestCase):
    def test_names(self):
        self.assertEqual(marker_column("Cargo.toml"), "has_cargo_toml")
        self.assertEqual(marker_column("package-lock.json"), "has_package_lock_json")
        self.assertEqual(marker_column("docs/README.md"), "has_docs_readme_md")


class TestCsvDatasetStore(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.path = Path(self.tmp_dir) / "github.csv"
        self.store = CsvDatasetStore(self.path, ["Cargo.toml", "Cargo.lock"])

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_missing_file_is_empty_dataset(self):
        self.assertEqual(self.store.load(), {})

    def test_save_format(self):
        dataset = {r.id: r for r in [rec("A"), rec("B", a=True), rec("C", a=True, b=True)]}
        self.store.save(dataset)
        self.assertEqual(
            self.path.read_text(encoding="utf-8"),
            HEADER + "A,owner/A,false,false\nB,owner/B,true,false\nC,owner/C,true,true\n",
        )

    def test_names_with_commas_are_quoted(self):
        self.store.save({"A": rec("A", name="odd,name")})
        self.assertEqual(self.store.load()["A"].name, "odd,name")

    def test_load_roundtrip_preserves_order(self):
        dataset = {r.id: r for r in [rec("Z"), rec("A", a=True), rec("M", b=True)]}
        self.store.save(dataset)
        loaded = self.store.load()
        self.assertEqual(list(loaded), ["Z", "A", "M"])
        self.assertEqual(loaded, dataset)

    def test_malformed_rows_are_skipped_with_warning(self):
        self.path.write_text(
            HEADER
            + "A,owner/A,false,false\n"
            + "B,owner/B,true\n"
            + ",owner/empty,true,true\n"
            + "C,owner/C,yes,no\n"
            + "D,owner/D,true,true\n",
            encoding="utf-8",
        )
        with self.assertLogs("lang_repos.sink.csv", level="WARNING") as logs:
            loaded = self.store.load()

        self.assertEqual(list(loaded), ["A", "D"])
        self.assertEqual(self.store.rows_skipped, 3)
        self.assertEqual(len([m for m in logs.output if "Skipping malformed" in m]), 3)

    def test_header_for_other_marker_files_is_rejected(self):
        self.path.write_text(
            "id,name,has_go_mod,has_go_sum\n" + "A,owner/A,true,false\n",
            encoding="utf-8",
        )
        with self.assertRaises(StorageError) as ctx:
            self.store.load()
        self.assertIn("has_go_mod", str(ctx.exception))

    def test_merge_overwrites_in_place_and_appends(self):
        existing = {r.id: r for r in [rec("A"), rec("B")]}
        merged = self.store.merge(existing, [rec("C", a=True), rec("A", name="renamed/A", b=True)])

        self.assertEqual(list(merged), ["A", "B", "C"])
        self.assertEqual(merged["A"], rec("A", name="renamed/A", b=True))
        self.assertEqual(self.store.last_merge.inserted, 1)
        self.assertEqual(self.store.last_merge.updated, 1)
        # input dataset is not modified
        self.assertEqual(existing["A"], rec("A"))
        self.assertNotIn("C", existing)

    def test_merge_last_write_wins_within_batch(self):
        merged = self.store.merge({}, [rec("A"), rec("A", a=True), rec("A", name="final/A", a=True, b=True)])
        self.assertEqual(len(merged), 1)
        self.assertEqual(merged["A"], rec("A", name="final/A", a=True, b=True))
        self.assertEqual(self.store.last_merge.inserted, 1)
        self.assertEqual(self.store.last_merge.updated, 0)

    def test_merge_counts_each_id_once_against_existing(self):
        existing = {"A": rec("A"), "B": rec("B")}
        self.store.merge(existing, [rec("A", a=True), rec("A", b=True), rec("B", a=True), rec("B")])

        self.assertEqual(self.store.last_merge.inserted, 0)
        self.assertEqual(self.store.last_merge.updated, 1)
        self.assertEqual(self.store.last_merge.unchanged, 1)

    def test_repeated_merges_never_duplicate_ids(self):
        dataset = {}
        for round_no in range(5):
            batch = [rec(f"R{i}", name=f"owner/r{i}-{round_no}", a=bool(round_no % 2)) for i in range(round_no + 3)]
            dataset = self.store.merge(dataset, batch)
        self.assertEqual(len(dataset), 7)
        self.assertEqual(len(set(dataset)), len(dataset))
        self.assertEqual(list(dataset), [f"R{i}" for i in range(7)])

    def test_failed_save_keeps_previous_file(self):
        self.store.save({"A": rec("A")})
        before = self.path.read_bytes()

        with patch("lang_repos.sinks.csv_dataset.csv.writer", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                self.store.save({"B": rec("B")})

        self.assertEqual(self.path.read_bytes(), before)
        self.assertEqual(os.listdir(self.tmp_dir), ["github.csv"])

    def test_unwritable_directory_raises_storage_error(self):
        store = CsvDatasetStore(Path(self.tmp_dir) / "missing" / "github.csv", ["Cargo.toml", "Cargo.lock"])
        with self.assertRaises(StorageError):
            store.save({"A": rec("A")})


if __name__ == "__main__":
    unittest.main()
