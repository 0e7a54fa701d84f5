"""Tests for pagebench.audit.results: records, batch results and persistence."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from audit_test_helpers import make_lhr, make_records

from pagebench.audit.results import (
    BatchMeta,
    BatchResult,
    MetricSample,
    RunRecord,
    find_combination_dirs,
    load_batch_run,
    load_records,
    report_paths,
    save_batch_meta,
    save_batch_result,
    save_report,
)


class TestRunRecordFromLighthouse(unittest.TestCase):
    def test_keeps_numeric_audits_in_order(self) -> None:
        lhr = make_lhr(
            {
                "largest-contentful-paint": 1830.5,
                "cumulative-layout-shift": 0,
                "viewport": None,
                "total-blocking-time": 120,
            }
        )
        record = RunRecord.from_lighthouse(lhr, index=0, profile="desktop-dense-4g")
        self.assertEqual(
            list(record.samples),
            ["largest-contentful-paint", "cumulative-layout-shift", "total-blocking-time"],
        )
        self.assertEqual(record.samples["cumulative-layout-shift"], 0.0)
        self.assertEqual(record.url, "http://localhost:3000/")
        self.assertEqual(record.profile, "desktop-dense-4g")

    def test_ignores_malformed_audits(self) -> None:
        lhr = {
            "audits": {"a": "not-a-dict", "b": {"numericValue": "12"}, "c": {"numericValue": 3}}
        }
        record = RunRecord.from_lighthouse(lhr, index=2, url="http://x:1/")
        self.assertEqual(record.samples, {"c": 3.0})
        self.assertEqual(record.index, 2)

    def test_missing_audits(self) -> None:
        record = RunRecord.from_lighthouse({}, index=0, url="http://x/")
        self.assertEqual(record.samples, {})

    def test_samples_are_read_only(self) -> None:
        source = {"a": 1.0}
        record = RunRecord(index=0, samples=source)
        with self.assertRaises(TypeError):
            record.samples["a"] = 2.0  # type: ignore[index]
        source["a"] = 99.0
        self.assertEqual(record.samples["a"], 1.0)

    def test_metric_samples(self) -> None:
        record = make_records({"a": 1.0, "b": 2.0})[0]
        self.assertEqual(record.metric_samples(), [MetricSample("a", 1.0), MetricSample("b", 2.0)])


class TestBatchResult(unittest.TestCase):
    def test_from_records_partial_overlap(self) -> None:
        records = make_records({"a": 1, "b": 2}, {"a": 3, "b": 4}, {"a": 5})
        batch = BatchResult.from_records("http://localhost:3000/", "mobile-slow-4g", records)
        self.assertEqual(batch.runs, 3)
        self.assertEqual(batch.metrics["a"].n, 3)
        self.assertEqual(batch.metrics["b"].n, 2)
        self.assertEqual(batch.metrics["b"].median, 3)

    def test_dict_round_trip(self) -> None:
        records = make_records({"a": 1, "b": 0}, {"a": 3, "b": 0})
        batch = BatchResult.from_records("http://h/", "p", records)
        rebuilt = BatchResult.from_dict(json.loads(json.dumps(batch.to_dict())))
        self.assertEqual(rebuilt.url, "http://h/")
        self.assertEqual(rebuilt.runs, 2)
        self.assertEqual(rebuilt.metrics, batch.metrics)


class TestPersistence(unittest.TestCase):
    def test_save_and_load_records(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "mobile-slow-4g"
            out.mkdir()
            for i, value in enumerate([300.0, 100.0, 200.0]):
                save_report(out, i, json.dumps(make_lhr({"speed-index": value})))
            # Unrelated files are ignored.
            (out / "report.csv").write_text("speed-index\n300\n")

            records = load_records(out)
            self.assertEqual([r.index for r in records], [0, 1, 2])
            self.assertEqual([r.samples["speed-index"] for r in records], [300.0, 100.0, 200.0])
            self.assertEqual(records[0].profile, "mobile-slow-4g")

    def test_report_paths_sorted_numerically(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir)
            for i in (10, 2, 1):
                save_report(out, i, "{}")
            self.assertEqual([p.name for p in report_paths(out)], ["1.json", "2.json", "10.json"])

    def test_load_records_empty_dir(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                load_records(Path(tmpdir))

    def test_load_records_invalid_json(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            save_report(Path(tmpdir), 0, "{not json")
            with self.assertRaises(ValueError):
                load_records(Path(tmpdir))

    def test_save_batch_result(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            batch = BatchResult.from_records("http://h/", "p", make_records({"a": 1.0}))
            path = save_batch_result(Path(tmpdir), batch)
            self.assertEqual(path.name, "statistics.json")
            data = json.loads(path.read_text())
            self.assertEqual(data["metrics"]["a"]["median"], 1.0)

    def test_batch_meta_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            meta = BatchMeta(config={"runs_per_page": 3}, combinations_total=6)
            path = save_batch_meta(Path(tmpdir) / "reports", meta)
            loaded = BatchMeta.from_dict(json.loads(path.read_text()))
            self.assertEqual(loaded, meta)

    def test_find_combination_dirs(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            a = root / "500ms" / "localhost-3000" / "desktop-dense-4g"
            b = root / "500ms" / "localhost-3000" / "products" / "mobile-slow-4g"
            for d in (a, b):
                d.mkdir(parents=True)
                save_report(d, 0, "{}")
            self.assertEqual(find_combination_dirs(root), [a, b])
            self.assertEqual(find_combination_dirs(a), [a])

    def test_load_batch_run(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            save_batch_meta(root, BatchMeta(browser_version="Chrome/126", combinations_total=2))
            for profile, values in (("mobile-slow-4g", (0, 0)), ("desktop-dense-4g", (1, 3))):
                combo = root / "500ms" / "h-1" / profile
                combo.mkdir(parents=True)
                records = make_records(*({"m": v} for v in values))
                save_batch_result(combo, BatchResult.from_records("http://h:1/", profile, records))

            meta, batches = load_batch_run(root)
            self.assertEqual(meta.browser_version, "Chrome/126")
            self.assertEqual([b.profile for b in batches], ["desktop-dense-4g", "mobile-slow-4g"])
            self.assertEqual(batches[0].metrics["m"].median, 2.0)
            self.assertFalse(batches[1].metrics["m"].cv_defined)

    def test_load_batch_run_without_meta(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                load_batch_run(Path(tmpdir))

    def test_load_batch_run_invalid_statistics(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            save_batch_meta(root, BatchMeta())
            (root / "statistics.json").write_text("{oops")
            with self.assertRaises(ValueError):
                load_batch_run(root)


if __name__ == "__main__":
    unittest.main()
