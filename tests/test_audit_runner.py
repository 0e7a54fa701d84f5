"""Tests for pagebench.audit.runner: the retrying batch run loop."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from audit_test_helpers import (
    FakeAudit,
    make_config,
    no_result_outcome,
    ok_outcome,
    runtime_error_outcome,
)

from pagebench.audit.config import get_profile
from pagebench.audit.errors import AuditToolError, CsvSchemaError, RetryLimitExceeded
from pagebench.audit.results import load_records
from pagebench.audit.runner import AuditProgress, AuditRunner


def _fake_browser(mock_launch: MagicMock, port: int = 9222) -> SimpleNamespace:
    browser = SimpleNamespace(port=port, version="HeadlessChrome/126")
    mock_launch.return_value.__enter__.return_value = browser
    return browser


class TestRunCombination(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.profile = get_profile("mobile-slow-4g")
        self.out_dir = self.tmp / "combo"
        self.out_dir.mkdir()

    def _runner(self, audit: FakeAudit, **config_kwargs: object) -> tuple[AuditRunner, MagicMock]:
        progress = MagicMock()
        config = make_config(self.tmp, **config_kwargs)
        return AuditRunner(config, audit=audit, progress_callback=progress), progress

    def test_failed_attempts_do_not_consume_quota(self) -> None:
        """Two runtime errors then a success yield exactly one accepted run."""
        audit = FakeAudit([runtime_error_outcome(), no_result_outcome(), ok_outcome({"m": 1.0})])
        runner, progress = self._runner(audit, runs_per_page=1)

        records = runner.run_combination(
            "http://localhost:3000/", self.profile, port=9222, out_dir=self.out_dir
        )

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].index, 0)
        self.assertEqual(len(audit.calls), 3)
        self.assertEqual(sorted(p.name for p in self.out_dir.iterdir()), ["0.json", "report.csv"])
        progress.assert_called_once()
        event: AuditProgress = progress.call_args[0][0]
        self.assertEqual((event.phase, event.run, event.attempts), ("run", 1, 3))

    def test_exactly_n_runs_in_acceptance_order(self) -> None:
        audit = FakeAudit(
            [
                ok_outcome({"m": 10.0}),
                runtime_error_outcome(),
                ok_outcome({"m": 2.0}),
                ok_outcome({"m": 33.0}),
            ]
        )
        runner, progress = self._runner(audit, runs_per_page=3)
        records = runner.run_combination(
            "http://localhost:3000/", self.profile, port=9222, out_dir=self.out_dir
        )
        self.assertEqual([r.index for r in records], [0, 1, 2])
        self.assertEqual([r.samples["m"] for r in records], [10.0, 2.0, 33.0])
        self.assertEqual(progress.call_count, 3)
        saved = json.loads((self.out_dir / "2.json").read_text())
        self.assertEqual(saved["audits"]["m"]["numericValue"], 33.0)
        self.assertEqual((self.out_dir / "report.csv").read_text(), "m\n10\n2\n33\n")

    def test_audit_receives_config(self) -> None:
        audit = FakeAudit([ok_outcome({"m": 1.0})])
        runner, _ = self._runner(
            audit, runs_per_page=1, lighthouse_command="npx lighthouse", audit_timeout=42
        )
        runner.run_combination("http://h:1/", self.profile, port=9555, out_dir=self.out_dir)
        url, profile_name, kwargs = audit.calls[0]
        self.assertEqual((url, profile_name), ("http://h:1/", "mobile-slow-4g"))
        self.assertEqual(
            kwargs, {"port": 9555, "lighthouse_command": "npx lighthouse", "timeout": 42}
        )

    def test_retry_limit(self) -> None:
        audit = FakeAudit([ok_outcome({"m": 1.0})] + [no_result_outcome()] * 3)
        runner, _ = self._runner(audit, runs_per_page=2, max_retries=2)
        with self.assertRaises(RetryLimitExceeded) as cm:
            runner.run_combination("http://h:1/", self.profile, port=1, out_dir=self.out_dir)
        self.assertEqual(cm.exception.attempts, 3)
        self.assertEqual(len(audit.calls), 4)
        # The accepted run stays on disk.
        self.assertTrue((self.out_dir / "0.json").exists())

    def test_retry_limit_counts_consecutive_failures(self) -> None:
        audit = FakeAudit(
            [
                no_result_outcome(),
                ok_outcome({"m": 1.0}),
                no_result_outcome(),
                ok_outcome({"m": 2.0}),
            ]
        )
        runner, _ = self._runner(audit, runs_per_page=2, max_retries=1)
        records = runner.run_combination("http://h:1/", self.profile, port=1, out_dir=self.out_dir)
        self.assertEqual(len(records), 2)

    @patch("pagebench.audit.runner.time.sleep")
    def test_retry_delay(self, mock_sleep: MagicMock) -> None:
        audit = FakeAudit([no_result_outcome(), ok_outcome({"m": 1.0})])
        runner, _ = self._runner(audit, runs_per_page=1, retry_delay_s=2.5)
        runner.run_combination("http://h:1/", self.profile, port=1, out_dir=self.out_dir)
        mock_sleep.assert_called_once_with(2.5)

    def test_fatal_error_propagates(self) -> None:
        def audit(*args: object, **kwargs: object) -> None:
            raise AuditToolError("lighthouse not installed")

        runner = AuditRunner(make_config(self.tmp), audit=audit, progress_callback=MagicMock())
        with self.assertRaises(AuditToolError):
            runner.run_combination("http://h:1/", self.profile, port=1, out_dir=self.out_dir)

    def test_csv_schema_mismatch_aborts(self) -> None:
        audit = FakeAudit([ok_outcome({"a": 1.0, "b": 2.0}), ok_outcome({"a": 3.0})])
        runner, _ = self._runner(audit, runs_per_page=2)
        with self.assertRaises(CsvSchemaError):
            runner.run_combination("http://h:1/", self.profile, port=1, out_dir=self.out_dir)
        # The rejected run leaves nothing behind.
        self.assertEqual(sorted(p.name for p in self.out_dir.iterdir()), ["0.json", "report.csv"])
        self.assertEqual((self.out_dir / "report.csv").read_text(), "a,b\n1,2\n")
        self.assertEqual(len(load_records(self.out_dir)), 1)

    def test_previous_csv_is_truncated(self) -> None:
        (self.out_dir / "report.csv").write_text("stale\n1\n")
        audit = FakeAudit([ok_outcome({"m": 7.0})])
        runner, _ = self._runner(audit, runs_per_page=1)
        runner.run_combination("http://h:1/", self.profile, port=1, out_dir=self.out_dir)
        self.assertEqual((self.out_dir / "report.csv").read_text(), "m\n7\n")


class TestRun(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)

    def test_invalid_config(self) -> None:
        runner = AuditRunner(make_config(self.tmp, targets=()), audit=FakeAudit([]))
        with self.assertRaises(ValueError) as cm:
            runner.run()
        self.assertIn("Invalid audit configuration", str(cm.exception))

    @patch("pagebench.audit.runner.launch_browser")
    def test_end_to_end(self, mock_launch: MagicMock) -> None:
        _fake_browser(mock_launch, port=9333)
        profiles = (get_profile("desktop-dense-4g"), get_profile("mobile-slow-4g"))
        config = make_config(
            self.tmp,
            targets=("http://localhost:3000",),
            pages=("", "products/1"),
            profiles=profiles,
            runs_per_page=2,
            max_retries=3,
        )
        audit = FakeAudit([ok_outcome({"a": float(i), "cls": 0}) for i in range(8)])
        progress = MagicMock()

        meta, batches = AuditRunner(config, audit=audit, progress_callback=progress).run()

        self.assertEqual(len(batches), 4)
        self.assertEqual(
            [(b.url, b.profile) for b in batches],
            [
                ("http://localhost:3000/", "desktop-dense-4g"),
                ("http://localhost:3000/", "mobile-slow-4g"),
                ("http://localhost:3000/products/1", "desktop-dense-4g"),
                ("http://localhost:3000/products/1", "mobile-slow-4g"),
            ],
        )
        self.assertEqual(batches[0].metrics["a"].values, (0.0, 1.0))
        self.assertEqual(batches[3].metrics["a"].median, 6.5)
        self.assertFalse(batches[0].metrics["cls"].cv_defined)
        self.assertTrue(all(kwargs["port"] == 9333 for _, _, kwargs in audit.calls))

        phases = [c[0][0].phase for c in progress.call_args_list]
        self.assertEqual(phases.count("run"), 8)
        self.assertEqual(phases.count("combination"), 4)

        combo = self.tmp / "500ms" / "localhost-3000" / "products" / "1" / "mobile-slow-4g"
        self.assertEqual(
            sorted(p.name for p in combo.iterdir()),
            ["0.json", "1.json", "report.csv", "statistics.json"],
        )
        stats = json.loads((combo / "statistics.json").read_text())
        self.assertEqual(stats["metrics"]["a"]["values"], [6.0, 7.0])
        self.assertIsNone(stats["metrics"]["cls"]["variationCoefficient"])

        self.assertEqual(meta.combinations_completed, 4)
        self.assertEqual(meta.browser_version, "HeadlessChrome/126")
        saved_meta = json.loads((self.tmp / "batch_meta.json").read_text())
        self.assertEqual(saved_meta["combinations_total"], 4)
        self.assertTrue(saved_meta["end_time"])
        mock_launch.assert_called_once_with(None, flags=("--headless",))

    @patch("pagebench.audit.runner.launch_browser")
    def test_fatal_error_keeps_finished_combinations(self, mock_launch: MagicMock) -> None:
        _fake_browser(mock_launch)
        profiles = (get_profile("desktop-dense-4g"), get_profile("mobile-slow-4g"))
        config = make_config(self.tmp, profiles=profiles, runs_per_page=1, max_retries=0)
        audit = FakeAudit([ok_outcome({"a": 1.0}), no_result_outcome()])

        with self.assertRaises(RetryLimitExceeded):
            AuditRunner(config, audit=audit, progress_callback=MagicMock()).run()

        first = self.tmp / "500ms" / "localhost-3000" / "desktop-dense-4g"
        self.assertTrue((first / "statistics.json").exists())
        saved_meta = json.loads((self.tmp / "batch_meta.json").read_text())
        self.assertEqual(saved_meta["combinations_completed"], 1)
        # The browser context was exited.
        mock_launch.return_value.__exit__.assert_called_once()


class TestDefaultProgress(unittest.TestCase):
    def test_logs_run_and_combination(self) -> None:
        with self.assertLogs("pagebench", level="INFO") as cm:
            AuditRunner._default_progress(
                AuditProgress("run", "http://h/", "mobile-slow-4g", 2, 10, 0, 6, attempts=4)
            )
            AuditRunner._default_progress(
                AuditProgress("combination", "http://h/", "mobile-slow-4g", 10, 10, 1, 6)
            )
        self.assertIn("2/10", cm.output[0])
        self.assertIn("(2 retried)", cm.output[0])
        self.assertIn("[1/6]", cm.output[1])


if __name__ == "__main__":
    unittest.main()
