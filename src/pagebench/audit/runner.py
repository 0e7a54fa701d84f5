"""Audit execution engine.

Orchestrates:
1. Configuration validation
2. Browser launch (one instance for the whole batch)
3. Per combination (target -> page -> throttling profile, in order):
   repeated audits until ``runs_per_page`` runs are accepted,
   incremental report/CSV writing, then statistics
4. Progress reporting

Runs are strictly sequential: concurrent audits against the same
browser would disturb each other's timings.

A run whose audit reports a runtime error or no result is discarded
and retried; it does not count toward ``runs_per_page``.  Any other
exception aborts the batch, leaving finished combinations on disk.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pagebench.audit.browser import launch_browser
from pagebench.audit.config import AuditConfig, ThrottlingProfile, validate_config
from pagebench.audit.errors import RetryLimitExceeded
from pagebench.audit.export import CsvReport
from pagebench.audit.lighthouse import AuditOutcome, run_lighthouse
from pagebench.audit.results import (
    CSV_FILE,
    BatchMeta,
    BatchResult,
    RunRecord,
    save_batch_meta,
    save_batch_result,
    save_report,
)

log = logging.getLogger("pagebench")


# ---------------------------------------------------------------------------
# Progress callback
# ---------------------------------------------------------------------------


@dataclass
class AuditProgress:
    """Progress info passed to the callback."""

    phase: str  # "run" (a run was accepted) or "combination" (one finished)
    url: str
    profile: str
    run: int  # accepted runs so far in this combination
    runs_total: int
    combinations_done: int
    combinations_total: int
    attempts: int = 0  # audit invocations so far in this combination
    duration_s: float = 0.0


ProgressCallback = Callable[[AuditProgress], None]
AuditFunction = Callable[..., AuditOutcome]


# ---------------------------------------------------------------------------
# AuditRunner
# ---------------------------------------------------------------------------


class AuditRunner:
    """Executes a batch of audits according to an AuditConfig.

    Usage::

        config = AuditConfig(targets=("http://localhost:3000",))
        runner = AuditRunner(config)
        meta, batches = runner.run()
    """

    def __init__(
        self,
        config: AuditConfig,
        audit: AuditFunction = run_lighthouse,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.config = config
        self.audit = audit
        self.progress: Any = progress_callback or self._default_progress
        self._combinations_done = 0

    def run(self) -> tuple[BatchMeta, list[BatchResult]]:
        """Execute the full batch.

        Returns:
            Tuple of (BatchMeta, one BatchResult per combination).

        Raises:
            ValueError: If configuration is invalid.
            AuditError: On browser, tool, retry-limit or CSV failures.
        """
        errors = validate_config(self.config)
        fatal = [e for e in errors if e.severity == "error"]
        for w in (e for e in errors if e.severity == "warning"):
            log.warning("Config warning: %s: %s", w.field, w.message)
        if fatal:
            messages = [f"  {e.field}: {e.message}" for e in fatal]
            raise ValueError("Invalid audit configuration:\n" + "\n".join(messages))

        config = self.config
        meta = BatchMeta(
            config=config.to_dict(),
            cli_args=list(config.cli_args),
            start_time=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            combinations_total=config.total_combinations,
        )
        batches: list[BatchResult] = []
        self._combinations_done = 0

        log.info(
            "Auditing %d combination(s), %d run(s) each",
            config.total_combinations,
            config.runs_per_page,
        )
        try:
            with launch_browser(config.chrome_path, flags=config.chrome_flags) as browser:
                meta.browser_version = browser.version
                save_batch_meta(config.reports_dir, meta)

                for url, profile in config.combinations():
                    batches.append(self._run_batch(url, profile, browser.port))
                    self._combinations_done += 1
                    meta.combinations_completed = self._combinations_done
        finally:
            meta.end_time = time.strftime("%Y-%m-%dT%H:%M:%S%z")
            save_batch_meta(config.reports_dir, meta)

        log.info("Audits complete: %s", config.reports_dir)
        return meta, batches

    def _run_batch(self, url: str, profile: ThrottlingProfile, port: int) -> BatchResult:
        """Audit one combination and write its statistics."""
        out_dir = self.config.combination_dir(url, profile)
        out_dir.mkdir(parents=True, exist_ok=True)
        log.info("%s [%s] -> %s", url, profile.name, out_dir)

        records = self.run_combination(url, profile, port=port, out_dir=out_dir)
        batch = BatchResult.from_records(url, profile.name, records)
        save_batch_result(out_dir, batch)

        self.progress(
            AuditProgress(
                phase="combination",
                url=url,
                profile=profile.name,
                run=len(records),
                runs_total=self.config.runs_per_page,
                combinations_done=self._combinations_done + 1,
                combinations_total=self.config.total_combinations,
            )
        )
        return batch

    def run_combination(
        self,
        url: str,
        profile: ThrottlingProfile,
        *,
        port: int,
        out_dir: Path,
    ) -> list[RunRecord]:
        """Collect exactly ``runs_per_page`` accepted runs.

        Failed attempts (runtime error or no result) are retried without
        advancing the run index.  ``max_retries`` bounds the consecutive
        failures per run; ``None`` retries forever.

        Raises:
            RetryLimitExceeded: When ``max_retries`` is exhausted.
        """
        config = self.config
        csv_report = CsvReport(out_dir / CSV_FILE)
        csv_report.reset()

        records: list[RunRecord] = []
        attempts = 0
        failures = 0

        while len(records) < config.runs_per_page:
            attempts += 1
            outcome = self.audit(
                url,
                profile,
                port=port,
                lighthouse_command=config.lighthouse_command,
                timeout=config.audit_timeout,
            )

            if not outcome.ok:
                failures += 1
                reason = outcome.runtime_error or "no result"
                log.warning(
                    "%s [%s] run %d failed (attempt %d): %s",
                    url,
                    profile.name,
                    len(records),
                    failures,
                    reason,
                )
                if config.max_retries is not None and failures > config.max_retries:
                    raise RetryLimitExceeded(url, profile.name, failures, reason)
                if config.retry_delay_s:
                    time.sleep(config.retry_delay_s)
                continue

            failures = 0
            index = len(records)
            record = RunRecord.from_lighthouse(
                outcome.lhr, index=index, url=url, profile=profile.name
            )
            csv_report.check(record)
            save_report(out_dir, index, outcome.report or json.dumps(outcome.lhr))
            csv_report.append(record)
            records.append(record)

            self.progress(
                AuditProgress(
                    phase="run",
                    url=url,
                    profile=profile.name,
                    run=len(records),
                    runs_total=config.runs_per_page,
                    combinations_done=self._combinations_done,
                    combinations_total=config.total_combinations,
                    attempts=attempts,
                    duration_s=outcome.duration_s,
                )
            )

        return records

    @staticmethod
    def _default_progress(progress: AuditProgress) -> None:
        """Default progress callback: log one line per event."""
        overall = f"[{progress.combinations_done}/{progress.combinations_total}]"
        if progress.phase == "combination":
            log.info("  %s %s [%s] done", overall, progress.url, progress.profile)
            return

        line = (
            f"  {overall} {progress.url:40s} {progress.profile:18s} "
            f"{progress.run}/{progress.runs_total} "
        )
        if progress.duration_s:
            line += f"{progress.duration_s:6.1f}s "
        if progress.attempts > progress.run:
            line += f"({progress.attempts - progress.run} retried)"
        log.info(line)
