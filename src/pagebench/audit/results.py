"""Audit result data structures and serialization.

Hierarchy::

    BatchMeta (top level, one ``pagebench run``)
      -> config: dict (resolved AuditConfig)

    BatchResult (per page x throttling profile)
      -> runs: int                  (accepted RunRecords)
      -> metrics: dict[str, MetricSummary]

Files produced per combination directory::

    0.json ... N-1.json   raw Lighthouse reports, one per accepted run
    report.csv            one row per accepted run
    statistics.json       BatchResult

and ``batch_meta.json`` at the root of the reports tree.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from pagebench.audit.stats import MetricSummary, is_metric_value, summarize

log = logging.getLogger("pagebench")

STATISTICS_FILE = "statistics.json"
CSV_FILE = "report.csv"
META_FILE = "batch_meta.json"

_REPORT_NAME = re.compile(r"^(\d+)\.json$")


# ---------------------------------------------------------------------------
# Run-level record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricSample:
    """One numeric measurement of one named audit."""

    name: str
    value: float


@dataclass(frozen=True)
class RunRecord:
    """All numeric metrics produced by one accepted audit run."""

    index: int  # 0-based acceptance order
    url: str = ""
    profile: str = ""
    samples: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only view over a private copy.
        object.__setattr__(self, "samples", MappingProxyType(dict(self.samples)))

    @classmethod
    def from_lighthouse(
        cls,
        lhr: Mapping[str, Any],
        *,
        index: int,
        url: str = "",
        profile: str = "",
    ) -> RunRecord:
        """Build a record from a Lighthouse result (LHR) document.

        Keeps every audit whose ``numericValue`` is a well-formed number,
        in the order the audits appear in the report.
        """
        samples: dict[str, float] = {}
        for audit_id, audit in (lhr.get("audits") or {}).items():
            if not isinstance(audit, Mapping):
                continue
            value = audit.get("numericValue")
            if is_metric_value(value):
                samples[audit_id] = float(value)
        return cls(
            index=index,
            url=url or lhr.get("finalDisplayedUrl") or lhr.get("requestedUrl", ""),
            profile=profile,
            samples=samples,
        )

    def metric_samples(self) -> list[MetricSample]:
        """The record's samples as :class:`MetricSample` objects."""
        return [MetricSample(name, value) for name, value in self.samples.items()]


# ---------------------------------------------------------------------------
# Combination-level result
# ---------------------------------------------------------------------------


@dataclass
class BatchResult:
    """Summary of every metric for one page x throttling profile."""

    url: str
    profile: str
    runs: int = 0
    metrics: dict[str, MetricSummary] = field(default_factory=dict)

    @classmethod
    def from_records(cls, url: str, profile: str, records: list[RunRecord]) -> BatchResult:
        """Aggregate the accepted runs of a combination."""
        return cls(
            url=url,
            profile=profile,
            runs=len(records),
            metrics=summarize(r.samples for r in records),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "url": self.url,
            "profile": self.profile,
            "runs": self.runs,
            "metrics": {name: m.to_dict() for name, m in self.metrics.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchResult:
        """Deserialize from a dict.  Recomputes summaries from raw values."""
        return cls(
            url=data.get("url", ""),
            profile=data.get("profile", ""),
            runs=data.get("runs", 0),
            metrics={
                name: MetricSummary.from_dict(m) for name, m in data.get("metrics", {}).items()
            },
        )


# ---------------------------------------------------------------------------
# Batch-level metadata
# ---------------------------------------------------------------------------


@dataclass
class BatchMeta:
    """Metadata for a complete ``pagebench run``."""

    config: dict[str, Any] = field(default_factory=dict)
    cli_args: list[str] = field(default_factory=list)
    browser_version: str = ""
    start_time: str = ""
    end_time: str = ""
    combinations_total: int = 0
    combinations_completed: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "config": self.config,
            "cli_args": self.cli_args,
            "browser_version": self.browser_version,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "combinations_total": self.combinations_total,
            "combinations_completed": self.combinations_completed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchMeta:
        """Deserialize from a dict, ignoring unknown fields."""
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


# ---------------------------------------------------------------------------
# I/O functions
# ---------------------------------------------------------------------------


def save_report(combination_dir: Path, index: int, report: str) -> Path:
    """Write the raw report of accepted run *index*."""
    path = combination_dir / f"{index}.json"
    path.write_text(report)
    return path


def save_batch_result(combination_dir: Path, batch: BatchResult) -> Path:
    """Write ``statistics.json`` for a combination."""
    path = combination_dir / STATISTICS_FILE
    path.write_text(json.dumps(batch.to_dict(), indent=2) + "\n")
    log.info("Wrote %s", path)
    return path


def save_batch_meta(reports_dir: Path, meta: BatchMeta) -> Path:
    """Write ``batch_meta.json`` at the root of the reports tree."""
    reports_dir.mkdir(parents=True, exist_ok=True)
    path = reports_dir / META_FILE
    path.write_text(json.dumps(meta.to_dict(), indent=2) + "\n")
    return path


def report_paths(combination_dir: Path) -> list[Path]:
    """Raw report files of a combination, in run order."""
    found = []
    for path in combination_dir.iterdir():
        match = _REPORT_NAME.match(path.name)
        if match and path.is_file():
            found.append((int(match.group(1)), path))
    return [path for _, path in sorted(found)]


def load_records(combination_dir: Path, *, profile: str = "") -> list[RunRecord]:
    """Rebuild RunRecords from the raw reports saved in *combination_dir*.

    Raises:
        FileNotFoundError: If the directory holds no reports.
        ValueError: If a report is not valid JSON.
    """
    paths = report_paths(combination_dir)
    if not paths:
        raise FileNotFoundError(f"No reports in {combination_dir}")

    records = []
    for path in paths:
        try:
            lhr = json.loads(path.read_text())
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid report {path}: {exc}") from exc
        index = int(_REPORT_NAME.match(path.name).group(1))  # type: ignore[union-attr]
        records.append(
            RunRecord.from_lighthouse(lhr, index=index, profile=profile or combination_dir.name)
        )
    return records


def find_combination_dirs(root: Path) -> list[Path]:
    """Find every directory under *root* that holds raw reports."""
    dirs = [root] if root.is_dir() and _has_reports(root) else []
    for path in sorted(root.rglob("*")):
        if path.is_dir() and _has_reports(path):
            dirs.append(path)
    return dirs


def _has_reports(path: Path) -> bool:
    return any(_REPORT_NAME.match(p.name) for p in path.iterdir() if p.is_file())


def load_batch_run(reports_dir: Path) -> tuple[BatchMeta, list[BatchResult]]:
    """Load a finished batch from disk.

    Args:
        reports_dir: Root of the reports tree, holding ``batch_meta.json``.

    Returns:
        Tuple of (BatchMeta, one BatchResult per ``statistics.json``
        found below *reports_dir*, in path order).

    Raises:
        FileNotFoundError: If ``batch_meta.json`` is missing.
        ValueError: If a file is not valid JSON.
    """
    meta_path = reports_dir / META_FILE
    if not meta_path.exists():
        raise FileNotFoundError(f"No {META_FILE} in {reports_dir}")

    try:
        meta = BatchMeta.from_dict(json.loads(meta_path.read_text()))
        batches = [
            BatchResult.from_dict(json.loads(path.read_text()))
            for path in sorted(reports_dir.rglob(STATISTICS_FILE))
        ]
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON under {reports_dir}: {exc}") from exc
    return meta, batches
