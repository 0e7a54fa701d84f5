"""Export audit results to CSV and Markdown.

Per-run CSV (``report.csv``): the first accepted run of a combination
writes a header line of metric names and a line of values; later runs
append a values line only.  Columns are the run's numeric metrics in
lexicographic order, joined with bare commas (values are always plain
numbers, so no quoting is needed).

Summary CSV: one row per metric per combination, one column per
statistic.  Markdown: a compact table for reports and issues.
"""

from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path

from pagebench.audit.errors import CsvSchemaError
from pagebench.audit.results import BatchResult, RunRecord

log = logging.getLogger("pagebench")


# ---------------------------------------------------------------------------
# Per-run rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CsvRow:
    """Header and value lines for one run, columns in matching order."""

    columns: tuple[str, ...]
    header: str
    values: str


def _format_value(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def rowify(record: RunRecord) -> CsvRow:
    """Flatten a run into a header line and a values line.

    Only metrics with a numeric value are included (RunRecord already
    guarantees that); columns are sorted by metric name.
    """
    samples = sorted(record.metric_samples(), key=lambda s: s.name)
    columns = tuple(s.name for s in samples)
    return CsvRow(
        columns=columns,
        header=",".join(columns),
        values=",".join(_format_value(s.value) for s in samples),
    )


class CsvReport:
    """The ``report.csv`` of one combination.

    Columns are fixed by the first appended run.  A later run with a
    different metric set raises :class:`CsvSchemaError` instead of
    writing a misaligned row.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.columns: tuple[str, ...] | None = None

    def reset(self) -> None:
        """Remove any file left by a previous batch."""
        self.path.unlink(missing_ok=True)
        self.columns = None

    def check(self, record: RunRecord) -> CsvRow:
        """Flatten *record*, refusing a metric set that differs from the header.

        Raises:
            CsvSchemaError: If the columns do not match those fixed by the
                first appended run.
        """
        row = rowify(record)
        if self.columns is not None and row.columns != self.columns:
            expected, got = set(self.columns), set(row.columns)
            raise CsvSchemaError(
                str(self.path),
                missing=sorted(expected - got),
                extra=sorted(got - expected),
            )
        return row

    def append(self, record: RunRecord) -> None:
        row = self.check(record)
        if self.columns is None:
            self.columns = row.columns
            contents = f"{row.header}\n{row.values}\n"
        else:
            contents = f"{row.values}\n"
        with open(self.path, "a") as f:
            f.write(contents)


# ---------------------------------------------------------------------------
# Summary exports
# ---------------------------------------------------------------------------

_SUMMARY_COLUMNS = [
    "url",
    "profile",
    "metric",
    "n",
    "average",
    "median",
    "standard_deviation",
    "percentile95",
    "percentile99",
    "min",
    "max",
    "spread",
    "mean_absolute_deviation",
    "cv_pct",
]


def _cell(value: float) -> str:
    return f"{value:.6f}" if math.isfinite(value) else ""


def export_summary_csv(batches: list[BatchResult]) -> str:
    """Export summaries as CSV (long format, one row per metric).

    A non-finite coefficient of variation is written as an empty cell.
    """
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(_SUMMARY_COLUMNS)

    for batch in batches:
        for name in sorted(batch.metrics):
            m = batch.metrics[name]
            writer.writerow(
                [
                    batch.url,
                    batch.profile,
                    name,
                    m.n,
                    _cell(m.average),
                    _cell(m.median),
                    _cell(m.standard_deviation),
                    _cell(m.percentile95),
                    _cell(m.percentile99),
                    _cell(m.min),
                    _cell(m.max),
                    _cell(m.spread),
                    _cell(m.mean_absolute_deviation),
                    _cell(m.coefficient_of_variation_pct),
                ]
            )

    return output.getvalue()


def export_markdown(batches: list[BatchResult], metrics: list[str] | None = None) -> str:
    """Export a Markdown table of median, p95 and CV per metric.

    Args:
        batches: Combination summaries.
        metrics: Restrict to these metric names (default: all).
    """
    lines = [
        "| Page | Profile | Metric | n | Median | p95 | CV |",
        "|------|---------|--------|--:|-------:|----:|---:|",
    ]
    for batch in batches:
        names = sorted(batch.metrics) if metrics is None else metrics
        for name in names:
            m = batch.metrics.get(name)
            if m is None:
                continue
            cv = f"{m.coefficient_of_variation_pct:.1f}%" if m.cv_defined else "N/A"
            lines.append(
                f"| {batch.url} | {batch.profile} | {name} | {m.n} | "
                f"{m.median:.1f} | {m.percentile95:.1f} | {cv} |"
            )
    return "\n".join(lines) + "\n"
