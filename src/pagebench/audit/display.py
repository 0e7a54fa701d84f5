"""Terminal display formatting for audit summaries.

Produces aligned plain-text tables.  Lighthouse reports timings in
milliseconds and sizes in bytes, so values are shown as-is with
adaptive precision.
"""

from __future__ import annotations

import math

from pagebench.audit.config import ThrottlingProfile
from pagebench.audit.results import BatchMeta, BatchResult


def _format_number(value: float) -> str:
    """Format a metric value compactly."""
    if not math.isfinite(value):
        return "N/A"
    if abs(value) >= 1000:
        return f"{value:,.0f}"
    if abs(value) >= 10:
        return f"{value:.1f}"
    return f"{value:.3f}"


def _format_cv(value: float) -> str:
    return f"{value:.1f}%" if math.isfinite(value) else "N/A"


def format_batch_result(batch: BatchResult) -> str:
    """Format one combination's summaries as a table."""
    lines: list[str] = []

    title = f"{batch.url} [{batch.profile}] ({batch.runs} runs)"
    lines.append(title)
    lines.append("─" * len(title))

    if not batch.metrics:
        lines.append("No numeric metrics.")
        return "\n".join(lines)

    width = max(30, max(len(name) for name in batch.metrics))
    lines.append(
        f"{'Metric':<{width}s} {'n':>3s} {'Median':>10s} {'p95':>10s} "
        f"{'p99':>10s} {'Stdev':>10s} {'CV':>7s}"
    )
    lines.append("─" * (width + 56))

    for name in sorted(batch.metrics):
        m = batch.metrics[name]
        lines.append(
            f"{name:<{width}s} {m.n:>3d} {_format_number(m.median):>10s} "
            f"{_format_number(m.percentile95):>10s} {_format_number(m.percentile99):>10s} "
            f"{_format_number(m.standard_deviation):>10s} "
            f"{_format_cv(m.coefficient_of_variation_pct):>7s}"
        )

    return "\n".join(lines)


def format_profiles(profiles: list[ThrottlingProfile]) -> str:
    """Format the throttling catalog as a table."""
    lines = [
        f"{'Profile':<20s} {'Form':<8s} {'RTT':>6s} {'Kbps':>8s} {'CPU':>4s} {'Viewport':>10s}",
        "─" * 61,
    ]
    for p in profiles:
        t, e = p.throttling, p.emulation
        viewport = f"{e.width}x{e.height}"
        lines.append(
            f"{p.name:<20s} {p.form_factor:<8s} {t.rtt_ms:>6g} "
            f"{t.throughput_kbps:>8g} {t.cpu_slowdown_multiplier:>3g}x {viewport:>10s}"
        )
        if p.description:
            lines.append(f"  {p.description}")
    return "\n".join(lines)


def format_batch_meta(meta: BatchMeta) -> str:
    """Header block for a saved batch."""
    config = meta.config
    lines = [
        f"Browser:      {meta.browser_version or 'unknown'}",
        f"Started:      {meta.start_time or 'unknown'}",
        f"Finished:     {meta.end_time or 'unknown'}",
        f"Combinations: {meta.combinations_completed}/{meta.combinations_total}",
    ]
    if config:
        lines.append(f"Runs/page:    {config.get('runs_per_page', '?')}")
        lines.append(f"Targets:      {', '.join(config.get('targets', []))}")
    if meta.combinations_completed < meta.combinations_total:
        lines.append("(batch did not finish)")
    return "\n".join(lines)
