"""Command-line interface for pagebench.

Subcommands:
    pagebench run         Audit pages under throttling profiles
    pagebench summarize   Recompute statistics from saved reports
    pagebench show        Display the saved statistics of a batch
    pagebench profiles    List the built-in throttling profiles
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from pagebench import __version__
from pagebench.logging import setup_logging


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """pagebench: repeated Lighthouse audits under network/CPU throttling."""


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@main.command()
@click.option(
    "--profile",
    "profile_path",
    type=click.Path(exists=True, path_type=Path),
    help="YAML profile with targets, pages and throttling.",
)
@click.option(
    "--target",
    "targets",
    multiple=True,
    help="Base URL to audit, e.g. http://localhost:3000 (repeatable).",
)
@click.option(
    "--page",
    "pages",
    multiple=True,
    help="Page path under every target; '' is the root (repeatable).",
)
@click.option(
    "--throttling",
    "throttling",
    multiple=True,
    help="Built-in throttling profile name (repeatable, default: all).",
)
@click.option(
    "--runs",
    "runs_per_page",
    type=int,
    default=None,
    help="Accepted runs per page (default: 10).",
)
@click.option(
    "--api-delay",
    "api_delay_ms",
    type=int,
    default=None,
    help="Backend delay label in ms, used in the output path (default: 500).",
)
@click.option(
    "--reports-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Output directory (default: reports).",
)
@click.option(
    "--max-retries",
    type=int,
    default=None,
    help="Consecutive failed attempts allowed per run (default: unlimited).",
)
@click.option(
    "--retry-delay",
    "retry_delay_s",
    type=float,
    default=None,
    help="Seconds to wait after a failed attempt (default: 0).",
)
@click.option(
    "--timeout",
    "audit_timeout",
    type=int,
    default=None,
    help="Per-audit timeout in seconds (default: 300).",
)
@click.option("--chrome-path", type=str, default=None, help="Chrome/Chromium executable.")
@click.option(
    "--lighthouse",
    "lighthouse_command",
    type=str,
    default=None,
    help="Lighthouse command (default: lighthouse).",
)
@click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Also log to this file at DEBUG level.",
)
def run(  # noqa: PLR0913
    profile_path: Path | None,
    targets: tuple[str, ...],
    pages: tuple[str, ...],
    throttling: tuple[str, ...],
    runs_per_page: int | None,
    api_delay_ms: int | None,
    reports_dir: Path | None,
    max_retries: int | None,
    retry_delay_s: float | None,
    audit_timeout: int | None,
    chrome_path: str | None,
    lighthouse_command: str | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Audit every page of every target under each throttling profile.

    \b
    Examples:
        pagebench run --target http://localhost:3000 --runs 5
        pagebench run --profile batch.yaml --max-retries 20
        pagebench run --target http://localhost:5173 \\
            --page "" --page products/42 --throttling mobile-slow-4g
    """
    from pagebench.audit.config import config_from_profile, load_profile
    from pagebench.audit.errors import AuditError
    from pagebench.audit.runner import AuditRunner

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    cli_overrides: dict[str, object] = {
        "targets": targets,
        "pages": pages,
        "profiles": throttling,
        "runs_per_page": runs_per_page,
        "api_delay_ms": api_delay_ms,
        "reports_dir": reports_dir,
        "max_retries": max_retries,
        "retry_delay_s": retry_delay_s,
        "audit_timeout": audit_timeout,
        "chrome_path": chrome_path,
        "lighthouse_command": lighthouse_command,
        "cli_args": sys.argv[1:],
    }

    try:
        profile_data = load_profile(profile_path) if profile_path else {}
        config = config_from_profile(profile_data, cli_overrides=cli_overrides)
        meta, batches = AuditRunner(config).run()
    except (ValueError, AuditError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        click.echo("\nAudit interrupted.", err=True)
        raise SystemExit(130)  # noqa: B904

    from pagebench.audit.display import format_batch_result

    for batch in batches:
        click.echo()
        click.echo(format_batch_result(batch))
    click.echo()
    click.echo(f"Reports saved to: {config.reports_dir}")


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------


@main.command()
@click.argument("report_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--csv", "write_csv", is_flag=True, help="Also write summary.csv per combination.")
@click.option("--markdown", is_flag=True, help="Print a Markdown table instead of text.")
def summarize(report_dir: Path, write_csv: bool, markdown: bool) -> None:
    """Recompute statistics.json from saved raw reports.

    REPORT_DIR is searched recursively for directories holding
    numbered Lighthouse reports (0.json, 1.json, ...).
    """
    from pagebench.audit.display import format_batch_result
    from pagebench.audit.export import export_markdown, export_summary_csv
    from pagebench.audit.results import (
        BatchResult,
        find_combination_dirs,
        load_records,
        save_batch_result,
    )

    dirs = find_combination_dirs(report_dir)
    if not dirs:
        click.echo(f"Error: no reports found under {report_dir}", err=True)
        raise SystemExit(1)

    batches: list[BatchResult] = []
    for combination_dir in dirs:
        try:
            records = load_records(combination_dir)
        except ValueError as exc:
            click.echo(f"Error: {exc}", err=True)
            raise SystemExit(1) from exc
        url = records[0].url if records else ""
        batch = BatchResult.from_records(url, combination_dir.name, records)
        save_batch_result(combination_dir, batch)
        if write_csv:
            (combination_dir / "summary.csv").write_text(export_summary_csv([batch]))
        batches.append(batch)

    if markdown:
        click.echo(export_markdown(batches), nl=False)
        return
    for batch in batches:
        click.echo(format_batch_result(batch))
        click.echo()


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("report_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
def show(report_dir: Path) -> None:
    """Display the saved statistics of a batch.

    REPORT_DIR is the reports root written by ``pagebench run``,
    containing batch_meta.json.
    """
    from pagebench.audit.display import format_batch_meta, format_batch_result
    from pagebench.audit.results import load_batch_run

    try:
        meta, batches = load_batch_run(report_dir)
    except (FileNotFoundError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    click.echo(format_batch_meta(meta))
    for batch in batches:
        click.echo()
        click.echo(format_batch_result(batch))


# ---------------------------------------------------------------------------
# profiles
# ---------------------------------------------------------------------------


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def profiles(as_json: bool) -> None:
    """List the built-in throttling profiles."""
    from pagebench.audit.config import THROTTLING_PROFILES
    from pagebench.audit.display import format_profiles

    catalog = list(THROTTLING_PROFILES.values())
    if as_json:
        click.echo(json.dumps([p.to_dict() for p in catalog], indent=2))
    else:
        click.echo(format_profiles(catalog))
