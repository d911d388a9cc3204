"""
CLI command for a full extraction run.

Commands:
    metricatlas run                          - Run every configured source
    metricatlas run --only node-exporter     - Run a subset of sources
    metricatlas run --full-replace NAME      - Purge metrics NAME no longer defines

Exit codes:
    0 - Complete: every source persisted and enrichment ran
    1 - Partial: at least one source failed or enrichment was skipped
    2 - Fatal: the store failed and the run was aborted
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from metricatlas.adapters import build_adapters
from metricatlas.cli.ux import console, error, header, print_json, print_table, styled_status, success, warning
from metricatlas.config import SourcesConfig, get_settings, load_sources
from metricatlas.core.errors import ConfigurationError, ExitCode, StoreError, main_with_error_handling
from metricatlas.domain.models import RunReport
from metricatlas.orchestration import Orchestrator
from metricatlas.store import MetricStore


def select_sources(config: SourcesConfig, only: Sequence[str]) -> SourcesConfig:
    if not only:
        return config
    unknown = sorted(set(only) - {s.name for s in config.sources})
    if unknown:
        raise ConfigurationError(f"Unknown source(s): {', '.join(unknown)}", {"origin": config.origin})
    return SourcesConfig(sources=[s for s in config.sources if s.name in only], origin=config.origin)


async def _execute(
    config: SourcesConfig,
    *,
    database_url: str,
    full_replace: Sequence[str],
    timeout: float | None,
) -> RunReport:
    settings = get_settings()
    adapters = build_adapters(config, settings)
    async with MetricStore(database_url) as store:
        orchestrator = Orchestrator.from_settings(adapters, store, settings)
        if timeout is not None:
            orchestrator.run_timeout_seconds = timeout
        return await orchestrator.run_all(full_replace=full_replace)


@main_with_error_handling()
def run_command(
    sources_file: str | None = None,
    only: Sequence[str] = (),
    full_replace: Sequence[str] = (),
    timeout: float | None = None,
    database_url: str | None = None,
    output_format: str = "table",
) -> int:
    """Run every configured source once and report the outcome."""
    settings = get_settings()
    config = select_sources(load_sources(sources_file or settings.sources_file), only)

    unknown = sorted(set(full_replace) - {s.name for s in config.sources})
    if unknown:
        raise ConfigurationError(
            f"--full-replace names unknown source(s): {', '.join(unknown)}", {"origin": config.origin}
        )

    try:
        report = asyncio.run(
            _execute(
                config,
                database_url=database_url or settings.database_url,
                full_replace=full_replace,
                timeout=timeout,
            )
        )
    except StoreError as e:
        error(f"Store unavailable: {e.message}")
        return int(ExitCode.FATAL)

    if output_format == "json":
        print_json(report.model_dump(mode="json"))
    else:
        print_run_report(report)
    return report.exit_code


def print_run_report(report: RunReport) -> None:
    header(f"Run {report.run_id}")
    rows = [
        [
            s.source_name,
            styled_status(s.status.value),
            (s.commit_hash or "")[:12],
            str(s.metrics_extracted),
            str(s.metrics_persisted),
            str(s.metrics_removed),
            str(len(s.partial_failures)),
            f"{s.duration_seconds:.1f}s",
        ]
        for s in report.sources
    ]
    print_table(
        "Sources",
        ["Source", "Status", "Commit", "Extracted", "Persisted", "Removed", "Skipped", "Time"],
        rows,
    )
    for message in report.warnings:
        warning(message)
    console.print(f"[muted]Enrichment: {report.enrichment_status.value}[/muted]")
    if report.error:
        error(report.error)
    summary = f"{report.metrics_persisted} metrics persisted, run {report.status.value}"
    if report.exit_code == 0:
        success(summary)
    else:
        console.print(styled_status(report.status.value), summary)


def register_run_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register run subcommand parser."""
    run_parser = subparsers.add_parser("run", help="Fetch, extract and persist every configured source")
    run_parser.add_argument("--sources", dest="sources_file", help="Path to sources YAML file")
    run_parser.add_argument(
        "--only",
        action="append",
        default=[],
        metavar="SOURCE",
        help="Run only this source (repeatable)",
    )
    run_parser.add_argument(
        "--full-replace",
        action="append",
        default=[],
        metavar="SOURCE",
        help="Delete stored metrics this source no longer defines (repeatable)",
    )
    run_parser.add_argument("--timeout", type=float, help="Run wall-clock budget in seconds")
    run_parser.add_argument("--database-url", help="Override METRICATLAS_DATABASE_URL")
    run_parser.add_argument(
        "--format",
        "-f",
        dest="output_format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )


def handle_run_command(args: argparse.Namespace) -> int:
    return run_command(
        sources_file=getattr(args, "sources_file", None),
        only=getattr(args, "only", []),
        full_replace=getattr(args, "full_replace", []),
        timeout=getattr(args, "timeout", None),
        database_url=getattr(args, "database_url", None),
        output_format=getattr(args, "output_format", "table"),
    )
