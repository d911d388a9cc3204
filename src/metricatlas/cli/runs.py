"""
CLI command for run history.

Commands:
    metricatlas runs              - Recent runs
    metricatlas runs RUN_ID       - One run with per-source detail
"""

from __future__ import annotations

import argparse
import asyncio

from metricatlas.cli.run import print_run_report
from metricatlas.cli.ux import error, info, print_json, print_table, styled_status
from metricatlas.config import get_settings
from metricatlas.core.errors import main_with_error_handling
from metricatlas.domain.models import RunReport
from metricatlas.store import MetricStore


async def _load(database_url: str, run_id: str | None, limit: int) -> list[RunReport]:
    async with MetricStore(database_url) as store:
        if run_id:
            report = await store.get_run(run_id)
            return [report] if report else []
        return await store.list_runs(limit)


@main_with_error_handling()
def runs_command(
    run_id: str | None = None,
    limit: int = 20,
    database_url: str | None = None,
    output_format: str = "table",
) -> int:
    settings = get_settings()
    reports = asyncio.run(_load(database_url or settings.database_url, run_id, limit))

    if run_id and not reports:
        error(f"Run not found: {run_id}")
        return 1

    if output_format == "json":
        data = [r.model_dump(mode="json") for r in reports]
        print_json(data[0] if run_id else data)
        return 0

    if run_id:
        print_run_report(reports[0])
        return 0

    if not reports:
        info("No runs recorded yet")
        return 0

    rows = [
        [
            r.run_id,
            f"{r.started_at:%Y-%m-%d %H:%M:%S}",
            styled_status(r.status.value),
            styled_status(r.enrichment_status.value),
            str(len(r.sources)),
            ", ".join(r.failed_sources) or "-",
            str(r.metrics_persisted),
        ]
        for r in reports
    ]
    print_table(
        "Runs",
        ["Run", "Started", "Status", "Enrichment", "Sources", "Failed", "Persisted"],
        rows,
    )
    return 0


def register_runs_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register runs subcommand parser."""
    runs_parser = subparsers.add_parser("runs", help="Show run history")
    runs_parser.add_argument("run_id", nargs="?", help="Show one run in detail")
    runs_parser.add_argument("--limit", type=int, default=20)
    runs_parser.add_argument("--database-url", help="Override METRICATLAS_DATABASE_URL")
    runs_parser.add_argument(
        "--format", "-f", dest="output_format", choices=["table", "json"], default="table"
    )


def handle_runs_command(args: argparse.Namespace) -> int:
    return runs_command(
        run_id=getattr(args, "run_id", None),
        limit=getattr(args, "limit", 20),
        database_url=getattr(args, "database_url", None),
        output_format=getattr(args, "output_format", "table"),
    )
