"""
CLI commands for registered sources.

Commands:
    metricatlas sources                  - Configured sources with last run outcome
    metricatlas deregister NAME --yes    - Remove a source and all of its metrics
"""

from __future__ import annotations

import argparse
import asyncio

from metricatlas.cli.ux import info, print_json, print_table, styled_status, success, warning
from metricatlas.config import get_settings, load_sources
from metricatlas.core.errors import main_with_error_handling
from metricatlas.domain.models import SourceSummary
from metricatlas.store import MetricStore


async def _summaries(database_url: str) -> list[SourceSummary]:
    async with MetricStore(database_url) as store:
        return await store.list_sources()


async def _deregister(database_url: str, name: str) -> int:
    async with MetricStore(database_url) as store:
        return await store.deregister_source(name)


@main_with_error_handling()
def sources_command(
    sources_file: str | None = None,
    database_url: str | None = None,
    output_format: str = "table",
) -> int:
    """List configured sources merged with what the store knows about them."""
    settings = get_settings()
    config = load_sources(sources_file or settings.sources_file)
    stored = {s.descriptor.name: s for s in asyncio.run(_summaries(database_url or settings.database_url))}

    summaries = [stored.get(source.name) or SourceSummary(descriptor=source.descriptor()) for source in config.sources]
    # stored sources that were removed from the config are still searchable
    configured = {s.name for s in config.sources}
    summaries.extend(s for name, s in stored.items() if name not in configured)

    if output_format == "json":
        print_json([s.model_dump(mode="json") for s in summaries])
        return 0

    rows = [
        [
            s.descriptor.name,
            s.descriptor.category.value,
            s.descriptor.confidence.value,
            s.descriptor.extraction_method.value,
            str(s.metric_count),
            styled_status(s.last_run_status.value) if s.last_run_status else "-",
            (s.last_commit_hash or "")[:12],
            str(s.consecutive_failures),
        ]
        for s in summaries
    ]
    print_table(
        f"Sources ({config.origin})",
        ["Name", "Category", "Confidence", "Method", "Metrics", "Last run", "Commit", "Failures"],
        rows,
    )
    for s in summaries:
        if s.descriptor.name not in configured:
            info(f"{s.descriptor.name} is stored but no longer configured")
    return 0


@main_with_error_handling()
def deregister_command(name: str, yes: bool = False, database_url: str | None = None) -> int:
    """Remove a source and every metric it contributed."""
    if not yes:
        warning(f"This deletes every stored metric from '{name}'. Re-run with --yes to confirm.")
        return 1
    settings = get_settings()
    removed = asyncio.run(_deregister(database_url or settings.database_url, name))
    success(f"Deregistered {name} ({removed} metrics removed)")
    return 0


def register_sources_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register sources and deregister subcommand parsers."""
    sources_parser = subparsers.add_parser("sources", help="List sources and their last run")
    sources_parser.add_argument("--sources", dest="sources_file", help="Path to sources YAML file")
    sources_parser.add_argument("--database-url", help="Override METRICATLAS_DATABASE_URL")
    sources_parser.add_argument(
        "--format", "-f", dest="output_format", choices=["table", "json"], default="table"
    )

    deregister_parser = subparsers.add_parser(
        "deregister", help="Remove a source and all of its stored metrics"
    )
    deregister_parser.add_argument("name", help="Source name")
    deregister_parser.add_argument("--yes", action="store_true", help="Confirm deletion")
    deregister_parser.add_argument("--database-url", help="Override METRICATLAS_DATABASE_URL")


def handle_sources_command(args: argparse.Namespace) -> int:
    return sources_command(
        sources_file=getattr(args, "sources_file", None),
        database_url=getattr(args, "database_url", None),
        output_format=getattr(args, "output_format", "table"),
    )


def handle_deregister_command(args: argparse.Namespace) -> int:
    return deregister_command(
        name=args.name,
        yes=getattr(args, "yes", False),
        database_url=getattr(args, "database_url", None),
    )
