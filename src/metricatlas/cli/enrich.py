"""
CLI command that re-runs semantic convention enrichment over the store.

Useful after upgrading opentelemetry-semantic-conventions or editing the
catalog file, without fetching any source again.
"""

from __future__ import annotations

import argparse
import asyncio

from metricatlas.cli.ux import print_json, print_key_value, success
from metricatlas.config import get_settings
from metricatlas.core.errors import main_with_error_handling
from metricatlas.enrichment import Enricher, EnrichmentSummary, SemanticConventionCatalog
from metricatlas.store import MetricStore


async def _enrich(database_url: str, catalog: SemanticConventionCatalog, batch_size: int) -> EnrichmentSummary:
    async with MetricStore(database_url) as store:
        return await Enricher(catalog, batch_size=batch_size).enrich(store)


@main_with_error_handling()
def enrich_command(
    catalog_path: str | None = None,
    no_incubating: bool = False,
    database_url: str | None = None,
    output_format: str = "table",
) -> int:
    settings = get_settings()
    catalog = SemanticConventionCatalog.load(
        include_semconv=settings.catalog_include_semconv,
        include_incubating=settings.catalog_include_incubating and not no_incubating,
        path=catalog_path or settings.catalog_path,
    )
    summary = asyncio.run(
        _enrich(database_url or settings.database_url, catalog, settings.enrichment_batch_size)
    )

    if output_format == "json":
        print_json({"catalog_entries": len(catalog), **vars(summary)})
        return 0

    print_key_value(
        {
            "Catalog entries": str(len(catalog)),
            "Scanned": str(summary.scanned),
            "Exact": str(summary.exact),
            "Prefix": str(summary.prefix),
        },
        title="Enrichment",
    )
    success(f"{summary.updated} metrics reclassified")
    return 0


def register_enrich_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register enrich subcommand parser."""
    enrich_parser = subparsers.add_parser(
        "enrich", help="Reclassify stored metrics against semantic conventions"
    )
    enrich_parser.add_argument("--catalog", dest="catalog_path", help="Extra YAML convention catalog")
    enrich_parser.add_argument(
        "--no-incubating", action="store_true", help="Only match stable conventions"
    )
    enrich_parser.add_argument("--database-url", help="Override METRICATLAS_DATABASE_URL")
    enrich_parser.add_argument(
        "--format", "-f", dest="output_format", choices=["table", "json"], default="table"
    )


def handle_enrich_command(args: argparse.Namespace) -> int:
    return enrich_command(
        catalog_path=getattr(args, "catalog_path", None),
        no_incubating=getattr(args, "no_incubating", False),
        database_url=getattr(args, "database_url", None),
        output_format=getattr(args, "output_format", "table"),
    )
