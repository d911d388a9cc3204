"""
CLI command for searching stored metrics.

Commands:
    metricatlas search "request duration"
    metricatlas search http --type Histogram --semconv Exact
    metricatlas search --source node-exporter --format json
"""

from __future__ import annotations

import argparse
import asyncio

from metricatlas.cli.ux import console, info, print_json, print_table
from metricatlas.config import get_settings
from metricatlas.core.errors import main_with_error_handling
from metricatlas.domain.models import (
    ConfidenceLevel,
    FacetCounts,
    InstrumentType,
    MetricFilters,
    SearchPage,
    SemanticMatch,
    SourceCategory,
)
from metricatlas.store import MetricStore


async def _search(
    database_url: str,
    query: str | None,
    filters: MetricFilters,
    page: int,
    page_size: int,
    facets: bool,
) -> tuple[SearchPage, FacetCounts | None]:
    async with MetricStore(database_url) as store:
        result = await store.search(query, filters, page=page, page_size=page_size)
        counts = await store.facets(query, filters) if facets else None
    return result, counts


@main_with_error_handling()
def search_command(
    query: str | None = None,
    category: str | None = None,
    instrument_type: str | None = None,
    confidence: str | None = None,
    semantic_match: str | None = None,
    source: str | None = None,
    page: int = 1,
    page_size: int | None = None,
    facets: bool = False,
    database_url: str | None = None,
    output_format: str = "table",
) -> int:
    """Search stored metrics by text and facet filters."""
    settings = get_settings()
    filters = MetricFilters(
        category=SourceCategory(category) if category else None,
        instrument_type=InstrumentType(instrument_type) if instrument_type else None,
        confidence=ConfidenceLevel(confidence) if confidence else None,
        semantic_match=SemanticMatch(semantic_match) if semantic_match else None,
        source=source,
    )
    size = min(page_size or settings.default_page_size, settings.max_page_size)
    result, counts = asyncio.run(
        _search(database_url or settings.database_url, query, filters, page, size, facets)
    )

    if output_format == "json":
        data = result.model_dump(mode="json")
        data["pages"] = result.pages
        if counts is not None:
            data["facets"] = vars(counts)
        print_json(data)
        return 0

    if not result.items:
        info("No metrics matched")
        return 0

    rows = [
        [
            m.canonical_name,
            m.instrument_type.value,
            m.unit or "",
            m.source_name,
            m.confidence.value,
            m.semantic_convention_match.value,
        ]
        for m in result.items
    ]
    print_table(
        f"Metrics (page {result.page}/{result.pages}, {result.total} total)",
        ["Name", "Type", "Unit", "Source", "Confidence", "SemConv"],
        rows,
    )
    if counts is not None:
        for facet, values in vars(counts).items():
            rendered = ", ".join(f"{k}={v}" for k, v in values.items())
            console.print(f"  [cyan]{facet}:[/cyan] {rendered}")
    return 0


def register_search_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register search subcommand parser."""
    search_parser = subparsers.add_parser("search", help="Search stored metrics")
    search_parser.add_argument("query", nargs="?", help="Full-text query over names and descriptions")
    search_parser.add_argument("--category", choices=[c.value for c in SourceCategory])
    search_parser.add_argument(
        "--type", dest="instrument_type", choices=[t.value for t in InstrumentType]
    )
    search_parser.add_argument("--confidence", choices=[c.value for c in ConfidenceLevel])
    search_parser.add_argument(
        "--semconv", dest="semantic_match", choices=[s.value for s in SemanticMatch]
    )
    search_parser.add_argument("--source", help="Restrict to one source")
    search_parser.add_argument("--page", type=int, default=1)
    search_parser.add_argument("--page-size", type=int)
    search_parser.add_argument("--facets", action="store_true", help="Show facet counts")
    search_parser.add_argument("--database-url", help="Override METRICATLAS_DATABASE_URL")
    search_parser.add_argument(
        "--format",
        "-f",
        dest="output_format",
        choices=["table", "json"],
        default="table",
    )


def handle_search_command(args: argparse.Namespace) -> int:
    return search_command(
        query=getattr(args, "query", None),
        category=getattr(args, "category", None),
        instrument_type=getattr(args, "instrument_type", None),
        confidence=getattr(args, "confidence", None),
        semantic_match=getattr(args, "semantic_match", None),
        source=getattr(args, "source", None),
        page=getattr(args, "page", 1),
        page_size=getattr(args, "page_size", None),
        facets=getattr(args, "facets", False),
        database_url=getattr(args, "database_url", None),
        output_format=getattr(args, "output_format", "table"),
    )
