"""
MetricAtlas command line.

Usage:
    metricatlas <command> [args]
"""

from __future__ import annotations

import argparse
import sys
from typing import Callable, Sequence

from metricatlas import __version__
from metricatlas.cli.enrich import handle_enrich_command, register_enrich_parser
from metricatlas.cli.run import handle_run_command, register_run_parser
from metricatlas.cli.runs import handle_runs_command, register_runs_parser
from metricatlas.cli.search import handle_search_command, register_search_parser
from metricatlas.cli.serve import handle_serve_command, register_serve_parser
from metricatlas.cli.sources import (
    handle_deregister_command,
    handle_sources_command,
    register_sources_parser,
)
from metricatlas.config import get_settings
from metricatlas.logging import configure_logging

HANDLERS: dict[str, Callable[[argparse.Namespace], int]] = {
    "run": handle_run_command,
    "search": handle_search_command,
    "sources": handle_sources_command,
    "deregister": handle_deregister_command,
    "runs": handle_runs_command,
    "enrich": handle_enrich_command,
    "serve": handle_serve_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="metricatlas",
        description="Extract, normalize and search metric definitions from source repositories",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", help="Override METRICATLAS_LOG_LEVEL")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines")
    subparsers = parser.add_subparsers(dest="command")

    register_run_parser(subparsers)
    register_search_parser(subparsers)
    register_sources_parser(subparsers)
    register_runs_parser(subparsers)
    register_enrich_parser(subparsers)
    register_serve_parser(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = HANDLERS.get(args.command or "")
    if handler is None:
        parser.print_help()
        sys.exit(2)

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, json=args.log_json)
    sys.exit(handler(args))


if __name__ == "__main__":
    main()
