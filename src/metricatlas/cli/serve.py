from __future__ import annotations

import argparse

import uvicorn

from metricatlas.cli.ux import info
from metricatlas.config import get_settings
from metricatlas.core.errors import main_with_error_handling


@main_with_error_handling()
def serve_command(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> int:
    """Serve the read-only query API."""
    settings = get_settings()
    info(f"Serving {settings.database_url} on http://{host}:{port}{settings.api_prefix}")
    uvicorn.run(
        "metricatlas.api.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def register_serve_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register serve subcommand parser."""
    serve_parser = subparsers.add_parser("serve", help="Run the query API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")


def handle_serve_command(args: argparse.Namespace) -> int:
    return serve_command(
        host=getattr(args, "host", "127.0.0.1"),
        port=getattr(args, "port", 8000),
        reload=getattr(args, "reload", False),
    )
