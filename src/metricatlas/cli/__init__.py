"""
CLI commands for MetricAtlas.
"""

from metricatlas.cli.enrich import enrich_command
from metricatlas.cli.run import run_command
from metricatlas.cli.runs import runs_command
from metricatlas.cli.search import search_command
from metricatlas.cli.serve import serve_command
from metricatlas.cli.sources import deregister_command, sources_command

__all__ = [
    "deregister_command",
    "enrich_command",
    "run_command",
    "runs_command",
    "search_command",
    "serve_command",
    "sources_command",
]
