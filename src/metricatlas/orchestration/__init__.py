"""Orchestration package: concurrent per-source runs with serialized writes."""

from metricatlas.orchestration.engine import Orchestrator, default_max_workers
from metricatlas.orchestration.results import RunResultCollector

__all__ = ["Orchestrator", "RunResultCollector", "default_max_workers"]
