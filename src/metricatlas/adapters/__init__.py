"""Source adapters: the extension point for new metric sources."""

from metricatlas.adapters.base import AdapterContext, DescriptorAdapter, SourceAdapter
from metricatlas.adapters.factory import build_adapter, build_adapters, fetch_options_for

__all__ = [
    "AdapterContext",
    "DescriptorAdapter",
    "SourceAdapter",
    "build_adapter",
    "build_adapters",
    "fetch_options_for",
]
