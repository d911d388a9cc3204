"""
MetricAtlas configuration.

- Pydantic-based settings (environment variables, .env files)
- YAML sources file describing which repositories to read
"""

from metricatlas.config.loader import get_sources_path, load_sources, load_sources_file
from metricatlas.config.settings import Settings, get_settings
from metricatlas.config.sources import ExtractorOptions, FetcherKind, SourceConfig, SourcesConfig

__all__ = [
    "Settings",
    "get_settings",
    "ExtractorOptions",
    "FetcherKind",
    "SourceConfig",
    "SourcesConfig",
    "get_sources_path",
    "load_sources",
    "load_sources_file",
]
