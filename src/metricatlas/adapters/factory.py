from __future__ import annotations

from metricatlas.adapters.base import DescriptorAdapter, SourceAdapter
from metricatlas.config.settings import Settings
from metricatlas.config.sources import SourceConfig, SourcesConfig
from metricatlas.extractors import create_extractor
from metricatlas.fetch import create_fetcher
from metricatlas.fetch.models import FetchOptions
from metricatlas.sources.registry import SourceRegistry


def fetch_options_for(source: SourceConfig, settings: Settings) -> FetchOptions:
    return FetchOptions(
        shallow=source.shallow,
        ref=source.ref or settings.default_ref,
        timeout_seconds=source.timeout_seconds or settings.fetch_timeout_seconds,
        max_attempts=source.max_attempts or settings.fetch_max_attempts,
        backoff_seconds=settings.fetch_backoff_seconds,
    )


def build_adapter(source: SourceConfig, settings: Settings) -> SourceAdapter:
    descriptor = source.descriptor()
    return DescriptorAdapter(
        descriptor,
        create_fetcher(source.fetcher, settings),
        create_extractor(descriptor, source.extractor),
        fetch_options=fetch_options_for(source, settings),
        run_mode=source.run_mode,
    )


def build_adapters(config: SourcesConfig, settings: Settings) -> list[SourceAdapter]:
    """Turn a sources config into adapters, rejecting duplicate names."""
    registry = SourceRegistry()
    adapters: list[SourceAdapter] = []
    for source in config.sources:
        adapter = build_adapter(source, settings)
        registry.register(adapter.descriptor)
        adapters.append(adapter)
    return adapters
