"""Source descriptors and their registry."""

from metricatlas.sources.registry import SourceListing, SourceRegistry

__all__ = ["SourceListing", "SourceRegistry"]
