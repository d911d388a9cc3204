"""MetricAtlas: source-first metric extraction, normalization and search."""

__version__ = "0.1.0"
