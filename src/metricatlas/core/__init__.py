"""Core modules for MetricAtlas - centralized definitions and utilities."""

from metricatlas.core.errors import (
    CatalogLoadError,
    ConfigurationError,
    DuplicateSourceError,
    ExitCode,
    ExtractionError,
    FetchError,
    FetchTimeoutError,
    MetricAtlasError,
    NetworkError,
    NormalizationError,
    RefNotFoundError,
    StoreError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "MetricAtlasError",
    "ConfigurationError",
    "DuplicateSourceError",
    "FetchError",
    "NetworkError",
    "RefNotFoundError",
    "FetchTimeoutError",
    "ExtractionError",
    "NormalizationError",
    "StoreError",
    "CatalogLoadError",
    "main_with_error_handling",
    "format_error_message",
]
