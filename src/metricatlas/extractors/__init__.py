"""Extractor family: structured metadata, language AST and pattern match."""

from __future__ import annotations

from metricatlas.config.sources import ExtractorOptions
from metricatlas.domain.models import ExtractionMethod, SourceDescriptor
from metricatlas.extractors.ast import AstExtractor
from metricatlas.extractors.base import ExtractionResult, Extractor
from metricatlas.extractors.metadata import StructuredMetadataExtractor
from metricatlas.extractors.pattern import PatternMatchExtractor


def create_extractor(descriptor: SourceDescriptor, options: ExtractorOptions | None = None) -> Extractor:
    """Build the extractor matching a descriptor's extraction method."""
    if descriptor.extraction_method == ExtractionMethod.STRUCTURED_METADATA:
        return StructuredMetadataExtractor(descriptor, options)
    if descriptor.extraction_method == ExtractionMethod.LANGUAGE_AST:
        return AstExtractor(descriptor, options)
    return PatternMatchExtractor(descriptor, options)


__all__ = [
    "AstExtractor",
    "ExtractionResult",
    "Extractor",
    "PatternMatchExtractor",
    "StructuredMetadataExtractor",
    "create_extractor",
]
