"""Semantic convention enrichment."""

from metricatlas.enrichment.catalog import SemanticConventionCatalog
from metricatlas.enrichment.enricher import Enricher, EnrichmentSummary

__all__ = ["Enricher", "EnrichmentSummary", "SemanticConventionCatalog"]
