from __future__ import annotations

from dataclasses import dataclass

import structlog

from metricatlas.domain.models import CanonicalMetric, SemanticMatch
from metricatlas.enrichment.catalog import SemanticConventionCatalog
from metricatlas.store import MetricStore

logger = structlog.get_logger()


@dataclass
class EnrichmentSummary:
    scanned: int = 0
    updated: int = 0
    exact: int = 0
    prefix: int = 0


class Enricher:
    """Tags stored metrics with the semantic convention they correspond to."""

    def __init__(self, catalog: SemanticConventionCatalog, *, batch_size: int = 500) -> None:
        self.catalog = catalog
        self.batch_size = batch_size

    def classify(self, canonical_name: str) -> tuple[SemanticMatch, str | None]:
        """Exact name first, then the longest catalog name that is a dotted
        prefix of ``canonical_name``."""
        if canonical_name in self.catalog:
            return SemanticMatch.EXACT, canonical_name
        segments = canonical_name.split(".")
        for end in range(len(segments) - 1, 0, -1):
            candidate = ".".join(segments[:end])
            if candidate in self.catalog:
                return SemanticMatch.PREFIX, candidate
        return SemanticMatch.NONE, None

    def apply(self, metric: CanonicalMetric) -> CanonicalMetric:
        match, name = self.classify(metric.canonical_name)
        if match == metric.semantic_convention_match and name == metric.semantic_convention_name:
            return metric
        return metric.model_copy(
            update={"semantic_convention_match": match, "semantic_convention_name": name}
        )

    async def enrich(self, store: MetricStore) -> EnrichmentSummary:
        """Reclassify every stored metric, writing only the ones that changed."""
        summary = EnrichmentSummary()
        async for batch in store.iter_metrics(self.batch_size):
            changed = []
            for metric in batch:
                enriched = self.apply(metric)
                summary.scanned += 1
                if enriched.semantic_convention_match == SemanticMatch.EXACT:
                    summary.exact += 1
                elif enriched.semantic_convention_match == SemanticMatch.PREFIX:
                    summary.prefix += 1
                if enriched is not metric:
                    changed.append(enriched)
            if changed:
                summary.updated += await store.upsert_many(changed)

        logger.info(
            "enrichment_complete",
            scanned=summary.scanned,
            updated=summary.updated,
            exact=summary.exact,
            prefix=summary.prefix,
        )
        return summary
