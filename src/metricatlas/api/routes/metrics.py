from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from metricatlas.api.deps import get_app_settings, get_store
from metricatlas.config import Settings
from metricatlas.domain.models import (
    CanonicalMetric,
    ConfidenceLevel,
    InstrumentType,
    MetricFilters,
    SemanticMatch,
    SourceCategory,
)
from metricatlas.store import MetricStore

router = APIRouter()


class FacetResponse(BaseModel):
    category: dict[str, int] = Field(default_factory=dict)
    instrument_type: dict[str, int] = Field(default_factory=dict)
    confidence: dict[str, int] = Field(default_factory=dict)
    semantic_match: dict[str, int] = Field(default_factory=dict)


class MetricPageResponse(BaseModel):
    items: list[CanonicalMetric]
    total: int
    page: int
    page_size: int
    pages: int
    facets: FacetResponse | None = None


@router.get("/metrics", response_model=MetricPageResponse)
async def search_metrics(
    query: str | None = Query(default=None, description="Full-text search over names and descriptions"),
    category: SourceCategory | None = Query(default=None),
    instrument_type: InstrumentType | None = Query(default=None, alias="instrumentType"),
    confidence: ConfidenceLevel | None = Query(default=None),
    semantic_match: SemanticMatch | None = Query(default=None, alias="semanticMatch"),
    source: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, alias="pageSize", ge=1),
    include_facets: bool = Query(default=False, alias="facets"),
    store: MetricStore = Depends(get_store),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> MetricPageResponse:
    """Search the catalog; filters combine with AND."""
    size = min(page_size or settings.default_page_size, settings.max_page_size)
    filters = MetricFilters(
        category=category,
        instrument_type=instrument_type,
        confidence=confidence,
        semantic_match=semantic_match,
        source=source,
    )
    result = await store.search(query, filters, page=page, page_size=size)

    facets = None
    if include_facets:
        counts = await store.facets(query, filters)
        facets = FacetResponse(
            category=counts.category,
            instrument_type=counts.instrument_type,
            confidence=counts.confidence,
            semantic_match=counts.semantic_match,
        )

    return MetricPageResponse(
        items=result.items,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        pages=result.pages,
        facets=facets,
    )


@router.get("/metrics/{metric_id}", response_model=CanonicalMetric)
async def get_metric(
    metric_id: str,
    store: MetricStore = Depends(get_store),  # noqa: B008
) -> CanonicalMetric:
    metric = await store.get(metric_id)
    if metric is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metric not found")
    return metric
