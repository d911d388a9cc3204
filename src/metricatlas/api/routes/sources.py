from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from metricatlas.api.deps import get_store
from metricatlas.domain.models import SourceCategory, SourceSummary
from metricatlas.store import MetricStore

router = APIRouter()


@router.get("/sources", response_model=list[SourceSummary])
async def list_sources(
    category: SourceCategory | None = Query(default=None),
    store: MetricStore = Depends(get_store),  # noqa: B008
) -> list[SourceSummary]:
    """Registered sources with their latest run outcome."""
    summaries = await store.list_sources()
    if category is not None:
        summaries = [s for s in summaries if s.descriptor.category == category]
    return summaries
