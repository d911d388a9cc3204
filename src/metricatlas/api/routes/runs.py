from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from metricatlas.api.deps import get_store
from metricatlas.domain.models import RunReport
from metricatlas.store import MetricStore

router = APIRouter()


@router.get("/runs", response_model=list[RunReport])
async def list_runs(
    limit: int = Query(default=20, ge=1, le=200),
    store: MetricStore = Depends(get_store),  # noqa: B008
) -> list[RunReport]:
    """Most recent runs first."""
    return await store.list_runs(limit)


@router.get("/runs/{run_id}", response_model=RunReport)
async def get_run(
    run_id: str,
    store: MetricStore = Depends(get_store),  # noqa: B008
) -> RunReport:
    report = await store.get_run(run_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    return report
