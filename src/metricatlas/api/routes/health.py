from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from metricatlas import __version__
from metricatlas.api.deps import get_store
from metricatlas.core.errors import StoreError
from metricatlas.store import MetricStore

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str = __version__


class ReadinessResponse(BaseModel):
    status: str
    database: str
    metrics: int | None = None


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(status="healthy")


@router.get("/ready", response_model=ReadinessResponse, status_code=status.HTTP_200_OK)
async def readiness_check(
    store: MetricStore = Depends(get_store),  # noqa: B008
) -> ReadinessResponse:
    """Readiness check: the store answers a count query."""
    try:
        count = await store.count()
    except StoreError:
        return ReadinessResponse(status="not_ready", database="disconnected")
    return ReadinessResponse(status="ready", database="connected", metrics=count)
