from __future__ import annotations

from fastapi import Request

from metricatlas.config import Settings
from metricatlas.store import MetricStore


def get_store(request: Request) -> MetricStore:
    """Store opened by the application lifespan."""
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
