"""Root test configuration."""

import logging
from pathlib import Path

import pytest
import pytest_asyncio
import structlog

from metricatlas.store import MetricStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'metricatlas.db'}"


@pytest_asyncio.fixture
async def store(database_url: str):
    """Initialized store backed by a file in the test's tmp dir."""
    metric_store = MetricStore(database_url)
    await metric_store.initialize()
    try:
        yield metric_store
    finally:
        await metric_store.close()
