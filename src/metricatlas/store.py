"""Metric store: transactional persistence plus search over SQLite."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from metricatlas.core.errors import StoreError
from metricatlas.db.fts import install_search_index
from metricatlas.db.models import Base
from metricatlas.db.repositories import (
    MetricRepository,
    PersistOutcome,
    RunRepository,
    SourceRepository,
)
from metricatlas.db.session import create_engine, create_session_factory
from metricatlas.domain.models import (
    CanonicalMetric,
    FacetCounts,
    MetricFilters,
    RunReport,
    SearchPage,
    SourceDescriptor,
    SourceSummary,
)

logger = structlog.get_logger()


class MetricStore:
    """Owns the engine and hands out one session per operation.

    Each write happens in its own transaction, so a failed source never
    leaves half of its batch behind.
    """

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        self.database_url = database_url
        self._engine: AsyncEngine = create_engine(database_url, echo=echo)
        self._sessions: async_sessionmaker[AsyncSession] = create_session_factory(self._engine)
        self.fts_enabled = False

    async def initialize(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            async with self._engine.begin() as conn:
                self.fts_enabled = await install_search_index(conn)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not initialize store: {e}", {"url": self.database_url}) from e
        logger.info("store_initialized", fts=self.fts_enabled)

    async def close(self) -> None:
        await self._engine.dispose()

    async def __aenter__(self) -> MetricStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=operation, error=str(e))
            raise StoreError(f"Store {operation} failed: {e}", {"operation": operation}) from e

    def _metrics(self, session: AsyncSession) -> MetricRepository:
        return MetricRepository(session, fts_enabled=self.fts_enabled)

    async def persist_source(
        self,
        source_name: str,
        metrics: Sequence[CanonicalMetric],
        *,
        replace: bool = False,
    ) -> PersistOutcome:
        async with self._transaction("persist") as session:
            outcome = await self._metrics(session).persist_source(source_name, metrics, replace=replace)
        logger.info(
            "source_persisted",
            source=source_name,
            inserted=outcome.inserted,
            updated=outcome.updated,
            unchanged=outcome.unchanged,
            removed=outcome.removed,
        )
        return outcome

    async def upsert(self, metric: CanonicalMetric) -> bool:
        async with self._transaction("upsert") as session:
            return await self._metrics(session).upsert(metric)

    async def upsert_many(self, metrics: Iterable[CanonicalMetric]) -> int:
        changed = 0
        async with self._transaction("upsert") as session:
            repo = self._metrics(session)
            for metric in metrics:
                if await repo.upsert(metric):
                    changed += 1
        return changed

    async def get(self, metric_id: str) -> CanonicalMetric | None:
        async with self._transaction("get") as session:
            return await self._metrics(session).get(metric_id)

    async def search(
        self,
        query: str | None = None,
        filters: MetricFilters | None = None,
        *,
        page: int = 1,
        page_size: int = 50,
    ) -> SearchPage:
        """Full-text search plus facet filters, ordered by name then source."""
        page = max(page, 1)
        page_size = max(page_size, 1)
        async with self._transaction("search") as session:
            items, total = await self._metrics(session).search(
                query, filters, offset=(page - 1) * page_size, limit=page_size
            )
        return SearchPage(items=items, total=total, page=page, page_size=page_size)

    async def facets(self, query: str | None = None, filters: MetricFilters | None = None) -> FacetCounts:
        async with self._transaction("facets") as session:
            return await self._metrics(session).facets(query, filters)

    async def count(self, source_name: str | None = None) -> int:
        async with self._transaction("count") as session:
            return await self._metrics(session).count(source_name)

    async def iter_metrics(self, batch_size: int = 500) -> AsyncIterator[list[CanonicalMetric]]:
        """Yield stored metrics in id order; each batch is read in its own
        transaction so callers may write between batches."""
        after = ""
        while True:
            async with self._transaction("iterate") as session:
                batch = await self._metrics(session).batch_after(after, batch_size)
            if not batch:
                return
            yield batch
            after = batch[-1].id

    async def sync_sources(self, descriptors: Iterable[SourceDescriptor]) -> None:
        async with self._transaction("sync_sources") as session:
            await SourceRepository(session).sync(descriptors)

    async def list_sources(self) -> list[SourceSummary]:
        async with self._transaction("list_sources") as session:
            counts = await self._metrics(session).counts_by_source()
            return await SourceRepository(session).summaries(counts)

    async def deregister_source(self, name: str) -> int:
        """Drop a source and all of its metrics; returns the metrics removed."""
        async with self._transaction("deregister") as session:
            removed = await self._metrics(session).delete_source(name)
            await SourceRepository(session).delete(name)
        logger.info("source_deregistered", source=name, removed=removed)
        return removed

    async def record_run(self, report: RunReport) -> None:
        async with self._transaction("record_run") as session:
            await RunRepository(session).record(report)
            finished = report.finished_at or report.started_at
            sources = SourceRepository(session)
            for result in report.sources:
                await sources.record_result(report.run_id, finished, result)

    async def list_runs(self, limit: int = 20) -> list[RunReport]:
        async with self._transaction("list_runs") as session:
            return await RunRepository(session).recent(limit)

    async def get_run(self, run_id: str) -> RunReport | None:
        async with self._transaction("get_run") as session:
            return await RunRepository(session).get(run_id)
