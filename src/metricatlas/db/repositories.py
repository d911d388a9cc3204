from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import ColumnElement, Select, delete, func, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from metricatlas.db import models as db_models
from metricatlas.db.fts import MIN_TERM_LENGTH, match_expression, metric_search
from metricatlas.domain.models import (
    CanonicalMetric,
    ConfidenceLevel,
    EnrichmentStatus,
    ExtractionMethod,
    FacetCounts,
    InstrumentType,
    MetricFilters,
    PartialFailure,
    RunReport,
    RunStatus,
    SemanticMatch,
    SourceCategory,
    SourceDescriptor,
    SourceRunResult,
    SourceRunStatus,
    SourceSummary,
)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def model_to_metric(model: db_models.MetricModel) -> CanonicalMetric:
    return CanonicalMetric(
        id=model.id,
        canonical_name=model.canonical_name,
        instrument_type=InstrumentType(model.instrument_type),
        description=model.description,
        unit=model.unit,
        attributes=tuple(model.attributes or ()),
        source_name=model.source_name,
        category=SourceCategory(model.category),
        component=model.component,
        file_path=model.file_path,
        commit_hash=model.commit_hash,
        extracted_at=_aware(model.extracted_at),
        confidence=ConfidenceLevel(model.confidence),
        extraction_method=ExtractionMethod(model.extraction_method),
        semantic_convention_match=SemanticMatch(model.semantic_convention_match),
        semantic_convention_name=model.semantic_convention_name,
    )


def _apply(model: db_models.MetricModel, metric: CanonicalMetric, *, enrichment: bool) -> None:
    model.canonical_name = metric.canonical_name
    model.instrument_type = metric.instrument_type.value
    model.description = metric.description
    model.unit = metric.unit
    model.attributes = list(metric.attributes)
    model.source_name = metric.source_name
    model.category = metric.category.value
    model.component = metric.component
    model.file_path = metric.file_path
    model.commit_hash = metric.commit_hash
    model.extracted_at = metric.extracted_at
    model.confidence = metric.confidence.value
    model.extraction_method = metric.extraction_method.value
    if enrichment:
        model.semantic_convention_match = metric.semantic_convention_match.value
        model.semantic_convention_name = metric.semantic_convention_name


@dataclass
class PersistOutcome:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    removed: int = 0

    @property
    def persisted(self) -> int:
        return self.inserted + self.updated + self.unchanged


@dataclass(slots=True)
class MetricRepository:
    """Persistence helpers for canonical metrics."""

    session: AsyncSession
    fts_enabled: bool = True

    async def get(self, metric_id: str) -> CanonicalMetric | None:
        model = await self.session.get(db_models.MetricModel, metric_id)
        return model_to_metric(model) if model else None

    async def upsert(self, metric: CanonicalMetric) -> bool:
        """Insert or overwrite one metric, enrichment fields included.

        Returns False when the stored row was already identical.
        """
        model = await self.session.get(db_models.MetricModel, metric.id)
        if model is None:
            model = db_models.MetricModel(id=metric.id)
            _apply(model, metric, enrichment=True)
            self.session.add(model)
            return True
        current = model_to_metric(model)
        if (
            current.content_key() == metric.content_key()
            and current.semantic_convention_match == metric.semantic_convention_match
            and current.semantic_convention_name == metric.semantic_convention_name
        ):
            return False
        unchanged_content = current.content_key() == metric.content_key()
        _apply(model, metric, enrichment=True)
        if unchanged_content:
            model.extracted_at = current.extracted_at
        return True

    async def persist_source(
        self,
        source_name: str,
        metrics: Sequence[CanonicalMetric],
        *,
        replace: bool = False,
    ) -> PersistOutcome:
        """Upsert one source's batch, keeping stored enrichment results.

        Rows whose content did not change are left untouched so repeated runs
        over an unchanged source write nothing. With ``replace`` the source's
        rows that are absent from the batch are deleted.
        """
        outcome = PersistOutcome()
        result = await self.session.execute(
            select(db_models.MetricModel).where(db_models.MetricModel.source_name == source_name)
        )
        existing = {model.id: model for model in result.scalars()}

        for metric in metrics:
            model = existing.get(metric.id)
            if model is None:
                model = db_models.MetricModel(id=metric.id)
                _apply(model, metric, enrichment=True)
                self.session.add(model)
                existing[metric.id] = model
                outcome.inserted += 1
            elif model_to_metric(model).content_key() == metric.content_key():
                outcome.unchanged += 1
            else:
                _apply(model, metric, enrichment=False)
                outcome.updated += 1

        if replace:
            keep = {metric.id for metric in metrics}
            stale = [metric_id for metric_id in existing if metric_id not in keep]
            if stale:
                await self.session.execute(
                    delete(db_models.MetricModel).where(db_models.MetricModel.id.in_(stale))
                )
            outcome.removed = len(stale)

        await self.session.flush()
        return outcome

    async def delete_source(self, source_name: str) -> int:
        result = await self.session.execute(
            delete(db_models.MetricModel).where(db_models.MetricModel.source_name == source_name)
        )
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def count(self, source_name: str | None = None) -> int:
        stmt = select(func.count()).select_from(db_models.MetricModel)
        if source_name is not None:
            stmt = stmt.where(db_models.MetricModel.source_name == source_name)
        return (await self.session.execute(stmt)).scalar_one()

    async def counts_by_source(self) -> dict[str, int]:
        stmt = select(db_models.MetricModel.source_name, func.count()).group_by(
            db_models.MetricModel.source_name
        )
        return {name: count for name, count in (await self.session.execute(stmt)).all()}

    def _conditions(self, query: str | None, filters: MetricFilters | None) -> list[ColumnElement[bool]]:
        m = db_models.MetricModel
        conditions: list[ColumnElement[bool]] = []
        if filters is not None:
            if filters.category is not None:
                conditions.append(m.category == filters.category.value)
            if filters.instrument_type is not None:
                conditions.append(m.instrument_type == filters.instrument_type.value)
            if filters.confidence is not None:
                conditions.append(m.confidence == filters.confidence.value)
            if filters.semantic_match is not None:
                conditions.append(m.semantic_convention_match == filters.semantic_match.value)
            if filters.source is not None:
                conditions.append(m.source_name == filters.source)

        terms = (query or "").split()
        fts_terms = [t for t in terms if self.fts_enabled and len(t) >= MIN_TERM_LENGTH]
        for term in terms:
            if term in fts_terms:
                continue
            conditions.append(
                or_(
                    m.canonical_name.contains(term, autoescape=True),
                    m.description.contains(term, autoescape=True),
                )
            )
        if fts_terms:
            matching = (
                select(metric_search.c.metric_id)
                .where(text("metric_search MATCH :fts_query").bindparams(fts_query=match_expression(fts_terms)))
            )
            conditions.append(m.id.in_(matching))
        return conditions

    def _ordered(self, stmt: Select[Any]) -> Select[Any]:
        m = db_models.MetricModel
        return stmt.order_by(m.canonical_name, m.source_name, m.id)

    async def search(
        self,
        query: str | None,
        filters: MetricFilters | None,
        *,
        offset: int,
        limit: int,
    ) -> tuple[list[CanonicalMetric], int]:
        conditions = self._conditions(query, filters)
        total_stmt = select(func.count()).select_from(db_models.MetricModel).where(*conditions)
        total = (await self.session.execute(total_stmt)).scalar_one()

        stmt = self._ordered(select(db_models.MetricModel).where(*conditions)).offset(offset).limit(limit)
        result = await self.session.execute(stmt)
        return [model_to_metric(model) for model in result.scalars()], total

    async def facets(self, query: str | None, filters: MetricFilters | None) -> FacetCounts:
        m = db_models.MetricModel
        conditions = self._conditions(query, filters)
        counts = FacetCounts()
        for attr, col in (
            ("category", m.category),
            ("instrument_type", m.instrument_type),
            ("confidence", m.confidence),
            ("semantic_match", m.semantic_convention_match),
        ):
            stmt = select(col, func.count()).where(*conditions).group_by(col).order_by(col)
            setattr(counts, attr, {value: n for value, n in (await self.session.execute(stmt)).all()})
        return counts

    async def batch_after(self, after_id: str, limit: int) -> list[CanonicalMetric]:
        stmt = (
            select(db_models.MetricModel)
            .where(db_models.MetricModel.id > after_id)
            .order_by(db_models.MetricModel.id)
            .limit(limit)
        )
        return [model_to_metric(model) for model in (await self.session.execute(stmt)).scalars()]


@dataclass(slots=True)
class SourceRepository:
    """Registered sources and their latest run outcome."""

    session: AsyncSession

    async def sync(self, descriptors: Iterable[SourceDescriptor]) -> None:
        for descriptor in descriptors:
            model = await self.session.get(db_models.SourceModel, descriptor.name)
            if model is None:
                model = db_models.SourceModel(name=descriptor.name, consecutive_failures=0)
                self.session.add(model)
            model.category = descriptor.category.value
            model.repository_location = descriptor.repository_location
            model.confidence = descriptor.confidence.value
            model.extraction_method = descriptor.extraction_method.value
        await self.session.flush()

    async def delete(self, name: str) -> bool:
        model = await self.session.get(db_models.SourceModel, name)
        if model is None:
            return False
        await self.session.delete(model)
        return True

    async def summaries(self, counts: dict[str, int]) -> list[SourceSummary]:
        result = await self.session.execute(
            select(db_models.SourceModel).order_by(db_models.SourceModel.name)
        )
        return [self._to_summary(model, counts.get(model.name, 0)) for model in result.scalars()]

    async def record_result(self, run_id: str, finished_at: datetime, source: SourceRunResult) -> None:
        model = await self.session.get(db_models.SourceModel, source.source_name)
        if model is None:
            return
        model.last_run_id = run_id
        model.last_run_status = source.status.value
        model.last_run_at = finished_at
        if source.commit_hash:
            model.last_commit_hash = source.commit_hash
        if source.status in (SourceRunStatus.FAILED, SourceRunStatus.CANCELLED):
            model.consecutive_failures = (model.consecutive_failures or 0) + 1
        else:
            model.consecutive_failures = 0

    def _to_summary(self, model: db_models.SourceModel, metric_count: int) -> SourceSummary:
        return SourceSummary(
            descriptor=SourceDescriptor(
                name=model.name,
                category=SourceCategory(model.category),
                repository_location=model.repository_location,
                confidence=ConfidenceLevel(model.confidence),
                extraction_method=ExtractionMethod(model.extraction_method),
            ),
            metric_count=metric_count,
            last_run_id=model.last_run_id,
            last_run_status=SourceRunStatus(model.last_run_status) if model.last_run_status else None,
            last_run_at=_aware(model.last_run_at),
            last_commit_hash=model.last_commit_hash,
            consecutive_failures=model.consecutive_failures or 0,
        )


@dataclass(slots=True)
class RunRepository:
    """Run metadata: one row per run plus one per source."""

    session: AsyncSession

    async def record(self, report: RunReport) -> None:
        run = await self.session.get(db_models.RunModel, report.run_id)
        if run is None:
            run = db_models.RunModel(run_id=report.run_id)
            self.session.add(run)
        run.started_at = report.started_at
        run.finished_at = report.finished_at
        run.status = report.status.value
        run.enrichment_status = report.enrichment_status.value
        run.warnings = list(report.warnings)
        run.error = report.error

        await self.session.execute(
            delete(db_models.SourceRunModel).where(db_models.SourceRunModel.run_id == report.run_id)
        )
        for source in report.sources:
            self.session.add(
                db_models.SourceRunModel(
                    run_id=report.run_id,
                    source_name=source.source_name,
                    status=source.status.value,
                    commit_hash=source.commit_hash,
                    metrics_extracted=source.metrics_extracted,
                    metrics_persisted=source.metrics_persisted,
                    metrics_dropped=source.metrics_dropped,
                    metrics_removed=source.metrics_removed,
                    partial_failures=[f.model_dump() for f in source.partial_failures],
                    error=source.error,
                    duration_seconds=source.duration_seconds,
                )
            )

    async def get(self, run_id: str) -> RunReport | None:
        run = await self.session.get(db_models.RunModel, run_id)
        if run is None:
            return None
        result = await self.session.execute(
            select(db_models.SourceRunModel)
            .where(db_models.SourceRunModel.run_id == run_id)
            .order_by(db_models.SourceRunModel.source_name)
        )
        return self._to_report(run, list(result.scalars()))

    async def recent(self, limit: int = 20) -> list[RunReport]:
        result = await self.session.execute(
            select(db_models.RunModel).order_by(db_models.RunModel.started_at.desc()).limit(limit)
        )
        runs = list(result.scalars())
        if not runs:
            return []
        sources = await self.session.execute(
            select(db_models.SourceRunModel)
            .where(db_models.SourceRunModel.run_id.in_([r.run_id for r in runs]))
            .order_by(db_models.SourceRunModel.source_name)
        )
        by_run: dict[str, list[db_models.SourceRunModel]] = {}
        for model in sources.scalars():
            by_run.setdefault(model.run_id, []).append(model)
        return [self._to_report(run, by_run.get(run.run_id, [])) for run in runs]

    def _to_report(self, run: db_models.RunModel, sources: list[db_models.SourceRunModel]) -> RunReport:
        return RunReport(
            run_id=run.run_id,
            started_at=_aware(run.started_at),
            finished_at=_aware(run.finished_at),
            status=RunStatus(run.status),
            enrichment_status=EnrichmentStatus(run.enrichment_status),
            warnings=list(run.warnings or []),
            error=run.error,
            sources=[
                SourceRunResult(
                    source_name=s.source_name,
                    status=SourceRunStatus(s.status),
                    commit_hash=s.commit_hash,
                    metrics_extracted=s.metrics_extracted,
                    metrics_persisted=s.metrics_persisted,
                    metrics_dropped=s.metrics_dropped,
                    metrics_removed=s.metrics_removed,
                    partial_failures=[PartialFailure(**f) for f in s.partial_failures or []],
                    error=s.error,
                    duration_seconds=s.duration_seconds,
                )
                for s in sources
            ],
        )
