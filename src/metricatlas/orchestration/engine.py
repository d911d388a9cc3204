"""
Run engine.

Each source runs fetch and extract in its own task, bounded by a worker
semaphore, with outbound fetches further capped. Normalized batches are handed
to a single persistence task so store writes never interleave. Enrichment
runs over the whole store once persistence has drained.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Callable, Iterable, Sequence
from uuid import uuid4

import structlog

from metricatlas.adapters.base import AdapterContext, SourceAdapter
from metricatlas.config.settings import Settings
from metricatlas.core.errors import CatalogLoadError, FetchError, NormalizationError, StoreError
from metricatlas.domain.models import (
    CanonicalMetric,
    EnrichmentStatus,
    PartialFailure,
    RunMode,
    RunPhase,
    RunReport,
)
from metricatlas.enrichment.catalog import SemanticConventionCatalog
from metricatlas.enrichment.enricher import Enricher
from metricatlas.extractors.base import ExtractionResult
from metricatlas.fetch.workspace import scoped_workspace
from metricatlas.logging import bind_context, bind_run
from metricatlas.normalization.normalizer import Normalizer
from metricatlas.normalization.policy import NormalizationPolicy
from metricatlas.orchestration.results import RunResultCollector
from metricatlas.sources.registry import SourceRegistry
from metricatlas.store import MetricStore

logger = structlog.get_logger()

CatalogLoader = Callable[[], SemanticConventionCatalog]

_PHASE_ORDER = list(RunPhase)


def default_max_workers() -> int:
    return 2 * (os.cpu_count() or 1)


@dataclass
class _Batch:
    source_name: str
    metrics: list[CanonicalMetric]
    replace: bool
    started: float


@dataclass
class _RunState:
    run_id: str
    collector: RunResultCollector
    full_replace: set[str]
    workers: asyncio.Semaphore
    fetches: asyncio.Semaphore
    queue: asyncio.Queue[_Batch | None] = field(default_factory=asyncio.Queue)
    tasks: list[asyncio.Task[None]] = field(default_factory=list)
    cancel_reason: str = "cancelled"


class Orchestrator:
    """Runs every registered adapter and records the outcome."""

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        store: MetricStore,
        *,
        normalizer: Normalizer | None = None,
        catalog_loader: CatalogLoader | None = None,
        max_workers: int | None = None,
        max_concurrent_fetches: int = 4,
        run_timeout_seconds: float | None = None,
        workspace_dir: str | Path | None = None,
        enrichment_batch_size: int = 500,
    ) -> None:
        # rejects duplicate names before anything runs
        SourceRegistry(adapter.descriptor for adapter in adapters)
        self.adapters = list(adapters)
        self.store = store
        self.normalizer = normalizer or Normalizer()
        self.catalog_loader = catalog_loader
        self.max_workers = max_workers or default_max_workers()
        self.max_concurrent_fetches = max(1, max_concurrent_fetches)
        self.run_timeout_seconds = run_timeout_seconds
        self.workspace_dir = workspace_dir
        self.enrichment_batch_size = enrichment_batch_size
        self.phase = RunPhase.IDLE

    @classmethod
    def from_settings(
        cls,
        adapters: Sequence[SourceAdapter],
        store: MetricStore,
        settings: Settings,
    ) -> Orchestrator:
        if settings.normalization_policy_path:
            policy = NormalizationPolicy.load(settings.normalization_policy_path)
        else:
            policy = NormalizationPolicy.default()
        return cls(
            adapters,
            store,
            normalizer=Normalizer(policy),
            catalog_loader=partial(
                SemanticConventionCatalog.load,
                include_semconv=settings.catalog_include_semconv,
                include_incubating=settings.catalog_include_incubating,
                path=settings.catalog_path,
            ),
            max_workers=settings.max_workers,
            max_concurrent_fetches=settings.max_concurrent_fetches,
            run_timeout_seconds=settings.run_timeout_seconds,
            workspace_dir=settings.workspace_dir,
            enrichment_batch_size=settings.enrichment_batch_size,
        )

    def _advance(self, phase: RunPhase) -> None:
        """Move the run phase forward; it reports the furthest stage any source reached."""
        if _PHASE_ORDER.index(phase) > _PHASE_ORDER.index(self.phase):
            self.phase = phase

    async def run_all(self, *, full_replace: Iterable[str] = (), run_id: str | None = None) -> RunReport:
        """Execute one run over every adapter and return its report."""
        run_id = run_id or uuid4().hex
        bind_run(run_id)
        state = _RunState(
            run_id=run_id,
            collector=RunResultCollector(run_id, [a.name for a in self.adapters]),
            full_replace=set(full_replace),
            workers=asyncio.Semaphore(self.max_workers),
            fetches=asyncio.Semaphore(self.max_concurrent_fetches),
        )
        for name in sorted(state.full_replace - {a.name for a in self.adapters}):
            state.collector.warnings.append(f"{name}: full-replace requested for an unknown source")

        logger.info("run_started", sources=len(self.adapters), max_workers=self.max_workers)
        self.phase = RunPhase.FETCHING

        try:
            await self.store.sync_sources(a.descriptor for a in self.adapters)
        except StoreError as e:
            state.collector.fatal_error = e.message
            return await self._finish(state)

        await self._run_sources(state)

        if state.collector.fatal_error is None and self.catalog_loader is not None:
            await self._enrich(state)

        return await self._finish(state)

    async def _run_sources(self, state: _RunState) -> None:
        state.tasks = [
            asyncio.create_task(self._run_source(adapter, state), name=f"source:{adapter.name}")
            for adapter in self.adapters
        ]
        writer = asyncio.create_task(self._persist_batches(state), name="persistence")

        if state.tasks:
            _, pending = await asyncio.wait(state.tasks, timeout=self.run_timeout_seconds)
            if pending:
                logger.warning(
                    "run_timeout",
                    timeout_seconds=self.run_timeout_seconds,
                    cancelled=len(pending),
                )
                state.cancel_reason = f"cancelled after run timeout of {self.run_timeout_seconds}s"
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self.phase = RunPhase.PERSISTING
        await state.queue.put(None)
        await writer

    async def _run_source(self, adapter: SourceAdapter, state: _RunState) -> None:
        name = adapter.name
        log = bind_context(source=name)
        started = time.monotonic()
        collector = state.collector
        replace = adapter.run_mode == RunMode.FULL_REPLACE or name in state.full_replace

        try:
            async with state.workers:
                async with scoped_workspace(name, self.workspace_dir) as workspace:
                    context = AdapterContext(run_id=state.run_id, workspace=workspace, log=log)
                    try:
                        async with state.fetches:
                            fetch_result = await adapter.fetch(context, adapter.fetch_options)
                    except FetchError as e:
                        log.warning(
                            "source_fetch_failed",
                            error=e.message,
                            error_type=type(e).__name__,
                            retryable=e.retryable,
                        )
                        collector.record_failure(
                            name,
                            e.message,
                            duration=time.monotonic() - started,
                            warning=f"{name}: fetch failed: {e.message}",
                        )
                        return
                    except Exception as e:
                        log.error("source_fetch_crashed", error=str(e), exc_info=True)
                        collector.record_failure(
                            name,
                            f"{type(e).__name__}: {e}",
                            duration=time.monotonic() - started,
                            warning=f"{name}: fetch crashed: {e}",
                        )
                        return

                    self._advance(RunPhase.EXTRACTING)
                    extract = asyncio.ensure_future(asyncio.to_thread(adapter.extract, context, fetch_result))
                    try:
                        extraction = await asyncio.shield(extract)
                    except asyncio.CancelledError:
                        # the worker thread is still reading the workspace
                        context.cancelled.set()
                        await asyncio.gather(extract, return_exceptions=True)
                        raise
                    except Exception as e:
                        log.error("source_extract_crashed", error=str(e), exc_info=True)
                        collector.source(name).partial_failures.append(
                            PartialFailure(file_path="", reason=f"{type(e).__name__}: {e}")
                        )
                        collector.source(name).commit_hash = fetch_result.commit_hash
                        collector.record_failure(
                            name,
                            f"extractor crashed: {e}",
                            duration=time.monotonic() - started,
                            warning=f"{name}: extractor crashed: {e}",
                        )
                        return

            self._advance(RunPhase.NORMALIZING)
            metrics, dropped = self._normalize(adapter, extraction, log)
            collector.record_extracted(
                name,
                commit_hash=fetch_result.commit_hash,
                extracted=len(extraction.metrics),
                dropped=dropped,
                partial_failures=extraction.partial_failures,
            )
            await state.queue.put(_Batch(name, metrics, replace, started))
        except asyncio.CancelledError:
            log.warning("source_cancelled", reason=state.cancel_reason)
            collector.record_cancelled(name, state.cancel_reason, duration=time.monotonic() - started)
            raise

    def _normalize(
        self,
        adapter: SourceAdapter,
        extraction: ExtractionResult,
        log: structlog.stdlib.BoundLogger,
    ) -> tuple[list[CanonicalMetric], int]:
        extracted_at = datetime.now(timezone.utc)
        metrics: dict[str, CanonicalMetric] = {}
        dropped = 0
        for raw in extraction.metrics:
            try:
                metric = self.normalizer.normalize(raw, category=adapter.category, extracted_at=extracted_at)
            except NormalizationError as e:
                log.error("metric_normalization_failed", error=e.message, raw=e.details.get("raw"))
                dropped += 1
                continue
            if metric.id in metrics:
                log.debug(
                    "duplicate_metric_definition",
                    metric=metric.canonical_name,
                    file=raw.file_path,
                    line=raw.line,
                )
                continue
            metrics[metric.id] = metric
        return list(metrics.values()), dropped

    async def _persist_batches(self, state: _RunState) -> None:
        collector = state.collector
        while True:
            batch = await state.queue.get()
            if batch is None:
                return
            if collector.fatal_error is not None:
                collector.record_cancelled(batch.source_name, "persistence aborted after store failure")
                continue
            try:
                outcome = await self.store.persist_source(
                    batch.source_name, batch.metrics, replace=batch.replace
                )
            except StoreError as e:
                logger.error("run_aborted", source=batch.source_name, error=e.message)
                collector.fatal_error = e.message
                collector.record_failure(
                    batch.source_name, e.message, duration=time.monotonic() - batch.started
                )
                state.cancel_reason = "cancelled after store failure"
                for task in state.tasks:
                    task.cancel()
                continue
            collector.record_persisted(
                batch.source_name,
                persisted=outcome.persisted,
                removed=outcome.removed,
                duration=time.monotonic() - batch.started,
            )

    async def _enrich(self, state: _RunState) -> None:
        assert self.catalog_loader is not None
        self.phase = RunPhase.ENRICHING
        collector = state.collector
        try:
            catalog = await asyncio.to_thread(self.catalog_loader)
        except CatalogLoadError as e:
            logger.warning("enrichment_skipped", error=e.message)
            collector.enrichment_status = EnrichmentStatus.SKIPPED
            collector.warnings.append(f"enrichment skipped: {e.message}")
            return
        try:
            await Enricher(catalog, batch_size=self.enrichment_batch_size).enrich(self.store)
        except StoreError as e:
            logger.error("run_aborted", phase="enriching", error=e.message)
            collector.fatal_error = e.message
            return
        collector.enrichment_status = EnrichmentStatus.COMPLETED

    async def _finish(self, state: _RunState) -> RunReport:
        report = state.collector.finalize()
        try:
            await self.store.record_run(report)
        except StoreError as e:
            logger.error("run_metadata_not_recorded", error=e.message)
            state.collector.fatal_error = state.collector.fatal_error or e.message
            report = state.collector.finalize()
        self.phase = RunPhase.COMPLETE
        logger.info(
            "run_finished",
            status=report.status.value,
            enrichment=report.enrichment_status.value,
            persisted=report.metrics_persisted,
            failed_sources=report.failed_sources,
        )
        return report
