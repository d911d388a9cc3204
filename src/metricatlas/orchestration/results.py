"""Result collection for orchestrated runs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List

from metricatlas.domain.models import (
    EnrichmentStatus,
    PartialFailure,
    RunReport,
    RunStatus,
    SourceRunResult,
    SourceRunStatus,
)


class RunResultCollector:
    """Aggregates per-source outcomes while a run executes."""

    def __init__(self, run_id: str, source_names: Iterable[str], started_at: datetime | None = None) -> None:
        self.run_id = run_id
        self.started_at = started_at or datetime.now(timezone.utc)
        self._sources: Dict[str, SourceRunResult] = {
            name: SourceRunResult(source_name=name, status=SourceRunStatus.CANCELLED)
            for name in source_names
        }
        self._settled: set[str] = set()
        self.warnings: List[str] = []
        self.enrichment_status = EnrichmentStatus.NOT_RUN
        self.fatal_error: str | None = None

    def source(self, name: str) -> SourceRunResult:
        return self._sources[name]

    def record_extracted(
        self,
        name: str,
        *,
        commit_hash: str,
        extracted: int,
        dropped: int,
        partial_failures: List[PartialFailure],
    ) -> None:
        result = self._sources[name]
        result.commit_hash = commit_hash
        result.metrics_extracted = extracted
        result.metrics_dropped = dropped
        result.partial_failures = list(partial_failures)

    def record_persisted(self, name: str, *, persisted: int, removed: int, duration: float) -> None:
        result = self._sources[name]
        result.metrics_persisted = persisted
        result.metrics_removed = removed
        result.duration_seconds = duration
        result.status = SourceRunStatus.DEGRADED if result.partial_failures else SourceRunStatus.SUCCEEDED
        self._settled.add(name)

    def record_failure(self, name: str, error: str, *, duration: float, warning: str | None = None) -> None:
        result = self._sources[name]
        result.status = SourceRunStatus.FAILED
        result.error = error
        result.duration_seconds = duration
        self._settled.add(name)
        if warning:
            self.warnings.append(warning)

    def record_cancelled(self, name: str, reason: str, *, duration: float = 0.0) -> None:
        if name in self._settled:
            return
        result = self._sources[name]
        result.status = SourceRunStatus.CANCELLED
        result.error = reason
        result.duration_seconds = duration
        self._settled.add(name)
        self.warnings.append(f"{name}: {reason}")

    def status(self) -> RunStatus:
        if self.fatal_error is not None:
            return RunStatus.FATAL
        failed = any(
            r.status in (SourceRunStatus.FAILED, SourceRunStatus.CANCELLED) for r in self._sources.values()
        )
        if failed or self.enrichment_status == EnrichmentStatus.SKIPPED:
            return RunStatus.PARTIAL
        return RunStatus.COMPLETE

    def finalize(self) -> RunReport:
        """Return the run report; sources never settled are reported cancelled."""
        for name in self._sources:
            if name not in self._settled:
                self.record_cancelled(name, "run ended before the source finished")
        return RunReport(
            run_id=self.run_id,
            started_at=self.started_at,
            finished_at=datetime.now(timezone.utc),
            status=self.status(),
            enrichment_status=self.enrichment_status,
            sources=[self._sources[name] for name in sorted(self._sources)],
            warnings=list(self.warnings),
            error=self.fatal_error,
        )
