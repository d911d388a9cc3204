from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceCategory(StrEnum):
    """Kind of upstream project a source descriptor points at."""

    COLLECTOR_RECEIVER = "collector-receiver"
    EXPORTER = "exporter"
    INSTRUMENTATION_LIBRARY = "instrumentation-library"
    KUBERNETES_METRICS = "kubernetes-metrics"
    CLOUD_METRICS = "cloud-metrics"
    OTHER = "other"


_CONFIDENCE_RANK = {
    "Authoritative": 3,
    "Derived": 2,
    "Documented": 1,
    "VendorClaimed": 0,
}


class ConfidenceLevel(StrEnum):
    """How much a metric definition can be trusted, strongest first."""

    AUTHORITATIVE = "Authoritative"
    DERIVED = "Derived"
    DOCUMENTED = "Documented"
    VENDOR_CLAIMED = "VendorClaimed"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self.value]

    def cap(self, ceiling: ConfidenceLevel) -> ConfidenceLevel:
        """Return the weaker of this level and ``ceiling``."""
        return self if self.rank <= ceiling.rank else ceiling


class ExtractionMethod(StrEnum):
    STRUCTURED_METADATA = "StructuredMetadata"
    LANGUAGE_AST = "LanguageAst"
    PATTERN_MATCH = "PatternMatch"


class InstrumentType(StrEnum):
    COUNTER = "Counter"
    GAUGE = "Gauge"
    HISTOGRAM = "Histogram"
    SUMMARY = "Summary"
    UNKNOWN = "Unknown"


class SemanticMatch(StrEnum):
    EXACT = "Exact"
    PREFIX = "Prefix"
    NONE = "None"


class RunMode(StrEnum):
    """Retention policy applied when a source's metrics are persisted."""

    ADDITIVE = "additive"
    FULL_REPLACE = "full-replace"


class RunPhase(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    ENRICHING = "enriching"
    COMPLETE = "complete"


class RunStatus(StrEnum):
    """Outcome of a whole run."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    FATAL = "fatal"

    @property
    def exit_code(self) -> int:
        return {"complete": 0, "partial": 1, "fatal": 2}[self.value]


class SourceRunStatus(StrEnum):
    """Terminal state of one source within a run."""

    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EnrichmentStatus(StrEnum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    NOT_RUN = "not-run"


class SourceDescriptor(BaseModel):
    """Immutable description of where a source lives and how to read it."""

    model_config = ConfigDict(frozen=True)

    name: str
    category: SourceCategory
    repository_location: str
    confidence: ConfidenceLevel
    extraction_method: ExtractionMethod

    @field_validator("name", "repository_location")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


@dataclass(slots=True)
class RawMetric:
    """A metric definition exactly as an extractor found it."""

    source_name: str
    raw_name: str
    raw_type: str
    description: str
    unit: str | None
    label_names: list[str]
    file_path: str
    commit_hash: str
    confidence: ConfidenceLevel
    extraction_method: ExtractionMethod
    component: str = ""
    line: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "source_name": self.source_name,
            "raw_name": self.raw_name,
            "raw_type": self.raw_type,
            "description": self.description,
            "unit": self.unit,
            "label_names": list(self.label_names),
            "file_path": self.file_path,
            "commit_hash": self.commit_hash,
            "confidence": str(self.confidence),
            "extraction_method": str(self.extraction_method),
            "component": self.component,
            "line": self.line,
        }


class CanonicalMetric(BaseModel):
    """A normalized metric definition with its provenance."""

    model_config = ConfigDict(frozen=True)

    id: str
    canonical_name: str
    instrument_type: InstrumentType
    description: str = ""
    unit: str | None = None
    attributes: tuple[str, ...] = ()
    source_name: str
    category: SourceCategory = SourceCategory.OTHER
    component: str = ""
    file_path: str
    commit_hash: str
    extracted_at: datetime
    confidence: ConfidenceLevel
    extraction_method: ExtractionMethod
    semantic_convention_match: SemanticMatch = SemanticMatch.NONE
    semantic_convention_name: str | None = None

    def content_key(self) -> tuple[object, ...]:
        """Fields that decide whether a re-extracted metric changed."""
        return (
            self.canonical_name,
            self.instrument_type,
            self.description,
            self.unit,
            self.attributes,
            self.category,
            self.component,
            self.file_path,
            self.commit_hash,
            self.confidence,
            self.extraction_method,
        )


class SemanticConventionEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    convention_name: str
    instrument_type: InstrumentType = InstrumentType.UNKNOWN
    stability_level: str = "stable"


class PartialFailure(BaseModel):
    """A file or definition an extractor had to skip."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    reason: str
    line: int | None = None


class SourceRunResult(BaseModel):
    source_name: str
    status: SourceRunStatus
    commit_hash: str | None = None
    metrics_extracted: int = 0
    metrics_persisted: int = 0
    metrics_dropped: int = 0
    metrics_removed: int = 0
    partial_failures: list[PartialFailure] = Field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0


class RunReport(BaseModel):
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    status: RunStatus = RunStatus.COMPLETE
    enrichment_status: EnrichmentStatus = EnrichmentStatus.NOT_RUN
    sources: list[SourceRunResult] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def exit_code(self) -> int:
        return self.status.exit_code

    @property
    def failed_sources(self) -> list[str]:
        return [
            s.source_name
            for s in self.sources
            if s.status in (SourceRunStatus.FAILED, SourceRunStatus.CANCELLED)
        ]

    @property
    def metrics_persisted(self) -> int:
        return sum(s.metrics_persisted for s in self.sources)


class SourceSummary(BaseModel):
    """A registered source plus the outcome of its latest run."""

    descriptor: SourceDescriptor
    metric_count: int = 0
    last_run_id: str | None = None
    last_run_status: SourceRunStatus | None = None
    last_run_at: datetime | None = None
    last_commit_hash: str | None = None
    consecutive_failures: int = 0


@dataclass
class MetricFilters:
    """Facet filters accepted by the store search."""

    category: SourceCategory | None = None
    instrument_type: InstrumentType | None = None
    confidence: ConfidenceLevel | None = None
    semantic_match: SemanticMatch | None = None
    source: str | None = None


class SearchPage(BaseModel):
    items: list[CanonicalMetric] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 50

    @property
    def pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass
class FacetCounts:
    """Per-value counts for the search facets."""

    category: dict[str, int] = field(default_factory=dict)
    instrument_type: dict[str, int] = field(default_factory=dict)
    confidence: dict[str, int] = field(default_factory=dict)
    semantic_match: dict[str, int] = field(default_factory=dict)
