"""Builders for domain objects used across the test suite."""

from datetime import datetime, timezone
from pathlib import Path

from metricatlas.domain.models import (
    CanonicalMetric,
    ConfidenceLevel,
    ExtractionMethod,
    InstrumentType,
    RawMetric,
    SourceCategory,
    SourceDescriptor,
)
from metricatlas.fetch.models import FetchResult, SourceTree
from metricatlas.normalization.normalizer import metric_id

EXTRACTED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
def make_descriptor(
    name: str = "node-exporter",
    *,
    category: SourceCategory = SourceCategory.EXPORTER,
    confidence: ConfidenceLevel = ConfidenceLevel.DERIVED,
    method: ExtractionMethod = ExtractionMethod.LANGUAGE_AST,
    location: str = "https://github.com/prometheus/node_exporter",
) -> SourceDescriptor:
    return SourceDescriptor(
        name=name,
        category=category,
        repository_location=location,
        confidence=confidence,
        extraction_method=method,
    )


def make_raw(name: str = "http_requests_total", raw_type: str = "counter", **overrides) -> RawMetric:
    fields = {
        "source_name": "node-exporter",
        "raw_name": name,
        "raw_type": raw_type,
        "description": "Requests served.",
        "unit": None,
        "label_names": [],
        "file_path": "collector/http.go",
        "commit_hash": "a" * 40,
        "confidence": ConfidenceLevel.DERIVED,
        "extraction_method": ExtractionMethod.LANGUAGE_AST,
        "component": "collector",
    }
    fields.update(overrides)
    return RawMetric(**fields)


def make_metric(
    name: str = "http.server.request.duration",
    source: str = "node-exporter",
    **overrides,
) -> CanonicalMetric:
    component = overrides.pop("component", "")
    fields = {
        "id": metric_id(source, name, component),
        "canonical_name": name,
        "instrument_type": InstrumentType.HISTOGRAM,
        "description": f"Description of {name}",
        "unit": None,
        "source_name": source,
        "category": SourceCategory.EXPORTER,
        "component": component,
        "file_path": "collector/http.go",
        "commit_hash": "a" * 40,
        "extracted_at": EXTRACTED_AT,
        "confidence": ConfidenceLevel.DERIVED,
        "extraction_method": ExtractionMethod.LANGUAGE_AST,
    }
    fields.update(overrides)
    return CanonicalMetric(**fields)


def make_fetch_result(root: Path, source: str = "node-exporter", commit: str = "c" * 40) -> FetchResult:
    return FetchResult(
        source_name=source,
        commit_hash=commit,
        fetched_at=EXTRACTED_AT,
        ref="main",
        tree=SourceTree(root),
    )


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Create ``files`` (relative path -> content) under ``root``."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


