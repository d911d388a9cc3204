"""
Mapping of raw metric definitions onto the canonical schema.

Name rules:
- names that already contain ``.`` keep their segments; each segment is
  converted to snake_case
- other names are split on ``_``, ``-``, ``:`` and ``/`` and rejoined with
  ``.``; redundant unit and type suffixes are dropped first
- camelCase and PascalCase become snake_case (``ReadLatency`` -> ``read_latency``)

The normalizer performs no I/O and is deterministic for a given policy.
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone

import structlog

from metricatlas.core.errors import NormalizationError
from metricatlas.domain.models import CanonicalMetric, InstrumentType, RawMetric, SourceCategory
from metricatlas.normalization.policy import NormalizationPolicy

logger = structlog.get_logger()

_ACRONYM_RE = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS_RE = re.compile(r"[_\-:/]+")
_INVALID_RE = re.compile(r"[^a-z0-9_]+")


def snake_case(token: str) -> str:
    """``CPUUtilization`` -> ``cpu_utilization``; other characters become ``_``."""
    token = _ACRONYM_RE.sub(r"\1_\2", token)
    token = _CAMEL_RE.sub(r"\1_\2", token)
    token = _INVALID_RE.sub("_", token.lower())
    return re.sub(r"_+", "_", token).strip("_")


def metric_id(source_name: str, canonical_name: str, component: str) -> str:
    return hashlib.sha256(f"{source_name}\0{canonical_name}\0{component}".encode()).hexdigest()


class Normalizer:
    """Pure RawMetric -> CanonicalMetric mapping driven by a policy."""

    def __init__(self, policy: NormalizationPolicy | None = None) -> None:
        self.policy = policy or NormalizationPolicy.default()

    def canonical_name(self, raw_name: str, instrument_type: InstrumentType, unit: str | None) -> str:
        name = raw_name.strip()
        if "." in name:
            segments = [snake_case(s) for s in name.split(".")]
            return ".".join(s for s in segments if s)

        tokens = [t for t in (snake_case(t) for t in _SEPARATORS_RE.split(name)) if t]
        while len(tokens) > 1 and self.policy.strippable(tokens[-1], instrument_type, unit):
            tokens.pop()
        return ".".join(tokens)

    def attribute_name(self, label: str) -> str:
        segments = [snake_case(s) for s in label.strip().split(".")]
        return ".".join(s for s in segments if s)

    def normalize(
        self,
        raw: RawMetric,
        *,
        category: SourceCategory = SourceCategory.OTHER,
        extracted_at: datetime | None = None,
    ) -> CanonicalMetric:
        """Map one raw definition or raise :class:`NormalizationError`."""
        details = {"raw": raw.to_dict()}
        for field_name in ("source_name", "file_path", "commit_hash"):
            if not getattr(raw, field_name):
                raise NormalizationError(f"Metric has no {field_name}", details)

        instrument_type = self.policy.instrument_type(raw.raw_type)
        unit = raw.unit.strip() if raw.unit and raw.unit.strip() else None
        name = self.canonical_name(raw.raw_name, instrument_type, unit)
        if not name:
            raise NormalizationError("Metric name is empty after normalization", details)

        attributes = sorted({a for a in (self.attribute_name(label) for label in raw.label_names) if a})

        return CanonicalMetric(
            id=metric_id(raw.source_name, name, raw.component),
            canonical_name=name,
            instrument_type=instrument_type,
            description=raw.description.strip(),
            unit=unit,
            attributes=tuple(attributes),
            source_name=raw.source_name,
            category=category,
            component=raw.component,
            file_path=raw.file_path,
            commit_hash=raw.commit_hash,
            extracted_at=extracted_at or datetime.now(timezone.utc),
            confidence=raw.confidence,
            extraction_method=raw.extraction_method,
        )
