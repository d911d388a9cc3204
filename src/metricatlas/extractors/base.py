"""
Base class for metric extractors.

An extractor reads a fetched source tree and returns every metric definition
it can recognize. A malformed file or definition never aborts extraction; it
is recorded as a partial failure and the remaining files are still read.
A set ``cancelled`` event stops the walk between files.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

import structlog

from metricatlas.config.sources import ExtractorOptions
from metricatlas.core.errors import ExtractionError
from metricatlas.domain.models import (
    ConfidenceLevel,
    ExtractionMethod,
    PartialFailure,
    RawMetric,
    SourceDescriptor,
)
from metricatlas.fetch.models import FetchResult

logger = structlog.get_logger()


@dataclass
class ExtractionResult:
    """Metrics found in a source plus everything that had to be skipped."""

    metrics: list[RawMetric] = field(default_factory=list)
    partial_failures: list[PartialFailure] = field(default_factory=list)

    def add_failure(self, file_path: str, reason: str, line: int | None = None) -> None:
        self.partial_failures.append(PartialFailure(file_path=file_path, reason=reason, line=line))

    def merge(self, other: ExtractionResult) -> None:
        self.metrics.extend(other.metrics)
        self.partial_failures.extend(other.partial_failures)


class Extractor(ABC):
    """
    Abstract base class for extractors.

    Subclasses implement parse_file() for one file, or override parse() when
    they need to see several files at once.
    """

    default_include: Sequence[str] = ("**/*",)
    default_exclude: Sequence[str] = ()
    confidence_ceiling: ConfidenceLevel = ConfidenceLevel.AUTHORITATIVE

    def __init__(self, descriptor: SourceDescriptor, options: ExtractorOptions | None = None) -> None:
        self.descriptor = descriptor
        self.options = options or ExtractorOptions()

    @property
    @abstractmethod
    def method(self) -> ExtractionMethod:
        """Extraction method recorded on every metric."""

    @property
    def confidence(self) -> ConfidenceLevel:
        return self.descriptor.confidence.cap(self.confidence_ceiling)

    @property
    def include(self) -> Sequence[str]:
        return self.options.include or self.default_include

    @property
    def exclude(self) -> Sequence[str]:
        return [*self.default_exclude, *self.options.exclude]

    def files(self, fetch_result: FetchResult) -> Iterable[Path]:
        return fetch_result.tree.iter_files(self.include, self.exclude)

    def parse(self, fetch_result: FetchResult, cancelled: threading.Event | None = None) -> ExtractionResult:
        result = ExtractionResult()
        tree = fetch_result.tree
        for path in self.files(fetch_result):
            rel = tree.relative(path)
            if cancelled is not None and cancelled.is_set():
                logger.info("extraction_cancelled", source=self.descriptor.name, next_file=rel)
                break
            try:
                text = tree.read_text(path)
                result.merge(self.parse_file(rel, text, fetch_result))
            except ExtractionError as e:
                logger.warning("extractor_file_skipped", source=self.descriptor.name, file=rel, reason=e.message)
                result.add_failure(rel, e.message, e.details.get("line"))
            except Exception as e:
                logger.warning(
                    "extractor_file_failed",
                    source=self.descriptor.name,
                    file=rel,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.add_failure(rel, f"{type(e).__name__}: {e}")
        return result

    def parse_file(self, rel_path: str, text: str, fetch_result: FetchResult) -> ExtractionResult:
        raise NotImplementedError

    def make_metric(
        self,
        fetch_result: FetchResult,
        *,
        name: str,
        raw_type: str,
        file_path: str,
        description: str = "",
        unit: str | None = None,
        label_names: Iterable[str] = (),
        component: str = "",
        line: int | None = None,
    ) -> RawMetric:
        return RawMetric(
            source_name=self.descriptor.name,
            raw_name=name,
            raw_type=raw_type,
            description=(description or "").strip(),
            unit=unit or None,
            label_names=list(label_names),
            file_path=file_path,
            commit_hash=fetch_result.commit_hash,
            confidence=self.confidence,
            extraction_method=self.method,
            component=component,
            line=line,
        )
