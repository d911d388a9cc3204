"""Source adapter protocol and the descriptor-driven default adapter."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from metricatlas.domain.models import (
    ConfidenceLevel,
    ExtractionMethod,
    RunMode,
    SourceCategory,
    SourceDescriptor,
)
from metricatlas.extractors.base import ExtractionResult, Extractor
from metricatlas.fetch.base import Fetcher
from metricatlas.fetch.models import FetchOptions, FetchResult


@dataclass
class AdapterContext:
    """Per-source state handed to an adapter for one run.

    ``cancelled`` is set when the run gives up on the source; extraction
    running in a worker thread stops at the next file boundary.
    """

    run_id: str
    workspace: Path
    log: Any  # structlog BoundLogger with run_id and source bound
    cancelled: threading.Event = field(default_factory=threading.Event)


class SourceAdapter(ABC):
    """One upstream source: how to fetch it and how to read metrics from it.

    The orchestrator only talks to this surface, so adding a source means
    adding a config entry or a new subclass.
    """

    @property
    @abstractmethod
    def descriptor(self) -> SourceDescriptor:
        ...

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def category(self) -> SourceCategory:
        return self.descriptor.category

    @property
    def confidence(self) -> ConfidenceLevel:
        return self.descriptor.confidence

    @property
    def extraction_method(self) -> ExtractionMethod:
        return self.descriptor.extraction_method

    @property
    def repository_location(self) -> str:
        return self.descriptor.repository_location

    @property
    def fetch_options(self) -> FetchOptions:
        return FetchOptions()

    @property
    def run_mode(self) -> RunMode:
        return RunMode.ADDITIVE

    @abstractmethod
    async def fetch(self, context: AdapterContext, options: FetchOptions) -> FetchResult:
        """Materialize the source into ``context.workspace``."""

    @abstractmethod
    def extract(self, context: AdapterContext, fetch_result: FetchResult) -> ExtractionResult:
        """Read raw metric definitions from a fetched tree. Runs in a worker thread."""


class DescriptorAdapter(SourceAdapter):
    """Binds one descriptor to one fetcher and one extractor."""

    def __init__(
        self,
        descriptor: SourceDescriptor,
        fetcher: Fetcher,
        extractor: Extractor,
        *,
        fetch_options: FetchOptions | None = None,
        run_mode: RunMode = RunMode.ADDITIVE,
    ) -> None:
        self._descriptor = descriptor
        self.fetcher = fetcher
        self.extractor = extractor
        self._fetch_options = fetch_options or FetchOptions()
        self._run_mode = run_mode

    @property
    def descriptor(self) -> SourceDescriptor:
        return self._descriptor

    @property
    def fetch_options(self) -> FetchOptions:
        return self._fetch_options

    @property
    def run_mode(self) -> RunMode:
        return self._run_mode

    async def fetch(self, context: AdapterContext, options: FetchOptions) -> FetchResult:
        return await self.fetcher.fetch(self._descriptor, options, context.workspace)

    def extract(self, context: AdapterContext, fetch_result: FetchResult) -> ExtractionResult:
        result = self.extractor.parse(fetch_result, cancelled=context.cancelled)
        context.log.info(
            "source_extracted",
            extractor=self.extractor.method.value,
            metrics=len(result.metrics),
            partial_failures=len(result.partial_failures),
        )
        return result

    def __repr__(self) -> str:
        return f"DescriptorAdapter({self._descriptor.name!r}, fetcher={self.fetcher.name!r})"
