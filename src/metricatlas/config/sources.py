"""
Source configuration models.

A sources file lists every repository MetricAtlas reads, together with the
fetch and extraction options for it:

    defaults:
      ref: main
      fetcher: git
    sources:
      - name: otel-collector-contrib
        category: collector-receiver
        repository: https://github.com/open-telemetry/opentelemetry-collector-contrib
        confidence: Authoritative
        extraction_method: StructuredMetadata
        extractor:
          include: ["receiver/**/metadata.yaml"]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from metricatlas.core.errors import ConfigurationError, DuplicateSourceError
from metricatlas.domain.models import (
    ConfidenceLevel,
    ExtractionMethod,
    RunMode,
    SourceCategory,
    SourceDescriptor,
)


class FetcherKind(StrEnum):
    """How a source repository is materialized."""
    GIT = "git"
    ARCHIVE = "archive"
    LOCAL = "local"


def _str_list(value: Any, key: str, source: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigurationError(
        f"'{key}' must be a string or a list of strings", {"source": source}
    )


def _enum(enum_cls: type[StrEnum], value: Any, key: str, source: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)  # type: ignore[attr-defined]
        raise ConfigurationError(
            f"Invalid {key} '{value}' (expected one of: {allowed})", {"source": source}
        ) from None


@dataclass
class ExtractorOptions:
    """Per-source extractor tuning."""
    language: str | None = None
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    profile: str | None = None
    name_prefix: str = ""
    patterns: list[str] = field(default_factory=list)
    default_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "include": list(self.include),
            "exclude": list(self.exclude),
            "profile": self.profile,
            "name_prefix": self.name_prefix,
            "patterns": list(self.patterns),
            "default_type": self.default_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, source: str) -> ExtractorOptions:
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("'extractor' must be a mapping", {"source": source})
        return cls(
            language=data.get("language"),
            include=_str_list(data.get("include"), "include", source),
            exclude=_str_list(data.get("exclude"), "exclude", source),
            profile=data.get("profile"),
            name_prefix=data.get("name_prefix") or "",
            patterns=_str_list(data.get("patterns"), "patterns", source),
            default_type=data.get("default_type"),
        )


@dataclass
class SourceConfig:
    """One configured source: descriptor fields plus fetch/extract options."""
    name: str
    category: SourceCategory
    repository: str
    confidence: ConfidenceLevel
    extraction_method: ExtractionMethod
    fetcher: FetcherKind = FetcherKind.GIT
    ref: str | None = None
    shallow: bool = True
    timeout_seconds: int | None = None
    max_attempts: int | None = None
    run_mode: RunMode = RunMode.ADDITIVE
    extractor: ExtractorOptions = field(default_factory=ExtractorOptions)

    def descriptor(self) -> SourceDescriptor:
        try:
            return SourceDescriptor(
                name=self.name,
                category=self.category,
                repository_location=self.repository,
                confidence=self.confidence,
                extraction_method=self.extraction_method,
            )
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid source descriptor: {e.errors()[0]['msg']}", {"source": self.name}
            ) from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category.value,
            "repository": self.repository,
            "confidence": self.confidence.value,
            "extraction_method": self.extraction_method.value,
            "fetcher": self.fetcher.value,
            "ref": self.ref,
            "shallow": self.shallow,
            "timeout_seconds": self.timeout_seconds,
            "max_attempts": self.max_attempts,
            "run_mode": self.run_mode.value,
            "extractor": self.extractor.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], defaults: dict[str, Any] | None = None) -> SourceConfig:
        if not isinstance(data, dict):
            raise ConfigurationError("Each source entry must be a mapping")
        merged = {**(defaults or {}), **data}

        name = merged.get("name")
        if not name or not isinstance(name, str):
            raise ConfigurationError("Source entry is missing 'name'")
        for key in ("category", "repository", "confidence", "extraction_method"):
            if key not in merged:
                raise ConfigurationError(f"Source entry is missing '{key}'", {"source": name})

        timeout = merged.get("timeout_seconds", merged.get("timeout"))
        return cls(
            name=name,
            category=_enum(SourceCategory, merged["category"], "category", name),
            repository=str(merged["repository"]),
            confidence=_enum(ConfidenceLevel, merged["confidence"], "confidence", name),
            extraction_method=_enum(
                ExtractionMethod, merged["extraction_method"], "extraction_method", name
            ),
            fetcher=_enum(FetcherKind, merged.get("fetcher", "git"), "fetcher", name),
            ref=str(merged["ref"]) if merged.get("ref") else None,
            shallow=bool(merged.get("shallow", True)),
            timeout_seconds=int(timeout) if timeout is not None else None,
            max_attempts=merged.get("max_attempts"),
            run_mode=_enum(RunMode, merged.get("run_mode", "additive"), "run_mode", name),
            extractor=ExtractorOptions.from_dict(data.get("extractor"), name),
        )


@dataclass
class SourcesConfig:
    """All configured sources, in file order."""
    sources: list[SourceConfig] = field(default_factory=list)
    origin: str = "builtin"

    def get(self, name: str) -> SourceConfig | None:
        for source in self.sources:
            if source.name == name:
                return source
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"sources": [s.to_dict() for s in self.sources]}

    @classmethod
    def from_dict(cls, data: dict[str, Any], origin: str = "builtin") -> SourcesConfig:
        if not isinstance(data, dict):
            raise ConfigurationError("Sources file must contain a mapping", {"path": origin})
        defaults = data.get("defaults") or {}
        if not isinstance(defaults, dict):
            raise ConfigurationError("'defaults' must be a mapping", {"path": origin})
        entries = data.get("sources") or []
        if not isinstance(entries, list):
            raise ConfigurationError("'sources' must be a list", {"path": origin})

        sources = [SourceConfig.from_dict(entry, defaults) for entry in entries]
        seen: set[str] = set()
        for source in sources:
            if source.name in seen:
                raise DuplicateSourceError(source.name)
            seen.add(source.name)
        return cls(sources=sources, origin=origin)
