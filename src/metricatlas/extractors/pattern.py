"""
Pattern-match extraction for loosely structured sources.

Profiles:
- ``markdown-table``: pipe tables whose header names a metric column, as used
  by vendor documentation (``| Metric | Description | Units |``)
- ``constructor-call``: calls such as ``Counter("name", "help")`` or
  ``IntGauge::new("name", "help")`` in any text file

Custom regular expressions may be configured in addition; they must define a
``name`` group and may define ``type``, ``description``, ``unit`` and
``labels`` groups.

Metrics found this way are never trusted above ``Documented``.
"""

from __future__ import annotations

import re
from typing import Iterator, Sequence

import structlog

from metricatlas.config.sources import ExtractorOptions
from metricatlas.core.errors import ConfigurationError
from metricatlas.domain.models import ConfidenceLevel, ExtractionMethod, SourceDescriptor
from metricatlas.extractors.base import ExtractionResult, Extractor
from metricatlas.fetch.models import FetchResult

logger = structlog.get_logger()

MARKDOWN_TABLE = "markdown-table"
CONSTRUCTOR_CALL = "constructor-call"
PROFILES = (MARKDOWN_TABLE, CONSTRUCTOR_CALL)

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.:/-]*$")
_SEPARATOR_RE = re.compile(r"^\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?$")
_MARKUP_RE = re.compile(r"[`*]|<[^>]+>")

CONSTRUCTOR_RE = re.compile(
    r"(?P<type>Counter|Gauge|Histogram|Summary|UpDownCounter)\w*(?:::new|\.new)?\s*\(\s*"
    r"[\"'](?P<name>[A-Za-z_][\w.:]*)[\"']"
    r"(?:\s*,\s*[\"'](?P<description>[^\"']*)[\"'])?"
)

_HEADER_ALIASES = {
    "name": ("metric", "metric name", "name", "metric_name"),
    "description": ("description", "help", "meaning"),
    "unit": ("unit", "units"),
    "type": ("type", "metric type", "instrument", "kind"),
    "labels": ("dimensions", "labels", "attributes", "tags"),
}


def _clean(cell: str) -> str:
    return _MARKUP_RE.sub("", cell).strip()


def _split_row(line: str) -> list[str]:
    line = line.strip()
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|"):
        line = line[:-1]
    return [cell.strip() for cell in line.split("|")]


def _header_columns(cells: Sequence[str]) -> dict[str, int]:
    columns: dict[str, int] = {}
    for index, cell in enumerate(cells):
        label = _clean(cell).lower()
        for field_name, aliases in _HEADER_ALIASES.items():
            if field_name not in columns and label in aliases:
                columns[field_name] = index
    return columns


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def _split_labels(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in re.split(r"[,;]", value) if part.strip()]


class PatternMatchExtractor(Extractor):
    """Regex and table driven extraction for documentation and loose code."""

    confidence_ceiling = ConfidenceLevel.DOCUMENTED

    def __init__(self, descriptor: SourceDescriptor, options: ExtractorOptions | None = None) -> None:
        super().__init__(descriptor, options)
        profile = self.options.profile
        if profile is None and not self.options.patterns:
            profile = MARKDOWN_TABLE
        if profile is not None and profile not in PROFILES:
            raise ConfigurationError(
                f"Unknown pattern profile '{profile}'", {"source": descriptor.name}
            )
        self.profile = profile
        self.patterns: list[re.Pattern[str]] = []
        for raw in self.options.patterns:
            try:
                pattern = re.compile(raw, re.MULTILINE)
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid pattern: {e}", {"source": descriptor.name, "pattern": raw}
                ) from e
            if "name" not in pattern.groupindex:
                raise ConfigurationError(
                    "Pattern must define a 'name' group", {"source": descriptor.name, "pattern": raw}
                )
            self.patterns.append(pattern)

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.PATTERN_MATCH

    @property
    def default_include(self) -> Sequence[str]:  # type: ignore[override]
        if self.profile == MARKDOWN_TABLE:
            return ("**/*.md",)
        return ("**/*",)

    def parse_file(self, rel_path: str, text: str, fetch_result: FetchResult) -> ExtractionResult:
        result = ExtractionResult()
        if self.profile == MARKDOWN_TABLE:
            self._parse_tables(rel_path, text, fetch_result, result)
        elif self.profile == CONSTRUCTOR_CALL:
            self._parse_regex(CONSTRUCTOR_RE, rel_path, text, fetch_result, result)
        for pattern in self.patterns:
            self._parse_regex(pattern, rel_path, text, fetch_result, result)
        return result

    def _emit(
        self,
        fetch_result: FetchResult,
        result: ExtractionResult,
        *,
        rel_path: str,
        line: int,
        name: str,
        raw_type: str | None,
        description: str | None,
        unit: str | None,
        labels: list[str],
    ) -> None:
        if not _NAME_RE.match(name):
            result.add_failure(rel_path, f"not a metric name: {name!r}", line=line)
            return
        result.metrics.append(
            self.make_metric(
                fetch_result,
                name=f"{self.options.name_prefix}{name}",
                raw_type=raw_type or self.options.default_type or "unknown",
                file_path=rel_path,
                description=description or "",
                unit=unit or None,
                label_names=labels,
                line=line,
            )
        )

    def _parse_tables(
        self, rel_path: str, text: str, fetch_result: FetchResult, result: ExtractionResult
    ) -> None:
        for line_no, columns, cells in self._table_rows(text):
            name = _clean(cells[columns["name"]]) if columns["name"] < len(cells) else ""
            if not name:
                continue

            def cell(field_name: str) -> str | None:
                index = columns.get(field_name)
                if index is None or index >= len(cells):
                    return None
                return _clean(cells[index]) or None

            self._emit(
                fetch_result,
                result,
                rel_path=rel_path,
                line=line_no,
                name=name,
                raw_type=cell("type"),
                description=cell("description"),
                unit=cell("unit"),
                labels=_split_labels(cell("labels")),
            )

    def _table_rows(self, text: str) -> Iterator[tuple[int, dict[str, int], list[str]]]:
        lines = text.splitlines()
        columns: dict[str, int] | None = None
        for index, line in enumerate(lines):
            stripped = line.strip()
            if not stripped.startswith("|"):
                columns = None
                continue
            if _SEPARATOR_RE.match(stripped):
                continue
            next_line = lines[index + 1].strip() if index + 1 < len(lines) else ""
            if _SEPARATOR_RE.match(next_line):
                header = _header_columns(_split_row(stripped))
                columns = header if "name" in header else None
                continue
            if columns is not None:
                yield index + 1, columns, _split_row(stripped)

    def _parse_regex(
        self,
        pattern: re.Pattern[str],
        rel_path: str,
        text: str,
        fetch_result: FetchResult,
        result: ExtractionResult,
    ) -> None:
        groups = pattern.groupindex
        for match in pattern.finditer(text):
            self._emit(
                fetch_result,
                result,
                rel_path=rel_path,
                line=_line_of(text, match.start()),
                name=match.group("name"),
                raw_type=match.group("type") if "type" in groups else None,
                description=match.group("description") if "description" in groups else None,
                unit=match.group("unit") if "unit" in groups else None,
                labels=_split_labels(match.group("labels")) if "labels" in groups else [],
            )
