"""
Structured metadata extraction.

Reads OpenTelemetry Collector ``metadata.yaml`` documents (the schema consumed
by mdatagen). Each document describes one component:

    type: hostmetrics
    attributes:
      state:
        description: Breakdown of CPU usage by type.
        type: string
    metrics:
      system.cpu.time:
        description: Total seconds each logical CPU spent on each mode.
        unit: s
        sum:
          value_type: double
          monotonic: true
        attributes: [state]
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any

import structlog
import yaml

from metricatlas.core.errors import ExtractionError
from metricatlas.domain.models import ExtractionMethod
from metricatlas.extractors.base import ExtractionResult, Extractor
from metricatlas.fetch.models import FetchResult

logger = structlog.get_logger()

_INSTRUMENT_KEYS = ("sum", "gauge", "histogram", "exponential_histogram", "summary")


def instrument_kind(definition: dict[str, Any]) -> str | None:
    """Raw type token for one metric definition."""
    for key in _INSTRUMENT_KEYS:
        if key not in definition:
            continue
        if key == "sum":
            spec = definition.get("sum") or {}
            return "monotonic_sum" if spec.get("monotonic") else "updowncounter"
        return key
    return None


def attribute_names(refs: Any, declared: dict[str, Any]) -> list[str]:
    """Resolve attribute references, honoring ``name_override``."""
    names: list[str] = []
    for ref in refs or []:
        ref = str(ref)
        spec = declared.get(ref)
        if isinstance(spec, dict) and spec.get("name_override"):
            names.append(str(spec["name_override"]))
        else:
            names.append(ref)
    return names


class StructuredMetadataExtractor(Extractor):
    """Extract metrics from mdatagen ``metadata.yaml`` files."""

    default_include = ("**/metadata.yaml",)
    default_exclude = ("**/testdata/**",)

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.STRUCTURED_METADATA

    def parse_file(self, rel_path: str, text: str, fetch_result: FetchResult) -> ExtractionResult:
        result = ExtractionResult()
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            raise ExtractionError(
                f"invalid YAML: {getattr(e, 'problem', None) or e}",
                {"line": mark.line + 1 if mark is not None else None},
            ) from e

        if not isinstance(document, dict):
            return result
        metrics = document.get("metrics")
        if not metrics:
            return result
        if not isinstance(metrics, dict):
            raise ExtractionError("'metrics' is not a mapping")

        component = str(document.get("type") or PurePosixPath(rel_path).parent.name)
        declared = document.get("attributes") or {}
        if not isinstance(declared, dict):
            declared = {}

        for name, definition in metrics.items():
            if not isinstance(definition, dict):
                result.add_failure(rel_path, f"metric '{name}' is not a mapping")
                continue
            kind = instrument_kind(definition)
            if kind is None:
                result.add_failure(rel_path, f"metric '{name}' declares no instrument")
                continue
            result.metrics.append(
                self.make_metric(
                    fetch_result,
                    name=str(name),
                    raw_type=kind,
                    file_path=rel_path,
                    description=str(definition.get("description") or ""),
                    unit=str(unit) if (unit := definition.get("unit")) is not None else None,
                    label_names=attribute_names(definition.get("attributes"), declared),
                    component=component,
                )
            )

        logger.debug(
            "metadata_parsed",
            source=self.descriptor.name,
            file=rel_path,
            component=component,
            metrics=len(result.metrics),
        )
        return result
