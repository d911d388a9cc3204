"""
Normalization policy.

The tables that drive name and type normalization live in one immutable
object, loaded once per run and passed by reference to every normalizer. The
defaults can be extended from a YAML file:

    types:
      monotonic_sum: Counter
    suffixes:
      seconds: [s, seconds, sec]
    type_suffixes:
      count: Counter
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import structlog
import yaml

from metricatlas.core.errors import ConfigurationError
from metricatlas.domain.models import InstrumentType

logger = structlog.get_logger()

_SQUASH_RE = re.compile(r"[^a-z0-9]")

DEFAULT_TYPE_TABLE: dict[str, InstrumentType] = {
    # counters
    "counter": InstrumentType.COUNTER,
    "countervalue": InstrumentType.COUNTER,
    "countervec": InstrumentType.COUNTER,
    "counterfunc": InstrumentType.COUNTER,
    "monotonicsum": InstrumentType.COUNTER,
    "observablecounter": InstrumentType.COUNTER,
    "sum": InstrumentType.COUNTER,
    "cumulative": InstrumentType.COUNTER,
    "count": InstrumentType.COUNTER,
    # gauges
    "gauge": InstrumentType.GAUGE,
    "gaugevalue": InstrumentType.GAUGE,
    "gaugevec": InstrumentType.GAUGE,
    "gaugefunc": InstrumentType.GAUGE,
    "updowncounter": InstrumentType.GAUGE,
    "observableupdowncounter": InstrumentType.GAUGE,
    "observablegauge": InstrumentType.GAUGE,
    "valuerecorder": InstrumentType.GAUGE,
    "valueobserver": InstrumentType.GAUGE,
    "info": InstrumentType.GAUGE,
    "enum": InstrumentType.GAUGE,
    "stateset": InstrumentType.GAUGE,
    # histograms
    "histogram": InstrumentType.HISTOGRAM,
    "histogramvec": InstrumentType.HISTOGRAM,
    "exponentialhistogram": InstrumentType.HISTOGRAM,
    "distribution": InstrumentType.HISTOGRAM,
    "timer": InstrumentType.HISTOGRAM,
    # summaries
    "summary": InstrumentType.SUMMARY,
    "summaryvec": InstrumentType.SUMMARY,
}

# Suffix -> units that justify stripping it. An empty tuple means the suffix
# is stripped by instrument type instead of unit.
DEFAULT_SUFFIX_UNITS: dict[str, tuple[str, ...]] = {
    "seconds": ("s", "seconds", "second", "sec"),
    "milliseconds": ("ms", "milliseconds", "millisecond"),
    "bytes": ("by", "bytes", "byte", "b"),
    "ratio": ("1", "ratio"),
    "percent": ("%", "percent"),
}

DEFAULT_TYPE_SUFFIXES: dict[str, InstrumentType] = {
    "total": InstrumentType.COUNTER,
}


def squash(token: str) -> str:
    """Lookup key for a raw type: last dotted segment, lowercase alphanumerics."""
    return _SQUASH_RE.sub("", token.rsplit(".", 1)[-1].lower())


@dataclass(frozen=True)
class NormalizationPolicy:
    """Immutable tables used by the normalizer."""

    type_table: Mapping[str, InstrumentType] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_TYPE_TABLE))
    )
    suffix_units: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_SUFFIX_UNITS))
    )
    type_suffixes: Mapping[str, InstrumentType] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_TYPE_SUFFIXES))
    )

    def instrument_type(self, raw_type: str | None) -> InstrumentType:
        if not raw_type:
            return InstrumentType.UNKNOWN
        return self.type_table.get(squash(raw_type), InstrumentType.UNKNOWN)

    def strippable(self, suffix: str, instrument_type: InstrumentType, unit: str | None) -> bool:
        """Whether a trailing name token is redundant for this metric."""
        if self.type_suffixes.get(suffix) == instrument_type:
            return True
        units = self.suffix_units.get(suffix)
        if not units or unit is None:
            return False
        return unit.strip().lower() in units

    @classmethod
    def default(cls) -> NormalizationPolicy:
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NormalizationPolicy:
        types = dict(DEFAULT_TYPE_TABLE)
        for raw, target in (data.get("types") or {}).items():
            try:
                types[squash(str(raw))] = InstrumentType(target)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown instrument type '{target}' for '{raw}' in normalization policy"
                ) from None

        suffixes = dict(DEFAULT_SUFFIX_UNITS)
        for suffix, units in (data.get("suffixes") or {}).items():
            if isinstance(units, str):
                units = [units]
            suffixes[str(suffix).lower()] = tuple(str(u).lower() for u in units or ())

        type_suffixes = dict(DEFAULT_TYPE_SUFFIXES)
        for suffix, target in (data.get("type_suffixes") or {}).items():
            try:
                type_suffixes[str(suffix).lower()] = InstrumentType(target)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown instrument type '{target}' for suffix '{suffix}' in normalization policy"
                ) from None

        return cls(
            type_table=MappingProxyType(types),
            suffix_units=MappingProxyType(suffixes),
            type_suffixes=MappingProxyType(type_suffixes),
        )

    @classmethod
    def load(cls, path: str | Path | None = None) -> NormalizationPolicy:
        """Load the default policy, merged with overrides from ``path``."""
        if path is None:
            return cls.default()
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot load normalization policy: {e}", {"path": str(path)}) from e
        if not isinstance(data, dict):
            raise ConfigurationError("Normalization policy must be a mapping", {"path": str(path)})
        logger.debug("loaded_normalization_policy", path=str(path))
        return cls.from_dict(data)
